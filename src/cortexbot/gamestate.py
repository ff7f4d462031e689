"""Board state tracking from generals.io game updates.

This module provides the GameState class that rebuilds the full board
for the current match from the incremental ``game_update`` diffs sent
by the server, and derives the facts consumers care about: own and
enemy tiles, discovered tiles and general locations.
"""

import logging
from enum import IntEnum
from typing import Any, Optional, Sequence

from cortexbot.patch import PatchError, patch

logger = logging.getLogger(__name__)

# Value used by the server for a general that is not visible
UNKNOWN_GENERAL = -1


class Tile(IntEnum):
    """Negative terrain codes. Values >= 0 are player indices."""
    EMPTY = -1
    MOUNTAIN = -2
    FOG = -3
    FOG_OBSTACLE = -4  # Cities and mountains show up as obstacles in the fog
    OFF_LIMITS = -5


class GameStateCorrupted(RuntimeError):
    """Raised when an update is applied after a failed decode."""


class GameState:
    """Authoritative board snapshot for one match.

    Created on ``game_start`` and mutated in place by every
    ``game_update``. After a decode failure the snapshot can no longer
    be trusted; it is marked corrupted and rejects further updates.

    Example:
        state = GameState.from_game_start(payload)
        state.update(update_payload)
        print(state.width, state.height, state.own_tiles)
    """

    def __init__(
        self,
        player_index: int,
        replay_id: str = "",
        usernames: Optional[list[str]] = None,
        chat_room: Optional[str] = None,
        teams: Optional[list[int]] = None,
    ) -> None:
        """Initialize an empty board for a new match.

        Args:
            player_index: Index assigned to this bot by the server.
            replay_id: Match identifier.
            usernames: Participant usernames, ordered by player index.
            chat_room: Chat channel handle for this match.
            teams: Team number per player index, if the server sent one.
        """
        self.player_index = player_index
        self.replay_id = replay_id
        self.usernames: list[str] = list(usernames or [])
        self.chat_room = chat_room
        self.teams: list[int] = list(teams or [])

        # Raw diff-patched arrays
        self.map: list[int] = []
        self.cities: list[int] = []

        # Dimensions, fixed by the first update
        self.width: int = 0
        self.height: int = 0
        self.size: int = 0
        self.initialized: bool = False

        # Per-cell views of |map|
        self.armies: list[int] = []
        self.terrain: list[int] = []

        # Derived facts
        self.own_tiles: dict[int, int] = {}
        self.enemy_tiles: dict[int, int] = {}
        self.discovered: list[bool] = []
        self.own_general: int = UNKNOWN_GENERAL
        self.enemy_general: int = UNKNOWN_GENERAL

        self.turn: int = 0
        self.scores: list[dict] = []
        self.move_count: int = 0
        self.corrupted: bool = False

    @classmethod
    def from_game_start(cls, data: dict) -> "GameState":
        """Create a GameState from a ``game_start`` payload."""
        return cls(
            player_index=data["playerIndex"],
            replay_id=data.get("replay_id", ""),
            usernames=data.get("usernames"),
            chat_room=data.get("chat_room"),
            teams=data.get("teams"),
        )

    def update(self, data: dict) -> None:
        """Apply a raw ``game_update`` payload from the server."""
        self.apply_update(
            data.get("map_diff", []),
            data.get("cities_diff", []),
            data.get("generals", []),
            data.get("turn", self.turn),
            scores=data.get("scores"),
        )

    def apply_update(
        self,
        map_diff: Sequence[int],
        cities_diff: Sequence[int],
        generals: Sequence[int],
        turn: int,
        scores: Optional[list[dict]] = None,
    ) -> None:
        """Decode one turn's diffs and refresh every derived view.

        Args:
            map_diff: Diff against the previous combined map array.
            cities_diff: Diff against the previous cities array.
            generals: General index per player, -1 where unknown.
            turn: Turn number of this update.
            scores: Optional score list, stored as-is.

        Raises:
            PatchError: If either diff does not fit its array. The
                snapshot is marked corrupted before the error propagates.
            GameStateCorrupted: If a previous update already failed.
        """
        if self.corrupted:
            raise GameStateCorrupted(
                f"Board for {self.replay_id or 'current match'} is corrupted; "
                "match must be abandoned"
            )

        try:
            new_map = patch(self.map, map_diff)
            new_cities = patch(self.cities, cities_diff)
            self._set_map(new_map)
        except PatchError:
            self.corrupted = True
            logger.error(f"Failed to decode update for turn {turn} of {self.replay_id}")
            raise

        self.cities = new_cities
        self._update_player_tiles()
        self._update_discovered_tiles()
        self._update_generals(generals)
        self.turn = turn
        if scores is not None:
            self.scores = scores

        logger.debug(
            f"Turn {turn}: own={len(self.own_tiles)} enemy={len(self.enemy_tiles)} "
            f"cities={len(self.cities)}"
        )

    def _set_map(self, new_map: list[int]) -> None:
        """Split the combined map into dimensions, armies and terrain."""
        if not self.initialized:
            if len(new_map) < 2:
                raise PatchError(f"Map of length {len(new_map)} has no dimensions")
            # The first two terms of |map| are the dimensions.
            width, height = new_map[0], new_map[1]
            size = width * height
        else:
            width, height, size = self.width, self.height, self.size

        if len(new_map) < 2 + 2 * size:
            raise PatchError(
                f"Map of length {len(new_map)} is too short for a {width}x{height} board"
            )

        if not self.initialized:
            self.width = width
            self.height = height
            self.size = size
            self.discovered = [False] * size
            self.initialized = True
            logger.info(f"Board for {self.replay_id}: {width}x{height} ({size} tiles)")

        self.map = new_map
        # The next |size| terms are army values; armies[0] is the top-left corner.
        self.armies = new_map[2:2 + size]
        # The last |size| terms are terrain values.
        self.terrain = new_map[2 + size:2 + 2 * size]

    def _update_player_tiles(self) -> None:
        """Rebuild own/enemy tile maps from scratch."""
        self.own_tiles.clear()
        self.enemy_tiles.clear()
        for index, owner in enumerate(self.terrain):
            if owner < 0:
                continue
            if owner == self.player_index:
                self.own_tiles[index] = self.armies[index]
            else:
                self.enemy_tiles[index] = self.armies[index]

    def _update_discovered_tiles(self) -> None:
        """Remember tiles that have been seen owned, even if fogged later."""
        for index in self.own_tiles:
            self.discovered[index] = True
        for index in self.enemy_tiles:
            self.discovered[index] = True

    def _update_generals(self, generals: Sequence[int]) -> None:
        """Assign general locations.

        Our own general is always revealed to us before any enemy's, so
        the first known general is ours.
        """
        for general in generals:
            if general == UNKNOWN_GENERAL:
                continue
            if self.own_general == UNKNOWN_GENERAL:
                self.own_general = general
                logger.info(f"Own general at {general}")
            elif general != self.own_general and general != self.enemy_general:
                self.enemy_general = general
                logger.info(f"Enemy general spotted at {general}")

    def record_moves(self, count: int) -> None:
        """Add ``count`` issued attacks to the match move counter."""
        self.move_count += count

    @property
    def discovered_count(self) -> int:
        return sum(self.discovered)

    def get_snapshot(self) -> dict[str, Any]:
        """Get a JSON-ready dict of the per-match facts.

        Keys match the field names consumers read from the match
        keyspace. ``enemyGeneral`` is only present once known.
        """
        snapshot: dict[str, Any] = {
            "replay_id": self.replay_id,
            "playerIndex": self.player_index,
            "usernames": self.usernames,
            "chat_room": self.chat_room,
            "teams": self.teams,
            "width": self.width,
            "height": self.height,
            "size": self.size,
            "turn": self.turn,
            "armies": self.armies,
            "terrain": self.terrain,
            "cities": self.cities,
            "ownGeneral": self.own_general,
            # JSON object keys must be strings
            "ownTiles": {str(i): a for i, a in self.own_tiles.items()},
            "enemyTiles": {str(i): a for i, a in self.enemy_tiles.items()},
            "discoveredTiles": self.discovered,
            "scores": self.scores,
            "moveCount": self.move_count,
        }
        if self.enemy_general != UNKNOWN_GENERAL:
            snapshot["enemyGeneral"] = self.enemy_general
        return snapshot
