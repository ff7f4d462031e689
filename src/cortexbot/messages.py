"""Typed messages received over the coordination bus.

Sibling processes talk to the bot with small JSON documents:

    command channel:
        {"join": {"gameType": "custom", "gameId": "abc"}}
        {"leave": true}
        {"options": {"customGameSpeed": 2}}
        {"forceStart": true}
        {"status": true}

    recommendation / action channels:
        {"recommender": "expand", "confidence": 0.8, "priority": 1,
         "interrupt": false, "actions": [{"start": 4, "end": 5, "is50": false}]}

Anything that does not decode to one of these shapes raises
MessageParseError; the router logs and drops it.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union


class MessageParseError(ValueError):
    """Raised for bus payloads that are not valid messages."""


@dataclass
class JoinCommand:
    game_type: str
    game_id: Optional[str] = None


@dataclass
class LeaveCommand:
    pass


@dataclass
class OptionsCommand:
    game_speed: Optional[int] = None


@dataclass
class ForceStartCommand:
    pass


@dataclass
class StatusCommand:
    pass


Command = Union[JoinCommand, LeaveCommand, OptionsCommand, ForceStartCommand, StatusCommand]


@dataclass
class Attack:
    """One move: send armies from ``start`` to ``end``."""
    start: int
    end: int
    is50: bool = False

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "is50": self.is50}


@dataclass
class Recommendation:
    """An ordered batch of attacks proposed by a strategy process."""
    actions: list[Attack] = field(default_factory=list)
    interrupt: bool = False
    recommender: Optional[str] = None
    confidence: Optional[float] = None
    priority: Optional[int] = None


def decode_payload(raw: Union[str, bytes]) -> dict[str, Any]:
    """Decode a UTF-8 JSON object.

    Raises:
        MessageParseError: If the payload is not a JSON object.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageParseError(f"Payload is not UTF-8: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MessageParseError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MessageParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_command(raw: Union[str, bytes]) -> Command:
    """Parse a command channel message.

    Raises:
        MessageParseError: If the message holds no known command.
    """
    data = decode_payload(raw)

    if "join" in data:
        join = data["join"]
        if not isinstance(join, dict) or not isinstance(join.get("gameType"), str):
            raise MessageParseError("join requires an object with a gameType string")
        game_id = join.get("gameId")
        return JoinCommand(game_type=join["gameType"], game_id=str(game_id) if game_id else None)

    if "leave" in data:
        return LeaveCommand()

    if "options" in data:
        options = data["options"] or {}
        if not isinstance(options, dict):
            raise MessageParseError("options must be an object")
        speed = options.get("customGameSpeed")
        if speed is not None and (isinstance(speed, bool) or not isinstance(speed, (int, float))):
            raise MessageParseError(f"customGameSpeed must be a number, got {speed!r}")
        return OptionsCommand(game_speed=int(speed) if speed is not None else None)

    if "forceStart" in data:
        return ForceStartCommand()

    if "status" in data:
        return StatusCommand()

    raise MessageParseError(f"Unknown command: {sorted(data.keys())}")


def _parse_attack(item: Any) -> Attack:
    if not isinstance(item, dict):
        raise MessageParseError(f"Attack must be an object, got {item!r}")
    start, end = item.get("start"), item.get("end")
    for name, value in (("start", start), ("end", end)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise MessageParseError(f"Attack {name} must be a tile index, got {value!r}")
    return Attack(start=start, end=end, is50=bool(item.get("is50", False)))


def parse_recommendation(raw: Union[str, bytes]) -> Recommendation:
    """Parse a recommendation or action channel message.

    Raises:
        MessageParseError: If the message or any attack is malformed.
    """
    data = decode_payload(raw)
    actions = data.get("actions", [])
    if not isinstance(actions, list):
        raise MessageParseError("actions must be a list")

    return Recommendation(
        actions=[_parse_attack(item) for item in actions],
        interrupt=bool(data.get("interrupt", False)),
        recommender=data.get("recommender"),
        confidence=data.get("confidence"),
        priority=data.get("priority"),
    )
