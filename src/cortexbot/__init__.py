"""cortexbot: generals.io bot client coordinated over a Redis bus."""

__version__ = "0.3.0"

from cortexbot.patch import PatchError, patch
from cortexbot.gamestate import GameState, GameStateCorrupted, Tile
from cortexbot.settings import Config, ConfigError, GameConfig, RedisConfig, load_config
from cortexbot.session import CommandRejected, GameType, Phase, Session
from cortexbot.deconflict import Deconflictor
from cortexbot.events import EventLoop

__all__ = [
    "__version__",
    "patch",
    "PatchError",
    "GameState",
    "GameStateCorrupted",
    "Tile",
    "Config",
    "ConfigError",
    "GameConfig",
    "RedisConfig",
    "load_config",
    "Session",
    "Phase",
    "GameType",
    "CommandRejected",
    "Deconflictor",
    "EventLoop",
]
