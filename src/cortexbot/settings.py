"""Configuration loading for cortexbot.

Configuration is a JSON file with a ``gameConfig`` and a ``redisConfig``
section, merged over DEFAULTS. Secrets can be kept out of the file:
a ``.env`` file is loaded first and ``REDIS_*`` / ``GENERALS_USER_ID``
environment variables override what the file says.

Example config.json:
    {
      "gameConfig": {"userId": "...", "username": "[Bot] cortex"},
      "redisConfig": {"HOST": "redis.example.com", "PORT": 6380,
                      "USERNAME": "default", "PASSWORD": "..."}
    }
"""

import base64
import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Default settings per section
DEFAULTS: dict[str, dict[str, Any]] = {
    "gameConfig": {
        "BOT_ID_PREFIX": "cortex",
        "GAME_SERVER_URL": "wss://botws.generals.io/",
        "MAX_TURNS": 2000,
        "userId": None,
        "username": None,
        "setUsername": False,
        "customGameId": None,
        "customGameSpeed": 4,
        "warCry": [],
    },
    "redisConfig": {
        "HOST": "localhost",
        "PORT": 6379,
        "USERNAME": None,
        "PASSWORD": None,
        "TLS": True,
        "CHANNEL_PREFIX": None,  # None = <BOT_ID_PREFIX>-<botId>
    },
}

# Environment variables that override config file values
ENV_OVERRIDES = {
    ("gameConfig", "userId"): "GENERALS_USER_ID",
    ("redisConfig", "HOST"): "REDIS_HOST",
    ("redisConfig", "PORT"): "REDIS_PORT",
    ("redisConfig", "USERNAME"): "REDIS_USERNAME",
    ("redisConfig", "PASSWORD"): "REDIS_PASSWORD",
}


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


def make_bot_id(user_id: str) -> str:
    """Derive a short, stable bot id from the secret user id.

    The user id must never be published, so channels are keyed by the
    last 7 word characters of its base64-encoded SHA-256 digest.
    """
    digest = base64.b64encode(hashlib.sha256(user_id.encode("utf-8")).digest()).decode("ascii")
    return re.sub(r"[^\w\s]", "", digest)[-7:]


@dataclass
class GameConfig:
    """Game server and session settings."""
    user_id: str
    username: Optional[str] = None
    bot_id_prefix: str = "cortex"
    game_server_url: str = "wss://botws.generals.io/"
    max_turns: int = 2000
    set_username: bool = False
    custom_game_id: Optional[str] = None
    custom_game_speed: int = 4
    war_cry: list[str] = field(default_factory=list)
    bot_id: str = ""

    def __post_init__(self) -> None:
        if not self.bot_id:
            self.bot_id = make_bot_id(self.user_id)


@dataclass
class RedisConfig:
    """Connection settings for the coordination bus."""
    host: str = "localhost"
    port: int = 6379
    username: Optional[str] = None
    password: Optional[str] = None
    tls: bool = True
    channel_prefix: str = ""

    @property
    def url(self) -> str:
        scheme = "rediss" if self.tls else "redis"
        auth = ""
        if self.username or self.password:
            auth = f"{self.username or ''}:{self.password or ''}@"
        return f"{scheme}://{auth}{self.host}:{self.port}"


@dataclass
class Config:
    game: GameConfig
    redis: RedisConfig


def _merge(section: str, loaded: dict[str, Any]) -> dict[str, Any]:
    """Merge a loaded section over its defaults and apply env overrides."""
    data = dict(DEFAULTS[section])
    for key, value in loaded.items():
        data[key] = value
    for (env_section, key), env_name in ENV_OVERRIDES.items():
        if env_section == section and os.environ.get(env_name):
            data[key] = os.environ[env_name]
    return data


def parse_config(raw: dict[str, Any]) -> Config:
    """Build a Config from an already-decoded config dict.

    Raises:
        ConfigError: If required keys are missing or values are invalid.
    """
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a JSON object")

    game = _merge("gameConfig", raw.get("gameConfig") or {})
    redis_data = _merge("redisConfig", raw.get("redisConfig") or {})

    if not game.get("userId"):
        raise ConfigError("gameConfig.userId is required")
    war_cry = game.get("warCry") or []
    if not isinstance(war_cry, list):
        raise ConfigError("gameConfig.warCry must be a list of strings")

    try:
        game_config = GameConfig(
            user_id=str(game["userId"]),
            username=game.get("username"),
            bot_id_prefix=game["BOT_ID_PREFIX"],
            game_server_url=game["GAME_SERVER_URL"],
            max_turns=int(game["MAX_TURNS"]),
            set_username=bool(game["setUsername"]),
            custom_game_id=game.get("customGameId"),
            custom_game_speed=int(game["customGameSpeed"]),
            war_cry=[str(line) for line in war_cry],
        )
        redis_config = RedisConfig(
            host=redis_data["HOST"],
            port=int(redis_data["PORT"]),
            username=redis_data.get("USERNAME"),
            password=redis_data.get("PASSWORD"),
            tls=bool(redis_data["TLS"]),
            channel_prefix=(
                redis_data.get("CHANNEL_PREFIX")
                or f"{game['BOT_ID_PREFIX']}-{make_bot_id(str(game['userId']))}"
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}") from e

    return Config(game=game_config, redis=redis_config)


def load_config(path: Union[str, Path], env_file: Optional[Union[str, Path]] = None) -> Config:
    """Load configuration from a JSON file.

    Args:
        path: Path to the JSON config file.
        env_file: Optional .env file. Defaults to ``.env`` in the
            current directory when present.

    Returns:
        The parsed Config.

    Raises:
        ConfigError: If the file cannot be read or is invalid.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    config_path = Path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {e}") from e

    config = parse_config(raw)
    logger.debug(f"Loaded config from {config_path} (botId {config.game.bot_id})")
    return config
