"""Configuration management for the dice table server."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .room.models import RoomSettings


class ServerConfig(BaseModel):
    """HTTP/WebSocket server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False


class RoomDefaults(BaseModel):
    """Settings every newly created room starts with."""

    host_nick: str = "DM"
    host_avatar: Any = "builtin:0"
    host_autoclear: bool = True
    crit_hit: int = Field(default=20, ge=1)
    crit_fail: int = Field(default=1, ge=1)
    autoclear_seconds: int = Field(default=0, ge=0)
    force_autoclear: bool = False
    notify_hidden: bool = False

    def to_settings(self) -> RoomSettings:
        return RoomSettings(
            crit_hit=self.crit_hit,
            crit_fail=self.crit_fail,
            autoclear_seconds=self.autoclear_seconds,
            force_autoclear=self.force_autoclear,
            notify_hidden=self.notify_hidden,
        )


class PersistenceConfig(BaseModel):
    """Room snapshot saving."""

    enabled: bool = True
    debounce_ms: int = Field(default=100, ge=0)


class PathsConfig(BaseModel):
    """File paths configuration."""

    saves: Path = Path("./saves")
    database: Path = Path("./saves/rooms.db")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class AppConfig(BaseModel):
    """Main application configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    rooms: RoomDefaults = Field(default_factory=RoomDefaults)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Path | str | None = None) -> AppConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to ./config.yaml

    Returns:
        AppConfig instance with loaded or default values
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return AppConfig(**data)

    return AppConfig()


def save_config(config: AppConfig, config_path: Path | str | None = None) -> None:
    """Save configuration to YAML file.

    Args:
        config: AppConfig instance to save
        config_path: Path to save to. Defaults to ./config.yaml
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    data = config.model_dump(mode="json")

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration instance.

    Returns:
        The loaded AppConfig instance
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> AppConfig:
    """Reload configuration from disk.

    Args:
        config_path: Path to config file

    Returns:
        Newly loaded AppConfig instance
    """
    global _config
    _config = load_config(config_path)
    return _config
