"""Tests for configuration management."""

import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from src import main as entry
from src.config import (
    AppConfig,
    PathsConfig,
    PersistenceConfig,
    RoomDefaults,
    ServerConfig,
    load_config,
    save_config,
)


class TestServerConfig:
    """Test server configuration."""

    def test_default_values(self):
        config = ServerConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 8000
        assert config.reload is False


class TestRoomDefaults:
    """Test per-room defaults."""

    def test_default_values(self):
        defaults = RoomDefaults()
        assert defaults.host_nick == "DM"
        assert defaults.host_autoclear is True
        assert defaults.crit_hit == 20
        assert defaults.autoclear_seconds == 0

    def test_to_settings(self):
        settings = RoomDefaults(crit_hit=19, notify_hidden=True).to_settings()
        assert settings.crit_hit == 19
        assert settings.crit_fail == 1
        assert settings.notify_hidden is True

    def test_validation(self):
        with pytest.raises(ValidationError):
            RoomDefaults(autoclear_seconds=-1)


class TestPersistenceConfig:
    """Test snapshot persistence configuration."""

    def test_default_values(self):
        config = PersistenceConfig()
        assert config.enabled is True
        assert config.debounce_ms == 100


class TestPathsConfig:
    """Test paths configuration."""

    def test_default_paths(self):
        config = PathsConfig()
        assert config.saves == Path("./saves")
        assert config.database == Path("./saves/rooms.db")


class TestAppConfig:
    """Test main application configuration."""

    def test_default_config(self):
        config = AppConfig()
        assert config.server.port == 8000
        assert config.rooms.host_nick == "DM"
        assert config.persistence.enabled is True
        assert config.logging.level == "INFO"

    def test_nested_config(self):
        config = AppConfig(server={"port": 9000}, rooms={"host_nick": "Keeper"})
        assert config.server.port == 9000
        assert config.rooms.host_nick == "Keeper"


class TestConfigIO:
    """Test configuration file I/O."""

    def test_load_nonexistent(self):
        """Test loading non-existent config returns defaults."""
        config = load_config("/nonexistent/path/config.yaml")
        assert config.server.port == 8000

    def test_save_and_load(self):
        """Test saving and loading config."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.yaml"

            # Create custom config
            config = AppConfig(
                server=ServerConfig(port=8123),
                rooms=RoomDefaults(crit_hit=18, force_autoclear=True),
                persistence=PersistenceConfig(debounce_ms=250),
            )

            save_config(config, config_path)
            assert config_path.exists()

            loaded = load_config(config_path)
            assert loaded.server.port == 8123
            assert loaded.rooms.crit_hit == 18
            assert loaded.rooms.force_autoclear is True
            assert loaded.persistence.debounce_ms == 250
            assert loaded.paths.database == Path("saves/rooms.db")

    def test_partial_file(self):
        """Keys missing from the file keep their defaults."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.yaml"
            config_path.write_text("rooms:\n  notify_hidden: true\n", encoding="utf-8")

            loaded = load_config(config_path)
            assert loaded.rooms.notify_hidden is True
            assert loaded.rooms.crit_hit == 20
            assert loaded.server.port == 8000

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.yaml"
            config_path.write_text("", encoding="utf-8")
            assert load_config(config_path).server.port == 8000


class TestEntryPoint:
    """Test the server launcher."""

    def _run(self, monkeypatch, config):
        calls = []
        monkeypatch.setattr(entry, "get_config", lambda: config)
        monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))
        assert entry.main() == 0
        return calls

    def test_creates_paths(self, monkeypatch, tmp_path):
        config = AppConfig(paths=PathsConfig(saves=tmp_path / "saves", database=tmp_path / "db" / "rooms.db"))
        self._run(monkeypatch, config)
        assert (tmp_path / "saves").is_dir()
        assert (tmp_path / "db").is_dir()

    def test_reload_follows_config(self, monkeypatch, tmp_path):
        paths = PathsConfig(saves=tmp_path, database=tmp_path / "rooms.db")
        calls = self._run(monkeypatch, AppConfig(paths=paths))
        assert calls[0][0] == "src.web.server:app"
        assert calls[0][1]["reload"] is False

        calls = self._run(monkeypatch, AppConfig(paths=paths, server=ServerConfig(reload=True)))
        assert calls[0][1]["reload"] is True
