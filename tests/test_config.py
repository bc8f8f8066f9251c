"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from diskrun.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ):
            for key in [k for k in os.environ if k.startswith("DISKRUN_")]:
                del os.environ[key]
            settings = Settings()

        assert settings.state_dir == Path.home() / ".local" / "share" / "diskrun"
        assert "sqlite" in settings.db_url
        assert settings.tmp_dir is None
        assert settings.log_level == "INFO"
        assert settings.image_engine is None
        assert settings.bridge_name == "diskrun0"
        assert settings.bridge_ip == "10.26.10.1"
        assert settings.network_cidr == "10.26.10.0/24"
        assert settings.hyperv_switch == "Default Switch"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "DISKRUN_LOG_LEVEL": "DEBUG",
                "DISKRUN_IMAGE_ENGINE": "vendor.engine:Engine",
                "DISKRUN_BRIDGE_NAME": "br-test",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.image_engine == "vendor.engine:Engine"
            assert settings.bridge_name == "br-test"

    def test_tmp_dir_from_env(self) -> None:
        """Temp dir should be configurable via env."""
        with patch.dict(os.environ, {"DISKRUN_TMP_DIR": "/tmp/diskrun-test"}):
            settings = Settings()
            assert settings.tmp_dir == Path("/tmp/diskrun-test")

    def test_invalid_log_level_rejected(self) -> None:
        """Unknown log levels should fail validation."""
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    def test_bridge_name_length_limited(self) -> None:
        """Linux interface names are at most 15 characters."""
        with pytest.raises(ValidationError):
            Settings(bridge_name="x" * 16)


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings_instance(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_outputs_valid_json(self) -> None:
        """Should render settings as parseable JSON."""
        data = json.loads(print_settings_json(Settings(bridge_name="br-json")))
        assert data["bridge_name"] == "br-json"
        assert "db_url" in data
        assert "network_cidr" in data
