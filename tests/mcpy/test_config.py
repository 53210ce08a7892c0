"""
Tests for environment-backed configuration
"""

import pytest

# Add the project root to the path for imports
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from mcpy.config import MCPyConfig, get_config, load_config, reset_config


class TestMCPyConfig:
    """Test cases for MCPyConfig"""

    def test_defaults(self):
        """Test defaults with a clean environment"""
        config = MCPyConfig()
        assert config.log_level == "INFO"
        assert config.arena_batch_size == 128
        assert config.strict_initialization is False
        assert config.log_payloads is False
        assert config.max_workers == 1

    def test_environment(self, monkeypatch):
        """Test values are read from the environment"""
        monkeypatch.setenv('MCPY_LOG_LEVEL', 'debug')
        monkeypatch.setenv('MCPY_ARENA_BATCH_SIZE', '32')
        monkeypatch.setenv('MCPY_STRICT_INITIALIZATION', 'true')
        monkeypatch.setenv('MCPY_LOG_PAYLOADS', '1')
        monkeypatch.setenv('MCPY_MAX_WORKERS', '4')

        config = MCPyConfig()
        assert config.log_level == "DEBUG"
        assert config.arena_batch_size == 32
        assert config.strict_initialization is True
        assert config.log_payloads is True
        assert config.max_workers == 4

    def test_bad_integer_falls_back(self, monkeypatch):
        """Test a non-integer value is ignored"""
        monkeypatch.setenv('MCPY_ARENA_BATCH_SIZE', 'lots')
        assert MCPyConfig().arena_batch_size == 128

    def test_falsy_flag(self, monkeypatch):
        """Test flags only accept truthy spellings"""
        monkeypatch.setenv('MCPY_STRICT_INITIALIZATION', 'no')
        assert MCPyConfig().strict_initialization is False

    def test_explicit_values_win(self, monkeypatch):
        """Test explicit arguments override the environment"""
        monkeypatch.setenv('MCPY_ARENA_BATCH_SIZE', '32')
        assert MCPyConfig(arena_batch_size=8).arena_batch_size == 8

    def test_invalid_values(self):
        """Test out of range values are rejected"""
        with pytest.raises(ValueError):
            MCPyConfig(arena_batch_size=0)
        with pytest.raises(ValueError):
            MCPyConfig(max_workers=-1)


class TestLoadConfig:
    """Test cases for .env loading and the process default"""

    def test_load_from_dotenv(self, tmp_path):
        """Test values in a .env file are picked up"""
        env_file = tmp_path / ".env"
        env_file.write_text("MCPY_ARENA_BATCH_SIZE=16\nMCPY_LOG_PAYLOADS=yes\n")

        config = load_config(str(env_file))
        assert config.arena_batch_size == 16
        assert config.log_payloads is True

    def test_real_environment_wins_over_dotenv(self, tmp_path, monkeypatch):
        """Test .env does not override variables already set"""
        env_file = tmp_path / ".env"
        env_file.write_text("MCPY_ARENA_BATCH_SIZE=16\n")
        monkeypatch.setenv('MCPY_ARENA_BATCH_SIZE', '64')

        assert load_config(str(env_file)).arena_batch_size == 64

    def test_overrides(self):
        """Test keyword overrides are applied"""
        config = load_config(strict_initialization=True)
        assert config.strict_initialization is True

    def test_global_config(self):
        """Test the process default is cached until reset"""
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first
