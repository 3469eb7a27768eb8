"""Tests for the configuration system."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from chat_commander.config import Config, _apply_env_overrides, _apply_toml, load_config


def test_config_defaults():
	"""Config should have sensible defaults."""
	config = Config()
	assert config.config_dir.is_absolute()
	assert config.data_dir.is_absolute()
	assert config.db_path == config.data_dir / "commander.db"
	assert config.log_dir == config.data_dir / "logs"
	assert config.oracle_timeout == 20.0
	assert config.correlation_capacity == 20
	assert config.context_ttl_hours == 24.0
	assert config.passive_feedback is True


def test_config_env_overrides():
	"""Environment variables should override defaults."""
	config = Config()
	with patch.dict(os.environ, {
		"CHAT_COMMANDER_DATA_DIR": "/tmp/test-data",
		"CHAT_COMMANDER_CONFIG_DIR": "/tmp/test-config",
		"CHAT_COMMANDER_ORACLE_TIMEOUT": "5",
		"CHAT_COMMANDER_PASSIVE_FEEDBACK": "false",
		"TELEGRAM_BOT_TOKEN": "123:abc",
	}):
		config = _apply_env_overrides(config)
		assert config.data_dir == Path("/tmp/test-data")
		assert config.config_dir == Path("/tmp/test-config")
		# Derived paths should be recomputed
		assert config.db_path == Path("/tmp/test-data/commander.db")
		assert config.oracle_timeout == 5.0
		assert config.passive_feedback is False
		assert config.telegram_token == "123:abc"


def test_config_toml_overrides(tmp_path: Path):
	"""config.toml values should apply, including paths."""
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	config.config_dir.mkdir(parents=True)
	(config.config_dir / "config.toml").write_text(
		'oracle_model = "sonnet"\n'
		"max_clarifying_questions = 2\n"
		f'data_dir = "{tmp_path / "elsewhere"}"\n'
		'unknown_key = "ignored"\n'
	)
	config = _apply_toml(config)
	assert config.oracle_model == "sonnet"
	assert config.max_clarifying_questions == 2
	assert config.db_path == tmp_path / "elsewhere" / "commander.db"
	assert not hasattr(config, "unknown_key")


def test_env_beats_toml(tmp_path: Path):
	"""Env vars take precedence over config.toml in the overridden config dir."""
	config_dir = tmp_path / "config"
	config_dir.mkdir()
	(config_dir / "config.toml").write_text('oracle_model = "sonnet"\noracle_timeout = 7.5\n')
	with patch.dict(os.environ, {
		"CHAT_COMMANDER_CONFIG_DIR": str(config_dir),
		"CHAT_COMMANDER_DATA_DIR": str(tmp_path / "data"),
		"CHAT_COMMANDER_ORACLE_MODEL": "haiku",
	}):
		config = load_config()
	assert config.oracle_model == "haiku"
	assert config.oracle_timeout == 7.5


def test_config_ensure_dirs(tmp_path: Path):
	"""ensure_dirs should create all required directories."""
	config = Config(
		config_dir=tmp_path / "config",
		data_dir=tmp_path / "data",
	)
	assert not config.config_dir.exists()
	assert not config.data_dir.exists()

	config.ensure_dirs()

	assert config.config_dir.exists()
	assert config.data_dir.exists()
	assert config.log_dir.exists()


def test_load_config_creates_dirs(tmp_path: Path):
	"""load_config should create directories."""
	with patch.dict(os.environ, {
		"CHAT_COMMANDER_DATA_DIR": str(tmp_path / "data"),
		"CHAT_COMMANDER_CONFIG_DIR": str(tmp_path / "config"),
	}):
		config = load_config()
		assert config.data_dir.exists()
		assert config.config_dir.exists()


def test_every_field_has_an_env_override(tmp_path: Path):
	"""CHAT_COMMANDER_<FIELD> works for fields without a hand-written mapping."""
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	with patch.dict(os.environ, {
		"CHAT_COMMANDER_CORRELATION_CAPACITY": "5",
		"CHAT_COMMANDER_MAX_CLARIFYING_QUESTIONS": "1",
	}):
		config = _apply_env_overrides(config)
	assert config.correlation_capacity == 5
	assert config.max_clarifying_questions == 1


def test_toml_values_coerced_to_field_types(tmp_path: Path):
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	config.config_dir.mkdir(parents=True)
	(config.config_dir / "config.toml").write_text("oracle_timeout = 3\npassive_feedback = false\n")
	config = _apply_toml(config)
	assert isinstance(config.oracle_timeout, float)
	assert config.oracle_timeout == 3.0
	assert config.passive_feedback is False


def test_bad_toml_value_rejected(tmp_path: Path):
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	config.config_dir.mkdir(parents=True)
	(config.config_dir / "config.toml").write_text('correlation_capacity = "lots"\n')
	with pytest.raises(ValueError, match="correlation_capacity"):
		_apply_toml(config)


def test_load_config_validates(tmp_path: Path):
	with patch.dict(os.environ, {
		"CHAT_COMMANDER_DATA_DIR": str(tmp_path / "data"),
		"CHAT_COMMANDER_CONFIG_DIR": str(tmp_path / "config"),
		"CHAT_COMMANDER_CORRELATION_CAPACITY": "0",
	}):
		with pytest.raises(ValueError, match="correlation_capacity"):
			load_config()
