"""Configuration: platformdirs locations, config.toml, and CHAT_COMMANDER_* environment overrides."""

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import platformdirs

APP_NAME = "chat-commander"
ENV_PREFIX = "CHAT_COMMANDER_"

# Variables honoured without the prefix
ENV_ALIASES = {"TELEGRAM_BOT_TOKEN": "telegram_token"}

TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Config:
	"""Runtime settings. Every init field can be set from config.toml or CHAT_COMMANDER_<FIELD>."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Reasoning oracle
	oracle_model: str = "opus"
	oracle_timeout: float = 20.0

	# Conversation handling
	context_ttl_hours: float = 24.0
	correlation_capacity: int = 20
	classifier_confidence_floor: float = 1.0
	max_clarifying_questions: int = 3
	passive_feedback: bool = True

	# Transport
	telegram_token: str = ""
	user_channel_id: str = ""
	agent_channel_id: str = ""

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "commander.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		for path in (self.config_dir, self.data_dir, self.log_dir):
			path.mkdir(parents=True, exist_ok=True)

	def validate(self) -> None:
		if self.oracle_timeout <= 0:
			raise ValueError(f"oracle_timeout must be positive, got {self.oracle_timeout}")
		if self.correlation_capacity < 1:
			raise ValueError(f"correlation_capacity must be at least 1, got {self.correlation_capacity}")
		if self.max_clarifying_questions < 0:
			raise ValueError(f"max_clarifying_questions can't be negative, got {self.max_clarifying_questions}")
		if self.context_ttl_hours <= 0:
			raise ValueError(f"context_ttl_hours must be positive, got {self.context_ttl_hours}")


def _settable() -> dict[str, type]:
	return {f.name: f.type for f in fields(Config) if f.init}


def _coerce(attr: str, val: Any) -> Any:
	"""Convert a raw env or toml value to the declared type of a Config field."""
	kind = _settable()[attr]
	if kind is Path:
		return Path(os.path.expanduser(str(val)))
	if kind is bool:
		if isinstance(val, bool):
			return val
		return str(val).strip().lower() in TRUTHY
	try:
		return kind(val)
	except (TypeError, ValueError) as e:
		raise ValueError(f"Invalid value for {attr}: {val!r}") from e


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CHAT_COMMANDER_* (and alias) environment overrides."""
	env_map = {f"{ENV_PREFIX}{name.upper()}": name for name in _settable()}
	env_map.update(ENV_ALIASES)
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml from the config dir, ignoring unknown keys."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	known = _settable()
	for key, val in data.items():
		if key in known:
			setattr(config, key, _coerce(key, val))
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config.toml is looked up in the overridden config dir, if any
	config_dir = os.getenv(f"{ENV_PREFIX}CONFIG_DIR")
	if config_dir:
		config.config_dir = _coerce("config_dir", config_dir)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.validate()
	config.ensure_dirs()
	return config


_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
