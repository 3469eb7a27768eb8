"""Logging setup for chat-commander: rich console output, rotating file log, token redaction."""

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "chat_commander"

# Libraries that log every HTTP round trip at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "telegram.ext", "aiosqlite")


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[Path] = None,
	console: Optional[Console] = None,
) -> logging.Logger:
	"""
	Configure the package logger.

	Args:
		level: DEBUG, INFO, WARNING or ERROR. Defaults to $LOG_LEVEL, then INFO.
		log_dir: Where commander.log rotates. Console only when omitted.
		console: Rich console for the terminal handler.

	Returns:
		The chat_commander logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(ROOT_LOGGER)
	logger.setLevel(log_level)
	if logger.handlers:
		return logger

	redactor = TokenRedactionFilter()

	console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(logging.Formatter("%(message)s"))
	console_handler.addFilter(redactor)
	logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)
		file_handler = RotatingFileHandler(
			log_path / "commander.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)
		file_handler.setFormatter(logging.Formatter(
			"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		))
		file_handler.addFilter(redactor)
		logger.addHandler(file_handler)

	for name in NOISY_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)

	return logger


class TokenRedactionFilter(logging.Filter):
	"""Masks Telegram bot tokens and key=value secrets before a record is emitted."""

	PATTERNS = [
		(re.compile(r"\b\d{6,12}:[A-Za-z0-9_-]{30,}\b"), "[REDACTED_BOT_TOKEN]"),
		(
			re.compile(r"(?i)\b(token|password|secret|api_key|authorization)(\s*[=:]\s*)\S+"),
			r"\1\2[REDACTED]",
		),
	]

	def filter(self, record: logging.LogRecord) -> bool:
		message = record.getMessage()
		redacted = message
		for pattern, replacement in self.PATTERNS:
			redacted = pattern.sub(replacement, redacted)
		if redacted != message:
			record.msg = redacted
			record.args = None
		return True
