"""Shared fakes and helpers for chat-commander tests."""

import json
from pathlib import Path
from typing import Callable, Optional, Union

from chat_commander.config import Config
from chat_commander.errors import OracleUnavailable, TransportFailure
from chat_commander.models import Complexity, Intent, IntentCategory, IntentParameters

Reply = Union[str, dict, Exception]


def make_config(tmp_path: Path, **overrides) -> Config:
	"""Config rooted in a temp dir."""
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data", **overrides)
	config.ensure_dirs()
	return config


def make_intent(
	category: IntentCategory,
	description: str,
	subcategory: str = "",
	specific: Optional[str] = None,
	target: Optional[str] = None,
	complexity: Complexity = Complexity.SIMPLE,
) -> Intent:
	return Intent(
		category=category,
		subcategory=subcategory,
		specific=specific,
		confidence=0.9,
		parameters=IntentParameters(description=description, target=target),
		estimated_complexity=complexity,
	)


class FakeOracle:
	"""
	Scriptable reasoning oracle.

	With no routes every call raises OracleUnavailable. Routes map a
	substring of the prompt (or instructions) to a reply; dict replies are
	serialized as JSON, exceptions are raised. The first matching route wins.
	"""

	def __init__(self, routes: Optional[dict[str, Reply]] = None, default: Optional[Reply] = None):
		self.routes = routes or {}
		self.default = default
		self.calls: list[tuple[str, Optional[str]]] = []

	@classmethod
	def unavailable(cls) -> "FakeOracle":
		return cls()

	async def complete(self, prompt: str, instructions: Optional[str] = None) -> str:
		self.calls.append((prompt, instructions))
		haystack = prompt + "\n" + (instructions or "")
		for marker, reply in self.routes.items():
			if marker in haystack:
				return self._render(reply)
		if self.default is not None:
			return self._render(self.default)
		raise OracleUnavailable("oracle offline")

	@staticmethod
	def _render(reply: Reply) -> str:
		if isinstance(reply, Exception):
			raise reply
		if isinstance(reply, dict):
			return f"Here you go:\n{json.dumps(reply)}"
		return reply

	def prompts_containing(self, marker: str) -> list[str]:
		return [p for p, i in self.calls if marker in p or (i and marker in i)]


class FakeTransport:
	"""In-memory MessagingTransport."""

	def __init__(self, fail: bool = False):
		self.fail = fail
		self.sent: list[tuple[str, str, Optional[str]]] = []
		self.sent_ids: list[str] = []
		self.threads: dict[str, list[str]] = {}
		self.thread_titles: dict[str, str] = {}
		self.message_handler: Optional[Callable] = None
		self.reaction_handler: Optional[Callable] = None
		self._counter = 0

	def _next_id(self, prefix: str) -> str:
		self._counter += 1
		return f"{prefix}:{self._counter}"

	async def send_message(self, channel: str, text: str, reply_to: Optional[str] = None) -> str:
		if self.fail:
			raise TransportFailure("send failed")
		self.sent.append((channel, text, reply_to))
		message_id = self._next_id(channel)
		self.sent_ids.append(message_id)
		return message_id

	async def create_thread(self, parent_message: str, title: str) -> str:
		if self.fail:
			raise TransportFailure("thread failed")
		thread_id = self._next_id("thread")
		self.threads[thread_id] = []
		self.thread_titles[thread_id] = title
		return thread_id

	async def post_to_thread(self, thread_id: str, text: str) -> None:
		if self.fail:
			raise TransportFailure("post failed")
		self.threads[thread_id].append(text)

	def on_reaction(self, handler) -> None:
		self.reaction_handler = handler

	def on_message_create(self, handler) -> None:
		self.message_handler = handler
