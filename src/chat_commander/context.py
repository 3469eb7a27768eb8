"""
Context Store - Per-user conversation state.

Each user owns an independent ConversationContext guarded by its own
lock, so turns from different users never wait on each other. Contexts
idle for longer than the TTL are evicted lazily.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from .models import ConversationContext

logger = logging.getLogger(__name__)


class KeyedLock:
	"""A lazily created asyncio.Lock per key."""

	def __init__(self):
		self._locks: dict[str, asyncio.Lock] = {}

	def get(self, key: str) -> asyncio.Lock:
		lock = self._locks.get(key)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[key] = lock
		return lock

	def discard(self, key: str) -> None:
		lock = self._locks.get(key)
		if lock is not None and not lock.locked():
			del self._locks[key]

	@asynccontextmanager
	async def hold(self, key: str) -> AsyncIterator[None]:
		async with self.get(key):
			yield


class ContextStore:
	"""
	Owns every user's ConversationContext.

	Usage:
		store = ContextStore(ttl=timedelta(hours=24))

		async with store.session(user_id) as ctx:
			ctx.add_turn("user", text)
	"""

	def __init__(self, ttl: Optional[timedelta] = timedelta(hours=24)):
		self.ttl = ttl
		self._contexts: dict[str, ConversationContext] = {}
		self._locks = KeyedLock()

	@asynccontextmanager
	async def session(self, user_id: str) -> AsyncIterator[ConversationContext]:
		"""Hold the user's lock and yield their context for mutation."""
		async with self._locks.hold(user_id):
			yield self._get_or_create(user_id)

	def peek(self, user_id: str) -> Optional[ConversationContext]:
		"""Read-only snapshot of a user's context, if one exists."""
		ctx = self._contexts.get(user_id)
		if ctx is None or self._is_expired(ctx):
			return None
		return ctx.model_copy(deep=True)

	def _get_or_create(self, user_id: str) -> ConversationContext:
		ctx = self._contexts.get(user_id)
		if ctx is not None and self._is_expired(ctx):
			logger.info(f"Context for {user_id} expired, starting fresh")
			ctx = None
		if ctx is None:
			ctx = ConversationContext(user_id=user_id)
			self._contexts[user_id] = ctx
		ctx.last_activity = datetime.now()
		return ctx

	def _is_expired(self, ctx: ConversationContext, now: Optional[datetime] = None) -> bool:
		if self.ttl is None:
			return False
		return (now or datetime.now()) - ctx.last_activity > self.ttl

	def evict_expired(self, now: Optional[datetime] = None) -> int:
		"""Drop idle contexts. Returns how many were removed."""
		expired = [uid for uid, ctx in self._contexts.items() if self._is_expired(ctx, now)]
		removed = 0
		for user_id in expired:
			# A context in use is still owned by its turn
			if self._locks.get(user_id).locked():
				continue
			del self._contexts[user_id]
			self._locks.discard(user_id)
			removed += 1
		if removed:
			logger.debug(f"Evicted {removed} idle contexts")
		return removed

	def __len__(self) -> int:
		return len(self._contexts)
