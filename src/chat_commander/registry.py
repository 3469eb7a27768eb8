"""
Work Item Registry - Lifecycle state machine for tracked work.

Responsibilities:
- Creating work items and allocating ids
- Validating every status change against the transition table
- Keeping progress monotonic and accumulating paused time
- Mirroring lifecycle events to each item's transport thread (best-effort)
- Resolving management commands ("pause that", "cancel work_...")
"""

import asyncio
import logging
import re
import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .context import ContextStore, KeyedLock
from .errors import InvalidTransition, TargetNotFound, TransportFailure, ValidationError
from .models import (
	PRIORITY_BY_COMPLEXITY,
	TERMINAL_STATUSES,
	Complexity,
	Intent,
	WorkItem,
	WorkItemStatus,
)
from .stores import WorkItemStore
from .transport import MessagingTransport

logger = logging.getLogger(__name__)

S = WorkItemStatus

# Forward phases in order; each may also pause, fail, or be cancelled
PHASES = [S.PENDING, S.ANALYZING, S.BUILDING, S.DEPLOYING, S.COMPLETED]

PHASE_PROGRESS = {
	S.PENDING: 0,
	S.ANALYZING: 25,
	S.BUILDING: 50,
	S.DEPLOYING: 75,
	S.COMPLETED: 100,
}

_INTERRUPTS = {S.PAUSED, S.FAILED, S.CANCELLED}

TRANSITIONS: dict[WorkItemStatus, frozenset[WorkItemStatus]] = {
	S.PENDING: frozenset({S.ANALYZING} | _INTERRUPTS),
	S.ANALYZING: frozenset({S.BUILDING} | _INTERRUPTS),
	S.BUILDING: frozenset({S.DEPLOYING} | _INTERRUPTS),
	S.DEPLOYING: frozenset({S.COMPLETED} | _INTERRUPTS),
	# Resuming returns to the status recorded at pause time
	S.PAUSED: frozenset({S.FAILED, S.CANCELLED}),
	S.COMPLETED: frozenset(),
	S.FAILED: frozenset(),
	S.CANCELLED: frozenset(),
}

STATUS_ICONS = {
	S.PENDING: "⬜",
	S.ANALYZING: "🔍",
	S.BUILDING: "🔄",
	S.DEPLOYING: "🚀",
	S.PAUSED: "⏸",
	S.COMPLETED: "✅",
	S.FAILED: "🔴",
	S.CANCELLED: "×",
}


class ManagementAction(str, Enum):
	"""User-issued lifecycle commands."""
	CANCEL = "cancel"
	PAUSE = "pause"
	RESUME = "resume"
	STATUS = "status"


# References that mean "the work item I just touched"
IMPLICIT_TARGETS = {"it", "that", "this", "the last one"}

_ACTION_TERMS = [
	("cancel", ManagementAction.CANCEL),
	("abort", ManagementAction.CANCEL),
	("stop", ManagementAction.CANCEL),
	("pause", ManagementAction.PAUSE),
	("halt", ManagementAction.PAUSE),
	("resume", ManagementAction.RESUME),
	("continue", ManagementAction.RESUME),
	("status", ManagementAction.STATUS),
	("progress", ManagementAction.STATUS),
]


def resolve_action(intent: Intent) -> Optional[ManagementAction]:
	"""
	Find the lifecycle command in an intent's labels, then its text.

	Text naming more than one command (e.g. "don't cancel it, just pause it")
	resolves to None rather than a guess.
	"""
	for text in (intent.specific, intent.subcategory, intent.parameters.description):
		if not text:
			continue
		lowered = text.lower()
		actions = {action for term, action in _ACTION_TERMS if re.search(rf"\b{term}\b", lowered)}
		if len(actions) == 1:
			return actions.pop()
		if actions:
			return None
	return None


def generate_work_item_id() -> str:
	"""work_<base36 millis>_<random>"""
	millis = int(time.time() * 1000)
	digits = "0123456789abcdefghijklmnopqrstuvwxyz"
	encoded = ""
	while millis:
		millis, rem = divmod(millis, 36)
		encoded = digits[rem] + encoded
	return f"work_{encoded}_{secrets.token_hex(3)}"


class WorkItemRegistry:
	"""
	Owns every work item and is the only place their status changes.

	Usage:
		registry = WorkItemRegistry(transport=transport, contexts=contexts)
		item = await registry.create_work_item(title=..., user_id=..., message_id=...)
		await registry.transition(item.id, WorkItemStatus.ANALYZING)
	"""

	def __init__(
		self,
		transport: Optional[MessagingTransport] = None,
		contexts: Optional[ContextStore] = None,
		store: Optional[WorkItemStore] = None,
	):
		self.transport = transport
		self.contexts = contexts
		self.store = store
		self._items: dict[str, WorkItem] = {}
		self._locks = KeyedLock()
		self._mirror_locks = KeyedLock()
		self._tasks: set[asyncio.Task] = set()

	async def load(self) -> int:
		"""Restore persisted work items."""
		if not self.store:
			return 0
		for item in await self.store.load():
			self._items[item.id] = item
		logger.info(f"Loaded {len(self._items)} work items")
		return len(self._items)

	# ==================== Creation ====================

	async def create_work_item(
		self,
		title: str,
		description: str,
		original_request: str,
		user_id: str,
		message_id: str,
		assigned_agents: Optional[list[str]] = None,
		primary_agent: Optional[str] = None,
		complexity: Complexity = Complexity.SIMPLE,
		parent_work_item: Optional[str] = None,
	) -> WorkItem:
		"""
		Create a work item in the pending state.

		If a transport is attached, a thread is opened for it in the
		background; the returned snapshot may not carry the thread id yet.
		"""
		if not title.strip():
			raise ValidationError("Work item title can't be empty")

		agents = assigned_agents or ["Commander"]
		item_id = generate_work_item_id()
		while item_id in self._items:
			item_id = generate_work_item_id()

		item = WorkItem(
			id=item_id,
			title=title,
			description=description,
			original_request=original_request,
			status=S.PENDING,
			priority=PRIORITY_BY_COMPLEXITY[complexity],
			complexity=complexity,
			assigned_agents=agents,
			primary_agent=primary_agent or agents[0],
			progress=0,
			user_id=user_id,
			message_id=message_id,
			parent_work_item=parent_work_item,
		)
		self._items[item_id] = item
		await self._persist(item)
		logger.info(f"Created work item {item_id}: {title}")

		if self.transport:
			self._spawn(self._open_thread(item_id, message_id))
		return item.model_copy(deep=True)

	# ==================== Queries ====================

	def get_work_item(self, item_id: str) -> Optional[WorkItem]:
		item = self._items.get(item_id)
		return item.model_copy(deep=True) if item else None

	def get_active_work_items(self, user_id: Optional[str] = None) -> list[WorkItem]:
		"""Non-terminal items, newest first."""
		items = [
			i for i in self._items.values()
			if i.status not in TERMINAL_STATUSES and (user_id is None or i.user_id == user_id)
		]
		items.sort(key=lambda i: i.start_time, reverse=True)
		return [i.model_copy(deep=True) for i in items]

	def get_recent_work_items(self, count: int = 5) -> list[WorkItem]:
		items = sorted(self._items.values(), key=lambda i: i.start_time, reverse=True)
		return [i.model_copy(deep=True) for i in items[:count]]

	def get_children(self, parent_id: str) -> list[WorkItem]:
		return [i.model_copy(deep=True) for i in self._items.values() if i.parent_work_item == parent_id]

	def find_target(self, target: Optional[str], user_id: str) -> Optional[WorkItem]:
		"""
		Resolve a work item reference.

		Tries an exact id, then a case-insensitive title match (newest
		first, the requesting user's items before others), then the
		user's most recent work item from their conversation context.
		The context fallback only applies when no target was named.
		"""
		if target and target.strip().lower() not in IMPLICIT_TARGETS:
			if target in self._items:
				return self.get_work_item(target)
			needle = target.lower()
			matches = [i for i in self._items.values() if needle in i.title.lower()]
			matches.sort(key=lambda i: (i.user_id == user_id, i.start_time), reverse=True)
			if matches:
				return matches[0].model_copy(deep=True)
			return None

		if self.contexts:
			ctx = self.contexts.peek(user_id)
			if ctx and ctx.last_work_item and ctx.last_work_item in self._items:
				return self.get_work_item(ctx.last_work_item)
		return None

	# ==================== Transitions ====================

	async def transition(
		self,
		item_id: str,
		status: WorkItemStatus,
		progress: Optional[int] = None,
		note: Optional[str] = None,
	) -> WorkItem:
		"""
		Move a work item along the forward phases.

		Progress defaults to the phase's milestone and never decreases.

		Raises:
			TargetNotFound: unknown id
			InvalidTransition: the move is not in the transition table
			ValidationError: the explicit progress would go backwards
		"""
		if status not in PHASE_PROGRESS or status == S.PENDING:
			raise ValidationError(f"{status.value} is not a forward phase; use pause/resume/cancel/fail")

		async with self._locks.hold(item_id):
			item = self._require(item_id)
			if status not in TRANSITIONS[item.status]:
				raise InvalidTransition(item_id, item.status.value, status.value)

			new_progress = max(item.progress, PHASE_PROGRESS[status]) if progress is None else progress
			if not 0 <= new_progress <= 100:
				raise ValidationError(f"Progress must be between 0 and 100, got {new_progress}")
			if new_progress < item.progress:
				raise ValidationError(f"Progress for {item_id} can't go from {item.progress}% to {new_progress}%")
			if status == S.COMPLETED:
				new_progress = 100
				item.completed_at = datetime.now()

			item.status = status
			item.progress = new_progress
			snapshot = await self._commit(item, note)
		return snapshot

	async def pause(self, item_id: str) -> WorkItem:
		async with self._locks.hold(item_id):
			item = self._require(item_id)
			if S.PAUSED not in TRANSITIONS[item.status]:
				raise InvalidTransition(item_id, item.status.value, S.PAUSED.value)
			item.resume_status = item.status
			item.status = S.PAUSED
			item.paused_at = datetime.now()
			snapshot = await self._commit(item)
		return snapshot

	async def resume(self, item_id: str) -> WorkItem:
		async with self._locks.hold(item_id):
			item = self._require(item_id)
			if item.status != S.PAUSED or item.resume_status is None:
				raise InvalidTransition(item_id, item.status.value, "resumed")
			self._close_pause(item)
			item.status = item.resume_status
			item.resume_status = None
			snapshot = await self._commit(item)
		return snapshot

	async def cancel(self, item_id: str, reason: Optional[str] = None) -> WorkItem:
		"""Cancel immediately; anything still running for the item is discarded later."""
		return await self._terminate(item_id, S.CANCELLED, f"Cancelled: {reason}" if reason else None)

	async def fail(self, item_id: str, error: str) -> WorkItem:
		return await self._terminate(item_id, S.FAILED, error)

	async def record_outputs(self, item_id: str, outputs: dict[str, Any]) -> bool:
		"""Attach results unless the item already ended. Returns whether they were kept."""
		async with self._locks.hold(item_id):
			item = self._require(item_id)
			if item.is_terminal:
				logger.info(f"Discarding outputs for {item.status.value} item {item_id}")
				return False
			item.outputs = {**(item.outputs or {}), **outputs}
			await self._persist(item)
		return True

	async def _terminate(self, item_id: str, status: WorkItemStatus, error: Optional[str]) -> WorkItem:
		async with self._locks.hold(item_id):
			item = self._require(item_id)
			if status not in TRANSITIONS[item.status]:
				raise InvalidTransition(item_id, item.status.value, status.value)
			self._close_pause(item)
			item.resume_status = None
			item.status = status
			item.completed_at = datetime.now()
			# Progress is kept as-is for the audit trail
			if error:
				item.errors.append(error)
			snapshot = await self._commit(item, error)
		return snapshot

	def _close_pause(self, item: WorkItem) -> None:
		if item.paused_at is not None:
			item.paused_time += (datetime.now() - item.paused_at).total_seconds()
			item.paused_at = None

	def _require(self, item_id: str) -> WorkItem:
		item = self._items.get(item_id)
		if item is None:
			raise TargetNotFound(f"No work item {item_id}")
		return item

	async def _commit(self, item: WorkItem, note: Optional[str] = None) -> WorkItem:
		logger.info(f"{item.id} -> {item.status.value} ({item.progress}%)")
		await self._persist(item)
		if self.transport:
			text = f"{STATUS_ICONS[item.status]} {item.status.value.upper()} | {item.progress}%"
			if note:
				text += f"\n{note}"
			self._spawn(self._post(item.id, text))
		return item.model_copy(deep=True)

	async def _persist(self, item: WorkItem) -> None:
		if not self.store:
			return
		try:
			await self.store.save(item)
		except Exception as e:
			logger.error(f"Failed to persist work item {item.id}: {e}")

	# ==================== Thread mirroring ====================

	def _spawn(self, coro) -> None:
		task = asyncio.create_task(coro)
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _open_thread(self, item_id: str, parent_message: str) -> None:
		async with self._mirror_locks.hold(item_id):
			item = self._items.get(item_id)
			if item is None:
				return
			try:
				thread_id = await self.transport.create_thread(parent_message, f"{item.id} - {item.title}")
				item.thread_id = thread_id
				await self.transport.post_to_thread(
					thread_id,
					f"▶ {item.title}\n{item.description}\n"
					f"Agents: {', '.join(item.assigned_agents)} | Priority: {item.priority.value}"
					+ (f"\nModifies: {item.parent_work_item}" if item.parent_work_item else ""),
				)
			except TransportFailure as e:
				logger.warning(f"Thread for {item_id} unavailable: {e}")
				return
			except Exception as e:
				logger.error(f"Unexpected transport error opening thread for {item_id}: {e}")
				return
		await self._persist(item)

	async def _post(self, item_id: str, text: str) -> None:
		async with self._mirror_locks.hold(item_id):
			item = self._items.get(item_id)
			if item is None or not item.thread_id:
				return
			try:
				await self.transport.post_to_thread(item.thread_id, text)
			except Exception as e:
				logger.warning(f"Progress post for {item_id} failed: {e}")

	async def drain(self) -> None:
		"""Wait for outstanding thread mirroring."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	# ==================== Management commands ====================

	async def handle_management_command(self, intent: Intent, user_id: str) -> str:
		"""
		Apply a lifecycle command from chat.

		Raises:
			TargetNotFound: no explicit target and no recent work to fall back to
			InvalidTransition: the item's state doesn't allow the command
		"""
		action = resolve_action(intent)
		if action is None:
			return "I understand you want to manage work, but not which action. Try pause, resume, cancel, or status."

		if action == ManagementAction.STATUS:
			return self.render_status(user_id)

		item = self.find_target(intent.parameters.target, user_id)
		if item is None:
			raise TargetNotFound("No work item to apply that to")

		if action == ManagementAction.CANCEL:
			updated = await self.cancel(item.id, intent.parameters.context)
			return f"× Cancelled {updated.id} - {updated.title}"
		if action == ManagementAction.PAUSE:
			updated = await self.pause(item.id)
			return f"⏸ Paused {updated.id} - {updated.title} at {updated.progress}%"
		updated = await self.resume(item.id)
		return f"▶ Resumed {updated.id} - {updated.title} ({updated.status.value})"

	def render_status(self, user_id: Optional[str] = None) -> str:
		active = self.get_active_work_items(user_id)
		if not active:
			return "✓ No active work - ready for new requests"
		now = datetime.now()
		lines = ["Active Work Items:", ""]
		for item in active:
			elapsed = round((now - item.start_time).total_seconds() / 60)
			lines.append(f"{item.id} - {item.title}")
			lines.append(f"→ Status: {item.status.value.upper()} | Progress: {item.progress}% | {elapsed}m ago")
		return "\n".join(lines)
