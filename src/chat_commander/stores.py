"""
Commander Stores - SQLite-backed persistence for the collaborators the core talks to.

Features:
- Specialist registry snapshot (load/save the whole list)
- Append-only learning store for feedback records
- Work item audit trail (latest snapshot per item, never deleted)
"""

import logging
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import FeedbackRecord, FeedbackType, SpecialistRegistration, WorkItem

logger = logging.getLogger(__name__)


class SQLiteStore:
	"""Shared connection handling for the commander tables."""

	SCHEMA = ""

	def __init__(self, db_path: str):
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Open the connection and create the schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row
		await self._db.executescript(self.SCHEMA)
		await self._db.commit()
		logger.debug(f"{type(self).__name__} initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def _conn(self) -> aiosqlite.Connection:
		if not self._db:
			await self.init()
		return self._db


class SpecialistStore(SQLiteStore):
	"""
	Persists the specialist registry.

	Usage:
		store = SpecialistStore("data/commander.db")
		specialists = await store.load()
		await store.save(specialists)
	"""

	SCHEMA = """
		CREATE TABLE IF NOT EXISTS specialists (
			name TEXT PRIMARY KEY,
			data TEXT NOT NULL
		);
	"""

	async def load(self) -> list[SpecialistRegistration]:
		db = await self._conn()
		async with db.execute("SELECT data FROM specialists ORDER BY name") as cursor:
			rows = await cursor.fetchall()
		return [SpecialistRegistration.model_validate_json(row["data"]) for row in rows]

	async def save(self, specialists: list[SpecialistRegistration]):
		"""Replace the stored registry with the given list."""
		db = await self._conn()
		await db.execute("DELETE FROM specialists")
		await db.executemany(
			"INSERT INTO specialists (name, data) VALUES (?, ?)",
			[(s.name.lower(), s.model_dump_json()) for s in specialists],
		)
		await db.commit()
		logger.debug(f"Saved {len(specialists)} specialists")


class LearningStore(SQLiteStore):
	"""Append-only log of feedback records for behavioral tuning."""

	SCHEMA = """
		CREATE TABLE IF NOT EXISTS feedback (
			id TEXT PRIMARY KEY,
			message_id TEXT NOT NULL,
			feedback_type TEXT NOT NULL,
			source TEXT NOT NULL,
			data TEXT NOT NULL,
			created_at TEXT NOT NULL
		);
		CREATE INDEX IF NOT EXISTS idx_feedback_created ON feedback(created_at);
	"""

	async def append(self, record: FeedbackRecord):
		db = await self._conn()
		await db.execute(
			"""
			INSERT INTO feedback (id, message_id, feedback_type, source, data, created_at)
			VALUES (?, ?, ?, ?, ?, ?)
			""",
			(
				record.id,
				record.message_id,
				record.feedback_type.value,
				record.source.value,
				record.model_dump_json(),
				record.created_at.isoformat(),
			),
		)
		await db.commit()
		logger.info(f"Logged feedback {record.id}: {record.feedback_type.value} ({record.source.value})")

	async def recent(
		self,
		limit: int = 10,
		feedback_type: Optional[FeedbackType] = None,
	) -> list[FeedbackRecord]:
		"""Most recent records, oldest first."""
		db = await self._conn()
		query = "SELECT data FROM feedback"
		params: tuple = ()
		if feedback_type:
			query += " WHERE feedback_type = ?"
			params = (feedback_type.value,)
		query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
		params += (limit,)
		async with db.execute(query, params) as cursor:
			rows = await cursor.fetchall()
		return [FeedbackRecord.model_validate_json(row["data"]) for row in reversed(rows)]

	async def count(self) -> int:
		db = await self._conn()
		async with db.execute("SELECT COUNT(*) AS n FROM feedback") as cursor:
			row = await cursor.fetchone()
		return row["n"]


class WorkItemStore(SQLiteStore):
	"""Latest snapshot of every work item ever created."""

	SCHEMA = """
		CREATE TABLE IF NOT EXISTS work_items (
			id TEXT PRIMARY KEY,
			status TEXT NOT NULL,
			user_id TEXT NOT NULL,
			data TEXT NOT NULL,
			start_time TEXT NOT NULL
		);
		CREATE INDEX IF NOT EXISTS idx_work_items_status ON work_items(status);
	"""

	async def save(self, item: WorkItem):
		db = await self._conn()
		await db.execute(
			"""
			INSERT INTO work_items (id, status, user_id, data, start_time)
			VALUES (?, ?, ?, ?, ?)
			ON CONFLICT(id) DO UPDATE SET status = excluded.status, data = excluded.data
			""",
			(
				item.id,
				item.status.value,
				item.user_id,
				item.model_dump_json(),
				item.start_time.isoformat(),
			),
		)
		await db.commit()

	async def load(self) -> list[WorkItem]:
		db = await self._conn()
		async with db.execute("SELECT data FROM work_items ORDER BY start_time") as cursor:
			rows = await cursor.fetchall()
		return [WorkItem.model_validate_json(row["data"]) for row in rows]
