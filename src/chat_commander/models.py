"""
Commander Models - Pydantic schemas for intents, work items, and feedback.

Defines the shared vocabulary between the classifier, clarifier,
registry, delegation resolver, and feedback correlator.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

RECENT_WORK_ITEMS_LIMIT = 5
CONVERSATION_HISTORY_LIMIT = 50


class IntentCategory(str, Enum):
	"""Top-level classification of a user utterance."""
	BUILD = "build"
	MODIFY = "modify"
	ANALYZE = "analyze"
	MANAGE = "manage"
	QUESTION = "question"
	CONVERSATION = "conversation"


# Tie-break order for equal scores, highest priority first
CATEGORY_PRIORITY = [
	IntentCategory.BUILD,
	IntentCategory.MODIFY,
	IntentCategory.ANALYZE,
	IntentCategory.MANAGE,
	IntentCategory.QUESTION,
	IntentCategory.CONVERSATION,
]


class Complexity(str, Enum):
	"""Estimated size of a request."""
	SIMPLE = "simple"
	MEDIUM = "medium"
	COMPLEX = "complex"
	ENTERPRISE = "enterprise"


class Priority(str, Enum):
	"""Work item priority, derived from complexity."""
	LOW = "low"
	MEDIUM = "medium"
	HIGH = "high"
	CRITICAL = "critical"


PRIORITY_BY_COMPLEXITY = {
	Complexity.SIMPLE: Priority.LOW,
	Complexity.MEDIUM: Priority.MEDIUM,
	Complexity.COMPLEX: Priority.HIGH,
	Complexity.ENTERPRISE: Priority.CRITICAL,
}


class WorkItemStatus(str, Enum):
	"""Lifecycle state of a work item."""
	PENDING = "pending"
	ANALYZING = "analyzing"
	BUILDING = "building"
	DEPLOYING = "deploying"
	PAUSED = "paused"
	COMPLETED = "completed"
	FAILED = "failed"
	CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
	WorkItemStatus.COMPLETED,
	WorkItemStatus.FAILED,
	WorkItemStatus.CANCELLED,
})


class FeedbackType(str, Enum):
	"""Polarity of a piece of user feedback."""
	POSITIVE = "positive"
	NEGATIVE = "negative"
	SUGGESTION = "suggestion"


class FeedbackSource(str, Enum):
	"""How a piece of feedback reached the correlator."""
	REACTION = "reaction"
	REPLY = "reply"
	PASSIVE = "passive"


class FeedbackCategory(str, Enum):
	"""Coarse topic of the exchange the feedback refers to."""
	WORK = "work"
	CASUAL = "casual"
	WIT = "wit"
	PERSONALITY = "personality"


class IntentParameters(BaseModel):
	"""Parameters extracted from an utterance."""
	description: str = Field(description="Enhanced description of the request")
	target: Optional[str] = Field(default=None, description="What to modify or manage")
	context: Optional[str] = Field(default=None)
	requirements: list[str] = Field(default_factory=list)


class Intent(BaseModel):
	"""Structured classification of a single utterance."""
	category: IntentCategory
	subcategory: str = Field(default="")
	specific: Optional[str] = Field(default=None)
	confidence: float = Field(default=0.0)
	reasoning: str = Field(default="")
	parameters: IntentParameters
	required_agents: list[str] = Field(default_factory=lambda: ["Commander"])
	estimated_complexity: Complexity = Field(default=Complexity.SIMPLE)


class WorkItem(BaseModel):
	"""
	A tracked unit of user-requested work.

	Only the registry mutates work items; everything else treats them as
	read-only snapshots.
	"""
	id: str = Field(description="Unique work item identifier")
	title: str
	description: str
	original_request: str
	status: WorkItemStatus = Field(default=WorkItemStatus.PENDING)
	priority: Priority = Field(default=Priority.LOW)
	complexity: Complexity = Field(default=Complexity.SIMPLE)
	assigned_agents: list[str] = Field(default_factory=list)
	primary_agent: str = Field(default="Commander")
	progress: int = Field(default=0, ge=0, le=100)
	user_id: str
	message_id: str
	thread_id: Optional[str] = Field(default=None)
	parent_work_item: Optional[str] = Field(default=None)

	# Timing
	start_time: datetime = Field(default_factory=datetime.now)
	paused_time: float = Field(default=0.0, description="Accumulated seconds spent paused")
	paused_at: Optional[datetime] = Field(default=None)
	resume_status: Optional[WorkItemStatus] = Field(default=None)
	completed_at: Optional[datetime] = Field(default=None)

	# Results
	outputs: Optional[dict[str, Any]] = Field(default=None)
	errors: list[str] = Field(default_factory=list)

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES

	def paused_seconds(self, now: Optional[datetime] = None) -> float:
		"""Total paused time, including a pause that is still running."""
		total = self.paused_time
		if self.paused_at is not None:
			total += ((now or datetime.now()) - self.paused_at).total_seconds()
		return total

	def summary_line(self) -> str:
		"""One-line status for chat replies."""
		return f"{self.id} - {self.title} | {self.status.value.upper()} | {self.progress}%"


class ConversationContext(BaseModel):
	"""Per-user conversation state."""
	user_id: str
	pending_intent: Optional[Intent] = Field(default=None)
	gathering_in_progress: bool = Field(default=False)
	pending_question: Optional[str] = Field(default=None)
	clarified_request: Optional[str] = Field(default=None)
	qa_history: list[dict[str, str]] = Field(default_factory=list)
	last_work_item: Optional[str] = Field(default=None)
	recent_work_items: list[str] = Field(default_factory=list)
	conversation_history: list[dict[str, str]] = Field(default_factory=list)
	last_activity: datetime = Field(default_factory=datetime.now)

	def remember_work_item(self, work_item_id: str) -> None:
		"""Make a work item the implicit target for follow-up commands."""
		self.last_work_item = work_item_id
		recent = [work_item_id] + [w for w in self.recent_work_items if w != work_item_id]
		self.recent_work_items = recent[:RECENT_WORK_ITEMS_LIMIT]

	def add_turn(self, role: str, content: str) -> None:
		self.conversation_history.append({"role": role, "content": content})
		if len(self.conversation_history) > CONVERSATION_HISTORY_LIMIT:
			self.conversation_history = self.conversation_history[-CONVERSATION_HISTORY_LIMIT:]
		self.last_activity = datetime.now()

	def start_gathering(self, intent: Intent, question: str, clarified_request: str) -> None:
		self.pending_intent = intent
		self.gathering_in_progress = True
		self.pending_question = question
		self.clarified_request = clarified_request

	def finish_gathering(self) -> None:
		self.pending_intent = None
		self.gathering_in_progress = False
		self.pending_question = None
		self.clarified_request = None
		self.qa_history = []


class SpecialistRegistration(BaseModel):
	"""An external responder that can take over matching requests."""
	name: str
	purpose: str
	capabilities: list[str] = Field(default_factory=list)
	specialties: list[str] = Field(default_factory=list)
	channel_id: str
	is_online: bool = Field(default=True)
	last_seen: datetime = Field(default_factory=datetime.now)


class FeedbackRecord(BaseModel):
	"""A unit of feedback bound to an earlier exchange."""
	id: str
	message_id: str
	input: str
	response: str
	feedback_type: FeedbackType
	suggestion: Optional[str] = Field(default=None)
	source: FeedbackSource
	category: FeedbackCategory = Field(default=FeedbackCategory.CASUAL)
	created_at: datetime = Field(default_factory=datetime.now)
