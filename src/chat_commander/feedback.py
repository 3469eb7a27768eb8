"""
Feedback Correlator - Binds reactions and follow-up messages to earlier exchanges.

Three ways feedback arrives:
- A reaction on one of the commander's replies (👍 / 👎 / 🔄 ...)
- A reply to the "what should I have said?" prompt after a 🔄 reaction
- A plain message that reads as feedback on the previous reply (passive)

Every piece of feedback becomes one FeedbackRecord in the learning store.
"""

import logging
import re
import secrets
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from .models import FeedbackCategory, FeedbackRecord, FeedbackSource, FeedbackType
from .oracle import ReasoningOracle, ask_json
from .schemas import FEEDBACK_DETECTION_SCHEMA, FEEDBACK_EXTRACTION_SCHEMA
from .stores import LearningStore

logger = logging.getLogger(__name__)

SUGGESTION_PROMPT = "What should I have said instead? Reply with your suggestion."

# SUGGESTION here means "ask the user for a correction"
REACTION_FEEDBACK = {
	"👍": FeedbackType.POSITIVE,
	"✅": FeedbackType.POSITIVE,
	"💯": FeedbackType.POSITIVE,
	"👎": FeedbackType.NEGATIVE,
	"❌": FeedbackType.NEGATIVE,
	"🔄": FeedbackType.SUGGESTION,
	"⚡": FeedbackType.SUGGESTION,
	"✏": FeedbackType.SUGGESTION,
	"✏️": FeedbackType.SUGGESTION,
}

DETECTION_PROMPT = """Previous AI response: "{response}"
User's next message: "{utterance}"

Is the user giving feedback or a correction about the previous response?

Return JSON: {{"isFeedback": true/false}}"""

EXTRACTION_PROMPT = """Previous AI response: "{response}"
User feedback: "{utterance}"

Classify the feedback and extract what the user wants said instead, if they gave a specific alternative.

Examples:
- "could just leave it at 'Morning. Ready to build...'" -> suggestion, "Morning. Ready to build..."
- "don't smirk" -> negative, null
- "say 'On it' instead" -> suggestion, "On it"
- "perfect" -> positive, null

Return JSON:
{{
  "feedbackType": "positive|negative|suggestion",
  "suggestion": "replacement text" or null
}}"""

FEEDBACK_HINT = re.compile(r"feedback|correction|better|instead|don't|avoid", re.IGNORECASE)

SUGGESTION_PATTERNS = [
	re.compile(r"could just leave it at ['\"]([^'\"]+)['\"]", re.IGNORECASE),
	re.compile(r"try this instead:?\s*[\"']?([^\"']+)[\"']?", re.IGNORECASE),
	re.compile(r"better would be:?\s*[\"']?([^\"']+)[\"']?", re.IGNORECASE),
	re.compile(r"should have said:?\s*[\"']?([^\"']+)[\"']?", re.IGNORECASE),
	re.compile(r"more like:?\s*[\"']?([^\"']+)[\"']?", re.IGNORECASE),
]

NEGATIVE_TERMS = re.compile(r"DO NOT|don't|bad|wrong|terrible", re.IGNORECASE)
SUGGESTION_TERMS = re.compile(r"try|instead|better|should|more like|could just", re.IGNORECASE)
POSITIVE_TERMS = re.compile(r"good|great|perfect|nice|love|excellent", re.IGNORECASE)

CATEGORY_TERMS = [
	(FeedbackCategory.WORK, re.compile(r"build|deploy|create|fix|component|api|system", re.IGNORECASE)),
	(FeedbackCategory.WIT, re.compile(r"humor|wit|funny|joke|sarcasm|smirk", re.IGNORECASE)),
	(FeedbackCategory.PERSONALITY, re.compile(r"personality|charm|tone|voice|style|smirk|nominal", re.IGNORECASE)),
]


def extract_suggestion(text: str) -> Optional[str]:
	for pattern in SUGGESTION_PATTERNS:
		match = pattern.search(text)
		if match:
			return match.group(1).strip()
	return None


def classify_feedback(text: str) -> FeedbackType:
	"""Keyword polarity; negative wins, and unclear feedback counts as negative."""
	if NEGATIVE_TERMS.search(text):
		return FeedbackType.NEGATIVE
	if SUGGESTION_TERMS.search(text):
		return FeedbackType.SUGGESTION
	if POSITIVE_TERMS.search(text):
		return FeedbackType.POSITIVE
	return FeedbackType.NEGATIVE


def classify_category(user_input: str, response: str) -> FeedbackCategory:
	text = user_input + " " + response
	for category, pattern in CATEGORY_TERMS:
		if pattern.search(text):
			return category
	return FeedbackCategory.CASUAL


@dataclass
class Exchange:
	"""One user message and the commander's reply to it."""
	message_id: str
	user_id: str
	input: str
	response: Optional[str] = None
	reply_message_id: Optional[str] = None
	created_at: datetime = field(default_factory=datetime.now)


class CorrelationCache:
	"""
	Bounded FIFO of recent exchanges.

	Exchanges are found by the user's message id or by the id of the
	commander's reply, since reactions land on the reply. Evicting an
	exchange drops both keys. All methods are synchronous and so atomic
	on the event loop.
	"""

	def __init__(self, capacity: int = 20):
		if capacity < 1:
			raise ValueError("capacity must be at least 1")
		self.capacity = capacity
		self._entries: OrderedDict[str, Exchange] = OrderedDict()
		self._by_reply: dict[str, str] = {}

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, message_id: str) -> bool:
		return message_id in self._entries or message_id in self._by_reply

	def track(self, message_id: str, user_id: str, text: str) -> None:
		if message_id in self._entries:
			self._entries[message_id].input = text
			return
		self._entries[message_id] = Exchange(message_id=message_id, user_id=user_id, input=text)
		while len(self._entries) > self.capacity:
			_, evicted = self._entries.popitem(last=False)
			if evicted.reply_message_id:
				self._by_reply.pop(evicted.reply_message_id, None)

	def update(self, message_id: str, response: str) -> bool:
		entry = self._entries.get(message_id)
		if entry is None:
			return False
		entry.response = response
		return True

	def bind_reply(self, message_id: str, reply_message_id: str) -> bool:
		entry = self._entries.get(message_id)
		if entry is None:
			return False
		if entry.reply_message_id:
			self._by_reply.pop(entry.reply_message_id, None)
		entry.reply_message_id = reply_message_id
		self._by_reply[reply_message_id] = message_id
		return True

	def resolve(self, message_id: str) -> Optional[Exchange]:
		key = self._by_reply.get(message_id, message_id)
		entry = self._entries.get(key)
		return replace(entry) if entry else None

	def latest(self, user_id: Optional[str] = None, exclude: Optional[str] = None) -> Optional[Exchange]:
		"""Most recent exchange that already has a response."""
		for entry in reversed(self._entries.values()):
			if entry.response is None or entry.message_id == exclude:
				continue
			if user_id is None or entry.user_id == user_id:
				return replace(entry)
		return None


class FeedbackCorrelator:
	"""
	Turns reactions, suggestion replies, and passive remarks into records.

	Usage:
		correlator = FeedbackCorrelator(oracle, store, CorrelationCache())
		prompt = await correlator.handle_reaction(reply_id, "🔄", user_id)
		if correlator.awaiting_suggestion(user_id):
			await correlator.capture_suggestion(user_id, "just say 'on it'")
	"""

	def __init__(
		self,
		oracle: ReasoningOracle,
		store: Optional[LearningStore] = None,
		cache: Optional[CorrelationCache] = None,
		timeout: Optional[float] = None,
	):
		self.oracle = oracle
		self.store = store
		self.cache = cache or CorrelationCache()
		self.timeout = timeout
		# user_id -> exchange the correction refers to
		self._awaiting: dict[str, Exchange] = {}

	# ==================== Reactions ====================

	async def handle_reaction(self, message_id: str, emoji: str, user_id: str) -> Optional[str]:
		"""
		Record a reaction on a tracked reply.

		Returns the prompt to send when the reaction asks for a correction,
		otherwise None. Unknown emoji and untracked messages are ignored.
		"""
		feedback_type = REACTION_FEEDBACK.get(emoji)
		if feedback_type is None:
			return None

		exchange = self.cache.resolve(message_id)
		if exchange is None:
			logger.debug(f"Ignoring {emoji} on untracked message {message_id}")
			return None

		if feedback_type == FeedbackType.SUGGESTION:
			self._awaiting[user_id] = exchange
			logger.info(f"[{user_id}] Awaiting suggestion for {exchange.message_id}")
			return SUGGESTION_PROMPT

		await self._record(exchange, feedback_type, FeedbackSource.REACTION)
		return None

	def awaiting_suggestion(self, user_id: str) -> bool:
		return user_id in self._awaiting

	async def capture_suggestion(self, user_id: str, text: str) -> Optional[FeedbackRecord]:
		"""
		Consume the user's correction. One-shot: the awaiting state clears.

		A blank reply records nothing and keeps the prompt open.
		"""
		suggestion = text.strip()
		if not suggestion or user_id not in self._awaiting:
			return None
		exchange = self._awaiting.pop(user_id)
		return await self._record(exchange, FeedbackType.SUGGESTION, FeedbackSource.REPLY, suggestion=suggestion)

	# ==================== Passive detection ====================

	async def check_passive(self, utterance: str, user_id: str, message_id: str) -> Optional[FeedbackRecord]:
		"""
		Treat the utterance as feedback on the user's previous exchange if it reads like one.

		Runs alongside normal routing and never changes it.
		"""
		exchange = self.cache.latest(user_id, exclude=message_id)
		if exchange is None:
			return None

		if not await self._is_feedback(utterance, exchange.response or ""):
			return None

		feedback_type, suggestion = await self._extract(utterance, exchange.response or "")
		return await self._record(exchange, feedback_type, FeedbackSource.PASSIVE, suggestion=suggestion)

	async def _is_feedback(self, utterance: str, response: str) -> bool:
		result = await ask_json(
			self.oracle,
			DETECTION_PROMPT.format(response=response, utterance=utterance),
			FEEDBACK_DETECTION_SCHEMA,
			timeout=self.timeout,
		)
		if result.ok:
			return bool(result.value["isFeedback"])
		return FEEDBACK_HINT.search(utterance) is not None

	async def _extract(self, utterance: str, response: str) -> tuple[FeedbackType, Optional[str]]:
		result = await ask_json(
			self.oracle,
			EXTRACTION_PROMPT.format(response=response, utterance=utterance),
			FEEDBACK_EXTRACTION_SCHEMA,
			timeout=self.timeout,
		)
		if result.ok:
			return FeedbackType(result.value["feedbackType"]), result.value.get("suggestion") or None

		suggestion = extract_suggestion(utterance)
		if suggestion:
			return FeedbackType.SUGGESTION, suggestion
		return classify_feedback(utterance), None

	# ==================== Recording ====================

	async def _record(
		self,
		exchange: Exchange,
		feedback_type: FeedbackType,
		source: FeedbackSource,
		suggestion: Optional[str] = None,
	) -> FeedbackRecord:
		record = FeedbackRecord(
			id=f"fb_{secrets.token_hex(6)}",
			message_id=exchange.message_id,
			input=exchange.input,
			response=exchange.response or "",
			feedback_type=feedback_type,
			suggestion=suggestion,
			source=source,
			category=classify_category(exchange.input, exchange.response or ""),
		)
		if self.store:
			try:
				await self.store.append(record)
			except Exception as e:
				logger.error(f"Failed to store feedback {record.id}: {e}")
		else:
			logger.info(f"Feedback {record.feedback_type.value} ({record.source.value}) on {record.message_id}")
		return record

	async def learning_examples(self, limit: int = 10) -> str:
		"""Recent negative feedback and corrections, rendered as guidance."""
		if not self.store:
			return ""
		records = [
			r for r in await self.store.recent(limit=limit * 5)
			if r.feedback_type == FeedbackType.NEGATIVE or r.suggestion
		][-limit:]
		if not records:
			return ""

		corrections = []
		for r in records:
			if r.suggestion:
				corrections.append(f'AVOID: "{r.response}"\nUSE: "{r.suggestion}"')
			else:
				corrections.append(f'IMPROVE: Avoid patterns in "{r.response}"')
		return "LEARNED CORRECTIONS:\n" + "\n\n".join(corrections)
