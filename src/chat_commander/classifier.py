"""
Intent Classifier - Turns an utterance plus conversation context into an Intent.

Two interchangeable classifiers share one protocol:
- OracleClassifier asks the reasoning oracle for a structured classification
- KeywordClassifier scores weighted indicator terms and never fails

IntentClassifier chains them, falling through to the next classifier
whenever one can't decide.
"""

import logging
import re
from typing import Optional, Protocol

from .models import (
	CATEGORY_PRIORITY,
	Complexity,
	ConversationContext,
	Intent,
	IntentCategory,
	IntentParameters,
)
from .oracle import ReasoningOracle, ask_json
from .schemas import INTENT_SCHEMA

logger = logging.getLogger(__name__)

WORK_ITEM_ID = re.compile(r"\bwork_[a-z0-9]+_[a-z0-9]+\b")

CLASSIFICATION_PROMPT = """You are the intent analyzer for an AI development system. Classify the user input.

USER INPUT: "{utterance}"

CONTEXT:
{context}

CATEGORIES:
- build: Create something new (UI, API, feature, component, app)
- modify: Change existing work (fix, update, enhance, restyle)
- analyze: Examine or inspect (code review, performance, health, debug)
- manage: Control workflow (pause, resume, cancel, status, deploy)
- question: Ask for information (how to, what is, explain)
- conversation: General chat, thanks, greetings

SUBCATEGORIES (examples):
- build-ui, build-api, build-integration, build-full-app
- modify-existing, modify-style, modify-behavior
- analyze-code, analyze-performance, analyze-health
- manage-work (specific: manage-pause, manage-resume, manage-cancel, manage-status), manage-deployment

COMPLEXITY: simple (single feature), medium (multi-component), complex (full application), enterprise (multi-system).

If the user refers to "that" or "it" and there is recent work, target the most recent work item.

Return JSON:
{{
  "category": "build|modify|analyze|manage|question|conversation",
  "subcategory": "specific subcategory",
  "specific": "most specific classification",
  "confidence": 0.0-1.0,
  "reasoning": "why",
  "requiredAgents": ["AgentName"],
  "estimatedComplexity": "simple|medium|complex|enterprise",
  "parameters": {{
    "description": "enhanced description",
    "target": "work item id or name to modify/manage, or null",
    "requirements": ["extracted requirements"]
  }}
}}"""


class ScoreableClassifier(Protocol):
	"""A classifier that may decline to decide by returning None."""

	name: str

	async def classify(self, utterance: str, context: ConversationContext) -> Optional[Intent]:
		...


def render_context(context: ConversationContext, turns: int = 6) -> str:
	"""Summarize the context for inclusion in a prompt."""
	lines = []
	if context.recent_work_items:
		lines.append(f"Recent work: {', '.join(context.recent_work_items)}")
	if context.last_work_item:
		lines.append(f"Most recent work item: {context.last_work_item}")
	for turn in context.conversation_history[-turns:]:
		lines.append(f"{turn['role']}: {turn['content']}")
	return "\n".join(lines) or "(none)"


class OracleClassifier:
	"""Classifies through the reasoning oracle; declines on any failure."""

	name = "oracle"

	def __init__(self, oracle: ReasoningOracle, timeout: Optional[float] = None):
		self.oracle = oracle
		self.timeout = timeout

	async def classify(self, utterance: str, context: ConversationContext) -> Optional[Intent]:
		prompt = CLASSIFICATION_PROMPT.format(
			utterance=utterance,
			context=render_context(context),
		)
		result = await ask_json(self.oracle, prompt, INTENT_SCHEMA, timeout=self.timeout)
		if not result.ok:
			return None

		data = result.value
		params = data.get("parameters") or {}
		try:
			return Intent(
				category=IntentCategory(data["category"]),
				subcategory=data.get("subcategory") or "",
				specific=data.get("specific"),
				confidence=float(data.get("confidence") or 0.0),
				reasoning=data.get("reasoning") or "",
				required_agents=data.get("requiredAgents") or ["Commander"],
				estimated_complexity=Complexity(data.get("estimatedComplexity") or "simple"),
				parameters=IntentParameters(
					description=params.get("description") or utterance,
					target=params.get("target"),
					context=params.get("context"),
					requirements=params.get("requirements") or [],
				),
			)
		except (ValueError, TypeError) as e:
			logger.warning(f"Oracle classification rejected: {e}")
			return None


class KeywordClassifier:
	"""
	Deterministic scorer over weighted indicator terms.

	score(category) = sum of weights of the terms present in the utterance.
	"""

	name = "keyword"

	INDICATORS: dict[IntentCategory, dict[str, float]] = {
		IntentCategory.BUILD: {
			"build": 3, "create": 3, "make": 2, "generate": 2, "implement": 2,
			"scaffold": 2, "set up": 2, "new": 1, "add": 1.5,
			"form": 1, "component": 1, "page": 1, "app": 1, "api": 1, "button": 1,
		},
		IntentCategory.MODIFY: {
			"change": 3, "update": 3, "fix": 3, "modify": 3, "make it": 3, "make that": 3,
			"edit": 2, "tweak": 2, "refactor": 2, "rename": 2, "bigger": 2, "smaller": 2,
			"style": 1, "color": 1, "move": 1,
		},
		IntentCategory.ANALYZE: {
			"analyze": 3, "analyse": 3, "review": 3, "inspect": 2, "audit": 2,
			"debug": 2, "profile": 2, "health": 2, "performance": 2, "check": 1.5,
		},
		IntentCategory.MANAGE: {
			"pause": 3, "cancel": 3, "resume": 3, "abort": 3, "stop": 3,
			"status": 2.5, "halt": 2, "deploy": 2, "progress": 1.5, "continue": 1.5,
		},
		IntentCategory.QUESTION: {
			"explain": 3, "what is": 2, "how do": 2, "difference": 2, "define": 2,
			"what": 1.5, "how": 1.5, "why": 1.5, "who": 1, "?": 1,
		},
		IntentCategory.CONVERSATION: {
			"thanks": 3, "thank": 3, "hello": 2, "hi": 2, "hey": 2, "good morning": 2,
			"bye": 2, "great": 1.5, "nice": 1.5, "cool": 1, "lol": 1,
		},
	}

	MANAGE_ACTIONS = [
		("pause", "manage-pause"),
		("halt", "manage-pause"),
		("resume", "manage-resume"),
		("continue", "manage-resume"),
		("cancel", "manage-cancel"),
		("abort", "manage-cancel"),
		("stop", "manage-cancel"),
		("status", "manage-status"),
		("progress", "manage-status"),
	]

	UI_TERMS = ("form", "page", "button", "component", "ui", "layout", "screen")
	API_TERMS = ("api", "endpoint", "backend", "database")

	def __init__(self, confidence_floor: float = 1.0):
		self.confidence_floor = confidence_floor
		self._patterns = {
			category: [(self._compile(term), weight) for term, weight in terms.items()]
			for category, terms in self.INDICATORS.items()
		}

	@staticmethod
	def _compile(term: str) -> re.Pattern:
		if term.isalnum() or " " in term:
			return re.compile(rf"\b{re.escape(term)}\b")
		return re.compile(re.escape(term))

	@staticmethod
	def _has(text: str, term: str) -> bool:
		return re.search(rf"\b{re.escape(term)}\b", text) is not None

	def scores(self, utterance: str) -> dict[IntentCategory, float]:
		"""Weighted presence score for every category."""
		text = utterance.lower()
		return {
			category: sum(weight for pattern, weight in patterns if pattern.search(text))
			for category, patterns in self._patterns.items()
		}

	def best(self, utterance: str) -> tuple[Optional[IntentCategory], float]:
		"""Highest scoring category, or None when nothing clears the floor."""
		scores = self.scores(utterance)
		# max() keeps the first maximum, so iterate in priority order
		category = max(CATEGORY_PRIORITY, key=lambda c: scores[c])
		score = scores[category]
		if score < self.confidence_floor:
			return None, score
		return category, score

	async def classify(self, utterance: str, context: ConversationContext) -> Optional[Intent]:
		category, score = self.best(utterance)
		text = utterance.lower()
		target_match = WORK_ITEM_ID.search(text)
		target = target_match.group(0) if target_match else None

		if category is None:
			return Intent(
				category=IntentCategory.CONVERSATION,
				subcategory="clarify",
				specific="conversation-needs-clarification",
				confidence=0.3,
				reasoning="Fallback: no category cleared the confidence floor",
				parameters=IntentParameters(description=utterance, target=target),
			)

		subcategory, specific = self._subcategory(category, text)
		return Intent(
			category=category,
			subcategory=subcategory,
			specific=specific,
			confidence=round(min(0.9, 0.5 + score / 10), 2),
			reasoning=f"Fallback: keyword score {score:g} for {category.value}",
			required_agents=self._agents(category, text),
			estimated_complexity=self._complexity(text),
			parameters=IntentParameters(description=utterance, target=target),
		)

	def _subcategory(self, category: IntentCategory, text: str) -> tuple[str, Optional[str]]:
		if category == IntentCategory.MANAGE:
			if self._has(text, "deploy"):
				return "manage-deployment", None
			actions = {action for term, action in self.MANAGE_ACTIONS if self._has(text, term)}
			# Several lifecycle verbs in one message are left for the registry to question
			if len(actions) == 1:
				return "manage-work", actions.pop()
			return "manage-work", None
		if category == IntentCategory.BUILD:
			if any(self._has(text, t) for t in self.API_TERMS):
				return "build-api", None
			if any(self._has(text, t) for t in self.UI_TERMS):
				return "build-ui", None
			return "build-feature", None
		if category == IntentCategory.MODIFY:
			return "modify-existing", None
		if category == IntentCategory.ANALYZE:
			if self._has(text, "performance") or self._has(text, "profile"):
				return "analyze-performance", None
			if self._has(text, "health"):
				return "analyze-health", None
			return "analyze-code", None
		if category == IntentCategory.QUESTION:
			return "question-concept", None
		return "conversation-general", None

	def _agents(self, category: IntentCategory, text: str) -> list[str]:
		if category in (IntentCategory.BUILD, IntentCategory.MODIFY):
			if any(self._has(text, t) for t in self.API_TERMS):
				return ["BackendEngineer"]
			if any(self._has(text, t) for t in self.UI_TERMS):
				return ["FrontendArchitect"]
		if category == IntentCategory.ANALYZE:
			return ["CodeAnalyzer"]
		return ["Commander"]

	def _complexity(self, text: str) -> Complexity:
		if self._has(text, "enterprise"):
			return Complexity.ENTERPRISE
		if any(self._has(text, t) for t in ("application", "platform", "full app", "real-time")):
			return Complexity.COMPLEX
		if any(self._has(text, t) for t in ("dashboard", "integration", "system")):
			return Complexity.MEDIUM
		return Complexity.SIMPLE


class IntentClassifier:
	"""Runs classifiers in order until one returns an Intent."""

	def __init__(self, chain: list[ScoreableClassifier]):
		if not chain:
			raise ValueError("IntentClassifier needs at least one classifier")
		self.chain = chain

	@classmethod
	def with_fallback(
		cls,
		oracle: ReasoningOracle,
		timeout: Optional[float] = None,
		confidence_floor: float = 1.0,
	) -> "IntentClassifier":
		"""Oracle first, keyword scorer as the guaranteed fallback."""
		return cls([
			OracleClassifier(oracle, timeout=timeout),
			KeywordClassifier(confidence_floor=confidence_floor),
		])

	async def classify(self, utterance: str, context: ConversationContext) -> Intent:
		for classifier in self.chain:
			intent = await classifier.classify(utterance, context)
			if intent is not None:
				logger.info(
					f"Intent via {classifier.name}: {intent.category.value}/{intent.subcategory} "
					f"({intent.confidence:.2f})"
				)
				return intent
		# Every classifier declined
		return Intent(
			category=IntentCategory.CONVERSATION,
			subcategory="clarify",
			reasoning="No classifier could decide",
			parameters=IntentParameters(description=utterance),
		)
