"""
Requirement Clarifier - One-question-at-a-time gap filling for build requests.

Philosophy:
- Only ask when the answer would materially change what gets built
- Never ask about styling or implementation details
- At most one outstanding question per user; the next message is the answer
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models import Complexity, ConversationContext, Intent
from .oracle import ReasoningOracle, ask_json
from .schemas import CLARIFICATION_SCHEMA

logger = logging.getLogger(__name__)

GENERIC_QUESTION = "Could you share more detail about what you want built?"

ANALYSIS_PROMPT = """You are deciding whether a request has enough information to build something good, or whether ONE critical question is needed.

REQUEST: "{request}"
COMPLEXITY: {complexity}
{previous}

WHEN TO ASK:
- The request is genuinely vague ("build a dashboard" - what data?)
- Critical functionality is unclear ("build a form" - which fields, if not obvious?)

WHEN NOT TO ASK:
- Styling details (use good defaults)
- Technical implementation details (choose the best approach)
- Minor features (build the core first)

Return JSON:
{{
  "shouldProceed": true/false,
  "nextQuestion": "the single most critical question, or null",
  "clarifiedRequest": "the request restated with sensible defaults",
  "extractedRequirements": ["clear requirements"]
}}"""

CONTINUATION_PROMPT = """The user is building: "{request}"
We asked: "{question}"
They answered: "{answer}"

Previous questions and answers: {history}

Fold the answer into the clarified request. Only ask another question if something critical is still missing.

Return JSON:
{{
  "shouldProceed": true/false,
  "nextQuestion": "the next critical question, or null",
  "clarifiedRequest": "updated request",
  "extractedRequirements": ["clear requirements"]
}}"""


class ClarificationState(str, Enum):
	"""Per-user clarification state."""
	NEEDS_INFO = "needs_info"
	READY = "ready"


@dataclass
class ClarificationResult:
	"""Outcome of one clarification step."""
	should_proceed: bool
	clarified_request: str
	next_question: Optional[str] = None
	extracted_requirements: list[str] = field(default_factory=list)

	@property
	def state(self) -> ClarificationState:
		return ClarificationState.READY if self.should_proceed else ClarificationState.NEEDS_INFO


class RequirementClarifier:
	"""
	Decides whether a build request is ready, and drives the follow-up dialog.

	State lives on the user's ConversationContext, which the caller holds
	under that user's lock for the duration of the turn.
	"""

	def __init__(
		self,
		oracle: ReasoningOracle,
		timeout: Optional[float] = None,
		max_questions: int = 3,
	):
		self.oracle = oracle
		self.timeout = timeout
		self.max_questions = max_questions

	async def analyze(
		self,
		description: str,
		complexity: Complexity,
		prior: Optional[list[dict[str, str]]] = None,
	) -> ClarificationResult:
		"""
		Evaluate a request on first contact.

		Falls back to proceeding for simple requests and asking one generic
		question otherwise when the oracle can't be used.
		"""
		previous = f"PREVIOUS Q&A: {json.dumps(prior)}" if prior else ""
		prompt = ANALYSIS_PROMPT.format(
			request=description,
			complexity=complexity.value,
			previous=previous,
		)
		result = await ask_json(self.oracle, prompt, CLARIFICATION_SCHEMA, timeout=self.timeout)

		if not result.ok:
			if complexity == Complexity.SIMPLE:
				return ClarificationResult(
					should_proceed=True,
					clarified_request=description,
					extracted_requirements=[description],
				)
			return ClarificationResult(
				should_proceed=False,
				clarified_request=description,
				next_question=GENERIC_QUESTION,
				extracted_requirements=[description],
			)

		return self._from_reply(result.value, description)

	async def continue_with_answer(
		self,
		original_request: str,
		question: str,
		answer: str,
		history: list[dict[str, str]],
	) -> ClarificationResult:
		"""Fold an answer into the request; proceed with what we have on failure."""
		prompt = CONTINUATION_PROMPT.format(
			request=original_request,
			question=question,
			answer=answer,
			history=json.dumps(history),
		)
		result = await ask_json(self.oracle, prompt, CLARIFICATION_SCHEMA, timeout=self.timeout)

		if not result.ok:
			return ClarificationResult(
				should_proceed=True,
				clarified_request=f"{original_request} - {answer}",
				extracted_requirements=[original_request, answer],
			)

		return self._from_reply(result.value, f"{original_request} - {answer}")

	def _from_reply(self, data: dict, default_request: str) -> ClarificationResult:
		question = data.get("nextQuestion") or None
		# Nothing to ask means nothing to wait for
		should_proceed = bool(data.get("shouldProceed")) or question is None
		return ClarificationResult(
			should_proceed=should_proceed,
			clarified_request=data.get("clarifiedRequest") or default_request,
			next_question=None if should_proceed else question,
			extracted_requirements=data.get("extractedRequirements") or [],
		)

	async def begin(self, ctx: ConversationContext, intent: Intent) -> ClarificationResult:
		"""
		Start clarification for a build intent.

		If a question is needed the context moves to NEEDS_INFO and holds
		the pending intent until the user answers.
		"""
		result = await self.analyze(intent.parameters.description, intent.estimated_complexity)
		if result.state == ClarificationState.NEEDS_INFO:
			ctx.start_gathering(intent, result.next_question, result.clarified_request)
			logger.info(f"[{ctx.user_id}] Asking: {result.next_question}")
		return result

	async def answer(self, ctx: ConversationContext, answer: str) -> tuple[Intent, ClarificationResult]:
		"""
		Treat a raw utterance as the answer to the outstanding question.

		Returns the pending intent with the updated result. On READY the
		context is cleared; on NEEDS_INFO the single outstanding question
		is replaced, never added to.
		"""
		if not ctx.gathering_in_progress or ctx.pending_intent is None:
			raise ValueError(f"No clarification in progress for {ctx.user_id}")

		intent = ctx.pending_intent
		question = ctx.pending_question or ""
		request = ctx.clarified_request or intent.parameters.description
		ctx.qa_history.append({"question": question, "answer": answer})

		result = await self.continue_with_answer(request, question, answer, ctx.qa_history)

		if result.state == ClarificationState.NEEDS_INFO and len(ctx.qa_history) >= self.max_questions:
			logger.info(f"[{ctx.user_id}] Question limit reached, proceeding")
			result = ClarificationResult(
				should_proceed=True,
				clarified_request=result.clarified_request,
				extracted_requirements=result.extracted_requirements,
			)

		if result.state == ClarificationState.READY:
			ctx.finish_gathering()
		else:
			ctx.start_gathering(intent, result.next_question, result.clarified_request)
		return intent, result
