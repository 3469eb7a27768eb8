"""
Commander - Single entry point for every inbound message and reaction.

Routing order for a message:
1. Track it for feedback correlation
2. A pending suggestion reply is consumed and acknowledged
3. Admin commands ("bot status", "remove bot X", "show feedback")
4. Delegation to a specialist
5. Clarification answer, or classify and dispatch by intent category

Passive feedback detection runs alongside steps 3-5 and never changes
the reply. Every failure becomes a plain-language reply.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from .clarifier import ClarificationResult, ClarificationState, RequirementClarifier
from .classifier import IntentClassifier
from .config import Config, get_config
from .context import ContextStore
from .delegation import DelegationResolver
from .errors import CommanderError, NoActiveSpecialist, OracleUnavailable, TargetNotFound, ValidationError
from .feedback import SUGGESTION_PROMPT, CorrelationCache, FeedbackCorrelator
from .models import ConversationContext, Intent, IntentCategory, WorkItem
from .oracle import ClaudeCLIOracle, ReasoningOracle
from .registry import WorkItemRegistry
from .stores import LearningStore, SpecialistStore, WorkItemStore
from .transport import IncomingMessage, IncomingReaction, MessagingTransport

logger = logging.getLogger(__name__)

WorkExecutor = Callable[[WorkItem, WorkItemRegistry], Awaitable[None]]

TARGET_NOT_FOUND_REPLY = "Which work item do you mean? I don't see any recent work to apply that to."
SYSTEM_ERROR_REPLY = "System error processing request. Please try again or rephrase."
UNCLEAR_REPLY = "Not sure how to handle that request. Could you rephrase it?"
SUGGESTION_ACK = "✓ Got it - I'll use that next time."

CONVERSATION_INSTRUCTIONS = """You are Commander, the coordinator of an AI development team.
Reply in one or two short sentences. Be direct and professional; no filler.
{learned}"""

QUESTION_INSTRUCTIONS = """You are Commander, the coordinator of an AI development team.
Answer development questions concisely and accurately. Keep it under 150 words."""

ANALYSIS_REPLIES = {
	"analyze-health": "🔍 Project Health Analysis - {description}",
	"analyze-performance": "🔍 Performance Analysis - {description}",
	"analyze-code": "🔍 Code Analysis - {description}",
}


def work_item_title(description: str) -> str:
	if len(description) > 50:
		return description[:47] + "..."
	return description


class Commander:
	"""
	Orchestration façade over the classifier, clarifier, registry,
	delegation resolver, and feedback correlator.

	Usage:
		commander = await Commander.from_config(config)
		commander.attach(transport)
		reply = await commander.process_request("build a contact form", user_id, message_id)
	"""

	def __init__(
		self,
		oracle: ReasoningOracle,
		config: Optional[Config] = None,
		transport: Optional[MessagingTransport] = None,
		specialist_store: Optional[SpecialistStore] = None,
		learning_store: Optional[LearningStore] = None,
		work_item_store: Optional[WorkItemStore] = None,
		work_executor: Optional[WorkExecutor] = None,
	):
		self.config = config or get_config()
		self.oracle = oracle
		self.transport = transport
		self.work_executor = work_executor
		self._stores = [s for s in (specialist_store, learning_store, work_item_store) if s]
		timeout = self.config.oracle_timeout

		self.contexts = ContextStore(ttl=timedelta(hours=self.config.context_ttl_hours))
		self.classifier = IntentClassifier.with_fallback(
			oracle,
			timeout=timeout,
			confidence_floor=self.config.classifier_confidence_floor,
		)
		self.clarifier = RequirementClarifier(
			oracle,
			timeout=timeout,
			max_questions=self.config.max_clarifying_questions,
		)
		self.registry = WorkItemRegistry(transport=transport, contexts=self.contexts, store=work_item_store)
		self.delegation = DelegationResolver(
			oracle,
			transport=transport,
			store=specialist_store,
			timeout=timeout,
			default_channel=self.config.agent_channel_id,
		)
		self.feedback = FeedbackCorrelator(
			oracle,
			store=learning_store,
			cache=CorrelationCache(self.config.correlation_capacity),
			timeout=timeout,
		)
		self._tasks: set[asyncio.Task] = set()

	@classmethod
	async def from_config(
		cls,
		config: Optional[Config] = None,
		oracle: Optional[ReasoningOracle] = None,
		transport: Optional[MessagingTransport] = None,
	) -> "Commander":
		"""Build a commander with SQLite stores under the configured data dir and load them."""
		config = config or get_config()
		db_path = str(config.db_path)
		specialists, learning, work_items = SpecialistStore(db_path), LearningStore(db_path), WorkItemStore(db_path)
		for store in (specialists, learning, work_items):
			await store.init()

		commander = cls(
			oracle or ClaudeCLIOracle(model=config.oracle_model, timeout=config.oracle_timeout),
			config=config,
			transport=transport,
			specialist_store=specialists,
			learning_store=learning,
			work_item_store=work_items,
		)
		await commander.start()
		return commander

	async def start(self) -> None:
		"""Restore persisted state."""
		await self.registry.load()
		await self.delegation.load()

	async def drain(self) -> None:
		"""Wait for background work: executors, thread mirroring, forwards."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)
		await self.registry.drain()
		await self.delegation.drain()

	async def close(self) -> None:
		await self.drain()
		for store in self._stores:
			await store.close()

	# ==================== Transport wiring ====================

	def attach(self, transport: MessagingTransport) -> None:
		"""Become the transport's only message and reaction handler."""
		self.transport = transport
		self.registry.transport = transport
		self.delegation.transport = transport
		transport.on_message_create(self._on_message)
		transport.on_reaction(self._on_reaction)

	async def _on_message(self, message: IncomingMessage) -> None:
		response = await self.process_request(message.text, message.user_id, message.message_id)
		try:
			reply_id = await self.transport.send_message(message.channel_id, response, reply_to=message.message_id)
		except CommanderError as e:
			logger.error(f"Failed to deliver reply to {message.user_id}: {e}")
			return
		self.feedback.cache.bind_reply(message.message_id, reply_id)

	async def _on_reaction(self, reaction: IncomingReaction) -> None:
		prompt = await self.handle_reaction(
			reaction.message_id,
			reaction.emoji,
			reaction.user_id,
			on_bot_message=reaction.on_bot_message,
		)
		if not prompt:
			return
		try:
			await self.transport.send_message(reaction.channel_id, prompt, reply_to=reaction.message_id)
		except CommanderError as e:
			logger.error(f"Failed to ask {reaction.user_id} for a suggestion: {e}")

	# ==================== Entry points ====================

	async def process_request(self, utterance: str, user_id: str, message_id: str) -> str:
		"""Route one user message and return the reply text. Never raises."""
		self.contexts.evict_expired()
		self.feedback.cache.track(message_id, user_id, utterance)

		try:
			if self.feedback.awaiting_suggestion(user_id):
				record = await self.feedback.capture_suggestion(user_id, utterance)
				response = SUGGESTION_ACK if record else SUGGESTION_PROMPT
			elif self.config.passive_feedback:
				response, _ = await asyncio.gather(
					self._route(utterance, user_id, message_id),
					self._check_passive(utterance, user_id, message_id),
				)
			else:
				response = await self._route(utterance, user_id, message_id)
		except TargetNotFound as e:
			logger.info(f"[{user_id}] {e}")
			response = TARGET_NOT_FOUND_REPLY
		except ValidationError as e:
			logger.info(f"[{user_id}] Rejected: {e}")
			response = f"× {e}"
		except Exception as e:
			logger.exception(f"[{user_id}] Error processing request: {e}")
			response = SYSTEM_ERROR_REPLY

		self.feedback.cache.update(message_id, response)
		return response

	async def handle_reaction(
		self,
		message_id: str,
		emoji: str,
		user_id: str,
		on_bot_message: bool = True,
	) -> Optional[str]:
		"""Record reaction feedback. Returns a prompt to send back, if any."""
		if not on_bot_message:
			return None
		try:
			return await self.feedback.handle_reaction(message_id, emoji, user_id)
		except Exception as e:
			logger.exception(f"[{user_id}] Error handling reaction {emoji}: {e}")
			return None

	async def _check_passive(self, utterance: str, user_id: str, message_id: str) -> None:
		try:
			record = await self.feedback.check_passive(utterance, user_id, message_id)
		except Exception as e:
			logger.error(f"[{user_id}] Passive feedback check failed: {e}")
			return
		if record:
			logger.info(f"[{user_id}] Passive {record.feedback_type.value} feedback on {record.message_id}")

	# ==================== Routing ====================

	async def _route(self, utterance: str, user_id: str, message_id: str) -> str:
		admin = await self._admin_command(utterance)
		if admin is not None:
			return admin

		peeked = self.contexts.peek(user_id)
		answering = peeked is not None and peeked.gathering_in_progress

		if not answering:
			decision = await self.delegation.should_delegate(utterance, user_id)
			if decision.delegate:
				try:
					return await self.delegation.delegate(decision, utterance, user_id)
				except NoActiveSpecialist as e:
					logger.info(f"[{user_id}] {e}; handling locally")
			else:
				logger.debug(f"[{user_id}] Handling locally: {decision.reason}")

		async with self.contexts.session(user_id) as ctx:
			ctx.add_turn("user", utterance)
			if ctx.gathering_in_progress:
				response = await self._continue_clarification(ctx, utterance, message_id)
			else:
				intent = await self.classifier.classify(utterance, ctx)
				response = await self._dispatch(intent, ctx, message_id)
			ctx.add_turn("assistant", response)
		return response

	async def _admin_command(self, utterance: str) -> Optional[str]:
		text = utterance.lower().strip()

		if "bot status" in text or "available bots" in text or "specialist status" in text:
			return self.delegation.get_status()

		for prefix in ("remove bot ", "remove specialist "):
			if text.startswith(prefix):
				name = utterance.strip()[len(prefix):].strip()
				if not name:
					break
				if await self.delegation.remove(name):
					return f"✓ Removed {name} from the system."
				return f"× Specialist {name} not found."

		if "what have you learned" in text or "show feedback" in text:
			examples = await self.feedback.learning_examples()
			return examples or "No corrections logged yet."

		return None

	async def _dispatch(self, intent: Intent, ctx: ConversationContext, message_id: str) -> str:
		logger.info(f"[{ctx.user_id}] Routed to {intent.category.value}/{intent.subcategory}")

		if intent.category == IntentCategory.BUILD:
			return await self._handle_build(intent, ctx, message_id)
		if intent.category == IntentCategory.MODIFY:
			return await self._handle_modify(intent, ctx, message_id)
		if intent.category == IntentCategory.MANAGE:
			return await self._handle_manage(intent, ctx)
		if intent.category == IntentCategory.ANALYZE:
			template = ANALYSIS_REPLIES.get(intent.subcategory, "🔍 Analysis Request - {description}")
			return template.format(description=intent.parameters.description)
		if intent.category == IntentCategory.QUESTION:
			return await self._handle_question(intent)
		return await self._handle_conversation(intent)

	# ==================== Handlers ====================

	async def _handle_build(self, intent: Intent, ctx: ConversationContext, message_id: str) -> str:
		result = await self.clarifier.begin(ctx, intent)
		if result.state == ClarificationState.NEEDS_INFO:
			return result.next_question
		return await self._start_work(intent, ctx, result, message_id)

	async def _continue_clarification(self, ctx: ConversationContext, answer: str, message_id: str) -> str:
		intent, result = await self.clarifier.answer(ctx, answer)
		if result.state == ClarificationState.NEEDS_INFO:
			return result.next_question
		return await self._start_work(intent, ctx, result, message_id)

	async def _start_work(
		self,
		intent: Intent,
		ctx: ConversationContext,
		result: ClarificationResult,
		message_id: str,
	) -> str:
		description = intent.parameters.description
		item = await self.registry.create_work_item(
			title=work_item_title(description),
			description=result.clarified_request or description,
			original_request=description,
			user_id=ctx.user_id,
			message_id=message_id,
			assigned_agents=intent.required_agents,
			complexity=intent.estimated_complexity,
		)
		ctx.remember_work_item(item.id)
		self._execute(item)
		return f"▶ {item.id} started - {item.title}\n→ Priority: {item.priority.value} | Agents: {', '.join(item.assigned_agents)}"

	async def _handle_modify(self, intent: Intent, ctx: ConversationContext, message_id: str) -> str:
		target = intent.parameters.target
		parent = self.registry.find_target(target, ctx.user_id)
		if parent is None:
			raise TargetNotFound(f"Nothing to modify for {target or 'an implicit target'}")

		child = await self.registry.create_work_item(
			title=f"Modify: {parent.title}",
			description=intent.parameters.description,
			original_request=intent.parameters.description,
			user_id=ctx.user_id,
			message_id=message_id,
			assigned_agents=intent.required_agents,
			complexity=intent.estimated_complexity,
			parent_work_item=parent.id,
		)
		ctx.remember_work_item(child.id)
		self._execute(child)
		return f"◆ Modifying {parent.id} as {child.id}"

	async def _handle_manage(self, intent: Intent, ctx: ConversationContext) -> str:
		if intent.subcategory == "manage-deployment":
			return f"🚀 Deployment Management - {intent.parameters.description}"
		return await self.registry.handle_management_command(intent, ctx.user_id)

	async def _handle_question(self, intent: Intent) -> str:
		answer = await self._ask(intent.parameters.description, QUESTION_INSTRUCTIONS)
		if answer:
			return answer
		return f"Question: {intent.parameters.description} - I can help with development questions once my reasoning backend is reachable."

	async def _handle_conversation(self, intent: Intent) -> str:
		if intent.subcategory == "clarify":
			return UNCLEAR_REPLY
		learned = await self.feedback.learning_examples()
		answer = await self._ask(intent.parameters.description, CONVERSATION_INSTRUCTIONS.format(learned=learned))
		return answer or "Ready when you are."

	async def _ask(self, prompt: str, instructions: str) -> Optional[str]:
		"""Free-text oracle reply, or None when it can't be had."""
		try:
			text = await asyncio.wait_for(
				self.oracle.complete(prompt, instructions),
				timeout=self.config.oracle_timeout,
			)
		except (asyncio.TimeoutError, OracleUnavailable) as e:
			logger.warning(f"Free-text reply unavailable: {e}")
			return None
		except Exception as e:
			logger.warning(f"Free-text oracle call failed: {e}")
			return None
		return text.strip() or None

	# ==================== Work execution ====================

	def _execute(self, item: WorkItem) -> None:
		if not self.work_executor:
			return
		task = asyncio.create_task(self._run_executor(item))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _run_executor(self, item: WorkItem) -> None:
		try:
			await self.work_executor(item, self.registry)
		except ValidationError as e:
			# Typically the item was cancelled while the executor ran
			logger.info(f"Executor for {item.id} stopped: {e}")
		except Exception as e:
			logger.exception(f"Executor for {item.id} failed: {e}")
			try:
				await self.registry.fail(item.id, str(e))
			except ValidationError as inner:
				logger.info(f"Could not mark {item.id} failed: {inner}")
