"""
Delegation Resolver - Hands requests to registered specialist responders.

Responsibilities:
- Specialist registry (register, remove, online/offline)
- Deciding whether a request belongs to a specialist
- Forwarding delegated requests to the specialist's channel
- Rendering registry status for chat and the CLI
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import NoActiveSpecialist, ValidationError
from .models import SpecialistRegistration
from .oracle import ReasoningOracle, ask_json
from .schemas import DELEGATION_SCHEMA
from .stores import SpecialistStore
from .transport import MessagingTransport

logger = logging.getLogger(__name__)

NO_SUITABLE_SPECIALIST = "no suitable specialist"

DELEGATION_INSTRUCTIONS = """You are the Commander's delegation system. Decide whether a request should go to a specialist.

AVAILABLE SPECIALISTS:
{specialists}

RULES:
- Delegate only if the request clearly matches a specialist's specialty
- Keep general conversation and work management with the Commander
- The Commander handles: work management, feedback, general conversation, coordination

Return JSON:
{{
  "delegate": true/false,
  "specialistName": "name" or null,
  "reason": "why delegate or not",
  "confidence": 0.0-1.0
}}"""

DELEGATION_PROMPT = """Should this request be delegated to a specialist?

User request: "{utterance}"
"""

# Purpose keywords that add a specialty on top of the declared capabilities
PURPOSE_SPECIALTIES = [
	(("ui", "design"), "UI/Design"),
	(("deploy",), "Deployment"),
	(("monitor", "performance"), "Monitoring"),
	(("quality", "testing"), "Quality Assurance"),
	(("security",), "Security"),
]


def derive_specialties(purpose: str, capabilities: list[str]) -> list[str]:
	"""Capabilities plus specialties implied by the purpose, deduplicated in order."""
	specialties = list(capabilities)
	lowered = purpose.lower()
	for keywords, specialty in PURPOSE_SPECIALTIES:
		if any(k in lowered for k in keywords):
			specialties.append(specialty)
	return list(dict.fromkeys(specialties))


@dataclass
class DelegationDecision:
	"""Result of a delegation check."""
	delegate: bool
	specialist_name: Optional[str] = None
	reason: str = ""
	confidence: float = 0.0


class DelegationResolver:
	"""
	Owns the specialist registry and decides where requests go.

	Usage:
		resolver = DelegationResolver(oracle, transport, store)
		await resolver.load()
		decision = await resolver.should_delegate("design a logo", user_id)
		if decision.delegate:
			reply = await resolver.delegate(decision, "design a logo", user_id)
	"""

	def __init__(
		self,
		oracle: ReasoningOracle,
		transport: Optional[MessagingTransport] = None,
		store: Optional[SpecialistStore] = None,
		timeout: Optional[float] = None,
		default_channel: Optional[str] = None,
	):
		self.oracle = oracle
		# Agent channel used when a specialist registers without its own
		self.default_channel = default_channel or None
		self.transport = transport
		self.store = store
		self.timeout = timeout
		self._specialists: dict[str, SpecialistRegistration] = {}
		self._lock = asyncio.Lock()
		self._tasks: set[asyncio.Task] = set()

	async def load(self) -> int:
		if not self.store:
			return 0
		async with self._lock:
			for spec in await self.store.load():
				self._specialists[spec.name.lower()] = spec
		logger.info(f"Loaded {len(self._specialists)} specialists")
		return len(self._specialists)

	# ==================== Registry ====================

	def get(self, name: str) -> Optional[SpecialistRegistration]:
		spec = self._specialists.get(name.lower())
		return spec.model_copy(deep=True) if spec else None

	def list_specialists(self) -> list[SpecialistRegistration]:
		return [self._specialists[k].model_copy(deep=True) for k in sorted(self._specialists)]

	def __len__(self) -> int:
		return len(self._specialists)

	async def register(
		self,
		name: str,
		purpose: str,
		capabilities: list[str],
		channel_id: Optional[str] = None,
	) -> SpecialistRegistration:
		"""Add or replace a specialist. Names are case-insensitive."""
		if not name.strip():
			raise ValidationError("Specialist name can't be empty")
		channel_id = channel_id or self.default_channel
		if not channel_id:
			raise ValidationError(f"Specialist {name} needs a channel")

		spec = SpecialistRegistration(
			name=name,
			purpose=purpose,
			capabilities=capabilities,
			specialties=derive_specialties(purpose, capabilities),
			channel_id=channel_id,
		)
		async with self._lock:
			self._specialists[name.lower()] = spec
			await self._save()
		logger.info(f"Registered specialist {name}: {', '.join(spec.specialties) or 'no specialties'}")
		return spec.model_copy(deep=True)

	async def remove(self, name: str) -> bool:
		async with self._lock:
			removed = self._specialists.pop(name.lower(), None)
			if removed:
				await self._save()
		if removed:
			logger.info(f"Removed specialist {removed.name}")
		return removed is not None

	async def set_online(self, name: str, online: bool) -> bool:
		async with self._lock:
			spec = self._specialists.get(name.lower())
			if spec is None:
				return False
			spec.is_online = online
			spec.last_seen = datetime.now()
			await self._save()
		logger.info(f"Specialist {spec.name} is {'online' if online else 'offline'}")
		return True

	async def _save(self) -> None:
		if not self.store:
			return
		try:
			await self.store.save(list(self._specialists.values()))
		except Exception as e:
			logger.error(f"Failed to persist specialists: {e}")

	# ==================== Decisions ====================

	async def should_delegate(self, utterance: str, user_id: str) -> DelegationDecision:
		"""
		Ask the oracle whether a specialist should take the request.

		An empty registry short-circuits without an oracle call. The
		oracle's pick is only honoured if that specialist exists and is
		online.
		"""
		if not self._specialists:
			return DelegationDecision(delegate=False, reason=NO_SUITABLE_SPECIALIST)

		roster = "\n".join(
			f"- {s.name}: {s.purpose} (Specialties: {', '.join(s.specialties)})"
			f"{'' if s.is_online else ' [offline]'}"
			for s in self.list_specialists()
		)
		result = await ask_json(
			self.oracle,
			DELEGATION_PROMPT.format(utterance=utterance),
			DELEGATION_SCHEMA,
			instructions=DELEGATION_INSTRUCTIONS.format(specialists=roster),
			timeout=self.timeout,
		)
		if not result.ok:
			return DelegationDecision(delegate=False, reason="Analysis failed - keeping it local")

		data = result.value
		reason = data.get("reason") or ""
		confidence = float(data.get("confidence") or 0.0)
		name = data.get("specialistName")
		if data.get("delegate") and name:
			spec = self._specialists.get(name.lower())
			if spec and spec.is_online:
				logger.info(f"[{user_id}] Delegating to {spec.name}: {reason}")
				return DelegationDecision(
					delegate=True,
					specialist_name=spec.name,
					reason=reason,
					confidence=confidence,
				)
			logger.info(f"[{user_id}] Oracle picked unavailable specialist {name}")

		return DelegationDecision(
			delegate=False,
			reason=reason or NO_SUITABLE_SPECIALIST,
			confidence=confidence,
		)

	async def delegate(self, decision: DelegationDecision, utterance: str, user_id: str) -> str:
		"""
		Forward a request to the chosen specialist.

		The send happens in the background; the acknowledgement is returned
		immediately.

		Raises:
			NoActiveSpecialist: the specialist is unknown or offline
		"""
		name = decision.specialist_name or ""
		async with self._lock:
			spec = self._specialists.get(name.lower())
			if spec is None or not spec.is_online:
				raise NoActiveSpecialist(f"{name or 'Specialist'} is not available")
			spec.last_seen = datetime.now()
			await self._save()

		message = (
			"🤖 Delegated from Commander\n"
			f"User: {user_id}\n"
			f"Request: {utterance}"
		)
		if self.transport:
			task = asyncio.create_task(self._forward(spec.name, spec.channel_id, message))
			self._tasks.add(task)
			task.add_done_callback(self._tasks.discard)

		specialty = spec.specialties[0] if spec.specialties else "specialized"
		return f"Delegated to {spec.name} - they'll handle your {specialty} request."

	async def _forward(self, name: str, channel_id: str, message: str) -> None:
		try:
			await self.transport.send_message(channel_id, message)
			logger.info(f"Forwarded request to {name}")
		except Exception as e:
			logger.error(f"Failed to reach {name}: {e}")

	async def drain(self) -> None:
		"""Wait for outstanding forwards."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	# ==================== Status ====================

	def get_status(self) -> str:
		"""Online and offline specialists, sorted by name."""
		if not self._specialists:
			return "No specialists registered."

		specs = self.list_specialists()
		online = [s for s in specs if s.is_online]
		offline = [s for s in specs if not s.is_online]

		lines = [f"**Specialist Status** ({len(online)} online, {len(offline)} offline)", ""]
		if online:
			lines.append("**Online:**")
			for s in online:
				lines.append(f"🟢 {s.name} - {s.purpose}")
				if s.specialties:
					lines.append(f"   Specialties: {', '.join(s.specialties)}")
			lines.append("")
		if offline:
			lines.append("**Offline:**")
			for s in offline:
				lines.append(f"🔴 {s.name} - last seen {s.last_seen.strftime('%Y-%m-%d')}")
		return "\n".join(lines).rstrip()
