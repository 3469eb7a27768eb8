"""
Messaging Transport - Channels, threads, reactions, and message delivery.

The commander only depends on the MessagingTransport protocol. The
Telegram implementation maps:
- channels to chats
- work item threads to forum topics
- feedback reactions to message reaction updates

Message and thread ids are strings of the form "<chat_id>:<id>" so they
stay unique across chats.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from telegram import ReactionTypeEmoji, Update
from telegram.error import TelegramError
from telegram.ext import (
	Application,
	CommandHandler,
	ContextTypes,
	MessageHandler,
	MessageReactionHandler,
	filters,
)

from .errors import TransportFailure

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


@dataclass
class IncomingMessage:
	"""A user-authored message delivered by the transport."""
	text: str
	user_id: str
	message_id: str
	channel_id: str


@dataclass
class IncomingReaction:
	"""A reaction added to a message."""
	message_id: str
	emoji: str
	user_id: str
	channel_id: str
	on_bot_message: bool


MessageCallback = Callable[[IncomingMessage], Awaitable[None]]
ReactionCallback = Callable[[IncomingReaction], Awaitable[None]]


class MessagingTransport(Protocol):
	"""What the commander needs from a chat platform."""

	async def send_message(self, channel: str, text: str, reply_to: Optional[str] = None) -> str:
		...

	async def create_thread(self, parent_message: str, title: str) -> str:
		...

	async def post_to_thread(self, thread_id: str, text: str) -> None:
		...

	def on_reaction(self, handler: ReactionCallback) -> None:
		...

	def on_message_create(self, handler: MessageCallback) -> None:
		...


def _split_id(composite: str) -> tuple[int, int]:
	chat, _, local = composite.rpartition(":")
	if not chat:
		raise TransportFailure(f"Malformed id: {composite}")
	return int(chat), int(local)


def _truncate(text: str) -> str:
	if len(text) > MAX_MESSAGE_LENGTH:
		return text[:MAX_MESSAGE_LENGTH] + "\n\n... (truncated)"
	return text


class TelegramTransport:
	"""
	Telegram implementation of MessagingTransport.

	Commands:
		/start - Show the chat id and a short introduction
		/help - Show what the commander understands

	Messages:
		Any non-command text message goes to the registered message handler.
	"""

	def __init__(self, token: str, user_channel: Optional[str] = None, sent_history: int = 500):
		self.token = token
		# When set, only this chat is listened to
		self.user_channel = user_channel or None
		self.app: Optional[Application] = None
		self._message_handler: Optional[MessageCallback] = None
		self._reaction_handler: Optional[ReactionCallback] = None
		# Ids of messages this bot authored, for reaction filtering
		self._sent: deque[str] = deque(maxlen=sent_history)

	# ==================== Lifecycle ====================

	async def start(self):
		"""Initialize the application and start polling."""
		self.app = Application.builder().token(self.token).build()

		self.app.add_handler(CommandHandler("start", self._cmd_start))
		self.app.add_handler(CommandHandler("help", self._cmd_help))
		self.app.add_handler(
			MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
		)
		self.app.add_handler(MessageReactionHandler(self._handle_reaction))

		await self.app.initialize()
		await self.app.start()
		await self.app.updater.start_polling(
			drop_pending_updates=True,
			allowed_updates=Update.ALL_TYPES,
		)
		logger.info("Telegram transport started")

	async def stop(self):
		if self.app:
			if self.app.updater and self.app.updater.running:
				await self.app.updater.stop()
			await self.app.stop()
			await self.app.shutdown()
		logger.info("Telegram transport stopped")

	# ==================== Registration ====================

	def on_message_create(self, handler: MessageCallback) -> None:
		self._message_handler = handler

	def on_reaction(self, handler: ReactionCallback) -> None:
		self._reaction_handler = handler

	def _accepts(self, chat_id: int | str) -> bool:
		return self.user_channel is None or str(chat_id) == self.user_channel

	# ==================== Outbound ====================

	def _bot(self):
		if not self.app:
			raise TransportFailure("Transport not started")
		return self.app.bot

	async def send_message(self, channel: str, text: str, reply_to: Optional[str] = None) -> str:
		"""Send text to a chat. Returns the composite message id."""
		kwargs = {}
		if reply_to:
			_, reply_local = _split_id(reply_to)
			kwargs["reply_to_message_id"] = reply_local
		try:
			message = await self._bot().send_message(
				chat_id=int(channel),
				text=_truncate(text),
				**kwargs,
			)
		except (TelegramError, ValueError) as e:
			raise TransportFailure(f"send_message to {channel} failed: {e}") from e

		message_id = f"{message.chat_id}:{message.message_id}"
		self._sent.append(message_id)
		return message_id

	async def create_thread(self, parent_message: str, title: str) -> str:
		"""Open a forum topic in the parent message's chat."""
		chat_id, _ = _split_id(parent_message)
		try:
			topic = await self._bot().create_forum_topic(chat_id=chat_id, name=title[:128])
		except TelegramError as e:
			raise TransportFailure(f"create_thread in {chat_id} failed: {e}") from e
		return f"{chat_id}:{topic.message_thread_id}"

	async def post_to_thread(self, thread_id: str, text: str) -> None:
		chat_id, topic_id = _split_id(thread_id)
		try:
			message = await self._bot().send_message(
				chat_id=chat_id,
				message_thread_id=topic_id,
				text=_truncate(text),
			)
		except TelegramError as e:
			raise TransportFailure(f"post_to_thread {thread_id} failed: {e}") from e
		self._sent.append(f"{message.chat_id}:{message.message_id}")

	# ==================== Inbound ====================

	async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /start - Show chat id."""
		if update.effective_chat and update.message:
			await update.message.reply_text(
				"Commander online.\n\n"
				f"Chat ID: {update.effective_chat.id}\n\n"
				"Describe what you want built, ask a question, or manage work "
				"(\"pause that\", \"status\"). React with 👍 / 👎 / 🔄 to give feedback."
			)

	async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /help - Show usage."""
		if update.message:
			await update.message.reply_text(
				"Build: \"build a contact form\"\n"
				"Modify: \"make that button bigger\"\n"
				"Manage: \"pause that\", \"resume\", \"cancel work_...\", \"status\"\n"
				"Specialists: \"bot status\", \"remove bot <name>\"\n"
				"Feedback: react 👍 / 👎, or 🔄 then reply with what I should have said"
			)

	async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		message = update.message
		if not message or not message.text or not message.from_user:
			return
		if message.from_user.is_bot or not self._message_handler:
			return
		if not self._accepts(message.chat_id):
			logger.debug(f"Ignoring message from chat {message.chat_id}")
			return

		incoming = IncomingMessage(
			text=message.text,
			user_id=str(message.from_user.id),
			message_id=f"{message.chat_id}:{message.message_id}",
			channel_id=str(message.chat_id),
		)
		await self._message_handler(incoming)

	async def _handle_reaction(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		reaction = update.message_reaction
		if not reaction or not reaction.user or reaction.user.is_bot or not self._reaction_handler:
			return
		if not self._accepts(reaction.chat.id):
			return

		old = {r.emoji for r in reaction.old_reaction if isinstance(r, ReactionTypeEmoji)}
		message_id = f"{reaction.chat.id}:{reaction.message_id}"
		for r in reaction.new_reaction:
			if not isinstance(r, ReactionTypeEmoji) or r.emoji in old:
				continue
			await self._reaction_handler(IncomingReaction(
				message_id=message_id,
				emoji=r.emoji,
				user_id=str(reaction.user.id),
				channel_id=str(reaction.chat.id),
				on_bot_message=message_id in self._sent,
			))

	async def run_forever(self):
		"""Start and block until cancelled."""
		await self.start()
		try:
			while True:
				await asyncio.sleep(1)
		finally:
			await self.stop()
