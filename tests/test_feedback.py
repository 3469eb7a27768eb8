"""Tests for feedback correlation and learning."""

import pytest
import pytest_asyncio

from chat_commander.feedback import (
	SUGGESTION_PROMPT,
	CorrelationCache,
	FeedbackCorrelator,
	classify_category,
	classify_feedback,
	extract_suggestion,
)
from chat_commander.models import FeedbackCategory, FeedbackSource, FeedbackType
from chat_commander.stores import LearningStore

from .helpers import FakeOracle


@pytest_asyncio.fixture
async def learning_store(tmp_path):
	store = LearningStore(str(tmp_path / "commander.db"))
	await store.init()
	yield store
	await store.close()


def _cache_with_exchange(message_id: str = "chat:1", reply_id: str = "chat:2") -> CorrelationCache:
	cache = CorrelationCache()
	cache.track(message_id, "u1", "build X")
	cache.update(message_id, "done")
	cache.bind_reply(message_id, reply_id)
	return cache


class TestCorrelationCache:

	def test_capacity_evicts_oldest(self):
		cache = CorrelationCache(capacity=20)
		for n in range(21):
			cache.track(f"m{n}", "u1", f"msg {n}")
		assert len(cache) == 20
		assert cache.resolve("m0") is None
		assert cache.resolve("m1").input == "msg 1"
		assert cache.resolve("m20").input == "msg 20"

	def test_eviction_drops_reply_index(self):
		cache = CorrelationCache(capacity=2)
		cache.track("m0", "u1", "a")
		cache.bind_reply("m0", "r0")
		assert "r0" in cache
		cache.track("m1", "u1", "b")
		cache.track("m2", "u1", "c")
		assert "r0" not in cache
		assert cache.resolve("r0") is None

	def test_resolve_by_reply_id(self):
		cache = _cache_with_exchange()
		exchange = cache.resolve("chat:2")
		assert exchange.message_id == "chat:1"
		assert exchange.response == "done"

	def test_resolve_returns_copy(self):
		cache = _cache_with_exchange()
		cache.resolve("chat:1").response = "tampered"
		assert cache.resolve("chat:1").response == "done"

	def test_update_unknown(self):
		assert not CorrelationCache().update("nope", "x")
		assert not CorrelationCache().bind_reply("nope", "r")

	def test_latest_skips_unanswered_and_excluded(self):
		cache = CorrelationCache()
		cache.track("m1", "u1", "first")
		cache.update("m1", "reply one")
		cache.track("m2", "u2", "other user")
		cache.update("m2", "reply two")
		cache.track("m3", "u1", "pending")

		assert cache.latest("u1").message_id == "m1"
		assert cache.latest().message_id == "m2"
		assert cache.latest("u1", exclude="m1") is None

	def test_invalid_capacity(self):
		with pytest.raises(ValueError):
			CorrelationCache(capacity=0)


class TestFallbackHeuristics:

	def test_extract_suggestion(self):
		assert extract_suggestion("could just leave it at 'Morning. Ready to build.'") == "Morning. Ready to build."
		assert extract_suggestion("should have said: On it") == "On it"
		assert extract_suggestion("meh") is None

	def test_classify_feedback(self):
		assert classify_feedback("that was wrong") == FeedbackType.NEGATIVE
		assert classify_feedback("try being shorter") == FeedbackType.SUGGESTION
		assert classify_feedback("perfect") == FeedbackType.POSITIVE
		assert classify_feedback("hmm") == FeedbackType.NEGATIVE

	def test_classify_category(self):
		assert classify_category("build a form", "done") == FeedbackCategory.WORK
		assert classify_category("tell me a joke", "ok") == FeedbackCategory.WIT
		assert classify_category("hello", "your tone is off") == FeedbackCategory.PERSONALITY
		assert classify_category("hello", "hi") == FeedbackCategory.CASUAL


class TestReactions:

	@pytest.mark.asyncio
	async def test_thumbs_down_logs_negative(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		prompt = await correlator.handle_reaction("chat:2", "👎", "u1")

		assert prompt is None
		records = await learning_store.recent()
		assert len(records) == 1
		record = records[0]
		assert record.feedback_type == FeedbackType.NEGATIVE
		assert record.source == FeedbackSource.REACTION
		assert record.input == "build X"
		assert record.response == "done"
		assert record.category == FeedbackCategory.WORK
		assert not correlator.awaiting_suggestion("u1")

	@pytest.mark.asyncio
	async def test_positive_emoji(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		for emoji in ("👍", "✅", "💯"):
			await correlator.handle_reaction("chat:2", emoji, "u1")
		records = await learning_store.recent()
		assert [r.feedback_type for r in records] == [FeedbackType.POSITIVE] * 3

	@pytest.mark.asyncio
	async def test_unknown_message_or_emoji_ignored(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		assert await correlator.handle_reaction("chat:999", "👎", "u1") is None
		assert await correlator.handle_reaction("chat:2", "🎉", "u1") is None
		assert await learning_store.count() == 0

	@pytest.mark.asyncio
	async def test_suggestion_reaction_then_reply(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		prompt = await correlator.handle_reaction("chat:2", "🔄", "u1")
		assert prompt == SUGGESTION_PROMPT
		assert correlator.awaiting_suggestion("u1")
		assert await learning_store.count() == 0

		record = await correlator.capture_suggestion("u1", "  Done - here's the link.  ")
		assert record.feedback_type == FeedbackType.SUGGESTION
		assert record.source == FeedbackSource.REPLY
		assert record.suggestion == "Done - here's the link."
		assert record.message_id == "chat:1"
		assert not correlator.awaiting_suggestion("u1")

		# One-shot: a second message is not a suggestion
		assert await correlator.capture_suggestion("u1", "again") is None
		assert await learning_store.count() == 1

	@pytest.mark.asyncio
	async def test_blank_suggestion_keeps_prompt_open(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		await correlator.handle_reaction("chat:2", "🔄", "u1")

		assert await correlator.capture_suggestion("u1", "   \n\t") is None
		assert correlator.awaiting_suggestion("u1")
		assert await learning_store.count() == 0

		record = await correlator.capture_suggestion("u1", "Shorter, please.")
		assert record.suggestion == "Shorter, please."
		assert await learning_store.count() == 1

	@pytest.mark.asyncio
	async def test_pencil_variants_request_suggestion(self):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), cache=_cache_with_exchange())
		assert await correlator.handle_reaction("chat:2", "✏️", "u1") == SUGGESTION_PROMPT
		assert await correlator.handle_reaction("chat:2", "✏", "u2") == SUGGESTION_PROMPT


class TestPassive:

	@pytest.mark.asyncio
	async def test_oracle_detects_and_extracts(self, learning_store):
		oracle = FakeOracle({
			"isFeedback": {"isFeedback": True},
			"feedbackType": {"feedbackType": "suggestion", "suggestion": "On it"},
		})
		correlator = FeedbackCorrelator(oracle, learning_store, _cache_with_exchange())
		correlator.cache.track("chat:3", "u1", "just say 'On it' next time")

		record = await correlator.check_passive("just say 'On it' next time", "u1", "chat:3")
		assert record.source == FeedbackSource.PASSIVE
		assert record.feedback_type == FeedbackType.SUGGESTION
		assert record.suggestion == "On it"
		assert record.message_id == "chat:1"

	@pytest.mark.asyncio
	async def test_oracle_says_not_feedback(self, learning_store):
		oracle = FakeOracle({"isFeedback": {"isFeedback": False}})
		correlator = FeedbackCorrelator(oracle, learning_store, _cache_with_exchange())
		assert await correlator.check_passive("build something better instead", "u1", "chat:3") is None
		assert await learning_store.count() == 0

	@pytest.mark.asyncio
	async def test_regex_fallback(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		record = await correlator.check_passive("better would be: Shipped.", "u1", "chat:3")
		assert record.feedback_type == FeedbackType.SUGGESTION
		assert record.suggestion == "Shipped."

	@pytest.mark.asyncio
	async def test_fallback_ignores_ordinary_messages(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		assert await correlator.check_passive("build a login page", "u1", "chat:3") is None

	@pytest.mark.asyncio
	async def test_no_previous_exchange(self, learning_store):
		oracle = FakeOracle({"isFeedback": {"isFeedback": True}})
		correlator = FeedbackCorrelator(oracle, learning_store)
		assert await correlator.check_passive("that was wrong", "u1", "chat:1") is None
		assert oracle.calls == []


class TestLearningExamples:

	@pytest.mark.asyncio
	async def test_renders_corrections(self, learning_store):
		correlator = FeedbackCorrelator(FakeOracle.unavailable(), learning_store, _cache_with_exchange())
		assert await correlator.learning_examples() == ""

		await correlator.handle_reaction("chat:2", "👍", "u1")
		await correlator.handle_reaction("chat:2", "👎", "u1")
		await correlator.handle_reaction("chat:2", "🔄", "u1")
		await correlator.capture_suggestion("u1", "Done.")

		text = await correlator.learning_examples()
		assert text.startswith("LEARNED CORRECTIONS:")
		assert 'IMPROVE: Avoid patterns in "done"' in text
		assert 'AVOID: "done"\nUSE: "Done."' in text
		assert text.count("AVOID") + text.count("IMPROVE") == 2

	@pytest.mark.asyncio
	async def test_without_store(self):
		assert await FeedbackCorrelator(FakeOracle.unavailable()).learning_examples() == ""
