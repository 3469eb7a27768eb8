"""Tests for oracle response schemas and decoding."""

from chat_commander.schemas import (
	CLARIFICATION_SCHEMA,
	DELEGATION_SCHEMA,
	FEEDBACK_EXTRACTION_SCHEMA,
	INTENT_SCHEMA,
	DecodeResult,
	ResponseSchema,
)


class TestResponseSchema:
	"""Tests for ResponseSchema.decode."""

	def _schema(self) -> ResponseSchema:
		return ResponseSchema(
			name="test",
			description="test",
			json_schema={
				"type": "object",
				"required": ["name"],
				"properties": {
					"name": {"type": "string"},
					"count": {"type": "integer"},
					"note": {"type": ["string", "null"]},
				},
			},
		)

	def test_decode_plain_json(self):
		result = self._schema().decode('{"name": "hello"}')
		assert result.ok is True
		assert result.value == {"name": "hello"}
		assert result.error is None

	def test_decode_json_embedded_in_prose(self):
		"""The object is extracted from surrounding text."""
		text = 'Sure! Here is the result:\n```json\n{"name": "hello", "count": 2}\n```\nAnything else?'
		result = self._schema().decode(text)
		assert result.ok
		assert result.value["count"] == 2

	def test_decode_empty(self):
		result = self._schema().decode("")
		assert not result.ok
		assert "Empty" in result.error

	def test_decode_no_object(self):
		result = self._schema().decode("I could not decide.")
		assert not result.ok
		assert "No JSON" in result.error

	def test_decode_invalid_json(self):
		result = self._schema().decode("{name: hello}")
		assert not result.ok
		assert "Invalid JSON" in result.error

	def test_missing_required_key(self):
		result = self._schema().decode('{"count": 1}')
		assert not result.ok
		assert "name" in result.error

	def test_wrong_type(self):
		result = self._schema().decode('{"name": 42}')
		assert not result.ok
		assert "expected type" in result.error

	def test_bool_is_not_integer(self):
		result = self._schema().decode('{"name": "x", "count": true}')
		assert not result.ok

	def test_nullable_field(self):
		result = self._schema().decode('{"name": "x", "note": null}')
		assert result.ok


class TestDecodeResult:

	def test_success_and_failure(self):
		assert DecodeResult.success({"a": 1}) == DecodeResult(ok=True, value={"a": 1})
		failed = DecodeResult.failure("boom")
		assert not failed.ok
		assert failed.value is None
		assert failed.error == "boom"


class TestPredefinedSchemas:

	def test_intent_rejects_unknown_category(self):
		result = INTENT_SCHEMA.decode('{"category": "dance", "subcategory": "x"}')
		assert not result.ok

	def test_intent_accepts_full_reply(self):
		result = INTENT_SCHEMA.decode(
			'{"category": "build", "subcategory": "build-ui", "confidence": 0.8,'
			' "estimatedComplexity": "simple", "parameters": {"description": "a form"}}'
		)
		assert result.ok

	def test_clarification_requires_should_proceed(self):
		assert not CLARIFICATION_SCHEMA.decode('{"nextQuestion": "what?"}').ok
		assert CLARIFICATION_SCHEMA.decode('{"shouldProceed": false, "nextQuestion": "what?"}').ok

	def test_delegation_allows_null_name(self):
		result = DELEGATION_SCHEMA.decode('{"delegate": false, "specialistName": null, "reason": "general chat"}')
		assert result.ok

	def test_feedback_extraction_enum(self):
		assert FEEDBACK_EXTRACTION_SCHEMA.decode('{"feedbackType": "suggestion", "suggestion": "On it"}').ok
		assert not FEEDBACK_EXTRACTION_SCHEMA.decode('{"feedbackType": "meh"}').ok
