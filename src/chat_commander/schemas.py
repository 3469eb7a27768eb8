"""
Structured output schemas for reasoning oracle responses.

Each oracle call site asks for a JSON object embedded in free text and
decodes it against one of the schemas below. Decoding never raises:
callers receive a DecodeResult and pick their own fallback on failure.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class DecodeResult:
	"""Tagged outcome of decoding one oracle reply."""

	ok: bool
	value: Optional[dict[str, Any]] = None
	error: Optional[str] = None

	@classmethod
	def success(cls, value: dict[str, Any]) -> "DecodeResult":
		return cls(ok=True, value=value)

	@classmethod
	def failure(cls, error: str) -> "DecodeResult":
		return cls(ok=False, error=error)


@dataclass
class ResponseSchema:
	"""A schema for structured output from the oracle."""

	name: str
	description: str
	json_schema: dict[str, Any] = field(default_factory=dict)

	def decode(self, response_str: str) -> DecodeResult:
		"""
		Extract the embedded JSON object and validate it against this schema.

		Returns:
			DecodeResult carrying either the parsed object or an error message
		"""
		if not response_str:
			return DecodeResult.failure("Empty response")

		match = _JSON_OBJECT.search(response_str)
		if not match:
			return DecodeResult.failure("No JSON object found in response")

		try:
			data = json.loads(match.group(0))
		except json.JSONDecodeError as e:
			return DecodeResult.failure(f"Invalid JSON: {e}")

		if not isinstance(data, dict):
			return DecodeResult.failure("Top-level JSON value is not an object")

		required = self.json_schema.get("required", [])
		properties = self.json_schema.get("properties", {})

		for key in required:
			if key not in data:
				return DecodeResult.failure(f"Missing required key: {key}")

		# Validate property types (best-effort)
		for key, prop_schema in properties.items():
			if key not in data:
				continue
			expected_type = prop_schema.get("type")
			if expected_type and not _check_type(data[key], expected_type):
				return DecodeResult.failure(
					f"Key '{key}' expected type '{expected_type}', got '{type(data[key]).__name__}'"
				)
			allowed = prop_schema.get("enum")
			if allowed and data[key] is not None and data[key] not in allowed:
				return DecodeResult.failure(f"Key '{key}' has unexpected value {data[key]!r}")

		return DecodeResult.success(data)


def _check_type(value: Any, expected: str | list[str]) -> bool:
	"""Check if a value matches the expected JSON schema type."""
	if isinstance(expected, list):
		return any(_check_type(value, e) for e in expected)
	if expected == "null":
		return value is None
	type_map = {
		"string": str,
		"number": (int, float),
		"integer": int,
		"boolean": bool,
		"array": list,
		"object": dict,
	}
	expected_type = type_map.get(expected)
	if expected_type is None:
		return True  # Unknown type, skip validation
	if expected in ("number", "integer") and isinstance(value, bool):
		return False
	return isinstance(value, expected_type)


# Predefined schemas

INTENT_SCHEMA = ResponseSchema(
	name="intent",
	description="Classification of a user utterance",
	json_schema={
		"type": "object",
		"required": ["category", "subcategory"],
		"properties": {
			"category": {
				"type": "string",
				"enum": ["build", "modify", "analyze", "manage", "question", "conversation"],
			},
			"subcategory": {"type": "string"},
			"specific": {"type": ["string", "null"]},
			"confidence": {"type": "number"},
			"reasoning": {"type": "string"},
			"requiredAgents": {"type": "array", "items": {"type": "string"}},
			"estimatedComplexity": {
				"type": "string",
				"enum": ["simple", "medium", "complex", "enterprise"],
			},
			"parameters": {"type": "object"},
		},
	},
)

CLARIFICATION_SCHEMA = ResponseSchema(
	name="clarification",
	description="Whether a build request is ready or needs one more question",
	json_schema={
		"type": "object",
		"required": ["shouldProceed"],
		"properties": {
			"shouldProceed": {"type": "boolean"},
			"nextQuestion": {"type": ["string", "null"]},
			"clarifiedRequest": {"type": ["string", "null"]},
			"extractedRequirements": {"type": "array", "items": {"type": "string"}},
		},
	},
)

DELEGATION_SCHEMA = ResponseSchema(
	name="delegation",
	description="Whether a request belongs to a specialist",
	json_schema={
		"type": "object",
		"required": ["delegate"],
		"properties": {
			"delegate": {"type": "boolean"},
			"specialistName": {"type": ["string", "null"]},
			"reason": {"type": ["string", "null"]},
			"confidence": {"type": "number"},
		},
	},
)

FEEDBACK_DETECTION_SCHEMA = ResponseSchema(
	name="feedback_detection",
	description="Whether a message is feedback on the previous response",
	json_schema={
		"type": "object",
		"required": ["isFeedback"],
		"properties": {
			"isFeedback": {"type": "boolean"},
		},
	},
)

FEEDBACK_EXTRACTION_SCHEMA = ResponseSchema(
	name="feedback_extraction",
	description="Structured feedback extracted from a user message",
	json_schema={
		"type": "object",
		"required": ["feedbackType"],
		"properties": {
			"feedbackType": {
				"type": "string",
				"enum": ["positive", "negative", "suggestion"],
			},
			"suggestion": {"type": ["string", "null"]},
		},
	},
)
