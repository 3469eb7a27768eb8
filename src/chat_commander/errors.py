"""Error taxonomy for the commander pipeline."""


class CommanderError(Exception):
	"""Base exception for commander errors."""
	pass


class OracleUnavailable(CommanderError):
	"""Raised when the reasoning oracle times out or cannot be reached."""
	pass


class OracleMalformedResponse(CommanderError):
	"""Raised when an oracle reply does not carry the expected JSON."""
	pass


class TargetNotFound(CommanderError):
	"""Raised when a command refers to a work item that can't be resolved."""
	pass


class NoActiveSpecialist(CommanderError):
	"""Raised when a delegation names a missing or offline specialist."""
	pass


class TransportFailure(CommanderError):
	"""Raised when the messaging transport fails to deliver."""
	pass


class ValidationError(CommanderError):
	"""Raised when an operation is rejected for invalid input or state."""
	pass


class InvalidTransition(ValidationError):
	"""Raised when a work item status change is not in the transition table."""

	def __init__(self, item_id: str, current: str, requested: str):
		self.item_id = item_id
		self.current = current
		self.requested = requested
		super().__init__(f"{item_id} is {current} and can't move to {requested}")
