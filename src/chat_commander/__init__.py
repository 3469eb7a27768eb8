"""Chat Commander - Conversational orchestration of work, specialists, and feedback."""

from .commander import Commander
from .config import Config, get_config, load_config

__all__ = ["Commander", "Config", "get_config", "load_config"]
