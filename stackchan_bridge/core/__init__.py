"""Core primitives for stackchan-bridge."""

from .correlation import CommandTimeoutError, CorrelationTable, PendingRequest
from .protocols import BusPublisher, ChatSurface, LanguageModel, MessageHandler
from .state_cache import StateCache

__all__ = [
    "BusPublisher",
    "ChatSurface",
    "CommandTimeoutError",
    "CorrelationTable",
    "LanguageModel",
    "MessageHandler",
    "PendingRequest",
    "StateCache",
]
