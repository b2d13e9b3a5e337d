"""Adapter modules for external integrations."""

from .llm import LanguageModelClient, LanguageModelError
from .mqtt import BusTransportError, MQTTClient

__all__ = [
    "BusTransportError",
    "LanguageModelClient",
    "LanguageModelError",
    "MQTTClient",
]
