"""Generative client, response decoding and conversations."""

from .client import (
    ConversationTurn,
    GenerativeClient,
    LLMSettings,
    OllamaGenerativeClient,
    get_llm_settings,
)
from .conversation import Conversation
from .parsing import decode, extract_json

__all__ = [
    "Conversation",
    "ConversationTurn",
    "GenerativeClient",
    "LLMSettings",
    "OllamaGenerativeClient",
    "decode",
    "extract_json",
    "get_llm_settings",
]
