"""
Adapter registry — provider name -> ProtocolAdapter.

Add a new provider? Subclass ProtocolAdapter and register_adapter() it.
No branching on provider names anywhere else.
"""

from __future__ import annotations

from conduit.llm.errors import UnknownProviderError
from conduit.providers.anthropic import AnthropicMessagesAdapter
from conduit.providers.base import ProtocolAdapter
from conduit.providers.chat_completions import GrokAdapter, OpenRouterAdapter
from conduit.providers.gemini import GeminiAdapter
from conduit.providers.openai import OpenAIResponsesAdapter

ADAPTERS: dict[str, ProtocolAdapter] = {
    adapter.name: adapter
    for adapter in (
        OpenAIResponsesAdapter(),
        AnthropicMessagesAdapter(),
        GeminiAdapter(),
        GrokAdapter(),
        OpenRouterAdapter(),
    )
}


def get_adapter(provider: str) -> ProtocolAdapter:
    adapter = ADAPTERS.get(provider.lower())
    if adapter is None:
        raise UnknownProviderError(
            f"Unknown provider: {provider} (available: {', '.join(sorted(ADAPTERS))})"
        )
    return adapter


def register_adapter(adapter: ProtocolAdapter) -> None:
    """Register (or replace) the adapter for adapter.name."""
    if not adapter.name:
        raise ValueError("Adapter must declare a name")
    ADAPTERS[adapter.name.lower()] = adapter


def available_providers() -> list[str]:
    return sorted(ADAPTERS)
