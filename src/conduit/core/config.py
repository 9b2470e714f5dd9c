"""
Conduit Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and a .env file if present).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials and defaults for one LLM provider."""

    name: str
    api_key: str = ""
    base_url: str = ""
    model: str = ""
    max_tokens: int = 1024

    @classmethod
    def from_env(
        cls, name: str, key_var: str, base_url: str, model: str
    ) -> ProviderConfig:
        prefix = f"CONDUIT_{name.upper()}"
        return cls(
            name=name,
            api_key=os.getenv(key_var, ""),
            base_url=os.getenv(f"{prefix}_BASE_URL", base_url).rstrip("/"),
            model=os.getenv(f"{prefix}_MODEL", model),
            max_tokens=max(1, _int(f"{prefix}_MAX_TOKENS", 1024)),
        )


@dataclass(frozen=True)
class StreamConfig:
    """Provider request/stream settings."""

    timeout: float = 60.0  # seconds, whole-stream deadline and per-read stall limit
    connect_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> StreamConfig:
        return cls(
            timeout=_float("CONDUIT_STREAM_TIMEOUT", 60.0),
            connect_timeout=_float("CONDUIT_STREAM_CONNECT_TIMEOUT", 10.0),
        )


@dataclass(frozen=True)
class ToolConfig:
    """Tool execution policy."""

    timeout: float = 30.0
    max_retries: int = 2
    backoff_base: float = 1.0  # seconds, doubles each retry

    @classmethod
    def from_env(cls) -> ToolConfig:
        return cls(
            timeout=_float("CONDUIT_TOOL_TIMEOUT", 30.0),
            max_retries=max(0, _int("CONDUIT_TOOL_MAX_RETRIES", 2)),
            backoff_base=max(0.0, _float("CONDUIT_TOOL_BACKOFF_BASE", 1.0)),
        )


@dataclass(frozen=True)
class ContinuationConfig:
    """Continuation store settings."""

    ttl: float = 3600.0

    @classmethod
    def from_env(cls) -> ContinuationConfig:
        return cls(ttl=_float("CONDUIT_CONTINUATION_TTL", 3600.0))


@dataclass(frozen=True)
class TurnConfig:
    """Agent turn settings."""

    default_provider: str = "openai"
    max_rounds: int = 10
    system_instruction: str = ""

    @classmethod
    def from_env(cls) -> TurnConfig:
        return cls(
            default_provider=os.getenv("CONDUIT_PROVIDER", "openai").lower(),
            max_rounds=max(1, _int("CONDUIT_MAX_ROUNDS", 10)),
            system_instruction=os.getenv("CONDUIT_SYSTEM_INSTRUCTION", ""),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Server settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    transcript_db: str = "conduit_transcripts.db"

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("CONDUIT_HOST", "0.0.0.0"),
            port=_int("CONDUIT_PORT", 8000),
            transcript_db=os.getenv("CONDUIT_TRANSCRIPT_DB", "conduit_transcripts.db"),
        )


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "openai": ProviderConfig.from_env(
            "openai", "OPENAI_API_KEY", "https://api.openai.com/v1", "gpt-4o"
        ),
        "anthropic": ProviderConfig.from_env(
            "anthropic",
            "ANTHROPIC_API_KEY",
            "https://api.anthropic.com/v1",
            "claude-3-5-sonnet-latest",
        ),
        "gemini": ProviderConfig.from_env(
            "gemini",
            "GEMINI_API_KEY",
            "https://generativelanguage.googleapis.com/v1beta",
            "gemini-2.0-flash",
        ),
        "grok": ProviderConfig.from_env(
            "grok", "XAI_API_KEY", "https://api.x.ai/v1", "grok-3"
        ),
        "openrouter": ProviderConfig.from_env(
            "openrouter",
            "OPENROUTER_API_KEY",
            "https://openrouter.ai/api/v1",
            "openai/gpt-4o",
        ),
    }


@dataclass(frozen=True)
class ConduitConfig:
    """Root configuration: providers, stream, tools, continuation and turn limits."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    stream: StreamConfig = field(default_factory=StreamConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    continuation: ContinuationConfig = field(default_factory=ContinuationConfig)
    turn: TurnConfig = field(default_factory=TurnConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def provider(self, name: str) -> ProviderConfig:
        """Settings for a provider, falling back to an empty entry."""
        return self.providers.get(name) or ProviderConfig(name=name)

    @classmethod
    def from_env(cls) -> ConduitConfig:
        return cls(
            providers=_default_providers(),
            stream=StreamConfig.from_env(),
            tools=ToolConfig.from_env(),
            continuation=ContinuationConfig.from_env(),
            turn=TurnConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Module-level instance: import this wherever settings are read
config = ConduitConfig.from_env()


def reload_config() -> ConduitConfig:
    """Re-read the environment and replace the module-level config."""
    global config
    config = ConduitConfig.from_env()
    return config
