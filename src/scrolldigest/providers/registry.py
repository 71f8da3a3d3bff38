from __future__ import annotations

from ..config import AnalysisConfig, PROVIDER_ANTHROPIC, PROVIDER_OPENAI, PROVIDER_STUB
from ..errors import ConfigError
from .base import ExchangeLog, Provider
from .stub import StubProvider


def provider_names() -> list[str]:
    return [PROVIDER_ANTHROPIC, PROVIDER_OPENAI, PROVIDER_STUB]


def make_provider(cfg: AnalysisConfig, exchange_log: ExchangeLog | None = None) -> Provider:
    name = (cfg.provider or "").strip().lower()
    if name == PROVIDER_STUB:
        return StubProvider()

    if name not in (PROVIDER_ANTHROPIC, PROVIDER_OPENAI):
        raise ConfigError(f"Unknown LLM provider: {cfg.provider}")
    if not cfg.api_key:
        raise ConfigError(f"No API key configured for provider {name} (set SCROLLDIGEST_API_KEY)")

    if name == PROVIDER_ANTHROPIC:
        from .claude import AnthropicProvider

        return AnthropicProvider(
            cfg.api_key, cfg.resolved_model(), timeout_sec=cfg.request_timeout_sec, exchange_log=exchange_log
        )

    from .openai_chat import OpenAIProvider

    return OpenAIProvider(
        cfg.api_key, cfg.resolved_model(), timeout_sec=cfg.request_timeout_sec, exchange_log=exchange_log
    )
