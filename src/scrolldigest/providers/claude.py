"""Anthropic Messages API provider.

The assistant turn is prefilled with "[" so the model continues straight into
the JSON array; the "[" is put back before parsing.
"""

from __future__ import annotations

from .base import ExchangeLog, LLMProvider


MAX_TOKENS = 4096


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_sec: float = 120.0,
        exchange_log: ExchangeLog | None = None,
    ):
        super().__init__(model, timeout_sec=timeout_sec, exchange_log=exchange_log)
        import anthropic

        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout_sec)

    def complete(self, prompt: str) -> str:
        msg = self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            messages=[
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": "["},
            ],
        )
        text = ""
        for block in msg.content:
            if getattr(block, "type", None) == "text":
                text = block.text
                break
        if not text:
            return ""
        return "[" + text
