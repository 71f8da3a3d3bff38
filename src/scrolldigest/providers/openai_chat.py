from __future__ import annotations

from ..prompt import SYSTEM_PROMPT
from .base import ExchangeLog, LLMProvider


# JSON mode only allows a top-level object.
_JSON_MODE_SUFFIX = '\nWrap the array in an object: {"results": [...]}\n'


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_sec: float = 120.0,
        exchange_log: ExchangeLog | None = None,
    ):
        super().__init__(model, timeout_sec=timeout_sec, exchange_log=exchange_log)
        from openai import OpenAI

        self.client = OpenAI(api_key=api_key, timeout=timeout_sec)

    def complete(self, prompt: str) -> str:
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt + _JSON_MODE_SUFFIX},
            ],
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        return resp.choices[0].message.content or ""
