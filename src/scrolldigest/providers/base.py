from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from rich.console import Console

from ..config import InterestsConfig
from ..deadline import Deadline
from ..errors import AnalysisError
from ..models import Analysis, Post
from ..prompt import build_prompt, parse_analysis_response


console = Console(stderr=True)

# (provider, model, prompt, response, error) -> location
ExchangeLog = Callable[[str, str, str, str, str | None], str]


class Provider(ABC):
    """Scores one batch of posts. Returns one analysis per post or raises."""

    name: str

    @abstractmethod
    def analyze(
        self, posts: list[Post], interests: InterestsConfig, deadline: Deadline | None = None
    ) -> list[Analysis]:
        raise NotImplementedError


def ensure_complete(posts: list[Post], analyses: list[Analysis]) -> None:
    got = {a.post_id for a in analyses}
    missing = [p.post_id for p in posts if p.post_id not in got]
    if missing:
        raise AnalysisError(
            f"provider returned {len(analyses)} results for {len(posts)} posts; "
            f"missing {', '.join(missing[:5])}{'...' if len(missing) > 5 else ''}"
        )


class LLMProvider(Provider):
    """Prompt -> completion -> strict JSON parse, with every exchange logged."""

    def __init__(self, model: str, timeout_sec: float = 120.0, exchange_log: ExchangeLog | None = None):
        self.model = model
        self.timeout_sec = timeout_sec
        self.exchange_log = exchange_log

    @abstractmethod
    def complete(self, prompt: str) -> str:
        raise NotImplementedError

    def analyze(
        self, posts: list[Post], interests: InterestsConfig, deadline: Deadline | None = None
    ) -> list[Analysis]:
        if deadline is not None:
            deadline.check()
        prompt = build_prompt(posts, interests)

        response = ""
        error: str | None = None
        try:
            response = self.complete(prompt)
        except AnalysisError as e:
            error = str(e)
            raise
        except Exception as e:
            error = str(e)
            raise AnalysisError(f"{self.name} call failed: {e}") from e
        finally:
            self._log_exchange(prompt, response, error)

        if not response.strip():
            raise AnalysisError(f"{self.name} returned an empty response")

        analyses = parse_analysis_response(response)
        ensure_complete(posts, analyses)
        return analyses

    def _log_exchange(self, prompt: str, response: str, error: str | None) -> None:
        if self.exchange_log is None:
            return
        try:
            where = self.exchange_log(self.name, self.model, prompt, response, error)
            console.print(f"Cached LLM exchange to: {where}")
        except Exception as e:
            console.print(f"[yellow]Failed to cache LLM exchange:[/yellow] {e}")
