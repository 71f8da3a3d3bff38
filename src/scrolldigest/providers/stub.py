"""Offline provider: deterministic keyword + engagement scoring, no credentials.

Useful for dry runs and for exercising the pipeline without an API key.
"""

from __future__ import annotations

import math
import re

from ..config import InterestsConfig
from ..deadline import Deadline
from ..models import Analysis, Post, utcnow
from .base import Provider


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def _safe_log1p(x: int | float) -> float:
    return math.log1p(max(0.0, float(x)))


def _handle(s: str) -> str:
    return s.strip().lstrip("@").lower()


def _summary(text: str, limit: int = 140) -> str:
    s = re.sub(r"\s+", " ", (text or "").strip())
    m = re.match(r"(.+?[.!?])(\s|$)", s)
    if m:
        s = m.group(1)
    return (s[: limit - 1] + "…") if len(s) > limit else s


class StubProvider(Provider):
    name = "stub"

    def analyze(
        self, posts: list[Post], interests: InterestsConfig, deadline: Deadline | None = None
    ) -> list[Analysis]:
        if deadline is not None:
            deadline.check()
        return [self.score_post(p, interests) for p in posts]

    def score_post(self, p: Post, interests: InterestsConfig) -> Analysis:
        blob = (p.content or "").lower()
        author = _handle(p.author_handle)

        muted = author in {_handle(a) for a in interests.muted_accounts} or any(
            kw.lower() in blob for kw in interests.muted_keywords
        )

        hits = [kw for kw in interests.keywords if kw.lower() in blob]
        priority = author in {_handle(a) for a in interests.priority_accounts}

        eng = 0.6 * _safe_log1p(p.likes) + 0.25 * _safe_log1p(p.reposts) + 0.15 * _safe_log1p(p.replies)
        eng_n = _sigmoid((eng - 4.0) / 1.5)

        if muted:
            score = 0.0
        elif interests.is_empty():
            score = eng_n
        else:
            kw_n = min(1.0, len(hits) / 2.0)
            score = 0.6 * kw_n + 0.25 * (1.0 if priority else 0.0) + 0.15 * eng_n

        return Analysis(
            post_id=p.post_id,
            relevance_score=float(max(0.0, min(1.0, score))),
            topics=hits[:3],
            summary=_summary(p.content),
            # Busy threads on short posts usually need the replies to make sense.
            needs_context=p.replies >= 10 and len(p.content or "") < 80,
            analyzed_at=utcnow(),
        )
