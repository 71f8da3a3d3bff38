from __future__ import annotations

import json
from typing import Any

from .config import InterestsConfig
from .errors import AnalysisError
from .models import Analysis, Post, utcnow


MAX_TOPICS = 3

SYSTEM_PROMPT = (
    "You are analyzing social media posts for relevance to a user's interests. "
    "Return ONLY valid JSON."
)


def build_prompt(posts: list[Post], interests: InterestsConfig) -> str:
    lines: list[str] = ["You are analyzing social media posts for relevance to a user's interests.", ""]

    lines.append("## User Interests")
    if interests.is_empty():
        lines.append(
            "No specific interests configured. Score posts based on general quality, "
            "informativeness, and newsworthiness."
        )
    else:
        if interests.keywords:
            lines.append(f"Keywords: {', '.join(interests.keywords)}")
        if interests.priority_accounts:
            lines.append(f"Priority accounts: {', '.join(interests.priority_accounts)}")
        if interests.muted_keywords:
            lines.append(f"Muted keywords (score 0): {', '.join(interests.muted_keywords)}")
        if interests.muted_accounts:
            lines.append(f"Muted accounts (score 0): {', '.join(interests.muted_accounts)}")

    lines += ["", "## Posts to Analyze", ""]
    for i, p in enumerate(posts, start=1):
        lines.append(f"### Post {i} (ID: {p.post_id})")
        lines.append(f"Author: @{p.author_handle} ({p.author_name})")
        lines.append(f"Content: {p.content}")
        lines.append(f"Engagement: {p.likes} likes, {p.reposts} reposts, {p.replies} replies")
        if p.is_repost:
            lines.append("Type: Repost")
        if p.is_quote:
            lines.append("Type: Quote")
        lines.append("")

    lines += [
        "## Task",
        "",
        "For each post, provide:",
        "1. relevance_score (0.0 to 1.0): How relevant is this to the user's interests?",
        f"2. topics (array, max {MAX_TOPICS}): Key topics detected",
        "3. summary (string): One sentence summary",
        "4. needs_context (boolean): Should we fetch replies for more context?",
        "",
        "IMPORTANT: Respond with ONLY a valid JSON array. No markdown, no code blocks, no explanation - "
        "just the raw JSON starting with [ and ending with ].",
        "",
        "Example structure:",
        '[{"post_id": "...", "relevance_score": 0.85, "topics": ["AI", "tech"], '
        '"summary": "Discussion about...", "needs_context": false}]',
    ]
    return "\n".join(lines) + "\n"


def _strip_fences(s: str) -> str:
    s = s.strip()
    if s.startswith("```"):
        s = s.split("\n", 1)[1] if "\n" in s else ""
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()


def _coerce(r: Any) -> Analysis:
    if not isinstance(r, dict) or not r.get("post_id"):
        raise ValueError(f"result without post_id: {r!r:.200}")
    score = float(r.get("relevance_score") or 0.0)
    topics = r.get("topics") or []
    if not isinstance(topics, list):
        topics = [topics]
    return Analysis(
        post_id=str(r["post_id"]),
        relevance_score=max(0.0, min(1.0, score)),
        topics=[str(t) for t in topics if t][:MAX_TOPICS],
        summary=str(r.get("summary") or ""),
        needs_context=bool(r.get("needs_context")),
        analyzed_at=utcnow(),
    )


def parse_analysis_response(text: str) -> list[Analysis]:
    """Parse a provider's JSON array (or {"results": [...]}) into analyses."""
    body = _strip_fences(text or "")
    try:
        data = json.loads(body)
        if isinstance(data, dict):
            data = data.get("results")
        if not isinstance(data, list):
            raise ValueError("expected a JSON array")
        return [_coerce(r) for r in data]
    except (ValueError, TypeError) as e:
        raise AnalysisError(f"failed to parse analysis JSON: {e} (response was: {body[:500]})") from e
