"""Turn raw DOM records from `js/extract_posts.js` into `Post`s.

Pure functions, no browser: this is the validation boundary where posts
without an id are dropped and display counts are made numeric.
"""

from __future__ import annotations

from datetime import datetime
import re
from typing import Any, Iterable

from .models import Post, parse_iso, utcnow


_COUNT_RE = re.compile(r"^([0-9]*\.?[0-9]+)([KM])?$")
_MULTIPLIERS = {None: 1, "K": 1_000, "M": 1_000_000}


def parse_metric(s: str | None) -> int:
    """Parse X-style counts like '1,234', '1.2K', '5.7M'. Unparseable -> 0."""
    if not s:
        return 0
    s = str(s).strip().upper().replace(",", "")
    m = _COUNT_RE.match(s)
    if not m:
        return 0
    return int(round(float(m.group(1)) * _MULTIPLIERS[m.group(2)]))


def _text(v: Any) -> str:
    return v.strip() if isinstance(v, str) else ""


def parse_raw_post(raw: dict[str, Any], scraped_at: datetime | None = None) -> Post | None:
    post_id = _text(raw.get("id"))
    if not post_id:
        return None

    media = raw.get("mediaUrls")
    return Post(
        post_id=post_id,
        author_handle=_text(raw.get("authorHandle")),
        author_name=_text(raw.get("authorName")),
        content=raw.get("content") if isinstance(raw.get("content"), str) else "",
        media_urls=[u for u in media if isinstance(u, str) and u] if isinstance(media, list) else [],
        timestamp=parse_iso(_text(raw.get("timestamp"))),
        likes=parse_metric(raw.get("likes")),
        reposts=parse_metric(raw.get("retweets")),
        replies=parse_metric(raw.get("replies")),
        # Not exposed in the timeline DOM
        quotes=0,
        is_repost=bool(raw.get("isRetweet")),
        is_quote=bool(raw.get("isQuoteTweet")),
        is_reply=bool(raw.get("isReply")),
        url=_text(raw.get("originalUrl")),
        scraped_at=scraped_at or utcnow(),
    )


def parse_raw_posts(raws: Iterable[Any]) -> list[Post]:
    now = utcnow()
    out: list[Post] = []
    for raw in raws or []:
        if not isinstance(raw, dict):
            continue
        p = parse_raw_post(raw, scraped_at=now)
        if p is not None:
            out.append(p)
    return out
