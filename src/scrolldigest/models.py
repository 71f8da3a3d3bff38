from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any


AUTH_COOKIE = "auth_token"
CSRF_COOKIE = "ct0"
REQUIRED_COOKIES = (AUTH_COOKIE, CSRF_COOKIE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


@dataclass
class Credential:
    name: str
    value: str
    domain: str = ""
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    same_site: str = "Lax"
    # Unix seconds; -1 means a session cookie with no fixed expiry
    expires: float = -1

    def expires_at(self) -> datetime | None:
        if self.expires is None or self.expires < 0:
            return None
        return datetime.fromtimestamp(self.expires, tz=timezone.utc)

    def matches_domain(self, suffix: str) -> bool:
        d = (self.domain or "").lstrip(".").lower()
        s = (suffix or "").lstrip(".").lower()
        if not s:
            return False
        return d == s or d.endswith("." + s)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Credential":
        return cls(
            name=str(d["name"]),
            value=str(d.get("value") or ""),
            domain=str(d.get("domain") or ""),
            path=str(d.get("path") or "/"),
            secure=bool(d.get("secure", False)),
            http_only=bool(d.get("http_only", d.get("httpOnly", False))),
            same_site=str(d.get("same_site", d.get("sameSite")) or "Lax"),
            expires=float(d["expires"]) if d.get("expires") is not None else -1,
        )


@dataclass
class CredentialBundle:
    credentials: list[Credential]
    captured_at: datetime = field(default_factory=utcnow)

    def get(self, name: str) -> Credential | None:
        for c in self.credentials:
            if c.name == name:
                return c
        return None

    def expires_at(self) -> datetime | None:
        """Earliest expiry among the auth cookies (None if neither carries one)."""
        earliest: datetime | None = None
        for c in self.credentials:
            if c.name not in REQUIRED_COOKIES:
                continue
            exp = c.expires_at()
            if exp is None:
                continue
            if earliest is None or exp < earliest:
                earliest = exp
        return earliest

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        for name in REQUIRED_COOKIES:
            c = self.get(name)
            # a session-only cookie cannot outlive the browser that set it
            if c is None or not c.value or c.expires_at() is None:
                return False
        exp = self.expires_at()
        if exp is None:
            return False
        return exp > now

    def scoped(self, domain_suffix: str) -> list[Credential]:
        return [c for c in self.credentials if c.matches_domain(domain_suffix)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "cookies": [c.to_dict() for c in self.credentials],
            "captured_at": _iso(self.captured_at),
            "expires_at": _iso(self.expires_at()),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "CredentialBundle":
        if not isinstance(d, dict):
            raise ValueError(f"bundle is a {type(d).__name__}, not an object")
        cookies = d.get("cookies")
        if not isinstance(cookies, list):
            raise ValueError("bundle has no cookie list")
        return cls(
            credentials=[Credential.from_dict(c) for c in cookies],
            captured_at=parse_iso(d.get("captured_at")) or utcnow(),
        )


@dataclass
class Post:
    post_id: str
    author_handle: str
    author_name: str
    content: str
    media_urls: list[str] = field(default_factory=list)
    timestamp: datetime | None = None

    likes: int = 0
    reposts: int = 0
    replies: int = 0
    quotes: int = 0

    is_repost: bool = False
    is_quote: bool = False
    is_reply: bool = False

    url: str = ""
    scraped_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = _iso(self.timestamp)
        d["scraped_at"] = _iso(self.scraped_at)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Post":
        return cls(
            post_id=str(d["post_id"]),
            author_handle=d.get("author_handle") or "",
            author_name=d.get("author_name") or "",
            content=d.get("content") or "",
            media_urls=list(d.get("media_urls") or []),
            timestamp=parse_iso(d.get("timestamp")),
            likes=int(d.get("likes") or 0),
            reposts=int(d.get("reposts") or 0),
            replies=int(d.get("replies") or 0),
            quotes=int(d.get("quotes") or 0),
            is_repost=bool(d.get("is_repost")),
            is_quote=bool(d.get("is_quote")),
            is_reply=bool(d.get("is_reply")),
            url=d.get("url") or "",
            scraped_at=parse_iso(d.get("scraped_at")) or utcnow(),
        )


@dataclass
class Analysis:
    post_id: str
    relevance_score: float
    topics: list[str] = field(default_factory=list)
    summary: str = ""
    needs_context: bool = False
    analyzed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["analyzed_at"] = _iso(self.analyzed_at)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Analysis":
        return cls(
            post_id=str(d["post_id"]),
            relevance_score=float(d.get("relevance_score") or 0.0),
            topics=list(d.get("topics") or []),
            summary=d.get("summary") or "",
            needs_context=bool(d.get("needs_context")),
            analyzed_at=parse_iso(d.get("analyzed_at")) or utcnow(),
        )


@dataclass
class PostWithAnalysis:
    post: Post
    analysis: Analysis
    # Replies fetched for thread context
    context: list[Post] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "post": self.post.to_dict(),
            "analysis": self.analysis.to_dict(),
            "context": [p.to_dict() for p in self.context],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PostWithAnalysis":
        return cls(
            post=Post.from_dict(d["post"]),
            analysis=Analysis.from_dict(d["analysis"]),
            context=[Post.from_dict(p) for p in d.get("context") or []],
        )
