from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import html
from pathlib import Path

from .models import PostWithAnalysis, utcnow


@dataclass
class DigestContent:
    markdown: str
    html: str
    plain: str
    post_ids: list[str]
    created_at: datetime = field(default_factory=utcnow)


def _truncate(s: str, n: int) -> str:
    s = (s or "").strip()
    return s if len(s) <= n else s[: n - 3] + "..."


def _sorted(posts: list[PostWithAnalysis], max_posts: int) -> list[PostWithAnalysis]:
    ranked = sorted(posts, key=lambda p: p.analysis.relevance_score, reverse=True)
    return ranked[:max_posts]


def render_markdown(posts: list[PostWithAnalysis], total_scraped: int, now: datetime) -> str:
    lines = [f"# Your X Digest - {now.strftime('%A, %B %d')}", ""]
    lines.append(f"_{len(posts)} of {total_scraped} scraped posts made the cut._")
    lines.append("")
    for i, pa in enumerate(posts, start=1):
        p, a = pa.post, pa.analysis
        lines.append(f"## {i}. {p.author_name} (@{p.author_handle}) - {a.relevance_score:.2f}")
        lines.append("")
        if a.summary:
            lines.append(f"**{a.summary}**")
            lines.append("")
        lines.append(f"> {_truncate(p.content, 280)}".replace("\n", "\n> "))
        lines.append("")
        if a.topics:
            lines.append("Topics: " + ", ".join(f"`{t}`" for t in a.topics))
        lines.append(f"{p.likes} likes · {p.reposts} reposts · {p.replies} replies")
        if p.url:
            lines.append(f"[View on X]({p.url})")
        if pa.context:
            lines.append("")
            lines.append("Replies:")
            for r in pa.context:
                lines.append(f"- @{r.author_handle}: {_truncate(r.content, 200)}")
        lines.append("")
    return "\n".join(lines)


def render_html(posts: list[PostWithAnalysis], title: str, now: datetime) -> str:
    e = html.escape
    parts = [
        "<!DOCTYPE html>",
        '<html><head><meta charset="utf-8">',
        f"<title>{e(title)}</title>",
        "<style>body{font-family:-apple-system,'Segoe UI',Roboto,sans-serif;max-width:600px;margin:0 auto;"
        "padding:20px}.post{border-bottom:1px solid #eee;padding:15px 0}.summary{color:#1da1f2;"
        "font-style:italic}.metrics{color:#666;font-size:13px}</style>",
        "</head><body>",
        f"<h1>{e(title)}</h1><div>{e(now.strftime('%A, %B %d'))}</div>",
    ]
    for pa in posts:
        p, a = pa.post, pa.analysis
        parts.append('<div class="post">')
        parts.append(f"<div><b>{e(p.author_name)}</b> @{e(p.author_handle)}</div>")
        parts.append(f"<div>{e(_truncate(p.content, 280))}</div>")
        parts.append(f'<div class="summary">{e(a.summary)}</div>')
        parts.append(f'<div class="metrics">{p.likes} likes · {p.reposts} reposts · {p.replies} replies</div>')
        if p.url:
            parts.append(f'<a href="{e(p.url, quote=True)}">View on X</a>')
        parts.append("</div>")
    parts.append("</body></html>")
    return "\n".join(parts)


def render_plain(posts: list[PostWithAnalysis], title: str) -> str:
    lines = [title, ""]
    for i, pa in enumerate(posts, start=1):
        lines.append(f"{i}. @{pa.post.author_handle}: {pa.analysis.summary}")
        lines.append(f"   {pa.post.url}")
        lines.append("")
    return "\n".join(lines)


class DigestBuilder:
    def __init__(self, output_dir: str, max_posts: int = 20):
        self.output_dir = Path(output_dir)
        self.max_posts = max_posts

    def render(self, posts: list[PostWithAnalysis], total_scraped: int) -> DigestContent:
        now = utcnow().astimezone()
        top = _sorted(posts, self.max_posts)
        title = f"Your X Digest - {now.strftime('%b %d')}"
        return DigestContent(
            markdown=render_markdown(top, total_scraped, now),
            html=render_html(top, title, now),
            plain=render_plain(top, title),
            post_ids=[p.post.post_id for p in top],
            created_at=now,
        )

    def save(self, content: DigestContent) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stem = base = f"digest_{content.created_at.strftime('%Y%m%d_%H%M%S_%f')}"
        n = 0
        while (self.output_dir / f"{stem}.md").exists():
            n += 1
            stem = f"{base}_{n}"
        md_path = self.output_dir / f"{stem}.md"
        md_path.write_text(content.markdown, encoding="utf-8")
        (self.output_dir / f"{stem}.html").write_text(content.html, encoding="utf-8")
        return str(md_path)


def latest_digest(output_dir: str, ext: str = ".md") -> str | None:
    d = Path(output_dir)
    if not d.is_dir():
        return None
    files = sorted(d.glob(f"digest_*{ext}"))
    return str(files[-1]) if files else None
