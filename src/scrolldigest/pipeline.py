"""Scrape -> analyze -> filter -> (context) -> digest.

Each step is its own method so the CLI can run them one at a time from the
last checkpoint. `generate_digest` chains them and stops quietly when a step
has nothing to hand on (no posts scraped, nothing relevant).

Settings, scraper and analyzer can be swapped by `reload` while a run is in
progress. Every step reads them once through `snapshot()` and uses that
copy for the whole step; `generate_digest` takes one snapshot and hands it to
every step, so a run never mixes two configs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import threading
from typing import Any, Callable, NamedTuple

from rich.console import Console

from .analyzer import BatchAnalyzer
from .config import Settings
from .deadline import Deadline
from .digest import DigestBuilder
from .errors import CancelledError, ConfigError, ScrollDigestError, StageError, StorageError, ValidationError
from .models import Analysis, Post, PostWithAnalysis
from .notify import deliver
from .providers.registry import make_provider
from .scraper import ExtractionEngine
from .session import SessionStore, X_DOMAIN
from .storage import (
    STEP1_POSTS,
    STEP2_ANALYSES,
    STEP3_FILTERED,
    STEP4_CONTEXT,
    STEP5_DIGESTS,
    Store,
)


console = Console(stderr=True)


class PipelineState(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    SCRAPED = "scraped"
    ANALYZED = "analyzed"
    FILTERED = "filtered"
    CONTEXT_ENRICHED = "context_enriched"
    DIGESTED = "digested"


@dataclass
class RunResult:
    state: PipelineState
    scraped: int = 0
    analyzed: int = 0
    relevant: int = 0
    digest_path: str | None = None
    message: str = ""


class Snapshot(NamedTuple):
    settings: Settings
    scraper: ExtractionEngine
    analyzer: BatchAnalyzer | None
    analyzer_error: ConfigError | None


def filter_by_relevance(
    posts: list[Post], analyses: list[Analysis], threshold: float
) -> list[PostWithAnalysis]:
    """Keep posts whose analysis scores >= threshold, in post order.

    Posts without an analysis are dropped; analyses without a post are ignored.
    """
    by_id = {a.post_id: a for a in analyses}
    out: list[PostWithAnalysis] = []
    for p in posts:
        a = by_id.get(p.post_id)
        if a is None:
            continue
        if a.relevance_score >= threshold:
            out.append(PostWithAnalysis(post=p, analysis=a))
    return out


def build_components(settings: Settings, store: Store | None = None) -> Snapshot:
    scraper = ExtractionEngine(
        headless=settings.scraping.headless,
        feed_timeout_sec=settings.scraping.feed_timeout_sec,
        thread_timeout_sec=settings.scraping.thread_timeout_sec,
    )
    analyzer: BatchAnalyzer | None = None
    analyzer_error: ConfigError | None = None
    try:
        provider = make_provider(settings.analysis, exchange_log=store.save_llm_exchange if store else None)
        analyzer = BatchAnalyzer(
            provider,
            interests=settings.interests,
            batch_size=settings.analysis.batch_size,
            max_workers=settings.analysis.max_workers,
        )
    except ConfigError as e:
        # Scrape/login still work without an LLM; analyze reports this.
        analyzer_error = e
    return Snapshot(settings, scraper, analyzer, analyzer_error)


class Pipeline:
    def __init__(
        self,
        settings: Settings,
        sessions: SessionStore,
        store: Store,
        scraper: ExtractionEngine,
        analyzer: BatchAnalyzer | None,
        analyzer_error: ConfigError | None = None,
        notifier: Callable[[Settings, Any], str] | None = deliver,
    ):
        self._lock = threading.RLock()
        self.sessions = sessions  # fixed for the lifetime of the pipeline
        self.store = store
        self.notifier = notifier
        self._snap = Snapshot(settings, scraper, analyzer, analyzer_error)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Pipeline":
        store = Store(settings.db_path)
        snap = build_components(settings, store)
        return cls(settings, SessionStore(settings.cookies_path), store, snap.scraper, snap.analyzer, snap.analyzer_error)

    # ------------------------------------------------------------------
    # snapshot / reload

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snap

    def reload(self, settings: Settings) -> None:
        snap = build_components(settings, self.store)
        with self._lock:
            self._snap = snap
        console.print("[green]Configuration reloaded[/green]")

    # ------------------------------------------------------------------
    # helpers

    def is_authenticated(self) -> bool:
        return self.sessions.is_valid()

    def _require_credentials(self):
        if not self.sessions.is_valid():
            raise ValidationError("not logged in (or session expired) - run `scrolldigest login`")
        return self.sessions.scoped_credentials(X_DOMAIN)

    def _checkpoint(self, namespace: str, payload: Any, what: str) -> None:
        try:
            where = self.store.save(namespace, payload)
        except StorageError as e:
            console.print(f"[yellow]Failed to cache {what}:[/yellow] {e}")
            return
        console.print(f"Cached {what} to: {where}")

    # ------------------------------------------------------------------
    # steps

    def scrape(self, deadline: Deadline | None = None, snap: Snapshot | None = None) -> list[Post]:
        """Step 1: scrape the For You feed."""
        creds = self._require_credentials()
        s = snap or self.snapshot()
        n = s.settings.scraping.posts_per_scrape
        posts = s.scraper.extract_feed(creds, n, deadline=deadline)
        console.print(f"[green]Scraped[/green] {len(posts)} posts")
        self._checkpoint(STEP1_POSTS, [p.to_dict() for p in posts], "posts")
        return posts

    def analyze(
        self, posts: list[Post], deadline: Deadline | None = None, snap: Snapshot | None = None
    ) -> list[Analysis]:
        """Step 2: LLM relevance scoring."""
        if not posts:
            console.print("No posts to analyze")
            return []
        s = snap or self.snapshot()
        if s.analyzer is None:
            raise s.analyzer_error or ConfigError("no analyzer configured")
        analyses = s.analyzer.analyze_posts(posts, s.settings.interests, deadline=deadline)
        console.print(f"[green]Analyzed[/green] {len(analyses)} posts")
        self._checkpoint(STEP2_ANALYSES, [a.to_dict() for a in analyses], "analyses")
        return analyses

    def filter(
        self, posts: list[Post], analyses: list[Analysis], snap: Snapshot | None = None
    ) -> list[PostWithAnalysis]:
        """Step 3: keep posts at or above the relevance threshold."""
        s = snap or self.snapshot()
        threshold = s.settings.analysis.relevance_threshold
        relevant = filter_by_relevance(posts, analyses, threshold)
        console.print(f"Found {len(relevant)} posts above relevance threshold ({threshold * 100:.0f}%)")
        self._checkpoint(STEP3_FILTERED, [p.to_dict() for p in relevant], "filtered posts")
        return relevant

    def fetch_context(
        self, posts: list[PostWithAnalysis], deadline: Deadline | None = None, snap: Snapshot | None = None
    ) -> list[PostWithAnalysis]:
        """Step 4: fetch replies for posts the analysis flagged. Input is not modified."""
        s = snap or self.snapshot()
        result = [replace(p, context=list(p.context)) for p in posts]
        wanted = [p for p in result if p.analysis.needs_context and p.post.url]
        if not s.settings.digest.include_context or not wanted:
            return result

        creds = self._require_credentials()
        console.print(f"Fetching context for {len(wanted)} posts...")
        for p in wanted:
            try:
                p.context = s.scraper.extract_thread(
                    creds, p.post.url, s.settings.scraping.replies_per_thread, deadline=deadline
                )
            except CancelledError:
                raise
            except ScrollDigestError as e:
                console.print(f"[yellow]Failed to fetch replies for {p.post.post_id}:[/yellow] {e}")
                continue
            console.print(f"Got {len(p.context)} replies for post {p.post.post_id}")

        self._checkpoint(STEP4_CONTEXT, [p.to_dict() for p in result], "posts with context")
        return result

    def build_digest(
        self, posts: list[PostWithAnalysis], total_scraped: int, snap: Snapshot | None = None
    ) -> str | None:
        """Step 5: render, save and deliver the digest. Returns the saved path."""
        if not posts:
            console.print("No relevant posts - no digest generated")
            return None
        s = snap or self.snapshot()
        builder = DigestBuilder(s.settings.digest.output_dir, s.settings.digest.max_posts)
        content = builder.render(posts, total_scraped)
        path = builder.save(content)
        self._checkpoint(STEP5_DIGESTS, {"path": path, "markdown": content.markdown}, "digest")
        console.print(f"[green]Digest saved[/green] to: {path} ({len(content.post_ids)} posts)")

        if self.notifier is not None:
            try:
                channel = self.notifier(s.settings, content)
                console.print(f"Digest sent via {channel}")
            except Exception as e:
                # The digest is on disk already.
                console.print(f"[yellow]Failed to deliver digest:[/yellow] {e}")
        return path

    # ------------------------------------------------------------------
    # orchestration

    def generate_digest(self, deadline: Deadline | None = None) -> RunResult:
        deadline = deadline or Deadline()
        # one config for the whole run, even if a reload lands midway
        snap = self.snapshot()

        stage = "authenticate"
        try:
            if not self.is_authenticated():
                raise ValidationError("not logged in (or session expired) - run `scrolldigest login`")

            stage = "scrape"
            posts = self.scrape(deadline, snap)
            if not posts:
                return RunResult(PipelineState.SCRAPED, message="No posts scraped - nothing to analyze")

            stage = "analyze"
            analyses = self.analyze(posts, deadline, snap)

            stage = "filter"
            relevant = self.filter(posts, analyses, snap)
            if not relevant:
                return RunResult(
                    PipelineState.FILTERED,
                    scraped=len(posts),
                    analyzed=len(analyses),
                    message="No posts above relevance threshold - no digest generated",
                )

            state = PipelineState.FILTERED
            if snap.settings.digest.include_context:
                stage = "context"
                relevant = self.fetch_context(relevant, deadline, snap)
                state = PipelineState.CONTEXT_ENRICHED

            stage = "digest"
            path = self.build_digest(relevant, len(posts), snap)
            return RunResult(
                PipelineState.DIGESTED if path else state,
                scraped=len(posts),
                analyzed=len(analyses),
                relevant=len(relevant),
                digest_path=path,
                message=f"Digest saved to {path}" if path else "",
            )
        except CancelledError:
            raise
        except (ScrollDigestError, OSError) as e:
            console.print(f"[red]{stage} failed:[/red] {e}")
            raise StageError(stage, e) from e
