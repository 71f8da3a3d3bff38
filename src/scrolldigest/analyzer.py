"""LLM relevance scoring in concurrent batches.

Posts are cut into contiguous batches of `batch_size` and every batch is
submitted to a thread pool at once (`max_workers` caps how many provider
calls are in flight). Results land in a slot per batch index and are
flattened in batch order, so output order follows input order no matter
which call finishes first.

Failure is all-or-nothing: the first failing batch fails the whole call,
queued batches are cancelled, in-flight ones are left to finish and their
results are thrown away.
"""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
import threading

from rich.console import Console

from .config import InterestsConfig
from .deadline import Deadline
from .errors import AnalysisError, CancelledError
from .models import Analysis, Post
from .providers.base import Provider


console = Console(stderr=True)

_POLL_SEC = 0.2


def make_batches(posts: list[Post], batch_size: int) -> list[list[Post]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [posts[i : i + batch_size] for i in range(0, len(posts), batch_size)]


class BatchAnalyzer:
    def __init__(
        self,
        provider: Provider,
        interests: InterestsConfig | None = None,
        batch_size: int = 10,
        max_workers: int = 4,
    ):
        self.provider = provider
        self.interests = interests or InterestsConfig()
        self.batch_size = batch_size
        self.max_workers = max_workers

    def analyze_posts(
        self,
        posts: list[Post],
        interests: InterestsConfig | None = None,
        deadline: Deadline | None = None,
    ) -> list[Analysis]:
        if not posts:
            return []

        interests = interests or self.interests
        deadline = deadline or Deadline()
        batches = make_batches(posts, self.batch_size)
        slots: list[list[Analysis] | None] = [None] * len(batches)

        # Shared by every batch call; set on the first failure or on caller cancel.
        abort = threading.Event()
        batch_deadline = Deadline(deadline.remaining(), cancel=abort)

        console.print(
            f"[bold]Analyzing[/bold] {len(posts)} posts in {len(batches)} batches "
            f"(provider={self.provider.name})"
        )

        failed: tuple[int, BaseException] | None = None
        workers = max(1, min(self.max_workers, len(batches)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analyze") as ex:
            futures = {
                ex.submit(self.provider.analyze, batch, interests, batch_deadline): i
                for i, batch in enumerate(batches)
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=_POLL_SEC, return_when=FIRST_EXCEPTION)
                for f in done:
                    i = futures[f]
                    exc = f.exception()
                    if exc is not None:
                        if failed is None:
                            failed = (i, exc)
                        continue
                    slots[i] = f.result()
                    console.print(f"  batch {i + 1}/{len(batches)}: {len(slots[i] or [])} results")

                if failed is None and deadline.cancelled:
                    failed = (-1, CancelledError("analysis cancelled"))
                if failed is None and deadline.expired():
                    failed = (-1, AnalysisError("analysis timed out"))
                if failed is not None:
                    abort.set()
                    for f in pending:
                        f.cancel()
                    break

        if failed is not None:
            i, exc = failed
            if i < 0:
                raise exc
            raise AnalysisError(f"failed to analyze batch {i}: {exc}", batch_index=i) from exc

        out: list[Analysis] = []
        for s in slots:
            out.extend(s or [])
        return out
