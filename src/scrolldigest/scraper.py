"""Feed and thread scraping via a cookie-authenticated Chromium.

How it works:
- Launches a stealth browser (see `browser.py`) and injects the stored X
  cookies before the first navigation.
- Loads the home feed (or a single post's page for replies) and waits for
  tweets to render.
- Runs the scroll-collect loop: expand "Show more" links, read every rendered
  tweet, keep the ones not seen yet, scroll one screen, sleep a randomized
  and slowly growing delay, repeat until enough posts or out of attempts.

The randomized delays are there to look human to X's bot detection. Do not
make them deterministic outside tests.
"""

from __future__ import annotations

from dataclasses import dataclass
import random
from typing import Callable

from rich.console import Console

from .browser import open_session
from .deadline import Deadline
from .errors import BrowserError, ExtractionError
from .models import Credential, Post
from .parsing import parse_raw_posts
from .selectors import EXTRACT_SELECTORS, HOME_URL, TWEET_SHOW_MORE, WAIT_FOR_TWEETS, load_script


console = Console(stderr=True)

FEED_POSTS_PER_SCREEN = 5
REPLIES_PER_SCREEN = 3
THREAD_SETTLE_SEC = 2.0


@dataclass
class ScrollParams:
    max_count: int
    max_attempts: int
    base_delay_ms: int
    delay_increment_ms: int
    jitter_ms: int = 200
    log_prefix: str = "Scroll"


def feed_params(count: int) -> ScrollParams:
    return ScrollParams(
        max_count=count,
        max_attempts=max(1, count // FEED_POSTS_PER_SCREEN),
        base_delay_ms=500,
        delay_increment_ms=100,
        log_prefix="Scroll",
    )


def reply_params(count: int) -> ScrollParams:
    # Fewer replies render per screen than feed posts.
    return ScrollParams(
        max_count=count,
        max_attempts=count // REPLIES_PER_SCREEN + 5,
        base_delay_ms=800,
        delay_increment_ms=150,
        log_prefix="Reply scroll",
    )


def scroll_delay(attempt: int, p: ScrollParams, rng: random.Random | None = None) -> float:
    """Seconds to wait after scroll number `attempt` (0-based)."""
    rng = rng or random
    jitter = rng.randrange(p.jitter_ms) if p.jitter_ms > 0 else 0
    return (p.base_delay_ms + jitter + attempt * p.delay_increment_ms) / 1000.0


def scroll_and_collect(
    p: ScrollParams,
    extract: Callable[[], list[Post]],
    scroll: Callable[[], None],
    sleep: Callable[[float], None],
    expand: Callable[[], None] | None = None,
    deadline: Deadline | None = None,
    rng: random.Random | None = None,
) -> list[Post]:
    """Scroll-extract-dedupe until `p.max_count` posts or `p.max_attempts` scrolls.

    Returns posts in first-seen order, never more than `p.max_count`. Running
    out of attempts is not an error; the result is just short. Any
    `ExtractionError` propagates and the partial accumulator is dropped.
    """
    posts: list[Post] = []
    seen: set[str] = set()
    if p.max_count <= 0:
        return posts

    for attempt in range(p.max_attempts):
        if deadline is not None:
            deadline.check()
            if deadline.expired():
                raise ExtractionError(f"{p.log_prefix.lower()} timed out after {len(posts)} posts")

        if expand is not None:
            expand()

        visible = extract()
        new_unique = 0
        for post in visible:
            if not post.post_id or post.post_id in seen:
                continue
            seen.add(post.post_id)
            posts.append(post)
            new_unique += 1
            if len(posts) >= p.max_count:
                break

        console.print(
            f"{p.log_prefix} {attempt + 1}/{p.max_attempts}: found {len(visible)} visible, "
            f"{new_unique} new unique (total: {len(posts)}/{p.max_count})"
        )

        if len(posts) >= p.max_count:
            break

        scroll()
        sleep(scroll_delay(attempt, p, rng))

    return posts[: p.max_count]


class ExtractionEngine:
    def __init__(
        self,
        headless: bool = True,
        session_factory: Callable = open_session,
        feed_timeout_sec: float = 300.0,
        thread_timeout_sec: float = 120.0,
        rng: random.Random | None = None,
    ):
        self.headless = headless
        self.session_factory = session_factory
        self.feed_timeout_sec = feed_timeout_sec
        self.thread_timeout_sec = thread_timeout_sec
        self.rng = rng or random.Random()
        self._extract_js = load_script("extract_posts.js")
        self._expand_js = load_script("expand_truncated.js")

    def extract_feed(
        self, credentials: list[Credential], target_count: int, deadline: Deadline | None = None
    ) -> list[Post]:
        console.print(f"[bold]Scraping[/bold] {target_count} posts from the feed (headless={self.headless})")
        posts = self._run(
            credentials,
            HOME_URL,
            feed_params(target_count),
            skip_first=False,
            settle_sec=0.0,
            deadline=(deadline or Deadline()).child(self.feed_timeout_sec),
        )
        console.print(f"Extraction complete: {len(posts)} posts collected")
        return posts

    def extract_thread(
        self,
        credentials: list[Credential],
        post_url: str,
        target_reply_count: int,
        deadline: Deadline | None = None,
    ) -> list[Post]:
        console.print(f"[bold]Scraping[/bold] up to {target_reply_count} replies: {post_url}")
        replies = self._run(
            credentials,
            post_url,
            reply_params(target_reply_count),
            skip_first=True,
            # Replies load after the root post renders.
            settle_sec=THREAD_SETTLE_SEC,
            deadline=(deadline or Deadline()).child(self.thread_timeout_sec),
        )
        console.print(f"Thread scrape complete: {len(replies)} replies collected")
        return replies

    def _run(
        self,
        credentials: list[Credential],
        url: str,
        params: ScrollParams,
        skip_first: bool,
        settle_sec: float,
        deadline: Deadline,
    ) -> list[Post]:
        if params.max_count <= 0:
            return []
        deadline.check()

        with self.session_factory(headless=self.headless) as session:
            console.print(f"Injecting {len(credentials)} cookies...")
            try:
                session.add_credentials(credentials)
            except BrowserError as e:
                raise ExtractionError(f"failed to inject cookies: {e}") from e

            timeout_s = deadline.remaining()
            session.goto(url, wait_selector=WAIT_FOR_TWEETS, timeout_ms=(timeout_s or 30.0) * 1000)
            if settle_sec:
                deadline.sleep(settle_sec)

            def extract() -> list[Post]:
                raws = session.evaluate(self._extract_js, {"skipFirst": skip_first, "selectors": EXTRACT_SELECTORS})
                if not isinstance(raws, list):
                    raise ExtractionError(f"extract script returned {type(raws).__name__}, expected list")
                return parse_raw_posts(raws)

            def scroll() -> None:
                session.evaluate("() => window.scrollBy(0, window.innerHeight)")

            def expand() -> None:
                self._expand_truncated(session, deadline)

            return scroll_and_collect(
                params,
                extract=extract,
                scroll=scroll,
                sleep=deadline.sleep,
                expand=expand,
                deadline=deadline,
                rng=self.rng,
            )

    def _expand_truncated(self, session, deadline: Deadline) -> None:
        """Click every visible "Show more" so post text is not cut off."""
        try:
            count = int(session.evaluate(self._expand_js, {"selector": TWEET_SHOW_MORE, "click": False}) or 0)
            if count:
                console.print(f"Expanding {count} truncated posts...")
            for _ in range(count):
                clicked = session.evaluate(self._expand_js, {"selector": TWEET_SHOW_MORE, "click": True})
                if not clicked:
                    break
                deadline.sleep(self.rng.uniform(0.25, 0.5))
        except ExtractionError as e:
            # Truncated text is better than no text.
            console.print(f"[yellow]Warning:[/yellow] failed to expand truncated posts: {e}")
