from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta

import pytest

from scrolldigest.errors import ExtractionError
from scrolldigest.models import Analysis, Credential, CredentialBundle, Post, utcnow


def make_post(post_id: str, content: str = "hello", **kw) -> Post:
    kw.setdefault("author_handle", "someone")
    kw.setdefault("author_name", "Some One")
    kw.setdefault("url", f"https://x.com/someone/status/{post_id}")
    return Post(post_id=post_id, content=content, **kw)


def make_analysis(post_id: str, score: float, **kw) -> Analysis:
    return Analysis(post_id=post_id, relevance_score=score, **kw)


def make_bundle(expires_in: float = 3600, ct0: str = "csrf", auth: str = "tok", domain: str = ".x.com") -> CredentialBundle:
    exp = (utcnow() + timedelta(seconds=expires_in)).timestamp()
    creds = [Credential(name="auth_token", value=auth, domain=domain, expires=exp)]
    if ct0 is not None:
        creds.append(Credential(name="ct0", value=ct0, domain=domain, expires=exp + 60))
    creds.append(Credential(name="guest_id", value="g", domain=".twitter.com", expires=exp))
    return CredentialBundle(credentials=creds)


class FakeSession:
    """Stands in for `browser.BrowserSession`."""

    def __init__(self, pages=None, urls=None, cookies=None):
        # extract results per call; the last one repeats
        self.pages = list(pages or [[]])
        self.urls = list(urls or ["https://x.com/login"])
        self.cookie_seq = list(cookies or [[]])
        self.added: list[Credential] = []
        self.visited: list[str] = []
        self.scrolls = 0
        self.extract_calls = 0
        self.fail_goto: Exception | None = None
        self.fail_extract_on: int | None = None

    def goto(self, url, wait_selector=None, timeout_ms=30_000):
        if self.fail_goto is not None:
            raise self.fail_goto
        self.visited.append(url)

    def evaluate(self, expression, arg=None):
        if "scrollBy" in expression:
            self.scrolls += 1
            return None
        if isinstance(arg, dict) and "selector" in arg:
            return 0 if not arg.get("click") else False
        self.extract_calls += 1
        if self.fail_extract_on is not None and self.extract_calls >= self.fail_extract_on:
            raise ExtractionError("script blew up")
        idx = min(self.extract_calls - 1, len(self.pages) - 1)
        return self.pages[idx]

    def current_url(self):
        return self.urls.pop(0) if len(self.urls) > 1 else self.urls[0]

    def credentials(self):
        return self.cookie_seq.pop(0) if len(self.cookie_seq) > 1 else self.cookie_seq[0]

    def add_credentials(self, creds):
        self.added.extend(creds)

    def wait_closed(self):
        pass


def session_factory_for(session: FakeSession, calls: list | None = None):
    @contextmanager
    def factory(headless=True, **_kw):
        if calls is not None:
            calls.append(headless)
        yield session

    return factory


@pytest.fixture
def bundle() -> CredentialBundle:
    return make_bundle()
