"""Human-in-the-loop X login.

Opens a visible, stealth-configured Chromium on the login page and polls
until the user has finished logging in, then harvests every cookie into the
`SessionStore`. Nothing is retried: a timeout or a browser failure ends the
attempt and the caller has to start a new one.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from rich.console import Console

from .browser import open_session
from .deadline import Deadline
from .errors import BrowserError, LoginTimeoutError, NotFoundError, ScrollDigestError
from .models import AUTH_COOKIE, CredentialBundle, utcnow
from .session import SessionStore


console = Console(stderr=True)

LOGIN_URL = "https://x.com/login"
HOME_URLS = ("https://x.com/home", "https://twitter.com/home")

POLL_INTERVAL_SEC = 2.0
LOGIN_TIMEOUT_SEC = 5 * 60.0


class AuthState(str, Enum):
    IDLE = "idle"
    BROWSER_LAUNCHED = "browser_launched"
    AWAITING_USER_LOGIN = "awaiting_user_login"
    DETECTED = "detected"
    EXTRACTED = "extracted"
    SAVED = "saved"
    FAILED = "failed"


def _is_home(url: str) -> bool:
    return (url or "").split("?")[0].rstrip("/") in HOME_URLS


class InteractiveAuthenticator:
    def __init__(
        self,
        store: SessionStore,
        session_factory: Callable = open_session,
        poll_interval: float = POLL_INTERVAL_SEC,
        login_timeout: float = LOGIN_TIMEOUT_SEC,
    ):
        self.store = store
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self.login_timeout = login_timeout
        self.state = AuthState.IDLE

    def is_authenticated(self) -> bool:
        return self.store.is_valid()

    def login(self, deadline: Deadline | None = None) -> CredentialBundle:
        deadline = (deadline or Deadline()).child(self.login_timeout)
        try:
            with self.session_factory(headless=False) as session:
                self.state = AuthState.BROWSER_LAUNCHED
                try:
                    session.goto(LOGIN_URL)
                except ScrollDigestError as e:
                    raise BrowserError(f"failed to open login page: {e}") from e

                self.state = AuthState.AWAITING_USER_LOGIN
                console.print("[bold]Log in to X in the opened browser window[/bold] (waiting up to "
                              f"{int(self.login_timeout)}s)")
                self._wait_for_login(session, deadline)
                self.state = AuthState.DETECTED

                creds = session.credentials()
                self.state = AuthState.EXTRACTED

            bundle = CredentialBundle(credentials=creds, captured_at=utcnow())
            self.store.save(bundle)
            self.state = AuthState.SAVED
        except BaseException:
            self.state = AuthState.FAILED
            raise

        console.print(f"[green]Login successful[/green] - saved {len(bundle.credentials)} cookies")
        self.state = AuthState.IDLE
        return bundle

    def _wait_for_login(self, session, deadline: Deadline) -> None:
        while True:
            deadline.sleep(self.poll_interval)
            if deadline.expired():
                raise LoginTimeoutError("login timeout exceeded")

            # The URL alone can match during redirects; require the cookie too.
            if not _is_home(session.current_url()):
                continue
            for c in session.credentials():
                if c.name == AUTH_COOKIE and c.value:
                    return

    def logout(self) -> bool:
        """Forget stored cookies. Returns False if there was nothing to clear."""
        try:
            self.store.clear()
        except NotFoundError:
            return False
        return True
