"""Chromium control via Playwright with anti-bot-detection settings.

All browsers (login, feed scrape, thread scrape, bot-test) are launched from
`open_session` so they share one stealth configuration:
- `navigator.webdriver` is hidden (`AutomationControlled` blink feature off
  plus an init script), which is the main thing X checks.
- A realistic desktop Chrome user agent and window size.
- Extension/infobar/first-run chrome disabled.

Setup:
- `pip install playwright`
- `playwright install chromium`
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from playwright.sync_api import Error as PlaywrightError, sync_playwright

from .errors import BrowserError, ExtractionError, NavigationError
from .models import Credential


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
WINDOW_SIZE = {"width": 1920, "height": 1080}

_HIDE_WEBDRIVER_JS = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

_SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None"}


def launch_args(headless: bool) -> list[str]:
    args = [
        "--disable-blink-features=AutomationControlled",
        f"--window-size={WINDOW_SIZE['width']},{WINDOW_SIZE['height']}",
        "--disable-extensions",
        "--disable-default-apps",
        "--disable-infobars",
        "--no-first-run",
        "--no-default-browser-check",
    ]
    if headless:
        args.append("--disable-gpu")
    else:
        args.append("--start-maximized")
    return args


def to_playwright_cookie(c: Credential) -> dict[str, Any]:
    d: dict[str, Any] = {
        "name": c.name,
        "value": c.value,
        "domain": c.domain,
        "path": c.path or "/",
        "secure": c.secure,
        "httpOnly": c.http_only,
        "sameSite": _SAME_SITE.get((c.same_site or "").lower(), "Lax"),
    }
    if c.expires is not None and c.expires >= 0:
        d["expires"] = c.expires
    return d


def from_playwright_cookie(d: dict[str, Any]) -> Credential:
    return Credential.from_dict(d)


class BrowserSession:
    """One page in one browser context. Not shared across threads."""

    def __init__(self, page, context):
        self.page = page
        self.context = context

    def goto(self, url: str, wait_selector: str | None = None, timeout_ms: float = 30_000) -> None:
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if wait_selector:
                self.page.wait_for_selector(wait_selector, state="visible", timeout=timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(f"failed to load {url}: {e}") from e

    def evaluate(self, expression: str, arg: Any = None) -> Any:
        try:
            if arg is None:
                return self.page.evaluate(expression)
            return self.page.evaluate(expression, arg)
        except PlaywrightError as e:
            raise ExtractionError(f"script evaluation failed: {e}") from e

    def current_url(self) -> str:
        try:
            return self.page.url
        except PlaywrightError as e:
            raise BrowserError(f"could not read current url: {e}") from e

    def credentials(self) -> list[Credential]:
        try:
            return [from_playwright_cookie(c) for c in self.context.cookies()]
        except PlaywrightError as e:
            raise BrowserError(f"could not read cookies: {e}") from e

    def add_credentials(self, creds: list[Credential]) -> None:
        if not creds:
            return
        try:
            self.context.add_cookies([to_playwright_cookie(c) for c in creds])
        except PlaywrightError as e:
            raise BrowserError(f"could not inject cookies: {e}") from e

    def wait_closed(self) -> None:
        """Block until the user closes the window (bot-test)."""
        try:
            self.page.wait_for_event("close", timeout=0)
        except PlaywrightError:
            pass


@contextmanager
def open_session(headless: bool = True, locale: str = "en-US") -> Iterator[BrowserSession]:
    """Launch Chromium and yield a session; the browser is always closed on exit."""
    try:
        pw = sync_playwright().start()
    except PlaywrightError as e:
        raise BrowserError(f"could not start playwright: {e}") from e
    try:
        try:
            browser = pw.chromium.launch(headless=headless, args=launch_args(headless))
        except PlaywrightError as e:
            raise BrowserError(
                f"could not launch chromium ({e}). Run: playwright install chromium"
            ) from e
        try:
            opts: dict[str, Any] = {"user_agent": DEFAULT_USER_AGENT, "locale": locale}
            if headless:
                opts["viewport"] = WINDOW_SIZE
            else:
                # Visible window: let the page follow the real window size.
                opts["no_viewport"] = True
            context = browser.new_context(**opts)
            context.add_init_script(_HIDE_WEBDRIVER_JS)
            page = context.new_page()
            page.set_default_timeout(30_000)
            yield BrowserSession(page, context)
        finally:
            try:
                browser.close()
            except PlaywrightError:
                pass
    finally:
        pw.stop()
