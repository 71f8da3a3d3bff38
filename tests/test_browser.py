from scrolldigest.browser import DEFAULT_USER_AGENT, launch_args, to_playwright_cookie
from scrolldigest.models import Credential


def test_launch_args():
    args = launch_args(headless=True)
    assert "--disable-blink-features=AutomationControlled" in args
    assert "--window-size=1920,1080" in args
    assert "--disable-gpu" in args
    assert "--disable-gpu" not in launch_args(headless=False)
    assert "Chrome/120" in DEFAULT_USER_AGENT


def test_cookie_conversion_keeps_attributes():
    c = Credential(
        name="auth_token", value="v", domain=".x.com", path="/", secure=True, http_only=True, same_site="none", expires=99
    )
    d = to_playwright_cookie(c)
    assert d == {
        "name": "auth_token",
        "value": "v",
        "domain": ".x.com",
        "path": "/",
        "secure": True,
        "httpOnly": True,
        "sameSite": "None",
        "expires": 99,
    }
    assert "expires" not in to_playwright_cookie(Credential(name="a", value="b", domain="x.com"))
