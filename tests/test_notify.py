from unittest.mock import patch

import pytest

from conftest import make_analysis, make_post
from scrolldigest.config import DigestConfig, Settings
from scrolldigest.digest import DigestBuilder
from scrolldigest.models import PostWithAnalysis
from scrolldigest.notify import deliver


@pytest.fixture
def content(tmp_path):
    p = PostWithAnalysis(make_post("1", "hi"), make_analysis("1", 0.9, summary="A thing happened"))
    return DigestBuilder(str(tmp_path)).render([p], 1)


def test_stdout(content, capsys):
    assert deliver(Settings(), content) == "stdout"
    assert "A thing happened" in capsys.readouterr().out


def test_none(content, capsys):
    assert deliver(Settings(digest=DigestConfig(channel="none")), content) == "none"
    assert capsys.readouterr().out == ""


@patch("scrolldigest.notify.requests.post")
def test_auto_prefers_telegram(mock_post, content):
    s = Settings(telegram_bot_token="t", telegram_chat_id="c", discord_webhook_url="https://discord/hook")
    assert deliver(s, content, channel="auto") == "telegram"
    url = mock_post.call_args.args[0]
    assert url == "https://api.telegram.org/bott/sendMessage"
    assert mock_post.call_args.kwargs["json"]["chat_id"] == "c"
    assert mock_post.call_args.kwargs["timeout"] == 30


@patch("scrolldigest.notify.requests.post")
def test_discord(mock_post, content):
    s = Settings(discord_webhook_url="https://discord/hook")
    assert deliver(s, content, channel="discord") == "discord"
    assert len(mock_post.call_args.kwargs["json"]["content"]) <= 1900


def test_missing_credentials(content):
    with pytest.raises(ValueError):
        deliver(Settings(), content, channel="telegram")
    with pytest.raises(ValueError):
        deliver(Settings(), content, channel="carrier-pigeon")
