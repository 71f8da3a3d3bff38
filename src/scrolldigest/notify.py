from __future__ import annotations

import requests

from .config import Settings
from .digest import DigestContent


def send_stdout(content: DigestContent) -> None:
    print("-" * 60)
    print(content.plain)


def send_discord(webhook_url: str, content: DigestContent) -> None:
    text = content.plain
    if not text.strip():
        return
    # Discord has 2000 char limit; keep it small.
    text = text[:1900]
    r = requests.post(webhook_url, json={"content": text}, timeout=30)
    r.raise_for_status()


def send_telegram(bot_token: str, chat_id: str, content: DigestContent) -> None:
    text = content.plain
    if not text.strip():
        return
    text = text[:3500]
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    r = requests.post(url, json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True}, timeout=30)
    r.raise_for_status()


def deliver(settings: Settings, content: DigestContent, channel: str | None = None) -> str:
    """Send a digest; returns the channel actually used."""
    channel = (channel or settings.digest.channel or "stdout").lower()

    if channel == "none":
        return channel

    if channel == "stdout":
        send_stdout(content)
        return channel

    if channel == "discord":
        if not settings.discord_webhook_url:
            raise ValueError("DISCORD_WEBHOOK_URL not set")
        send_discord(settings.discord_webhook_url, content)
        return channel

    if channel == "telegram":
        if not (settings.telegram_bot_token and settings.telegram_chat_id):
            raise ValueError("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID not set")
        send_telegram(settings.telegram_bot_token, settings.telegram_chat_id, content)
        return channel

    if channel != "auto":
        raise ValueError(f"Unknown channel: {channel}")

    # auto: prefer telegram then discord else stdout
    if settings.telegram_bot_token and settings.telegram_chat_id:
        send_telegram(settings.telegram_bot_token, settings.telegram_chat_id, content)
        return "telegram"
    if settings.discord_webhook_url:
        send_discord(settings.discord_webhook_url, content)
        return "discord"
    send_stdout(content)
    return "stdout"
