from __future__ import annotations

from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os
from pathlib import Path
import typer


APP_NAME = "scrolldigest"

PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OPENAI = "openai"
PROVIDER_STUB = "stub"

DEFAULT_MODELS = {
    PROVIDER_ANTHROPIC: "claude-sonnet-4-20250514",
    PROVIDER_OPENAI: "gpt-4o-mini",
    PROVIDER_STUB: "stub",
}


class InterestsConfig(BaseModel):
    keywords: list[str] = []
    priority_accounts: list[str] = []
    muted_keywords: list[str] = []
    muted_accounts: list[str] = []

    def is_empty(self) -> bool:
        return not (self.keywords or self.priority_accounts or self.muted_keywords or self.muted_accounts)


class ScrapingConfig(BaseModel):
    posts_per_scrape: int = Field(100, ge=1)
    replies_per_thread: int = Field(3, ge=1)
    headless: bool = True
    feed_timeout_sec: float = 300.0
    thread_timeout_sec: float = 120.0


class AnalysisConfig(BaseModel):
    provider: str = PROVIDER_ANTHROPIC
    api_key: str | None = None
    model: str | None = None
    relevance_threshold: float = Field(0.6, ge=0.0, le=1.0)
    batch_size: int = Field(10, ge=1)
    max_workers: int = Field(4, ge=1)
    request_timeout_sec: float = 120.0

    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.provider, "")


def default_data_dir() -> str:
    # per-user, so login and later runs agree regardless of cwd
    return typer.get_app_dir(APP_NAME)


class DigestConfig(BaseModel):
    output_dir: str = Field(default_factory=lambda: str(Path(default_data_dir()) / "digests"))
    max_posts: int = Field(20, ge=1)
    include_context: bool = True
    channel: str = "stdout"


class Settings(BaseModel):
    data_dir: str = Field(default_factory=default_data_dir)

    interests: InterestsConfig = InterestsConfig()
    scraping: ScrapingConfig = ScrapingConfig()
    analysis: AnalysisConfig = AnalysisConfig()
    digest: DigestConfig = Field(default_factory=DigestConfig)

    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    discord_webhook_url: str | None = None

    @property
    def cookies_path(self) -> str:
        return str(Path(self.data_dir) / "cookies.json")

    @property
    def db_path(self) -> str:
        return str(Path(self.data_dir) / "scrolldigest.sqlite")


def _env(name: str) -> str | None:
    return os.getenv(f"SCROLLDIGEST_{name}") or None


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name) or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name) or default)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = (_env(name) or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "y", "on")


def _env_list(name: str) -> list[str]:
    return [x.strip() for x in (_env(name) or "").split(",") if x.strip()]


def load_settings(env_file: str | None = None) -> Settings:
    # Load .env if present. Override so a reload picks up edits to the file.
    if env_file:
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    provider = (_env("LLM_PROVIDER") or PROVIDER_ANTHROPIC).strip().lower()
    api_key = _env("API_KEY")
    if not api_key and provider == PROVIDER_ANTHROPIC:
        api_key = os.getenv("ANTHROPIC_API_KEY") or None
    if not api_key and provider == PROVIDER_OPENAI:
        api_key = os.getenv("OPENAI_API_KEY") or None

    data_dir = _env("DATA_DIR") or default_data_dir()

    s = Settings(
        data_dir=data_dir,
        interests=InterestsConfig(
            keywords=_env_list("KEYWORDS"),
            priority_accounts=_env_list("PRIORITY_ACCOUNTS"),
            muted_keywords=_env_list("MUTED_KEYWORDS"),
            muted_accounts=_env_list("MUTED_ACCOUNTS"),
        ),
        scraping=ScrapingConfig(
            posts_per_scrape=_env_int("POSTS_PER_SCRAPE", 100),
            replies_per_thread=_env_int("REPLIES_PER_THREAD", 3),
            headless=_env_bool("HEADLESS", True),
            feed_timeout_sec=_env_float("FEED_TIMEOUT_SEC", 300.0),
            thread_timeout_sec=_env_float("THREAD_TIMEOUT_SEC", 120.0),
        ),
        analysis=AnalysisConfig(
            provider=provider,
            api_key=api_key,
            model=_env("LLM_MODEL"),
            relevance_threshold=_env_float("RELEVANCE_THRESHOLD", 0.6),
            batch_size=_env_int("BATCH_SIZE", 10),
            max_workers=_env_int("MAX_WORKERS", 4),
            request_timeout_sec=_env_float("LLM_TIMEOUT_SEC", 120.0),
        ),
        digest=DigestConfig(
            output_dir=_env("DIGEST_DIR") or str(Path(data_dir) / "digests"),
            max_posts=_env_int("DIGEST_MAX_POSTS", 20),
            include_context=_env_bool("INCLUDE_CONTEXT", True),
            channel=(_env("DIGEST_CHANNEL") or "stdout").strip().lower(),
        ),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
        discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL") or None,
    )

    # Ensure data dir exists
    Path(s.data_dir).expanduser().resolve().mkdir(parents=True, exist_ok=True)
    return s
