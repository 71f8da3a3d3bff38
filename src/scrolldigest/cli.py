from __future__ import annotations

import queue
import signal
import time
from typing import NoReturn, Optional

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from .auth import InteractiveAuthenticator
from .browser import open_session
from .config import Settings, load_settings
from .deadline import Deadline
from .digest import latest_digest
from .dispatch import Action, ActionDispatcher, ActionResult
from .errors import AuthError, ScrollDigestError, SessionError, StageError, StorageError
from .models import Analysis, Post, PostWithAnalysis
from .pipeline import Pipeline, PipelineState
from .providers.registry import provider_names
from .session import SessionStore
from .storage import STEP1_POSTS, STEP2_ANALYSES, STEP3_FILTERED, STEP4_CONTEXT, STEPS, Store


app = typer.Typer(add_completion=False, help="scrolldigest - scrape your X feed, score it with an LLM, write a digest")
console = Console()

checkpoints_app = typer.Typer(help="Inspect cached step outputs")
app.add_typer(checkpoints_app, name="checkpoints")

BOT_TEST_URL = "https://bot.sannysoft.com"


def _settings(env_file: Optional[str]) -> Settings:
    try:
        return load_settings(env_file)
    except pydantic.ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)


def _pipeline(env_file: Optional[str]) -> Pipeline:
    settings = _settings(env_file)
    try:
        return Pipeline.from_settings(settings)
    except ScrollDigestError as e:
        _fail("startup", e)


def _fail(stage: str, e: BaseException) -> NoReturn:
    cause = e.cause if isinstance(e, StageError) else e
    if isinstance(e, StageError):
        stage = e.stage
    if isinstance(cause, (AuthError, SessionError)):
        console.print(f"[red]{stage}:[/red] {cause}")
        console.print("Please log in again: [bold]scrolldigest login[/bold]")
    else:
        console.print(f"[red]{stage} failed:[/red] {cause}")
    raise typer.Exit(1)


def _load(pipe: Pipeline, namespace: str, hint: str):
    try:
        payload, where = pipe.store.load_latest(namespace)
    except StorageError as e:
        console.print(f"[red]{e}[/red] - run `scrolldigest {hint}` first")
        raise typer.Exit(1)
    console.print(f"Loaded {len(payload)} records from {where}")
    return payload


def _load_relevant(pipe: Pipeline) -> list[PostWithAnalysis]:
    """Newest of step4 (with context) / step3 (filtered)."""
    newest: tuple[int, str] | None = None
    for ns in (STEP4_CONTEXT, STEP3_FILTERED):
        rows = pipe.store.list_checkpoints(ns, limit=1)
        if rows and (newest is None or rows[0]["id"] > newest[0]):
            newest = (rows[0]["id"], ns)
    ns = newest[1] if newest else STEP3_FILTERED
    return [PostWithAnalysis.from_dict(d) for d in _load(pipe, ns, "filter")]


@app.command()
def login(
    timeout_sec: int = typer.Option(300, help="How long to wait for you to finish logging in"),
    env_file: Optional[str] = typer.Option(None, help="Path to .env"),
):
    """Open a browser window and capture session cookies once you are logged in."""
    settings = _settings(env_file)
    auth = InteractiveAuthenticator(SessionStore(settings.cookies_path), login_timeout=timeout_sec)
    try:
        auth.login(Deadline())
    except ScrollDigestError as e:
        _fail("login", e)
    console.print(f"Cookies saved to {settings.cookies_path}")


@app.command()
def logout(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    settings = _settings(env_file)
    auth = InteractiveAuthenticator(SessionStore(settings.cookies_path))
    try:
        cleared = auth.logout()
    except ScrollDigestError as e:
        _fail("logout", e)
    console.print("Logged out" if cleared else "Not logged in - nothing to clear")


@app.command()
def status(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """Login state, configured provider and the latest digest."""
    pipe = _pipeline(env_file)
    s = pipe.snapshot().settings

    try:
        bundle = pipe.sessions.load()
    except SessionError:
        console.print("Session: [yellow]not logged in[/yellow]")
    else:
        exp = bundle.expires_at()
        if bundle.is_valid():
            console.print(f"Session: [green]valid[/green] until {exp.isoformat() if exp else '?'}")
        else:
            console.print("Session: [red]expired or incomplete[/red] - run `scrolldigest login`")

    console.print(f"Provider: {s.analysis.provider} (model={s.analysis.resolved_model()})")
    if pipe.snapshot().analyzer_error is not None:
        console.print(f"[yellow]{pipe.snapshot().analyzer_error}[/yellow]")
    console.print(f"Relevance threshold: {s.analysis.relevance_threshold}")
    console.print(f"Latest digest: {latest_digest(s.digest.output_dir) or '-'}")


@app.command()
def providers():
    for n in provider_names():
        typer.echo(n)


@app.command()
def scrape(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """Step 1: scrape the feed into a checkpoint."""
    pipe = _pipeline(env_file)
    try:
        posts = pipe.scrape(Deadline())
    except ScrollDigestError as e:
        _fail("scrape", e)
    if not posts:
        console.print("No posts scraped")


@app.command()
def analyze(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """Step 2: score the last scraped posts."""
    pipe = _pipeline(env_file)
    posts = [Post.from_dict(d) for d in _load(pipe, STEP1_POSTS, "scrape")]
    try:
        pipe.analyze(posts, Deadline())
    except ScrollDigestError as e:
        _fail("analyze", e)


@app.command("filter")
def filter_cmd(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """Step 3: keep posts at or above the relevance threshold."""
    pipe = _pipeline(env_file)
    posts = [Post.from_dict(d) for d in _load(pipe, STEP1_POSTS, "scrape")]
    analyses = [Analysis.from_dict(d) for d in _load(pipe, STEP2_ANALYSES, "analyze")]
    pipe.filter(posts, analyses)


@app.command()
def context(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """Step 4: fetch replies for relevant posts that need them."""
    pipe = _pipeline(env_file)
    relevant = [PostWithAnalysis.from_dict(d) for d in _load(pipe, STEP3_FILTERED, "filter")]
    try:
        pipe.fetch_context(relevant, Deadline())
    except ScrollDigestError as e:
        _fail("context", e)


@app.command()
def digest(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """Step 5: render and deliver a digest from the last filtered posts."""
    pipe = _pipeline(env_file)
    relevant = _load_relevant(pipe)
    try:
        scraped, _ = pipe.store.load_latest(STEP1_POSTS)
        total = len(scraped)
    except StorageError:
        total = len(relevant)
    try:
        pipe.build_digest(relevant, total)
    except OSError as e:
        _fail("digest", e)


@app.command()
def run(env_file: Optional[str] = typer.Option(None, help="Path to .env")):
    """All steps: scrape -> analyze -> filter -> context -> digest."""
    pipe = _pipeline(env_file)
    try:
        result = pipe.generate_digest(Deadline())
    except ScrollDigestError as e:
        _fail("run", e)
    if result.message:
        console.print(result.message)
    console.print(
        f"[bold]{result.state.value}[/bold] scraped={result.scraped} analyzed={result.analyzed} "
        f"relevant={result.relevant}"
    )


@app.command("open")
def open_digest(
    html: bool = typer.Option(False, "--html", help="Open the HTML version"),
    env_file: Optional[str] = typer.Option(None, help="Path to .env"),
):
    """Open the most recent digest."""
    settings = _settings(env_file)
    path = latest_digest(settings.digest.output_dir, ".html" if html else ".md")
    if not path:
        console.print("No digests found. Generate one first with `scrolldigest run`.")
        raise typer.Exit(1)
    console.print(f"Opening {path}")
    typer.launch(path)


def _report(res: ActionResult) -> None:
    if res.ok:
        value = res.value
        if value is not None and hasattr(value, "state"):
            extra = f" -> {value.digest_path}" if value.state == PipelineState.DIGESTED else f" ({value.message})"
            console.print(f"[green]{res.action.value} done[/green]{extra}")
        else:
            console.print(f"[green]{res.action.value} done[/green]")
        return
    e = res.error
    cause = e.cause if isinstance(e, StageError) else e
    console.print(f"[red]{res.action.value} failed:[/red] {e}")
    if isinstance(cause, (AuthError, SessionError)):
        console.print("Please log in again: [bold]scrolldigest login[/bold]")


@app.command()
def daemon(
    interval_min: float = typer.Option(240, help="Minutes between digest runs"),
    run_now: bool = typer.Option(True, help="Run once immediately on start"),
    env_file: Optional[str] = typer.Option(None, help="Path to .env"),
):
    """Generate a digest every interval. SIGHUP reloads configuration."""
    pipe = _pipeline(env_file)

    def reload(_deadline: Deadline) -> None:
        pipe.reload(_settings(env_file))

    dispatcher = ActionDispatcher(
        {
            Action.GENERATE_DIGEST: pipe.generate_digest,
            Action.RELOAD_CONFIG: reload,
            Action.VIEW_LAST_DIGEST: lambda _d: latest_digest(pipe.snapshot().settings.digest.output_dir),
        }
    )
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda *_: dispatcher.submit(Action.RELOAD_CONFIG))

    dispatcher.start()
    interval = max(1.0, interval_min * 60)
    next_run = time.monotonic() if run_now else time.monotonic() + interval
    console.print(f"[bold]Daemon started[/bold] (every {interval_min:g} min, Ctrl-C to stop)")
    try:
        while True:
            if time.monotonic() >= next_run:
                dispatcher.submit(Action.GENERATE_DIGEST)
                next_run = time.monotonic() + interval
            try:
                res = dispatcher.results.get(timeout=1.0)
            except queue.Empty:
                continue
            _report(res)
    except KeyboardInterrupt:
        console.print("Stopping...")
    finally:
        dispatcher.stop(cancel_running=True, timeout=30)


@app.command("bot-test")
def bot_test(headless: bool = typer.Option(False, help="Run without a window")):
    """Open a browser fingerprint audit page with the scraping browser's settings."""
    try:
        with open_session(headless=headless) as session:
            session.goto(BOT_TEST_URL)
            if headless:
                console.print(f"Loaded {session.current_url()}")
                return
            console.print("Inspect the results, then close the window to exit")
            session.wait_closed()
    except ScrollDigestError as e:
        _fail("bot-test", e)


@checkpoints_app.command("list")
def checkpoints_list(
    step: Optional[str] = typer.Option(None, help=f"One of: {', '.join(STEPS)}"),
    limit: int = typer.Option(20, help="How many rows"),
    env_file: Optional[str] = typer.Option(None, help="Path to .env"),
):
    settings = _settings(env_file)
    if step and step not in STEPS:
        console.print(f"[red]Unknown step:[/red] {step}")
        raise typer.Exit(1)
    try:
        rows = Store(settings.db_path).list_checkpoints(step, limit=limit)
    except StorageError as e:
        _fail("checkpoints", e)

    table = Table("id", "step", "created_at", "bytes")
    for r in rows:
        table.add_row(str(r["id"]), r["namespace"], r["created_at"], str(r["size"]))
    console.print(table)


if __name__ == "__main__":
    app()
