from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import make_analysis, make_bundle, make_post
from scrolldigest.analyzer import BatchAnalyzer
from scrolldigest.config import AnalysisConfig, DigestConfig, Settings
from scrolldigest.errors import (
    AnalysisError,
    ConfigError,
    ExtractionError,
    StageError,
    StorageError,
    ValidationError,
)
from scrolldigest.models import PostWithAnalysis
from scrolldigest.pipeline import Pipeline, PipelineState, filter_by_relevance
from scrolldigest.providers.base import Provider
from scrolldigest.session import SessionStore
from scrolldigest.storage import STEP1_POSTS, STEP2_ANALYSES, STEP3_FILTERED, STEP4_CONTEXT, STEP5_DIGESTS, Store


class ScoreTable(Provider):
    name = "table"

    def __init__(self, scores, needs_context=()):
        self.scores = scores
        self.needs_context = set(needs_context)
        self.calls = 0

    def analyze(self, posts, interests, deadline=None):
        self.calls += 1
        return [
            make_analysis(p.post_id, self.scores.get(p.post_id, 0.0), needs_context=p.post_id in self.needs_context)
            for p in posts
        ]


def _settings(tmp_path, **digest):
    digest.setdefault("output_dir", str(tmp_path / "digests"))
    digest.setdefault("channel", "none")
    digest.setdefault("include_context", False)
    return Settings(
        data_dir=str(tmp_path),
        analysis=AnalysisConfig(provider="stub", relevance_threshold=0.6, batch_size=2),
        digest=DigestConfig(**digest),
    )


def _pipeline(tmp_path, posts=None, scores=None, logged_in=True, needs_context=(), notifier=None, **digest):
    settings = _settings(tmp_path, **digest)
    sessions = SessionStore(settings.cookies_path)
    if logged_in:
        sessions.save(make_bundle())
    scraper = MagicMock()
    scraper.extract_feed.return_value = posts if posts is not None else []
    provider = ScoreTable(scores or {}, needs_context)
    analyzer = BatchAnalyzer(provider, batch_size=2)
    pipe = Pipeline(settings, sessions, Store(settings.db_path), scraper, analyzer, notifier=notifier)
    return pipe, scraper, provider


def test_filter_threshold_is_inclusive():
    posts = [make_post(str(i)) for i in range(4)]
    analyses = [make_analysis(str(i), s) for i, s in enumerate([0.4, 0.6, 0.6, 0.9])]
    out = filter_by_relevance(posts, analyses, 0.6)
    assert [p.post.post_id for p in out] == ["1", "2", "3"]


def test_filter_drops_unanalyzed_and_ignores_orphans():
    posts = [make_post("a"), make_post("b")]
    analyses = [make_analysis("a", 0.9), make_analysis("zzz", 1.0)]
    out = filter_by_relevance(posts, analyses, 0.5)
    assert [p.post.post_id for p in out] == ["a"]


def test_generate_digest_end_to_end(tmp_path):
    posts = [make_post(str(i), f"post {i}") for i in range(5)]
    notifier = MagicMock(return_value="stdout")
    pipe, scraper, provider = _pipeline(
        tmp_path, posts, scores={"1": 0.7, "3": 0.95, "4": 0.2}, notifier=notifier
    )

    result = pipe.generate_digest()

    assert result.state == PipelineState.DIGESTED
    assert (result.scraped, result.analyzed, result.relevant) == (5, 5, 2)
    assert Path(result.digest_path).exists()
    assert Path(result.digest_path).with_suffix(".html").exists()
    text = Path(result.digest_path).read_text()
    # highest score first
    assert text.index("post 3") < text.index("post 1")
    assert provider.calls == 3
    notifier.assert_called_once()
    for ns in (STEP1_POSTS, STEP2_ANALYSES, STEP3_FILTERED, STEP5_DIGESTS):
        pipe.store.load_latest(ns)
    assert pipe.store.list_checkpoints(STEP4_CONTEXT) == []

    creds = scraper.extract_feed.call_args.args[0]
    assert {c.name for c in creds} == {"auth_token", "ct0"}


def test_zero_posts_short_circuits(tmp_path):
    pipe, _, provider = _pipeline(tmp_path, posts=[])
    result = pipe.generate_digest()
    assert result.state == PipelineState.SCRAPED
    assert result.digest_path is None
    assert provider.calls == 0


def test_extraction_error_is_not_zero_posts(tmp_path):
    pipe, scraper, provider = _pipeline(tmp_path)
    scraper.extract_feed.side_effect = ExtractionError("page crashed")
    with pytest.raises(StageError) as exc:
        pipe.generate_digest()
    assert exc.value.stage == "scrape"
    assert isinstance(exc.value.cause, ExtractionError)
    assert "scrape failed" in str(exc.value)
    assert provider.calls == 0


def test_not_logged_in(tmp_path):
    pipe, scraper, _ = _pipeline(tmp_path, logged_in=False)
    assert not pipe.is_authenticated()
    with pytest.raises(StageError) as exc:
        pipe.generate_digest()
    assert isinstance(exc.value.cause, ValidationError)
    scraper.extract_feed.assert_not_called()
    with pytest.raises(ValidationError):
        pipe.scrape()


def test_corrupt_session_counts_as_logged_out(tmp_path):
    pipe, scraper, _ = _pipeline(tmp_path, logged_in=False)
    Path(pipe.sessions.path).write_text("garbage")
    with pytest.raises(StageError):
        pipe.generate_digest()
    scraper.extract_feed.assert_not_called()


def test_nothing_relevant(tmp_path):
    pipe, _, _ = _pipeline(tmp_path, [make_post("1")], scores={"1": 0.1})
    result = pipe.generate_digest()
    assert result.state == PipelineState.FILTERED
    assert result.digest_path is None
    assert not (tmp_path / "digests").exists()


def test_analysis_error_is_reported_with_stage(tmp_path):
    pipe, _, provider = _pipeline(tmp_path, [make_post("1")])
    provider.analyze = MagicMock(side_effect=AnalysisError("api down"))
    with pytest.raises(StageError) as exc:
        pipe.generate_digest()
    assert exc.value.stage == "analyze"


def test_missing_llm_config_fails_analyze_only(tmp_path):
    pipe, _, _ = _pipeline(tmp_path, [make_post("1")])
    s = pipe.snapshot()
    pipe._snap = s._replace(analyzer=None, analyzer_error=ConfigError("no key"))
    assert len(pipe.scrape()) == 1
    with pytest.raises(ConfigError):
        pipe.analyze([make_post("1")])


def test_checkpoint_failures_do_not_fail_the_run(tmp_path):
    pipe, _, _ = _pipeline(tmp_path, [make_post("1")], scores={"1": 0.9})
    pipe.store = MagicMock(wraps=pipe.store)
    pipe.store.save.side_effect = StorageError("disk full")
    result = pipe.generate_digest()
    assert result.state == PipelineState.DIGESTED
    assert pipe.store.save.call_count == 4


def test_delivery_failure_keeps_digest(tmp_path):
    notifier = MagicMock(side_effect=ValueError("DISCORD_WEBHOOK_URL not set"))
    pipe, _, _ = _pipeline(tmp_path, [make_post("1")], scores={"1": 0.9}, notifier=notifier)
    result = pipe.generate_digest()
    assert result.state == PipelineState.DIGESTED
    assert Path(result.digest_path).exists()


def test_fetch_context_copies_and_skips_failures(tmp_path):
    pipe, scraper, _ = _pipeline(tmp_path, include_context=True)
    relevant = [
        PostWithAnalysis(make_post("a"), make_analysis("a", 0.9, needs_context=True)),
        PostWithAnalysis(make_post("b"), make_analysis("b", 0.9, needs_context=False)),
        PostWithAnalysis(make_post("c"), make_analysis("c", 0.9, needs_context=True)),
    ]

    def thread(creds, url, n, deadline=None):
        if url.endswith("/c"):
            raise ExtractionError("thread did not load")
        return [make_post("r1"), make_post("r2")]

    scraper.extract_thread.side_effect = thread

    out = pipe.fetch_context(relevant)

    assert [len(p.context) for p in out] == [2, 0, 0]
    assert all(not p.context for p in relevant)
    assert scraper.extract_thread.call_count == 2
    assert scraper.extract_thread.call_args.args[2] == 3
    pipe.store.load_latest(STEP4_CONTEXT)


def test_context_stage_runs_when_enabled(tmp_path):
    pipe, scraper, _ = _pipeline(
        tmp_path, [make_post("1"), make_post("2")], scores={"1": 0.9, "2": 0.8}, needs_context={"2"}, include_context=True
    )
    scraper.extract_thread.return_value = [make_post("r")]
    result = pipe.generate_digest()
    assert result.state == PipelineState.DIGESTED
    scraper.extract_thread.assert_called_once()
    assert "Replies:" in Path(result.digest_path).read_text()


def test_reload_swaps_snapshot(tmp_path):
    pipe, _, _ = _pipeline(tmp_path)
    before = pipe.snapshot()
    new = _settings(tmp_path).model_copy(
        update={"analysis": AnalysisConfig(provider="stub", relevance_threshold=0.9)}
    )
    pipe.reload(new)
    after = pipe.snapshot()
    assert before.settings.analysis.relevance_threshold == 0.6
    assert after.settings.analysis.relevance_threshold == 0.9
    assert after.analyzer is not None and after.analyzer is not before.analyzer


def test_reload_with_bad_provider_keeps_scraping(tmp_path):
    pipe, _, _ = _pipeline(tmp_path)
    pipe.reload(_settings(tmp_path).model_copy(update={"analysis": AnalysisConfig(provider="nope")}))
    snap = pipe.snapshot()
    assert snap.analyzer is None
    assert isinstance(snap.analyzer_error, ConfigError)


def test_reload_mid_run_does_not_mix_configs(tmp_path):
    pipe, scraper, provider = _pipeline(
        tmp_path, scores={"1": 0.8}, needs_context={"1"}, include_context=False
    )
    reloaded = _settings(tmp_path, include_context=True).model_copy(
        update={"analysis": AnalysisConfig(provider="stub", relevance_threshold=0.99)}
    )

    def scrape_then_reload(creds, n, deadline=None):
        pipe.reload(reloaded)
        return [make_post("1")]

    scraper.extract_feed.side_effect = scrape_then_reload

    result = pipe.generate_digest()

    assert result.state == PipelineState.DIGESTED
    assert result.relevant == 1
    assert provider.calls == 1
    scraper.extract_thread.assert_not_called()
    assert pipe.snapshot().settings.analysis.relevance_threshold == 0.99
