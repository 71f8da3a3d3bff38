import json

import pytest

from conftest import make_post
from scrolldigest.config import InterestsConfig
from scrolldigest.errors import AnalysisError
from scrolldigest.prompt import build_prompt, parse_analysis_response


def test_prompt_lists_interests_and_posts():
    interests = InterestsConfig(keywords=["rust", "llm"], priority_accounts=["karpathy"], muted_keywords=["crypto"])
    posts = [make_post("1", "Rust 2.0 is out", likes=10, is_repost=True), make_post("2", "gm")]
    prompt = build_prompt(posts, interests)
    assert "Keywords: rust, llm" in prompt
    assert "Priority accounts: karpathy" in prompt
    assert "Muted keywords (score 0): crypto" in prompt
    assert "### Post 1 (ID: 1)" in prompt
    assert "### Post 2 (ID: 2)" in prompt
    assert "Type: Repost" in prompt
    assert "relevance_score" in prompt


def test_prompt_without_interests_falls_back_to_quality():
    prompt = build_prompt([make_post("1")], InterestsConfig())
    assert "general quality" in prompt


def test_parse_array():
    body = json.dumps(
        [
            {"post_id": "1", "relevance_score": 0.9, "topics": ["a", "b", "c", "d"], "summary": "s", "needs_context": True},
            {"post_id": "2", "relevance_score": 1.7, "topics": "solo"},
        ]
    )
    out = parse_analysis_response(body)
    assert [a.post_id for a in out] == ["1", "2"]
    assert out[0].topics == ["a", "b", "c"]
    assert out[0].needs_context is True
    assert out[1].relevance_score == 1.0
    assert out[1].topics == ["solo"]


def test_parse_fenced_and_wrapped():
    fenced = '```json\n[{"post_id": "1", "relevance_score": 0.2}]\n```'
    assert parse_analysis_response(fenced)[0].relevance_score == 0.2
    wrapped = '{"results": [{"post_id": "7", "relevance_score": 0.4}]}'
    assert parse_analysis_response(wrapped)[0].post_id == "7"


@pytest.mark.parametrize("body", ["", "not json", '{"foo": 1}', '[{"relevance_score": 0.5}]'])
def test_parse_errors(body):
    with pytest.raises(AnalysisError):
        parse_analysis_response(body)


def test_parse_error_quotes_response():
    body = "Sorry, I can't help with that." + "x" * 1000
    with pytest.raises(AnalysisError) as exc:
        parse_analysis_response(body)
    assert "Sorry, I can't help" in str(exc.value)
    assert "x" * 600 not in str(exc.value)
