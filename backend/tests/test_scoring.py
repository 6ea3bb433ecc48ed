"""Tests for batch scoring: response parsing and the fallback path."""

import json

import pytest
from unittest.mock import Mock

from adapter.models import Authorship, CandidatePost, Category
from scoring import (
    BatchScorer,
    ParseStatus,
    fallback_verdicts,
    parse_batch_response,
    strip_code_fences,
)


def _posts(official=2, community=1):
    posts = [
        CandidatePost(text=f"Official update number {i} from the team", authorship=Authorship.OFFICIAL, query="from:KaspaCurrency")
        for i in range(official)
    ]
    posts += [
        CandidatePost(text=f"Community chatter number {i} about $KAS", query="$KAS")
        for i in range(community)
    ]
    return posts


def _verdicts(n, scores=None, order=None):
    scores = scores or [7] * n
    items = [
        {
            "index": i,
            "importance_score": scores[i],
            "category": "technical",
            "summary": f"Summary {i}",
            "is_official": False,
            "reasoning": "test",
        }
        for i in range(n)
    ]
    if order:
        items = [items[i] for i in order]
    return items


@pytest.fixture
def live_grok():
    grok = Mock()
    grok.is_live = True
    return grok


class TestParseBatchResponse:

    def test_ok(self):
        posts = _posts()
        result = parse_batch_response(json.dumps(_verdicts(3, scores=[9, 4, 6])), posts)

        assert result.ok
        assert [v.importance_score for v in result.verdicts] == [9, 4, 6]
        assert [v.index for v in result.verdicts] == [0, 1, 2]

    def test_out_of_order_indices_are_realigned(self):
        posts = _posts()
        raw = json.dumps(_verdicts(3, scores=[9, 4, 6], order=[2, 0, 1]))

        result = parse_batch_response(raw, posts)

        assert result.ok
        assert [v.importance_score for v in result.verdicts] == [9, 4, 6]

    def test_is_official_taken_from_input(self):
        posts = _posts(official=1, community=1)
        items = _verdicts(2)
        items[0]["is_official"] = False
        items[1]["is_official"] = True

        result = parse_batch_response(json.dumps(items), posts)

        assert [v.is_official for v in result.verdicts] == [True, False]

    def test_code_fences_stripped(self):
        raw = "```json\n" + json.dumps(_verdicts(3)) + "\n```"
        assert parse_batch_response(raw, _posts()).ok

    def test_none_is_unavailable(self):
        assert parse_batch_response(None, _posts()).status == ParseStatus.UNAVAILABLE

    def test_not_json(self):
        result = parse_batch_response("I think these posts are great!", _posts())
        assert result.status == ParseStatus.PARSE_ERROR
        assert result.verdicts == []

    def test_not_an_array(self):
        raw = json.dumps({"verdicts": _verdicts(3)})
        assert parse_batch_response(raw, _posts()).status == ParseStatus.PARSE_ERROR

    def test_length_mismatch(self):
        raw = json.dumps(_verdicts(2))
        assert parse_batch_response(raw, _posts()).status == ParseStatus.LENGTH_MISMATCH

    def test_invalid_item(self):
        items = _verdicts(3)
        items[1]["importance_score"] = "very high"
        assert parse_batch_response(json.dumps(items), _posts()).status == ParseStatus.PARSE_ERROR

    @pytest.mark.parametrize("literal", ["1e999", "-1e999", "NaN", "Infinity"])
    def test_non_finite_score(self, literal):
        items = _verdicts(3)
        items[1]["importance_score"] = "__SCORE__"
        raw = json.dumps(items).replace('"__SCORE__"', literal)

        result = parse_batch_response(raw, _posts())

        assert result.status == ParseStatus.PARSE_ERROR
        assert result.verdicts == []

    def test_duplicate_indices(self):
        items = _verdicts(3)
        items[2]["index"] = 0
        assert parse_batch_response(json.dumps(items), _posts()).status == ParseStatus.BAD_INDICES

    def test_out_of_range_scores_clamped(self):
        raw = json.dumps(_verdicts(3, scores=[14, -2, 5]))
        result = parse_batch_response(raw, _posts())
        assert [v.importance_score for v in result.verdicts] == [10, 0, 5]

    def test_strip_code_fences(self):
        assert strip_code_fences("```\n[]\n```") == "[]"
        assert strip_code_fences("[]") == "[]"


class TestFallback:

    def test_fallback_scores(self):
        posts = _posts(official=2, community=3)
        verdicts = fallback_verdicts(posts, "AI unavailable")

        assert [v.importance_score for v in verdicts] == [6, 6, 5, 5, 5]
        assert all(v.category == Category.GENERAL for v in verdicts)
        assert [v.is_official for v in verdicts] == [True, True, False, False, False]
        assert verdicts[0].summary == posts[0].text

    def test_fallback_summary_truncated(self):
        post = CandidatePost(text="x" * 300, query="Kaspa")
        assert len(fallback_verdicts([post], "r")[0].summary) == 200


class TestBatchScorer:

    def test_one_call_per_batch(self, live_grok):
        posts = _posts()
        live_grok.classify_posts.return_value = json.dumps(_verdicts(3, scores=[8, 7, 3]))

        scored = BatchScorer(live_grok).score("Kaspa", "KAS", posts)

        live_grok.classify_posts.assert_called_once_with("Kaspa", "KAS", posts)
        assert scored.status == ParseStatus.OK
        assert scored.ai_called
        assert not scored.used_fallback
        assert [v.importance_score for v in scored.verdicts] == [8, 7, 3]

    def test_empty_batch_makes_no_call(self, live_grok):
        scored = BatchScorer(live_grok).score("Kaspa", "KAS", [])

        live_grok.classify_posts.assert_not_called()
        assert scored.verdicts == []
        assert not scored.used_fallback

    def test_not_live_falls_back_without_call(self):
        grok = Mock()
        grok.is_live = False

        scored = BatchScorer(grok).score("Kaspa", "KAS", _posts())

        grok.classify_posts.assert_not_called()
        assert scored.status == ParseStatus.UNAVAILABLE
        assert not scored.ai_called
        assert [v.importance_score for v in scored.verdicts] == [6, 6, 5]

    def test_timeout_falls_back_for_whole_batch(self, live_grok):
        live_grok.classify_posts.return_value = None
        posts = _posts(official=3, community=2)

        scored = BatchScorer(live_grok).score("Kaspa", "KAS", posts)

        assert scored.used_fallback
        assert scored.status == ParseStatus.UNAVAILABLE
        assert [v.importance_score for v in scored.verdicts] == [6, 6, 6, 5, 5]
        assert all(v.category == Category.GENERAL for v in scored.verdicts)

    def test_infinite_score_falls_back_for_whole_batch(self, live_grok):
        items = _verdicts(3, scores=[9, 0, 8])
        items[1]["importance_score"] = "__SCORE__"
        live_grok.classify_posts.return_value = json.dumps(items).replace('"__SCORE__"', "1e999")

        scored = BatchScorer(live_grok).score("Kaspa", "KAS", _posts())

        assert scored.status == ParseStatus.PARSE_ERROR
        assert scored.used_fallback
        assert [v.importance_score for v in scored.verdicts] == [6, 6, 5]

    def test_partial_response_never_mixed(self, live_grok):
        # Two good verdicts for three posts: the batch is all fallback, not a mix
        live_grok.classify_posts.return_value = json.dumps(_verdicts(2, scores=[10, 10]))

        scored = BatchScorer(live_grok).score("Kaspa", "KAS", _posts())

        assert scored.status == ParseStatus.LENGTH_MISMATCH
        assert [v.importance_score for v in scored.verdicts] == [6, 6, 5]
        assert all(v.reasoning == "AI analysis failed" for v in scored.verdicts)
