"""Tests for AI moderation and tagging."""

import pytest

from ads.analysis import (
    FAIL_OPEN_REASON,
    FAIL_OPEN_SCORE,
    REFUSAL_REASON,
    TAGS_REQUIRED_MESSAGE,
    ContentAnalyzer,
    build_user_message,
    validate_score,
)
from ads.exceptions import AnalysisError, TaggingError
from ads.models import CreateAdRequest
from ai import AIConnectionError
from tests.conftest import FakeAIClient

REQUEST = CreateAdRequest(title="Vintage road bike", description="Steel frame", interests="cycling, outdoors")

def analyzer_with(**responses):
    client = FakeAIClient(**responses)
    return ContentAnalyzer(client), client

def test_user_message_states_age_restriction():
    """Test age bounds are always part of the prompt."""
    assert "Age Restriction: None" in build_user_message(REQUEST)

    restricted = CreateAdRequest(title="Wine tasting", min_age=21)
    message = build_user_message(restricted)
    assert "Minimum Age: 21" in message
    assert "Maximum Age: None" in message
    assert "Age Restriction" not in message

    assert "Interests: cycling, outdoors" in build_user_message(REQUEST)

@pytest.mark.parametrize("raw,expected", [(0, 0), (10, 10), (4.5, 5), (4.49, 4), (7.0, 7)])
def test_validate_score(raw, expected):
    """Test scores are rounded half up."""
    assert validate_score(raw) == expected

@pytest.mark.parametrize("raw", [-1, 10.5, 11, "7", None, True, float('nan')])
def test_validate_score_rejects(raw):
    """Test invalid scores raise."""
    with pytest.raises(AnalysisError):
        validate_score(raw)

@pytest.mark.asyncio
async def test_combined_analysis():
    """Test a single call yields score, visibility and tags."""
    analyzer, client = analyzer_with(
        combined={'response': '{"score": 8, "reasons": ["ok"], "tags": ["Product", "sports", "bogus"]}'}
    )
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == 8
    assert result.visible
    assert result.tags == ['product', 'sports']
    assert result.reasons == ['ok']
    assert not result.fallback_used
    assert client.calls == ['combined']

@pytest.mark.asyncio
async def test_low_score_is_hidden():
    """Test scores below 5 are stored hidden."""
    analyzer, _ = analyzer_with(combined='{"score": 4, "tags": ["product", "finance"]}')
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == 4
    assert not result.visible
    assert result.tags == ['product', 'finance']

@pytest.mark.asyncio
async def test_zero_score_drops_tags():
    """Test auto-hidden content never carries tags."""
    analyzer, client = analyzer_with(combined='{"score": 0, "tags": ["product", "finance"]}')
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == 0
    assert result.tags == []
    assert client.calls == ['combined']

@pytest.mark.asyncio
async def test_refusal_scores_zero():
    """Test a model refusal is treated as illegal content."""
    analyzer, client = analyzer_with(combined="I cannot help with content that promotes illegal activity.")
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == 0
    assert not result.visible
    assert result.reasons == [REFUSAL_REASON]
    assert result.tags == []
    assert client.calls == ['combined']

@pytest.mark.asyncio
async def test_fallback_to_separate_calls():
    """Test unparseable combined output falls back to separate calls."""
    analyzer, client = analyzer_with(
        combined='Sure! The ad looks fine.',
        moderation='{"score": 6, "reasons": null}',
        tags='{"tags": ["product", "sports"]}',
    )
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == 6
    assert result.visible
    assert result.tags == ['product', 'sports']
    assert result.fallback_used
    assert sorted(client.calls) == ['combined', 'moderation', 'tags']

@pytest.mark.asyncio
async def test_moderation_fails_open():
    """Test an unavailable moderator publishes with the fail-open score."""
    analyzer, _ = analyzer_with(
        combined=AIConnectionError("timed out"),
        moderation=AIConnectionError("timed out"),
        tags='{"tags": ["product", "sports"]}',
    )
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == FAIL_OPEN_SCORE
    assert result.visible
    assert result.reasons == [FAIL_OPEN_REASON]
    assert result.tags == ['product', 'sports']

@pytest.mark.asyncio
async def test_missing_tags_is_an_error():
    """Test publishable content without tags is rejected."""
    analyzer, _ = analyzer_with(
        combined='not json',
        moderation='{"score": 9}',
        tags='{"tags": ["nonsense"]}',
    )
    with pytest.raises(TaggingError, match=TAGS_REQUIRED_MESSAGE) as exc_info:
        await analyzer.analyze_with_fallback(REQUEST)
    assert exc_info.value.status_code == 400

@pytest.mark.asyncio
async def test_combined_without_tags_requests_tags():
    """Test a combined answer with no usable tags triggers a tag call."""
    analyzer, client = analyzer_with(
        combined='{"score": 9, "tags": []}',
        tags='{"tags": ["education", "community"]}',
    )
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.tags == ['education', 'community']
    assert client.calls == ['combined', 'tags']

@pytest.mark.asyncio
async def test_separate_zero_score_skips_tags():
    """Test a zero moderation score does not require tags."""
    analyzer, _ = analyzer_with(
        combined='garbled',
        moderation="I can't moderate this, it is illegal",
        tags=AIConnectionError("timed out"),
    )
    result = await analyzer.analyze_with_fallback(REQUEST)
    assert result.score == 0
    assert result.tags == []
    assert result.reasons == [REFUSAL_REASON]
