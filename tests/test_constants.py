import pytest

from feedrank import constants


def test_engagement_weights():
    """Guard engagement weights from accidental drift."""
    assert constants.ENGAGEMENT_LIKE_WEIGHT == 2
    assert constants.ENGAGEMENT_COMMENT_WEIGHT == 3
    assert constants.ENGAGEMENT_VIEW_WEIGHT == 1
    assert constants.ENGAGEMENT_SHARE_WEIGHT == 2
    assert constants.ENGAGEMENT_SAVE_WEIGHT == 2


def test_strategy_default_weights():
    assert constants.HYBRID_RECENCY_WEIGHT + constants.HYBRID_POPULARITY_WEIGHT == (
        pytest.approx(1.0)
    )
    assert (
        constants.TOPIC_WEIGHT
        + constants.TOPIC_RECENCY_WEIGHT
        + constants.TOPIC_POPULARITY_WEIGHT
    ) == pytest.approx(1.0)
    assert (
        constants.PRE_RANK_INTEREST_WEIGHT
        + constants.PRE_RANK_ENGAGEMENT_WEIGHT
        + constants.PRE_RANK_FRESHNESS_WEIGHT
    ) == pytest.approx(1.0)
    assert (
        constants.TASTE_INTEREST_WEIGHT
        + constants.TASTE_CONTENT_WEIGHT
        + constants.TASTE_CREATOR_WEIGHT
        + constants.TASTE_FRESHNESS_WEIGHT
    ) == pytest.approx(1.0)


def test_topic_and_diversity_defaults():
    assert constants.TOPIC_TAG_WEIGHT == pytest.approx(2.0)
    assert constants.TOPIC_CATEGORY_WEIGHT == pytest.approx(1.5)
    assert constants.PREFERENCE_BOOST_FACTOR == pytest.approx(0.5)
    assert constants.SCORE_TIE_EPSILON == pytest.approx(1e-4)
    assert constants.DIVERSITY_WINDOW == 3
    assert constants.HYBRID_DIVERSITY_WINDOW == 5
    assert constants.TOP_INTEREST_COUNT == 10
    assert constants.TASTE_GRAPH_TIMEOUT == pytest.approx(2.0)
