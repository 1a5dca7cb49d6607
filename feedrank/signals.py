"""Raw per-post ranking signals. Pure functions, no normalization."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Optional

from feedrank.constants import (
    CONTENT_COMMENT_WEIGHT,
    CONTENT_LIKE_WEIGHT,
    CONTENT_MAX_ENGAGEMENT_RATE,
    CONTENT_SAVE_WEIGHT,
    CONTENT_SHARE_WEIGHT,
    CREATOR_BASE_SCORE,
    CREATOR_PHOTO_BONUS,
    CREATOR_USERNAME_BONUS,
    CREATOR_USERNAME_MIN_LENGTH,
    DEFAULT_PREFERENCE_WEIGHT,
    ENGAGEMENT_COMMENT_WEIGHT,
    ENGAGEMENT_LIKE_WEIGHT,
    ENGAGEMENT_RATE_SCALE,
    ENGAGEMENT_SAVE_WEIGHT,
    ENGAGEMENT_SHARE_WEIGHT,
    ENGAGEMENT_VIEW_WEIGHT,
    PRE_RANK_FRESHNESS_RATE,
    PREFERENCE_BOOST_FACTOR,
    SECONDS_PER_HOUR,
    TASTE_AVERAGE_RELEVANCE_FACTOR,
    TOPIC_CATEGORY_WEIGHT,
    TOPIC_TAG_WEIGHT,
)
from feedrank.models import Post, TrendingTopic, UserTopicPreferences, normalize_key


def engagement_score(post: Post) -> int:
    """Weighted engagement: likes*2 + comments*3 + views*1 + shares*2 + saves*2."""
    return (
        post.like_count * ENGAGEMENT_LIKE_WEIGHT
        + post.comment_count * ENGAGEMENT_COMMENT_WEIGHT
        + post.view_count * ENGAGEMENT_VIEW_WEIGHT
        + post.share_count * ENGAGEMENT_SHARE_WEIGHT
        + post.save_count * ENGAGEMENT_SAVE_WEIGHT
    )


def build_topic_score_map(trending_topics: Iterable[TrendingTopic]) -> dict[str, float]:
    """Map normalized topic id -> trend score (max wins on key collisions)."""
    scores: dict[str, float] = {}
    for topic in trending_topics:
        key = normalize_key(topic.id)
        scores[key] = max(scores.get(key, topic.trend_score), topic.trend_score)
    return scores


def _keyed_contribution(
    key: str,
    topic_scores: Mapping[str, float],
    weight: float,
    preferred: Optional[frozenset[str]],
    preference_weights: Optional[Mapping[str, float]],
) -> float:
    base = topic_scores.get(key)
    if base is None:
        return 0.0
    if preferred is not None and key in preferred:
        pref_weight = (preference_weights or {}).get(key, DEFAULT_PREFERENCE_WEIGHT)
        base *= 1.0 + pref_weight * PREFERENCE_BOOST_FACTOR
    return base * weight


def topic_relevance(
    post: Post,
    topic_scores: Mapping[str, float],
    preferences: Optional[UserTopicPreferences] = None,
) -> float:
    """
    Sum of trend scores for the post's tags, categories and classified interests.

    Tags weigh 2.0, categories and interests 1.5. Keys the user prefers are
    boosted by ``1 + weight * 0.5``. A preferred key that is not trending
    contributes nothing.
    """
    if not topic_scores:
        return 0.0

    tag_pref = preferences.preferred_tags if preferences else None
    tag_weights = preferences.tag_weights if preferences else None
    cat_pref = preferences.preferred_categories if preferences else None
    cat_weights = preferences.category_weights if preferences else None

    total = 0.0
    for tag in post.tags or ():
        total += _keyed_contribution(
            normalize_key(tag), topic_scores, TOPIC_TAG_WEIGHT, tag_pref, tag_weights
        )
    for category in (post.categories or ()) + post.classified_interests:
        total += _keyed_contribution(
            normalize_key(category),
            topic_scores,
            TOPIC_CATEGORY_WEIGHT,
            cat_pref,
            cat_weights,
        )
    return total


def age_hours(post: Post, now: float) -> float:
    """Hours since creation; future timestamps count as brand new."""
    return max(0.0, (now - post.created_at) / SECONDS_PER_HOUR)


def freshness_decay(
    post: Post, now: float, rate: float = PRE_RANK_FRESHNESS_RATE
) -> float:
    """Exponential freshness in (0, 1]; rate 0.05 halves roughly every 13.9h."""
    return math.exp(-rate * age_hours(post, now))


def engagement_rate(post: Post) -> float:
    """Bounded quality ratio of active engagement to views, capped at 1.0."""
    active = post.like_count + post.comment_count + post.save_count
    return min(active / max(post.view_count, 1) * ENGAGEMENT_RATE_SCALE, 1.0)


def content_quality(post: Post) -> float:
    """Engagement per view, saturating at a 10% weighted rate."""
    weighted = (
        post.like_count * CONTENT_LIKE_WEIGHT
        + post.comment_count * CONTENT_COMMENT_WEIGHT
        + post.save_count * CONTENT_SAVE_WEIGHT
        + post.share_count * CONTENT_SHARE_WEIGHT
    )
    rate = min(weighted / max(post.view_count, 1), CONTENT_MAX_ENGAGEMENT_RATE)
    return rate / CONTENT_MAX_ENGAGEMENT_RATE


def creator_quality(post: Post) -> float:
    score = CREATOR_BASE_SCORE
    if post.user_profile_photo_url:
        score += CREATOR_PHOTO_BONUS
    if post.username and len(post.username) >= CREATOR_USERNAME_MIN_LENGTH:
        score += CREATOR_USERNAME_BONUS
    return min(score, 1.0)


def max_affinity(post: Post, affinities: Mapping[str, float]) -> float:
    """Highest affinity among the post's classified interests (0 if none match)."""
    return max(
        (affinities[i] for i in post.classified_interests if i in affinities),
        default=0.0,
    )


def interest_relevance(post: Post, affinities: Mapping[str, float]) -> float:
    """
    Confidence-weighted affinity match.

    Each matching interest contributes ``affinity * confidence`` (confidence
    defaults to 1.0). Returns the larger of the best match and 80% of the mean.
    """
    scores = post.interest_scores or {}
    matches = [
        affinities[i] * scores.get(i, 1.0)
        for i in post.classified_interests
        if i in affinities
    ]
    if not matches:
        return 0.0
    average = sum(matches) / len(matches)
    return max(max(matches), average * TASTE_AVERAGE_RELEVANCE_FACTOR)
