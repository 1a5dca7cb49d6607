"""Per-batch min-max normalization of raw ranking signals."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from feedrank.constants import (
    DEFAULT_NORMALIZED_POPULARITY,
    DEFAULT_NORMALIZED_RECENCY,
    DEFAULT_NORMALIZED_TOPIC,
)
from feedrank.models import Post, PostWithScores, UserTopicPreferences
from feedrank.signals import engagement_score, topic_relevance

_FLOAT_MAX = float(np.finfo(np.float64).max)


def min_max(
    values: ArrayLike, invert: bool = False, default: float = 0.0
) -> NDArray[np.float64]:
    """
    Rescale a batch to [0, 1] using the batch's own min and max.

    ``invert`` maps smaller raw values to higher scores. When every value is
    identical (including a single value) each entry becomes ``default``.
    Infinite raw values are clamped to the largest finite float and NaN
    counts as 0.
    """
    arr = np.nan_to_num(
        np.asarray(values, dtype=np.float64),
        nan=0.0,
        posinf=_FLOAT_MAX,
        neginf=-_FLOAT_MAX,
    )
    if arr.size == 0:
        return np.zeros(0, dtype=np.float64)

    lo = float(arr.min())
    hi = float(arr.max())
    if not hi > lo:
        return np.full(arr.shape, default, dtype=np.float64)

    # Halved so the span between extreme finite values cannot overflow
    scaled = (arr / 2 - lo / 2) / (hi / 2 - lo / 2)
    if invert:
        scaled = 1.0 - scaled
    return np.clip(scaled, 0.0, 1.0)


def normalized_recency(posts: Sequence[Post]) -> NDArray[np.float64]:
    """Newest post -> 1.0, oldest -> 0.0. Independent of the current time."""
    # Age since creation is now - created_at; smaller ages score higher.
    ages = [-p.created_at for p in posts]
    return min_max(ages, invert=True, default=DEFAULT_NORMALIZED_RECENCY)


def normalized_popularity(posts: Sequence[Post]) -> NDArray[np.float64]:
    return min_max(
        [engagement_score(p) for p in posts], default=DEFAULT_NORMALIZED_POPULARITY
    )


def normalized_topic(
    posts: Sequence[Post],
    topic_scores: Mapping[str, float],
    preferences: Optional[UserTopicPreferences] = None,
) -> NDArray[np.float64]:
    return min_max(
        [topic_relevance(p, topic_scores, preferences) for p in posts],
        default=DEFAULT_NORMALIZED_TOPIC,
    )


def score_batch(
    posts: Sequence[Post],
    topic_scores: Optional[Mapping[str, float]] = None,
    preferences: Optional[UserTopicPreferences] = None,
) -> list[PostWithScores]:
    """Wrap each post with its normalized recency, popularity and topic scores."""
    if not posts:
        return []

    recency = normalized_recency(posts)
    popularity = normalized_popularity(posts)
    if topic_scores:
        topic = normalized_topic(posts, topic_scores, preferences)
    else:
        topic = np.full(len(posts), DEFAULT_NORMALIZED_TOPIC, dtype=np.float64)

    return [
        PostWithScores(
            post=post,
            recency=float(recency[i]),
            popularity=float(popularity[i]),
            topic=float(topic[i]),
        )
        for i, post in enumerate(posts)
    ]
