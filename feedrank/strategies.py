"""
Interchangeable feed ranking strategies.

Every strategy is an immutable value configured at construction time. ``rank``
is synchronous and pure: it receives the candidate posts, the optional user id
and, for personalization-aware strategies, an ``AffinityResult`` fetched by the
caller. The returned list is always a permutation of the input.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import ClassVar, Optional, Protocol

from feedrank.constants import (
    DIVERSITY_SCORE_CLASSIFIED,
    DIVERSITY_SCORE_UNCLASSIFIED,
    DIVERSITY_WINDOW,
    HYBRID_DIVERSITY_SCORE_WEIGHT,
    HYBRID_DIVERSITY_WEIGHT,
    HYBRID_DIVERSITY_WINDOW,
    HYBRID_POPULARITY_WEIGHT,
    HYBRID_RECENCY_WEIGHT,
    PRE_RANK_ENGAGEMENT_WEIGHT,
    PRE_RANK_FRESHNESS_RATE,
    PRE_RANK_FRESHNESS_WEIGHT,
    PRE_RANK_INTEREST_WEIGHT,
    SCORE_TIE_EPSILON,
    TASTE_CONTENT_WEIGHT,
    TASTE_CREATOR_WEIGHT,
    TASTE_FRESHNESS_RATE,
    TASTE_FRESHNESS_WEIGHT,
    TASTE_INTEREST_WEIGHT,
    TASTE_TOP_INTERESTS,
    TOP_INTEREST_COUNT,
    TOPIC_POPULARITY_WEIGHT,
    TOPIC_RECENCY_WEIGHT,
    TOPIC_WEIGHT,
)
from feedrank.diversity import DiversityReranker
from feedrank.models import (
    Post,
    PostWithScores,
    StrategyConfig,
    TrendingTopic,
    UserTopicPreferences,
)
from feedrank.normalize import score_batch
from feedrank.signals import (
    build_topic_score_map,
    content_quality,
    creator_quality,
    engagement_rate,
    engagement_score,
    freshness_decay,
    interest_relevance,
    max_affinity,
)
from feedrank.taste_graph import AffinityResult

logger = logging.getLogger(__name__)


class RankingConfigError(ValueError):
    """Raised when a strategy is configured with invalid parameters."""


class RankingStrategy(Protocol):
    name: ClassVar[str]
    needs_affinities: ClassVar[bool]

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]: ...


def _validate_weights(strategy: str, **weights: float) -> None:
    for key, value in weights.items():
        if not math.isfinite(value) or value < 0:
            raise RankingConfigError(
                f"{strategy}: {key} must be a non-negative finite number, got {value}"
            )


def _validate_window(strategy: str, window_size: int) -> None:
    if window_size < 1:
        raise RankingConfigError(
            f"{strategy}: window_size must be >= 1, got {window_size}"
        )


def _has_affinities(user_id: Optional[str], affinities: Optional[AffinityResult]) -> bool:
    return user_id is not None and affinities is not None and affinities.ok


def sort_by_recency(posts: Sequence[Post]) -> list[Post]:
    """Newest first; posts created at the same instant keep their input order."""
    return sorted(posts, key=lambda p: -p.created_at)


def order_by_score(
    scored: Sequence[tuple[Post, float]], epsilon: float = SCORE_TIE_EPSILON
) -> list[Post]:
    """
    Highest score first. Scores closer than ``epsilon`` count as equal and are
    ordered by creation time, newest first; exact ties keep input order.

    Ties are judged pairwise, so the relation is not transitive: with scores
    0, 6e-5 and 1.2e-4 the outer pair is ordered by score while each adjacent
    pair ties. The result is still deterministic for a given input order.
    """

    def compare(a: tuple[Post, float], b: tuple[Post, float]) -> int:
        if abs(a[1] - b[1]) < epsilon:
            if a[0].created_at == b[0].created_at:
                return 0
            return -1 if a[0].created_at > b[0].created_at else 1
        return -1 if a[1] > b[1] else 1

    return [post for post, _ in sorted(scored, key=cmp_to_key(compare))]


def _stable_score_sort(scored: Sequence[tuple[Post, float]]) -> list[Post]:
    return [post for post, _ in sorted(scored, key=lambda ps: -ps[1])]


@dataclass(frozen=True)
class RecencyStrategy:
    name: ClassVar[str] = "recency"
    needs_affinities: ClassVar[bool] = False

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        return sort_by_recency(posts)


@dataclass(frozen=True)
class PopularityStrategy:
    name: ClassVar[str] = "popularity"
    needs_affinities: ClassVar[bool] = False

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        return sorted(posts, key=lambda p: (-engagement_score(p), -p.created_at))


@dataclass(frozen=True)
class HybridStrategy:
    """Weighted blend of normalized recency and popularity."""

    recency_weight: float = HYBRID_RECENCY_WEIGHT
    popularity_weight: float = HYBRID_POPULARITY_WEIGHT

    name: ClassVar[str] = "hybrid"
    needs_affinities: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _validate_weights(
            self.name,
            recency_weight=self.recency_weight,
            popularity_weight=self.popularity_weight,
        )

    def score(self, item: PostWithScores) -> float:
        return item.recency * self.recency_weight + item.popularity * self.popularity_weight

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        if not posts:
            return []
        return order_by_score([(s.post, self.score(s)) for s in score_batch(posts)])


@dataclass(frozen=True)
class TopicStrategy:
    """
    Normalized topic relevance against trending topics, blended with recency
    and popularity. With no trending topics it delegates to a Hybrid strategy
    whose popularity weight absorbs the topic weight.
    """

    trending_topics: tuple[TrendingTopic, ...] = ()
    topic_weight: float = TOPIC_WEIGHT
    recency_weight: float = TOPIC_RECENCY_WEIGHT
    popularity_weight: float = TOPIC_POPULARITY_WEIGHT

    fallback: Optional[HybridStrategy] = field(
        init=False, default=None, repr=False, compare=False
    )
    topic_scores: Mapping[str, float] = field(
        init=False, default_factory=dict, repr=False, compare=False
    )

    name: ClassVar[str] = "topic_ranking"
    needs_affinities: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _validate_weights(
            self.name,
            topic_weight=self.topic_weight,
            recency_weight=self.recency_weight,
            popularity_weight=self.popularity_weight,
        )
        object.__setattr__(self, "trending_topics", tuple(self.trending_topics))
        object.__setattr__(
            self, "topic_scores", build_topic_score_map(self.trending_topics)
        )
        if self._should_fall_back():
            object.__setattr__(
                self,
                "fallback",
                HybridStrategy(
                    recency_weight=self.recency_weight,
                    popularity_weight=self.popularity_weight + self.topic_weight,
                ),
            )

    def _should_fall_back(self) -> bool:
        return not self.trending_topics

    def _preferences(self) -> Optional[UserTopicPreferences]:
        return None

    def score(self, item: PostWithScores) -> float:
        return (
            item.topic * self.topic_weight
            + item.recency * self.recency_weight
            + item.popularity * self.popularity_weight
        )

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        if not posts:
            return []
        if self.fallback is not None:
            return self.fallback.rank(posts, user_id, affinities=affinities, now=now)

        scored = score_batch(posts, self.topic_scores, self._preferences())
        return order_by_score([(s.post, self.score(s)) for s in scored])


@dataclass(frozen=True)
class PersonalizedTopicStrategy(TopicStrategy):
    """Topic ranking whose matches are boosted by the user's preferences."""

    user_preferences: Optional[UserTopicPreferences] = None

    name: ClassVar[str] = "personalized_topic_ranking"

    def _should_fall_back(self) -> bool:
        return not self.trending_topics and self.user_preferences is None

    def _preferences(self) -> Optional[UserTopicPreferences]:
        return self.user_preferences


@dataclass(frozen=True)
class PreRankingStrategy:
    """
    Cheap single-sort pass used to shrink large candidate sets before the
    main strategy: interest match (50%), engagement rate (30%), freshness (20%).
    """

    interest_weight: float = PRE_RANK_INTEREST_WEIGHT
    engagement_weight: float = PRE_RANK_ENGAGEMENT_WEIGHT
    freshness_weight: float = PRE_RANK_FRESHNESS_WEIGHT
    top_interest_count: int = TOP_INTEREST_COUNT

    name: ClassVar[str] = "pre_ranking"
    needs_affinities: ClassVar[bool] = True

    def __post_init__(self) -> None:
        _validate_weights(
            self.name,
            interest_weight=self.interest_weight,
            engagement_weight=self.engagement_weight,
            freshness_weight=self.freshness_weight,
        )

    def score(self, post: Post, affinity_map: Mapping[str, float], now: float) -> float:
        return (
            max_affinity(post, affinity_map) * self.interest_weight
            + engagement_rate(post) * self.engagement_weight
            + freshness_decay(post, now, PRE_RANK_FRESHNESS_RATE) * self.freshness_weight
        )

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        if not posts:
            return []
        if not _has_affinities(user_id, affinities):
            return sort_by_recency(posts)

        now = time.time() if now is None else now
        affinity_map = affinities.affinity_map(self.top_interest_count)  # type: ignore[union-attr]
        return _stable_score_sort(
            [(post, self.score(post, affinity_map, now)) for post in posts]
        )


@dataclass(frozen=True)
class DiversityRankingStrategy:
    """Diversity re-ranking over the input order, no scoring."""

    window_size: int = DIVERSITY_WINDOW

    name: ClassVar[str] = "diversity_reranking"
    needs_affinities: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _validate_window(self.name, self.window_size)

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        return DiversityReranker(self.window_size).rerank(posts)


@dataclass(frozen=True)
class HybridDiversityStrategy:
    """
    Taste-graph relevance blended with a filler bonus for unclassified posts,
    then diversity re-ranked. Without a user or usable affinities it goes
    straight to the re-ranker over the input order.
    """

    diversity_weight: float = HYBRID_DIVERSITY_WEIGHT
    score_weight: float = HYBRID_DIVERSITY_SCORE_WEIGHT
    window_size: int = HYBRID_DIVERSITY_WINDOW
    top_interest_count: int = TOP_INTEREST_COUNT

    name: ClassVar[str] = "hybrid_diversity"
    needs_affinities: ClassVar[bool] = True

    def __post_init__(self) -> None:
        _validate_weights(
            self.name,
            diversity_weight=self.diversity_weight,
            score_weight=self.score_weight,
        )
        _validate_window(self.name, self.window_size)

    @staticmethod
    def diversity_score(post: Post) -> float:
        if post.primary_interest_id is None:
            return DIVERSITY_SCORE_UNCLASSIFIED
        return DIVERSITY_SCORE_CLASSIFIED

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        if not posts:
            return []
        reranker = DiversityReranker(self.window_size)
        if not _has_affinities(user_id, affinities):
            if user_id is not None:
                logger.debug("No affinities for %s, diversity only", user_id)
            return reranker.rerank(posts)

        affinity_map = affinities.affinity_map(self.top_interest_count)  # type: ignore[union-attr]
        scored = [
            (
                post,
                max_affinity(post, affinity_map) * self.score_weight
                + self.diversity_score(post) * self.diversity_weight,
            )
            for post in posts
        ]
        return reranker.rerank(_stable_score_sort(scored))


@dataclass(frozen=True)
class TasteBasedStrategy:
    """
    Interest relevance (40%), content quality (30%), creator quality (15%) and
    freshness (15%) over the user's top 20 interests, then diversity re-ranked.
    Falls back to recency without a user or usable affinities.
    """

    interest_weight: float = TASTE_INTEREST_WEIGHT
    content_weight: float = TASTE_CONTENT_WEIGHT
    creator_weight: float = TASTE_CREATOR_WEIGHT
    freshness_weight: float = TASTE_FRESHNESS_WEIGHT
    window_size: int = DIVERSITY_WINDOW
    top_interest_count: int = TASTE_TOP_INTERESTS

    name: ClassVar[str] = "taste_based"
    needs_affinities: ClassVar[bool] = True

    def __post_init__(self) -> None:
        _validate_weights(
            self.name,
            interest_weight=self.interest_weight,
            content_weight=self.content_weight,
            creator_weight=self.creator_weight,
            freshness_weight=self.freshness_weight,
        )
        _validate_window(self.name, self.window_size)

    def score(self, post: Post, affinity_map: Mapping[str, float], now: float) -> float:
        return (
            interest_relevance(post, affinity_map) * self.interest_weight
            + content_quality(post) * self.content_weight
            + creator_quality(post) * self.creator_weight
            + freshness_decay(post, now, TASTE_FRESHNESS_RATE) * self.freshness_weight
        )

    def rank(
        self,
        posts: Sequence[Post],
        user_id: Optional[str] = None,
        *,
        affinities: Optional[AffinityResult] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        if not posts:
            return []
        if not _has_affinities(user_id, affinities):
            return sort_by_recency(posts)

        now = time.time() if now is None else now
        affinity_map = affinities.affinity_map(self.top_interest_count)  # type: ignore[union-attr]
        ranked = _stable_score_sort(
            [(post, self.score(post, affinity_map, now)) for post in posts]
        )
        return DiversityReranker(self.window_size).rerank(ranked)


# =============================================================================
# Construction from configuration
# =============================================================================

STRATEGY_ALIASES: dict[str, str] = {
    "topic": "topic_ranking",
    "personalized_topic": "personalized_topic_ranking",
    "diversity": "diversity_reranking",
    "trending": "hybrid",
}

_WEIGHT_KEYS: dict[str, dict[str, str]] = {
    "recency": {},
    "popularity": {},
    "hybrid": {"recency": "recency_weight", "popularity": "popularity_weight"},
    "topic_ranking": {
        "topic": "topic_weight",
        "recency": "recency_weight",
        "popularity": "popularity_weight",
    },
    "personalized_topic_ranking": {
        "topic": "topic_weight",
        "recency": "recency_weight",
        "popularity": "popularity_weight",
    },
    "pre_ranking": {
        "interest": "interest_weight",
        "engagement": "engagement_weight",
        "freshness": "freshness_weight",
    },
    "diversity_reranking": {},
    "hybrid_diversity": {"diversity": "diversity_weight", "score": "score_weight"},
    "taste_based": {
        "interest": "interest_weight",
        "content": "content_weight",
        "creator": "creator_weight",
        "freshness": "freshness_weight",
    },
}

_BUILDERS: dict[str, Callable[..., RankingStrategy]] = {
    "recency": lambda config, **kw: RecencyStrategy(),
    "popularity": lambda config, **kw: PopularityStrategy(),
    "hybrid": lambda config, **kw: HybridStrategy(**kw),
    "topic_ranking": lambda config, **kw: TopicStrategy(
        trending_topics=config.trending_topics, **kw
    ),
    "personalized_topic_ranking": lambda config, **kw: PersonalizedTopicStrategy(
        trending_topics=config.trending_topics,
        user_preferences=config.user_preferences,
        **kw,
    ),
    "pre_ranking": lambda config, **kw: PreRankingStrategy(**kw),
    "diversity_reranking": lambda config, **kw: DiversityRankingStrategy(
        window_size=config.window_size or DIVERSITY_WINDOW
    ),
    "hybrid_diversity": lambda config, **kw: HybridDiversityStrategy(
        window_size=config.window_size or HYBRID_DIVERSITY_WINDOW, **kw
    ),
    "taste_based": lambda config, **kw: TasteBasedStrategy(
        window_size=config.window_size or DIVERSITY_WINDOW, **kw
    ),
}


def canonical_strategy_name(name: str) -> str:
    key = name.strip().lower()
    return STRATEGY_ALIASES.get(key, key)


def available_strategies() -> list[str]:
    return sorted(_BUILDERS)


def build_strategy(config: StrategyConfig) -> RankingStrategy:
    """Build a strategy from its configuration, rejecting unknown names and weights."""
    name = canonical_strategy_name(config.name)
    builder = _BUILDERS.get(name)
    if builder is None:
        raise RankingConfigError(
            f"Unknown strategy {config.name!r}; expected one of {available_strategies()}"
        )

    key_map = _WEIGHT_KEYS[name]
    unknown = sorted(set(config.weights) - set(key_map))
    if unknown:
        raise RankingConfigError(f"{name}: unknown weights {unknown}")
    if config.window_size is not None:
        _validate_window(name, config.window_size)

    kwargs = {key_map[k]: float(v) for k, v in config.weights.items()}
    return builder(config, **kwargs)
