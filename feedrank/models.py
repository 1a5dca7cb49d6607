"""Typed data models for feed ranking."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, TypedDict

from feedrank.constants import (
    AFFINITY_DECAY_FACTOR,
    EPOCH_MILLIS_THRESHOLD,
    SECONDS_PER_DAY,
)


class PostDict(TypedDict, total=False):
    """Serialized Post payload (snake_case form written by ``to_dict``)."""

    id: str
    user_id: str
    created_at: float
    like_count: int
    comment_count: int
    view_count: int
    share_count: int
    save_count: int
    tags: Optional[list[str]]
    categories: Optional[list[str]]
    interest_ids: Optional[list[str]]
    interest_scores: Optional[dict[str, float]]
    primary_interest_id: Optional[str]
    username: Optional[str]
    user_profile_photo_url: Optional[str]
    caption: Optional[str]


def parse_timestamp(value: object) -> float:
    """Convert epoch seconds, epoch millis, ISO-8601 or datetime to epoch seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        return ts / 1000.0 if abs(ts) > EPOCH_MILLIS_THRESHOLD else ts
    if isinstance(value, str):
        text = value.strip()
        try:
            return parse_timestamp(float(text))
        except ValueError:
            pass
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return parse_timestamp(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported timestamp: {value!r}")


def _pick(d: Mapping[str, object], *keys: str, default: object = None) -> object:
    for key in keys:
        if key in d and d[key] is not None:
            return d[key]
    return default


def _optional_list(value: object) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    return tuple(str(v) for v in value)  # type: ignore[union-attr]


def _derive_primary_interest(
    interest_scores: Optional[Mapping[str, float]],
) -> Optional[str]:
    if not interest_scores:
        return None
    # Highest confidence wins; equal confidences resolve to the smaller id.
    return min(interest_scores.items(), key=lambda kv: (-kv[1], kv[0]))[0]


@dataclass(frozen=True)
class Post:
    """A candidate post with engagement counters frozen at fetch time."""

    id: str
    user_id: str
    created_at: float
    like_count: int = 0
    comment_count: int = 0
    view_count: int = 0
    share_count: int = 0
    save_count: int = 0
    tags: Optional[tuple[str, ...]] = None
    categories: Optional[tuple[str, ...]] = None
    interest_ids: Optional[tuple[str, ...]] = None
    interest_scores: Optional[Mapping[str, float]] = None
    primary_interest_id: Optional[str] = None
    username: Optional[str] = None
    user_profile_photo_url: Optional[str] = None
    caption: Optional[str] = None

    def __post_init__(self) -> None:
        for name in (
            "like_count",
            "comment_count",
            "view_count",
            "share_count",
            "save_count",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative for post {self.id}")
        if self.primary_interest_id is None:
            object.__setattr__(
                self,
                "primary_interest_id",
                _derive_primary_interest(self.interest_scores),
            )

    @property
    def classified_interests(self) -> tuple[str, ...]:
        """Classified interest ids, falling back to the keys of the score map."""
        if self.interest_ids is not None:
            return self.interest_ids
        if self.interest_scores:
            return tuple(self.interest_scores)
        return ()

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> Post:
        """Create Post from a Firestore-style (camelCase) or snake_case dict."""
        scores = _pick(d, "interest_scores", "interestScores")
        return cls(
            id=str(_pick(d, "id", default="")),
            user_id=str(_pick(d, "user_id", "userId", default="")),
            created_at=parse_timestamp(_pick(d, "created_at", "createdAt", default=0)),
            like_count=int(_pick(d, "like_count", "likeCount", default=0)),  # type: ignore[arg-type]
            comment_count=int(_pick(d, "comment_count", "commentCount", default=0)),  # type: ignore[arg-type]
            view_count=int(_pick(d, "view_count", "viewCount", default=0)),  # type: ignore[arg-type]
            share_count=int(_pick(d, "share_count", "shareCount", default=0)),  # type: ignore[arg-type]
            save_count=int(_pick(d, "save_count", "saveCount", default=0)),  # type: ignore[arg-type]
            tags=_optional_list(_pick(d, "tags")),
            categories=_optional_list(_pick(d, "categories")),
            interest_ids=_optional_list(_pick(d, "interest_ids", "interestIds")),
            interest_scores=(
                {str(k): float(v) for k, v in scores.items()}  # type: ignore[union-attr]
                if scores is not None
                else None
            ),
            primary_interest_id=_pick(d, "primary_interest_id", "primaryInterestId"),  # type: ignore[arg-type]
            username=_pick(d, "username"),  # type: ignore[arg-type]
            user_profile_photo_url=_pick(
                d, "user_profile_photo_url", "userProfilePhotoUrl"
            ),  # type: ignore[arg-type]
            caption=_pick(d, "caption"),  # type: ignore[arg-type]
        )

    def to_dict(self) -> PostDict:
        """Serialize to a snake_case dict."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "like_count": self.like_count,
            "comment_count": self.comment_count,
            "view_count": self.view_count,
            "share_count": self.share_count,
            "save_count": self.save_count,
            "tags": list(self.tags) if self.tags is not None else None,
            "categories": list(self.categories) if self.categories is not None else None,
            "interest_ids": (
                list(self.interest_ids) if self.interest_ids is not None else None
            ),
            "interest_scores": (
                dict(self.interest_scores) if self.interest_scores is not None else None
            ),
            "primary_interest_id": self.primary_interest_id,
            "username": self.username,
            "user_profile_photo_url": self.user_profile_photo_url,
            "caption": self.caption,
        }


@dataclass(frozen=True)
class TrendingTopic:
    """A globally (or personally) trending label, tag or category."""

    id: str
    name: str
    trend_score: float
    growth_rate: float = 0.0
    type: str = "tag"  # "label", "tag" or "category"
    post_count: int = 0

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> TrendingTopic:
        return cls(
            id=str(_pick(d, "id", default="")),
            name=str(_pick(d, "name", default="")),
            trend_score=float(_pick(d, "trend_score", "trendScore", default=0.0)),  # type: ignore[arg-type]
            growth_rate=float(_pick(d, "growth_rate", "growthRate", default=0.0)),  # type: ignore[arg-type]
            type=str(_pick(d, "type", default="tag")),
            post_count=int(_pick(d, "post_count", "postCount", default=0)),  # type: ignore[arg-type]
        )


def normalize_key(key: str) -> str:
    """Case-fold and trim a tag, category or topic id for lookups."""
    return key.strip().casefold()


@dataclass(frozen=True)
class UserTopicPreferences:
    """A user's preferred tags and categories with optional per-key weights."""

    preferred_tags: frozenset[str] = frozenset()
    preferred_categories: frozenset[str] = frozenset()
    tag_weights: Mapping[str, float] = field(default_factory=dict)
    category_weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "preferred_tags", frozenset(normalize_key(t) for t in self.preferred_tags)
        )
        object.__setattr__(
            self,
            "preferred_categories",
            frozenset(normalize_key(c) for c in self.preferred_categories),
        )
        object.__setattr__(
            self,
            "tag_weights",
            {normalize_key(k): float(v) for k, v in self.tag_weights.items()},
        )
        object.__setattr__(
            self,
            "category_weights",
            {normalize_key(k): float(v) for k, v in self.category_weights.items()},
        )

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> UserTopicPreferences:
        return cls(
            preferred_tags=frozenset(_pick(d, "preferred_tags", "preferredTags", default=())),  # type: ignore[arg-type]
            preferred_categories=frozenset(
                _pick(d, "preferred_categories", "preferredCategories", default=())  # type: ignore[arg-type]
            ),
            tag_weights=dict(_pick(d, "tag_weights", "tagWeights", default={})),  # type: ignore[arg-type]
            category_weights=dict(
                _pick(d, "category_weights", "categoryWeights", default={})  # type: ignore[arg-type]
            ),
        )


@dataclass(frozen=True)
class PostWithScores:
    """A post with its per-batch normalized scores, each in [0, 1]."""

    post: Post
    recency: float
    popularity: float
    topic: float = 0.0


@dataclass(frozen=True)
class InterestAffinity:
    """A user's affinity for one interest in the taste graph."""

    interest_id: str
    score: float  # 0.0 to 1.0
    last_engagement: float  # Epoch seconds
    decay_factor: float = AFFINITY_DECAY_FACTOR
    engagement_count: int = 0

    def current_score(self, now: float) -> float:
        """Affinity after exponential decay since the last engagement."""
        days = max(0.0, (now - self.last_engagement) / SECONDS_PER_DAY)
        return max(self.score * math.exp(-self.decay_factor * days), 0.0)

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> InterestAffinity:
        return cls(
            interest_id=str(_pick(d, "interest_id", "interestId", default="")),
            score=float(_pick(d, "score", default=0.0)),  # type: ignore[arg-type]
            last_engagement=parse_timestamp(
                _pick(d, "last_engagement", "lastEngagement", default=0)
            ),
            decay_factor=float(
                _pick(d, "decay_factor", "decayFactor", default=AFFINITY_DECAY_FACTOR)  # type: ignore[arg-type]
            ),
            engagement_count=int(
                _pick(d, "engagement_count", "engagementCount", default=0)  # type: ignore[arg-type]
            ),
        )


@dataclass(frozen=True)
class UserTasteGraph:
    """A user's affinities across interests."""

    user_id: str
    interests: tuple[InterestAffinity, ...] = ()

    def top_interests(self, count: int, now: float) -> list[tuple[str, float]]:
        """Top ``count`` (interest_id, current_score) pairs, highest first."""
        scored = [(a.interest_id, a.current_score(now)) for a in self.interests]
        scored.sort(key=lambda pair: (-pair[1], pair[0]))
        return scored[:count]

    def affinity(self, interest_id: str) -> Optional[InterestAffinity]:
        return next((a for a in self.interests if a.interest_id == interest_id), None)

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> UserTasteGraph:
        raw = _pick(d, "interests", default=[])
        return cls(
            user_id=str(_pick(d, "user_id", "userId", default="")),
            interests=tuple(InterestAffinity.from_dict(i) for i in raw),  # type: ignore[union-attr]
        )


@dataclass(frozen=True)
class StrategyConfig:
    """Name and parameters of the strategy to build for a ranking call."""

    name: str = "hybrid"
    weights: Mapping[str, float] = field(default_factory=dict)
    window_size: Optional[int] = None
    trending_topics: tuple[TrendingTopic, ...] = ()
    user_preferences: Optional[UserTopicPreferences] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, object]) -> StrategyConfig:
        topics = _pick(d, "trending_topics", "trendingTopics", default=[])
        prefs = _pick(d, "user_preferences", "userPreferences")
        window = _pick(d, "window_size", "windowSize")
        return cls(
            name=str(_pick(d, "name", "strategy", default="hybrid")),
            weights={
                str(k): float(v)
                for k, v in dict(_pick(d, "weights", default={})).items()  # type: ignore[arg-type]
            },
            window_size=int(window) if window is not None else None,  # type: ignore[arg-type]
            trending_topics=tuple(TrendingTopic.from_dict(t) for t in topics),  # type: ignore[union-attr]
            user_preferences=(
                UserTopicPreferences.from_dict(prefs) if prefs is not None else None  # type: ignore[arg-type]
            ),
        )
