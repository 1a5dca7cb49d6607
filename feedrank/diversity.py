"""
Sliding-window diversity re-ranking.

Keeps posts that share a primary interest from appearing within ``window_size``
accepted posts of each other. Posts held back by the window are backfilled
afterwards, so the output is always a permutation of the input.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from feedrank.constants import DIVERSITY_WINDOW
from feedrank.models import Post

logger = logging.getLogger(__name__)


class SkipReason(str, Enum):
    INTEREST_REPETITION = "interest_repetition"


@dataclass(frozen=True)
class SkippedPost:
    post: Post
    reason: SkipReason
    interest_id: str


@dataclass(frozen=True)
class DiversityResult:
    """Re-ranked posts plus the posts the first pass held back."""

    posts: list[Post]
    skipped: list[SkippedPost] = field(default_factory=list)
    accepted_count: int = 0


@dataclass(frozen=True)
class DiversityReranker:
    window_size: int = DIVERSITY_WINDOW

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")

    def rerank(self, posts: Sequence[Post]) -> list[Post]:
        return self.rerank_with_report(posts).posts

    def rerank_with_report(self, posts: Sequence[Post]) -> DiversityResult:
        if not posts:
            return DiversityResult(posts=[])

        accepted: list[Post] = []
        skipped: list[SkippedPost] = []
        window: deque[str] = deque(maxlen=self.window_size)

        # 1. Forward pass: accept unless the primary interest is in the window
        for post in posts:
            interest = post.primary_interest_id
            if interest is None:
                # Unclassified posts act as fillers and never enter the window
                accepted.append(post)
            elif interest not in window:
                accepted.append(post)
                window.append(interest)
            else:
                skipped.append(
                    SkippedPost(post, SkipReason.INTEREST_REPETITION, interest)
                )

        # 2. Backfill: interests not yet used first, then the rest in order
        backfilled = self._backfill(skipped, set(window))

        if skipped:
            logger.debug(
                "Diversity rerank held back %d of %d posts (window=%d)",
                len(skipped),
                len(posts),
                self.window_size,
            )
        return DiversityResult(
            posts=accepted + backfilled,
            skipped=skipped,
            accepted_count=len(accepted),
        )

    @staticmethod
    def _backfill(skipped: Sequence[SkippedPost], used: set[str]) -> list[Post]:
        preferred: list[Post] = []
        remaining: list[Post] = []
        for item in skipped:
            if item.interest_id not in used:
                preferred.append(item.post)
                used.add(item.interest_id)
            else:
                remaining.append(item.post)
        return preferred + remaining
