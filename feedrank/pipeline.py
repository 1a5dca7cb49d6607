"""
Multi-stage feed ranking: pre-ranking -> main strategy -> diversity re-ranking.

The pipeline is the only place that awaits the taste graph. It fetches a
user's top interests at most once per call and passes the resulting
``AffinityResult`` to every stage. Each stage degrades on its own when the
lookup failed, and an unexpected error in the main strategy degrades to a
recency sort, so ``rank`` always returns a permutation of its candidates.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

from feedrank.constants import (
    DIVERSITY_WINDOW,
    TASTE_GRAPH_TIMEOUT,
    TOP_INTEREST_COUNT,
)
from feedrank.diversity import DiversityReranker
from feedrank.logging_config import get_logger
from feedrank.models import Post, StrategyConfig
from feedrank.strategies import (
    PreRankingStrategy,
    RankingConfigError,
    RankingStrategy,
    build_strategy,
    sort_by_recency,
)
from feedrank.taste_graph import (
    AffinityResult,
    TasteGraphSource,
    TasteGraphUnavailable,
    fetch_affinities,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PipelineSettings:
    """Stage switches and limits for ``RankingPipeline``."""

    pre_ranking: bool = False
    pre_ranking_limit: Optional[int] = None  # Only the top N reach the main strategy
    diversity: bool = False
    diversity_window: int = DIVERSITY_WINDOW
    taste_graph_timeout: Optional[float] = TASTE_GRAPH_TIMEOUT
    top_interest_count: int = TOP_INTEREST_COUNT
    taste_graph_url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.pre_ranking_limit is not None and self.pre_ranking_limit < 0:
            raise RankingConfigError(
                f"pre_ranking_limit must be >= 0, got {self.pre_ranking_limit}"
            )
        if self.diversity_window < 1:
            raise RankingConfigError(
                f"diversity_window must be >= 1, got {self.diversity_window}"
            )
        if self.top_interest_count < 1:
            raise RankingConfigError(
                f"top_interest_count must be >= 1, got {self.top_interest_count}"
            )


class RankingPipeline:
    """Orchestrates the ranking stages for one strategy. Safe to share."""

    def __init__(
        self,
        strategy: RankingStrategy,
        taste_graph: Optional[TasteGraphSource] = None,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self.strategy = strategy
        self.taste_graph = taste_graph
        self.settings = settings or PipelineSettings()
        self.pre_ranker = PreRankingStrategy(
            top_interest_count=self.settings.top_interest_count
        )
        self.reranker = DiversityReranker(self.settings.diversity_window)

    @classmethod
    def from_config(
        cls,
        config: StrategyConfig,
        taste_graph: Optional[TasteGraphSource] = None,
        settings: Optional[PipelineSettings] = None,
    ) -> RankingPipeline:
        return cls(build_strategy(config), taste_graph=taste_graph, settings=settings)

    def _needs_affinities(self) -> bool:
        return self.settings.pre_ranking or self.strategy.needs_affinities

    def _interest_count(self) -> int:
        counts = [self.settings.top_interest_count]
        strategy_count = getattr(self.strategy, "top_interest_count", None)
        if self.strategy.needs_affinities and strategy_count:
            counts.append(int(strategy_count))
        return max(counts)

    async def load_affinities(self, user_id: Optional[str]) -> Optional[AffinityResult]:
        """Fetch affinities when a stage needs them; ``None`` when no user."""
        if user_id is None or not self._needs_affinities():
            return None
        if self.taste_graph is None:
            return AffinityResult.failure(
                TasteGraphUnavailable("No taste graph source configured")
            )
        return await fetch_affinities(
            self.taste_graph,
            user_id,
            n=self._interest_count(),
            timeout=self.settings.taste_graph_timeout,
        )

    async def rank(
        self,
        candidates: Sequence[Post],
        user_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> list[Post]:
        if not candidates:
            return []
        now = time.time() if now is None else now
        affinities = await self.load_affinities(user_id)
        return self.rank_with_affinities(candidates, user_id, affinities, now)

    def rank_with_affinities(
        self,
        candidates: Sequence[Post],
        user_id: Optional[str],
        affinities: Optional[AffinityResult],
        now: float,
    ) -> list[Post]:
        """Run every stage synchronously against an already-fetched result."""
        if not candidates:
            return []

        log = logger.bind(strategy=self.strategy.name, user_id=user_id)
        if affinities is not None and not affinities.ok:
            log.info("ranking_degraded", error=repr(affinities.error))

        # 1. Pre-ranking (candidate reduction)
        head: list[Post] = list(candidates)
        tail: list[Post] = []
        if self.settings.pre_ranking:
            pre_ranked = self.pre_ranker.rank(
                candidates, user_id, affinities=affinities, now=now
            )
            limit = self.settings.pre_ranking_limit
            if limit is not None:
                head, tail = pre_ranked[:limit], pre_ranked[limit:]
            else:
                head = pre_ranked
            log.debug("pre_ranked", candidates=len(candidates), kept=len(head))

        # 2. Main strategy
        try:
            ranked = self.strategy.rank(head, user_id, affinities=affinities, now=now)
        except Exception as e:
            log.warning("strategy_failed", error=str(e), fallback="recency")
            ranked = sort_by_recency(head)
        ranked += tail

        # 3. Diversity re-ranking
        if self.settings.diversity:
            ranked = self.reranker.rerank(ranked)

        log.debug("ranked", count=len(ranked))
        return ranked


async def rank(
    candidates: Sequence[Post],
    user_id: Optional[str] = None,
    strategy_config: Optional[StrategyConfig] = None,
    *,
    taste_graph: Optional[TasteGraphSource] = None,
    settings: Optional[PipelineSettings] = None,
    now: Optional[float] = None,
) -> list[Post]:
    """
    Rank a candidate set for one feed request.

    Returns a permutation of ``candidates``. Upstream failures only make the
    feed less personalized; invalid configuration raises ``RankingConfigError``.
    """
    pipeline = RankingPipeline.from_config(
        strategy_config or StrategyConfig(),
        taste_graph=taste_graph,
        settings=settings,
    )
    return await pipeline.rank(candidates, user_id, now=now)
