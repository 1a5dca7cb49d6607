"""
Taste-graph access for personalization-aware strategies.

Strategies never talk to the taste graph themselves. The pipeline fetches a
user's top interests once per ranking call and hands the strategies an
``AffinityResult`` that is either a success carrying the affinities or a
failure carrying the error.
"""

from __future__ import annotations

import asyncio
import time
from urllib.parse import quote
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

import httpx
from aiolimiter import AsyncLimiter
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from feedrank.constants import (
    TASTE_GRAPH_BACKOFF_BASE,
    TASTE_GRAPH_BACKOFF_MAX,
    TASTE_GRAPH_HTTP_CONNECT_TIMEOUT,
    TASTE_GRAPH_HTTP_READ_TIMEOUT,
    TASTE_GRAPH_MAX_RETRIES,
    TASTE_GRAPH_RATE_LIMIT,
    TASTE_GRAPH_TIMEOUT,
    TASTE_GRAPH_USER_AGENT,
    TOP_INTEREST_COUNT,
)
from feedrank.logging_config import get_logger
from feedrank.models import UserTasteGraph

logger = get_logger(__name__)

type InterestPairs = list[tuple[str, float]]


class TasteGraphError(RuntimeError):
    """Raised when a user's taste graph cannot be read."""


class TasteGraphUnavailable(TasteGraphError):
    """Raised when no taste-graph source is configured."""


class TasteGraphRetryableError(TasteGraphError):
    """Raised for transient taste-graph failures (network, 5xx, 429)."""


@dataclass(frozen=True)
class AffinityResult:
    """Outcome of a taste-graph lookup: interests on success, the error otherwise."""

    interests: tuple[tuple[str, float], ...] = ()
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, pairs: Sequence[tuple[str, float]]) -> AffinityResult:
        return cls(interests=tuple((str(i), float(s)) for i, s in pairs))

    @classmethod
    def failure(cls, error: BaseException) -> AffinityResult:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def top_interest_ids(self, limit: int = TOP_INTEREST_COUNT) -> list[str]:
        return [interest_id for interest_id, _ in self.interests[:limit]]

    def affinity_map(self, limit: int = TOP_INTEREST_COUNT) -> dict[str, float]:
        affinities: dict[str, float] = {}
        for interest_id, score in self.interests[:limit]:
            # First occurrence wins; sources list highest affinity first.
            affinities.setdefault(interest_id, score)
        return affinities


@runtime_checkable
class TasteGraphSource(Protocol):
    async def get_user_top_interests(self, user_id: str, n: int) -> InterestPairs: ...


@dataclass
class StaticTasteGraph:
    """In-memory taste graph. Read-only after construction."""

    graphs: Mapping[str, UserTasteGraph] = field(default_factory=dict)
    clock: Optional[float] = None  # Fixed "now" for decay; wall clock when None

    async def get_user_top_interests(self, user_id: str, n: int) -> InterestPairs:
        graph = self.graphs.get(user_id)
        if graph is None:
            raise TasteGraphError(f"No taste graph for user {user_id}")
        now = self.clock if self.clock is not None else time.time()
        return graph.top_interests(n, now)

    @classmethod
    def from_dict(
        cls, d: Mapping[str, object], clock: Optional[float] = None
    ) -> StaticTasteGraph:
        """Build from ``{user_id: {"interests": [...]}}``."""
        graphs = {}
        for user_id, payload in d.items():
            graph = UserTasteGraph.from_dict(payload)  # type: ignore[arg-type]
            graphs[user_id] = UserTasteGraph(user_id=user_id, interests=graph.interests)
        return cls(graphs=graphs, clock=clock)


def _parse_interests(data: object) -> InterestPairs:
    if not isinstance(data, dict):
        raise TasteGraphError("Taste graph response is not an object")
    raw = data.get("interests")
    if not isinstance(raw, list):
        raise TasteGraphError("Taste graph response has no interests list")
    pairs: InterestPairs = []
    for item in raw:
        try:
            interest_id = item.get("interestId") or item.get("interest_id")
            score = float(item["score"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TasteGraphError(f"Malformed interest entry: {item!r}") from e
        if not interest_id:
            raise TasteGraphError(f"Malformed interest entry: {item!r}")
        pairs.append((str(interest_id), score))
    return pairs


class TasteGraphClient:
    """HTTP client for the taste-graph service. Safe for concurrent use."""

    def __init__(
        self,
        base_url: str,
        max_retries: int = TASTE_GRAPH_MAX_RETRIES,
        rate_limit: float = TASTE_GRAPH_RATE_LIMIT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.max_retries = max_retries
        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=base_url,
            headers={"User-Agent": TASTE_GRAPH_USER_AGENT},
            timeout=httpx.Timeout(
                TASTE_GRAPH_HTTP_READ_TIMEOUT, connect=TASTE_GRAPH_HTTP_CONNECT_TIMEOUT
            ),
            transport=transport,
        )
        self._limiter = AsyncLimiter(rate_limit, 1)

    async def get_user_top_interests(
        self, user_id: str, n: int = TOP_INTEREST_COUNT
    ) -> InterestPairs:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            retry=retry_if_exception_type(TasteGraphRetryableError),
            wait=wait_random_exponential(
                min=TASTE_GRAPH_BACKOFF_BASE, max=TASTE_GRAPH_BACKOFF_MAX
            ),
            reraise=True,
        ):
            with attempt:
                try:
                    async with self._limiter:
                        resp = await self.client.get(
                            f"/users/{quote(user_id, safe='')}/top-interests",
                            params={"n": n},
                        )
                except httpx.HTTPError as e:
                    raise TasteGraphRetryableError(str(e)) from e

                if resp.status_code == 200:
                    return _parse_interests(resp.json())[:n]
                if resp.status_code in {408, 429, 500, 502, 503, 504}:
                    raise TasteGraphRetryableError(
                        f"Taste graph error {resp.status_code}"
                    )
                raise TasteGraphError(
                    f"Taste graph error {resp.status_code} for user {user_id}"
                )
        raise TasteGraphError("Taste graph retries exhausted")  # pragma: no cover

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> TasteGraphClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


async def fetch_affinities(
    source: Optional[TasteGraphSource],
    user_id: str,
    n: int = TOP_INTEREST_COUNT,
    timeout: Optional[float] = TASTE_GRAPH_TIMEOUT,
) -> AffinityResult:
    """
    Look up a user's top interests, bounded by ``timeout`` seconds.

    Never raises for upstream problems: timeouts and errors come back as a
    failed ``AffinityResult``. Cancellation of the caller still propagates.
    """
    if source is None:
        return AffinityResult.failure(TasteGraphUnavailable("No taste graph source"))
    try:
        pairs = await asyncio.wait_for(
            source.get_user_top_interests(user_id, n), timeout=timeout
        )
        result = AffinityResult.success(pairs)
    except TimeoutError as e:
        logger.warning("taste_graph_timeout", user_id=user_id, timeout=timeout)
        return AffinityResult.failure(e)
    except Exception as e:
        logger.warning("taste_graph_failed", user_id=user_id, error=str(e))
        return AffinityResult.failure(e)
    return result
