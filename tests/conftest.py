from typing import Optional

import pytest

from feedrank.models import Post

# Fixed "now" so freshness-dependent scores are reproducible.
NOW = 1_750_000_000.0
HOUR = 3600.0


def build_post(
    post_id: str,
    hours_ago: float = 0.0,
    interest: Optional[str] = None,
    **kwargs,
) -> Post:
    """Build a Post created ``hours_ago`` before NOW, classified under ``interest``."""
    if interest is not None:
        kwargs.setdefault("interest_ids", (interest,))
        kwargs.setdefault("interest_scores", {interest: 0.9})
    return Post(
        id=post_id,
        user_id=kwargs.pop("user_id", f"author-{post_id}"),
        created_at=NOW - hours_ago * HOUR,
        **kwargs,
    )


@pytest.fixture
def make_post():
    return build_post


@pytest.fixture
def now() -> float:
    return NOW
