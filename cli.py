import argparse
import asyncio
import json
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.table import Table

from feedrank.config import get_pipeline_settings, get_strategy_config, save_config
from feedrank.logging_config import configure_logging
from feedrank.models import Post, StrategyConfig, TrendingTopic
from feedrank.pipeline import PipelineSettings, RankingPipeline
from feedrank.signals import engagement_score
from feedrank.strategies import RankingConfigError, available_strategies
from feedrank.taste_graph import StaticTasteGraph, TasteGraphClient

console = Console()


def load_posts(path: Path) -> list[Post]:
    """Load candidates from a JSON list or an object with a ``posts`` list."""
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("posts", [])
    return [Post.from_dict(d) for d in data]


def load_topics(path: Path) -> tuple[TrendingTopic, ...]:
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("topics", [])
    return tuple(TrendingTopic.from_dict(t) for t in data)


def build_strategy_config(args, defaults: StrategyConfig) -> StrategyConfig:
    name = args.strategy or defaults.name
    weights = dict(defaults.weights) if name == defaults.name else {}
    for item in args.weight or []:
        key, _, value = item.partition("=")
        weights[key.strip()] = float(value)
    topics = load_topics(args.topics) if args.topics else defaults.trending_topics
    return StrategyConfig(
        name=name,
        weights=weights,
        window_size=args.window if args.window is not None else defaults.window_size,
        trending_topics=topics,
        user_preferences=defaults.user_preferences,
    )


def build_settings(args, defaults: PipelineSettings) -> PipelineSettings:
    return PipelineSettings(
        pre_ranking=args.pre_rank or defaults.pre_ranking,
        pre_ranking_limit=(
            args.pre_rank_limit
            if args.pre_rank_limit is not None
            else defaults.pre_ranking_limit
        ),
        diversity=args.diversity or defaults.diversity,
        diversity_window=defaults.diversity_window,
        taste_graph_timeout=defaults.taste_graph_timeout,
        top_interest_count=defaults.top_interest_count,
        taste_graph_url=args.taste_graph_url or defaults.taste_graph_url,
    )


def render(posts: list[Post], top: int, title: str) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Post")
    table.add_column("Author")
    table.add_column("Interest", style="cyan")
    table.add_column("Engagement", justify="right")
    table.add_column("Created (UTC)")
    for i, post in enumerate(posts[:top], 1):
        created = datetime.fromtimestamp(post.created_at, tz=timezone.utc)
        table.add_row(
            str(i),
            post.id,
            post.username or post.user_id,
            post.primary_interest_id or "-",
            str(engagement_score(post)),
            created.strftime("%Y-%m-%d %H:%M"),
        )
    return table


async def main(args) -> int:
    try:
        posts = load_posts(args.candidates)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error: could not read candidates: {e}[/]")
        return 1

    try:
        config = build_strategy_config(args, get_strategy_config())
        settings = build_settings(args, get_pipeline_settings())
    except (RankingConfigError, ValueError) as e:
        console.print(f"[red]Error: {e}[/]")
        return 2

    if args.save_default:
        save_config("strategy", config.name)

    taste_graph = None
    if args.taste_graph:
        try:
            taste_graph = StaticTasteGraph.from_dict(
                json.loads(args.taste_graph.read_text())
            )
        except (OSError, ValueError, TypeError, AttributeError) as e:
            console.print(f"[red]Error: could not read taste graph: {e}[/]")
            return 1
    elif settings.taste_graph_url:
        taste_graph = TasteGraphClient(settings.taste_graph_url)

    try:
        pipeline = RankingPipeline.from_config(config, taste_graph, settings)
    except RankingConfigError as e:
        console.print(f"[red]Error: {e}[/]")
        return 2

    try:
        ranked = await pipeline.rank(posts, args.user, now=time.time())
    finally:
        if isinstance(taste_graph, TasteGraphClient):
            await taste_graph.close()

    console.print(render(ranked, args.top, f"{config.name} feed ({len(ranked)} posts)"))
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Rank a candidate set of posts.")
    parser.add_argument("candidates", type=Path, help="JSON file of candidate posts")
    parser.add_argument(
        "--strategy", choices=available_strategies(), help="Ranking strategy"
    )
    parser.add_argument("--user", help="User id for personalized strategies")
    parser.add_argument(
        "--weight", action="append", metavar="KEY=VALUE", help="Override a weight"
    )
    parser.add_argument("--window", type=int, help="Diversity window size")
    parser.add_argument("--topics", type=Path, help="JSON file of trending topics")
    parser.add_argument("--taste-graph", type=Path, help="JSON file of taste graphs")
    parser.add_argument("--taste-graph-url", help="Taste graph service base URL")
    parser.add_argument("--pre-rank", action="store_true", help="Enable pre-ranking")
    parser.add_argument("--pre-rank-limit", type=int, help="Posts kept by pre-ranking")
    parser.add_argument(
        "--diversity", action="store_true", help="Apply diversity re-ranking"
    )
    parser.add_argument("--top", type=int, default=20, help="Rows to print")
    parser.add_argument(
        "--save-default", action="store_true", help="Save strategy as the default"
    )
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    configure_logging(args.log_level)
    sys.exit(asyncio.run(main(args)))
