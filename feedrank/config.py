import json
import os
from pathlib import Path
from typing import Any, Optional

from feedrank.constants import DIVERSITY_WINDOW, TASTE_GRAPH_TIMEOUT, TOP_INTEREST_COUNT
from feedrank.models import StrategyConfig
from feedrank.pipeline import PipelineSettings

CONFIG_DIR = Path(os.environ.get("FEEDRANK_CONFIG_DIR", Path.home() / ".config" / "feedrank"))
CONFIG_FILE = CONFIG_DIR / "config.json"


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            data = json.load(f)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def save_config(key: str, value: Any):
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config[key] = value
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


def get_pipeline_settings(config: Optional[dict] = None) -> PipelineSettings:
    """Pipeline settings from the ``pipeline`` section of the config file."""
    section = (config if config is not None else load_config()).get("pipeline") or {}
    limit = section.get("pre_ranking_limit")
    timeout = section.get("taste_graph_timeout", TASTE_GRAPH_TIMEOUT)
    return PipelineSettings(
        pre_ranking=bool(section.get("pre_ranking", False)),
        pre_ranking_limit=int(limit) if limit is not None else None,
        diversity=bool(section.get("diversity", False)),
        diversity_window=int(section.get("diversity_window", DIVERSITY_WINDOW)),
        taste_graph_timeout=float(timeout) if timeout is not None else None,
        top_interest_count=int(section.get("top_interest_count", TOP_INTEREST_COUNT)),
        taste_graph_url=section.get("taste_graph_url"),
    )


def get_strategy_config(config: Optional[dict] = None) -> StrategyConfig:
    """Default strategy from the ``strategy`` entry (a name or a full mapping)."""
    raw = (config if config is not None else load_config()).get("strategy")
    if raw is None:
        return StrategyConfig()
    if isinstance(raw, str):
        return StrategyConfig(name=raw)
    return StrategyConfig.from_dict(raw)
