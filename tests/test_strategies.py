import pytest

from feedrank.diversity import DiversityReranker
from feedrank.models import StrategyConfig, TrendingTopic, UserTopicPreferences
from feedrank.strategies import (
    DiversityRankingStrategy,
    HybridDiversityStrategy,
    HybridStrategy,
    PersonalizedTopicStrategy,
    PopularityStrategy,
    PreRankingStrategy,
    RankingConfigError,
    RecencyStrategy,
    TasteBasedStrategy,
    TopicStrategy,
    build_strategy,
    order_by_score,
)
from feedrank.taste_graph import AffinityResult, TasteGraphError


def _ids(posts):
    return [p.id for p in posts]


@pytest.fixture
def feed(make_post):
    return [
        make_post("old-popular", hours_ago=48, like_count=100, view_count=2000),
        make_post("new-quiet", hours_ago=1, view_count=10),
        make_post("mid", hours_ago=12, like_count=20, view_count=500),
    ]


def test_recency(feed):
    assert _ids(RecencyStrategy().rank(feed)) == ["new-quiet", "mid", "old-popular"]


def test_popularity_ties_broken_by_recency(make_post):
    posts = [
        make_post("older", hours_ago=5, like_count=10),
        make_post("top", hours_ago=9, like_count=50),
        make_post("newer", hours_ago=1, like_count=10),
    ]
    assert _ids(PopularityStrategy().rank(posts)) == ["top", "newer", "older"]


class TestHybrid:
    def test_default_weights_favor_popularity(self, feed):
        # old-popular: 0.3*0 + 0.7*1 = 0.7; mid ~0.40; new-quiet: 0.3
        assert _ids(HybridStrategy().rank(feed)) == ["old-popular", "mid", "new-quiet"]

    def test_recency_only(self, feed):
        ranked = HybridStrategy(recency_weight=1.0, popularity_weight=0.0).rank(feed)
        assert _ids(ranked) == ["new-quiet", "mid", "old-popular"]

    def test_tie_within_epsilon_prefers_newer(self, make_post):
        posts = [
            make_post("max", hours_ago=30, view_count=20_000),
            make_post("older", hours_ago=10, view_count=10_001),  # 0.50005
            make_post("newer", hours_ago=2, view_count=10_000),  # 0.50000
            make_post("min", hours_ago=40),
        ]
        strategy = HybridStrategy(recency_weight=0.0, popularity_weight=1.0)
        assert _ids(strategy.rank(posts)) == ["max", "newer", "older", "min"]

    def test_gap_above_epsilon_uses_score(self, make_post):
        posts = [
            make_post("max", hours_ago=30, view_count=20_000),
            make_post("older", hours_ago=10, view_count=10_003),  # 0.50015
            make_post("newer", hours_ago=2, view_count=10_000),
            make_post("min", hours_ago=40),
        ]
        strategy = HybridStrategy(recency_weight=0.0, popularity_weight=1.0)
        assert _ids(strategy.rank(posts)) == ["max", "older", "newer", "min"]

    def test_single_post(self, make_post):
        post = make_post("only", like_count=3)
        assert HybridStrategy().rank([post]) == [post]

    def test_empty(self):
        assert HybridStrategy().rank([]) == []

    def test_negative_weight_rejected(self):
        with pytest.raises(RankingConfigError):
            HybridStrategy(recency_weight=-0.1)

    def test_non_finite_weight_rejected(self):
        with pytest.raises(RankingConfigError):
            HybridStrategy(popularity_weight=float("nan"))


def test_order_by_score_exact_ties_keep_input_order(make_post):
    a = make_post("a", hours_ago=1)
    b = make_post("b", hours_ago=1)
    assert _ids(order_by_score([(a, 0.5), (b, 0.5)])) == ["a", "b"]
    assert _ids(order_by_score([(b, 0.5), (a, 0.5)])) == ["b", "a"]


def test_order_by_score_chained_ties_are_deterministic(make_post):
    newest = make_post("newest", hours_ago=1)
    middle = make_post("middle", hours_ago=2)
    oldest = make_post("oldest", hours_ago=3)
    # Adjacent scores tie within epsilon, the outer pair does not
    scored = [(newest, 0.0), (middle, 6e-5), (oldest, 1.2e-4)]
    first = order_by_score(scored)
    assert first == order_by_score(list(scored))
    assert sorted(_ids(first)) == ["middle", "newest", "oldest"]


class TestTopic:
    def test_empty_topics_delegate_to_hybrid(self, feed):
        strategy = TopicStrategy(trending_topics=())
        expected = HybridStrategy(recency_weight=0.3, popularity_weight=0.3 + 0.4)
        assert strategy.fallback == expected
        assert strategy.rank(feed) == expected.rank(feed)

    def test_fallback_merges_custom_weights(self):
        strategy = TopicStrategy(topic_weight=0.5, recency_weight=0.2, popularity_weight=0.1)
        assert strategy.fallback == HybridStrategy(recency_weight=0.2, popularity_weight=0.1 + 0.5)

    def test_no_fallback_with_topics(self):
        topics = (TrendingTopic(id="travel", name="Travel", trend_score=5.0),)
        assert TopicStrategy(trending_topics=topics).fallback is None

    def test_trending_match_lifts_post(self, make_post):
        posts = [
            make_post("plain", hours_ago=1, like_count=10),
            make_post("trendy", hours_ago=1, like_count=10, tags=("Travel",)),
        ]
        topics = (TrendingTopic(id="travel", name="Travel", trend_score=5.0),)
        ranked = TopicStrategy(trending_topics=topics).rank(posts)
        assert _ids(ranked) == ["trendy", "plain"]

    def test_topic_scores_case_folded(self):
        topics = [TrendingTopic(id=" Travel ", name="Travel", trend_score=5.0)]
        strategy = TopicStrategy(trending_topics=topics)
        assert strategy.trending_topics == tuple(topics)
        assert strategy.topic_scores == {"travel": 5.0}


class TestPersonalizedTopic:
    def test_falls_back_without_topics_or_preferences(self, feed):
        strategy = PersonalizedTopicStrategy()
        assert strategy.fallback == HybridStrategy(0.3, 0.3 + 0.4)
        assert strategy.rank(feed) == strategy.fallback.rank(feed)

    def test_preferences_alone_do_not_fall_back(self):
        prefs = UserTopicPreferences(preferred_tags=frozenset({"travel"}))
        assert PersonalizedTopicStrategy(user_preferences=prefs).fallback is None

    def test_preference_boost_changes_order(self, make_post):
        topics = (
            TrendingTopic(id="travel", name="Travel", trend_score=5.0),
            TrendingTopic(id="food", name="Food", trend_score=6.0),
        )
        posts = [
            make_post("food", hours_ago=1, tags=("food",)),
            make_post("travel", hours_ago=1, tags=("travel",)),
            make_post("none", hours_ago=1),
        ]
        assert _ids(TopicStrategy(trending_topics=topics).rank(posts))[0] == "food"

        prefs = UserTopicPreferences(
            preferred_tags=frozenset({"travel"}), tag_weights={"travel": 1.0}
        )
        strategy = PersonalizedTopicStrategy(trending_topics=topics, user_preferences=prefs)
        # travel: 5 * 1.5 * 2 = 15 beats food: 6 * 2 = 12
        assert _ids(strategy.rank(posts)) == ["travel", "food", "none"]


class TestPreRanking:
    def test_scores_interest_match(self, make_post, now):
        posts = [
            make_post("none", hours_ago=1),
            make_post("food", hours_ago=1, interest="food"),
            make_post("art", hours_ago=1, interest="art"),
        ]
        affinities = AffinityResult.success([("art", 0.9), ("food", 0.2)])
        ranked = PreRankingStrategy().rank(posts, "u1", affinities=affinities, now=now)
        assert _ids(ranked) == ["art", "food", "none"]

    def test_only_top_interests_count(self, make_post, now):
        pairs = [(f"i{i}", 0.9) for i in range(10)] + [("late", 0.8)]
        posts = [
            make_post("late", hours_ago=1, interest="late"),
            make_post("fresh", hours_ago=0),
        ]
        ranked = PreRankingStrategy().rank(
            posts, "u1", affinities=AffinityResult.success(pairs), now=now
        )
        # "late" is the 11th interest, so only freshness separates the posts
        assert _ids(ranked) == ["fresh", "late"]

    def test_no_user_falls_back_to_recency(self, feed, now):
        affinities = AffinityResult.success([("art", 0.9)])
        ranked = PreRankingStrategy().rank(feed, None, affinities=affinities, now=now)
        assert _ids(ranked) == ["new-quiet", "mid", "old-popular"]

    def test_failed_lookup_falls_back_to_recency(self, feed, now):
        failed = AffinityResult.failure(TasteGraphError("down"))
        ranked = PreRankingStrategy().rank(feed, "u1", affinities=failed, now=now)
        assert _ids(ranked) == ["new-quiet", "mid", "old-popular"]

    def test_missing_affinities_falls_back_to_recency(self, feed, now):
        assert _ids(PreRankingStrategy().rank(feed, "u1", now=now)) == [
            "new-quiet",
            "mid",
            "old-popular",
        ]


class TestHybridDiversity:
    def test_failure_goes_straight_to_reranker(self, make_post):
        posts = [
            make_post(f"p{n}", interest=i)
            for n, i in enumerate(["A", "A", "B", "A", "C"], 1)
        ]
        failed = AffinityResult.failure(TimeoutError())
        ranked = HybridDiversityStrategy().rank(posts, "u1", affinities=failed)
        assert ranked == DiversityReranker(window_size=5).rerank(posts)

    def test_no_user_goes_straight_to_reranker(self, make_post):
        posts = [make_post(f"p{n}", interest=i) for n, i in enumerate(["A", "A", "B"], 1)]
        assert HybridDiversityStrategy().rank(posts) == DiversityReranker(5).rerank(posts)

    def test_relevance_then_diversity(self, make_post):
        posts = [
            make_post("cars-1", interest="cars"),
            make_post("art-1", interest="art"),
            make_post("art-2", interest="art"),
            make_post("filler"),
        ]
        affinities = AffinityResult.success([("art", 1.0), ("cars", 0.1)])
        ranked = HybridDiversityStrategy(window_size=2).rank(
            posts, "u1", affinities=affinities
        )
        # Scores: art 0.85, filler 0.24, cars 0.22; art-2 is held back then backfilled
        assert _ids(ranked) == ["art-1", "filler", "cars-1", "art-2"]

    def test_invalid_window(self):
        with pytest.raises(RankingConfigError):
            HybridDiversityStrategy(window_size=0)


def test_diversity_ranking_strategy(make_post):
    posts = [make_post(f"p{n}", interest=i) for n, i in enumerate(["A", "A", "B"], 1)]
    assert _ids(DiversityRankingStrategy().rank(posts)) == ["p1", "p3", "p2"]


class TestTasteBased:
    def test_falls_back_to_recency(self, feed):
        assert _ids(TasteBasedStrategy().rank(feed)) == ["new-quiet", "mid", "old-popular"]

    def test_interest_relevance_dominates(self, make_post, now):
        posts = [
            make_post("plain", hours_ago=1, interest="cars"),
            make_post("match", hours_ago=1, interest="art"),
        ]
        affinities = AffinityResult.success([("art", 0.9)])
        ranked = TasteBasedStrategy().rank(posts, "u1", affinities=affinities, now=now)
        assert _ids(ranked) == ["match", "plain"]


class TestBuildStrategy:
    @pytest.mark.parametrize(
        "name, cls",
        [
            ("recency", RecencyStrategy),
            ("popularity", PopularityStrategy),
            ("hybrid", HybridStrategy),
            ("topic_ranking", TopicStrategy),
            ("topic", TopicStrategy),
            ("personalized_topic_ranking", PersonalizedTopicStrategy),
            ("pre_ranking", PreRankingStrategy),
            ("hybrid_diversity", HybridDiversityStrategy),
            ("diversity", DiversityRankingStrategy),
            ("taste_based", TasteBasedStrategy),
            (" Hybrid ", HybridStrategy),
        ],
    )
    def test_names(self, name, cls):
        assert type(build_strategy(StrategyConfig(name=name))) is cls

    def test_weights_and_window(self):
        strategy = build_strategy(
            StrategyConfig(
                name="hybrid_diversity",
                weights={"diversity": 0.5, "score": 0.5},
                window_size=4,
            )
        )
        assert strategy == HybridDiversityStrategy(
            diversity_weight=0.5, score_weight=0.5, window_size=4
        )

    def test_per_strategy_default_windows(self):
        assert build_strategy(StrategyConfig(name="hybrid_diversity")).window_size == 5
        assert build_strategy(StrategyConfig(name="diversity_reranking")).window_size == 3

    def test_unknown_name(self):
        with pytest.raises(RankingConfigError, match="Unknown strategy"):
            build_strategy(StrategyConfig(name="random"))

    def test_unknown_weight(self):
        with pytest.raises(RankingConfigError, match="unknown weights"):
            build_strategy(StrategyConfig(name="hybrid", weights={"topic": 0.2}))

    def test_negative_weight(self):
        with pytest.raises(RankingConfigError):
            build_strategy(StrategyConfig(name="topic", weights={"topic": -1.0}))

    def test_invalid_window(self):
        with pytest.raises(RankingConfigError):
            build_strategy(StrategyConfig(name="diversity", window_size=0))
