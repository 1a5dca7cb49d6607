"""
Constants and configuration values for feed ranking.
"""

# Engagement Score (integer weights per counter)
ENGAGEMENT_LIKE_WEIGHT = 2
ENGAGEMENT_COMMENT_WEIGHT = 3  # Comments take the most effort
ENGAGEMENT_VIEW_WEIGHT = 1
ENGAGEMENT_SHARE_WEIGHT = 2
ENGAGEMENT_SAVE_WEIGHT = 2

# Topic Relevance
TOPIC_TAG_WEIGHT = 2.0
TOPIC_CATEGORY_WEIGHT = 1.5  # Legacy categories and classified interests
PREFERENCE_BOOST_FACTOR = 0.5
DEFAULT_PREFERENCE_WEIGHT = 1.0

# Normalization defaults when every candidate has the same raw value
DEFAULT_NORMALIZED_RECENCY = 1.0
DEFAULT_NORMALIZED_POPULARITY = 0.0
DEFAULT_NORMALIZED_TOPIC = 0.0

# Hybrid Strategy
HYBRID_RECENCY_WEIGHT = 0.3
HYBRID_POPULARITY_WEIGHT = 0.7
SCORE_TIE_EPSILON = 1e-4

# Topic / Personalized Topic Strategies
TOPIC_WEIGHT = 0.4
TOPIC_RECENCY_WEIGHT = 0.3
TOPIC_POPULARITY_WEIGHT = 0.3

# Pre-Ranking
PRE_RANK_INTEREST_WEIGHT = 0.5
PRE_RANK_ENGAGEMENT_WEIGHT = 0.3
PRE_RANK_FRESHNESS_WEIGHT = 0.2
PRE_RANK_FRESHNESS_RATE = 0.05  # Half-life ~13.9h
ENGAGEMENT_RATE_SCALE = 10.0

# Hybrid Diversity
HYBRID_DIVERSITY_WEIGHT = 0.3
HYBRID_DIVERSITY_SCORE_WEIGHT = 0.7
HYBRID_DIVERSITY_WINDOW = 5
DIVERSITY_SCORE_UNCLASSIFIED = 0.8  # Unclassified posts break up topic runs
DIVERSITY_SCORE_CLASSIFIED = 0.5

# Diversity Re-ranking
DIVERSITY_WINDOW = 3

# Taste Based Strategy
TASTE_INTEREST_WEIGHT = 0.40
TASTE_CONTENT_WEIGHT = 0.30
TASTE_CREATOR_WEIGHT = 0.15
TASTE_FRESHNESS_WEIGHT = 0.15
TASTE_FRESHNESS_RATE = 0.03
TASTE_TOP_INTERESTS = 20
TASTE_AVERAGE_RELEVANCE_FACTOR = 0.8
CONTENT_MAX_ENGAGEMENT_RATE = 0.1
CONTENT_LIKE_WEIGHT = 1.0
CONTENT_COMMENT_WEIGHT = 2.0
CONTENT_SAVE_WEIGHT = 3.0
CONTENT_SHARE_WEIGHT = 3.0
CREATOR_BASE_SCORE = 0.5
CREATOR_PHOTO_BONUS = 0.1
CREATOR_USERNAME_BONUS = 0.1
CREATOR_USERNAME_MIN_LENGTH = 3

# Taste Graph
TOP_INTEREST_COUNT = 10
AFFINITY_DECAY_FACTOR = 0.01  # Score drops to ~37% after 100 idle days
TASTE_GRAPH_TIMEOUT = 2.0  # Seconds
TASTE_GRAPH_MAX_RETRIES = 3
TASTE_GRAPH_BACKOFF_BASE = 0.2
TASTE_GRAPH_BACKOFF_MAX = 2.0
TASTE_GRAPH_RATE_LIMIT = 50  # Requests per second
TASTE_GRAPH_HTTP_CONNECT_TIMEOUT = 1.0
TASTE_GRAPH_HTTP_READ_TIMEOUT = 2.0
TASTE_GRAPH_USER_AGENT = "feedrank/0.1"

# Time
SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0
EPOCH_MILLIS_THRESHOLD = 1e11  # Larger epoch values are milliseconds
