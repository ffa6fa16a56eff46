from freshcart.common.logging_setup import get_logger

logger = get_logger("freshcart.recommendations")

TRENDING_DEFAULT_DAYS = 7
TRENDING_FALLBACK_DAYS = 30
# fewer delivered order items than this in the window widens it to TRENDING_FALLBACK_DAYS
TRENDING_MIN_ITEMS = 5
TRENDING_QUANTITY_CAP = 5
TRENDING_BASE_WEIGHT = 0.7
TRENDING_QUANTITY_WEIGHT = 0.3
# the newest-products fallback reads a few extra rows before shuffling
NEWEST_FALLBACK_EXTRA = 5

FBT_DEFAULT_LIMIT = 4
COPURCHASE_FEATURE = "product_co_purchases"

BUY_AGAIN_RECENCY_DAYS = 30
BUY_AGAIN_RECENCY_WEIGHT = 0.6
BUY_AGAIN_FREQUENCY_WEIGHT = 0.4
RECENT_PURCHASE_EXCLUSION_DAYS = 14

CATEGORY_AFFINITY_POINTS = 35.0
VIEW_POINTS = 25.0
TRENDING_POINTS = 20.0
FRESHNESS_FULL_POINTS = 10.0
FRESHNESS_HALF_POINTS = 5.0
FRESHNESS_FULL_DAYS = 7
FRESHNESS_HALF_DAYS = 14
TIE_BREAKER_POINTS = 2.0

AFFINITY_ORDER_LIMIT = 30
AFFINITY_VIEW_LIMIT = 50
AFFINITY_HALF_LIFE_DAYS = 30
VIEW_RANK_DECAY = 20
VIEW_CATEGORY_WEIGHT = 2
VIEW_SCORE_WEIGHT = 5

PERSONALIZED_LIMIT = 12
MAX_PER_CATEGORY = 4
