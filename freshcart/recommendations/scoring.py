"""
Pure scoring for the recommendation endpoints.

Nothing here touches the database or the wall clock: callers pass `now` and the rows,
so the same data and the same `now` always give the same ranking.
"""
import hashlib
import math
import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar
from freshcart.common.utils import days_between
from freshcart.recommendations.constants import (
    AFFINITY_HALF_LIFE_DAYS,
    BUY_AGAIN_FREQUENCY_WEIGHT,
    BUY_AGAIN_RECENCY_DAYS,
    BUY_AGAIN_RECENCY_WEIGHT,
    CATEGORY_AFFINITY_POINTS,
    FRESHNESS_FULL_DAYS,
    FRESHNESS_FULL_POINTS,
    FRESHNESS_HALF_DAYS,
    FRESHNESS_HALF_POINTS,
    MAX_PER_CATEGORY,
    PERSONALIZED_LIMIT,
    TIE_BREAKER_POINTS,
    TRENDING_BASE_WEIGHT,
    TRENDING_POINTS,
    TRENDING_QUANTITY_CAP,
    TRENDING_QUANTITY_WEIGHT,
    VIEW_CATEGORY_WEIGHT,
    VIEW_POINTS,
    VIEW_RANK_DECAY,
    VIEW_SCORE_WEIGHT,
)
from freshcart.recommendations.models import AffinityOrderItem, ProductCard, PurchaseSummary, ScoredOrderItem, ViewRecord

T = TypeVar("T")

UNCATEGORIZED = "uncategorized"


def _days_ago(now: datetime, then: datetime) -> float:
    return max(0.0, days_between(now, then))


def rank(scores: Dict[uuid.UUID, float]) -> List[Tuple[uuid.UUID, float]]:
    """Highest score first; equal scores fall back to product id ascending."""
    return sorted(scores.items(), key=lambda kv: (-kv[1], str(kv[0])))


# trending -----------------------------------------------------------------------------------

def trending_item_score(days_since: float, quantity: int, window_days: int) -> float:
    # distinct orders count more than big quantities: quantity only moves the weight from 0.7 to 1.0
    decay = math.exp(-days_since / window_days)
    qty_factor = min(quantity / TRENDING_QUANTITY_CAP, 1.0)
    return decay * (TRENDING_BASE_WEIGHT + TRENDING_QUANTITY_WEIGHT * qty_factor)


def score_trending(items: Iterable[ScoredOrderItem], now: datetime, window_days: int) -> Dict[uuid.UUID, float]:
    scores: Dict[uuid.UUID, float] = {}
    for item in items:
        s = trending_item_score(_days_ago(now, item.created_at), item.quantity, window_days)
        scores[item.product_id] = scores.get(item.product_id, 0.0) + s
    return scores


def daily_seed(at: datetime) -> int:
    """Days since the unix epoch."""
    return int(at.timestamp() // 86400)


def shuffle_with_seed(items: Sequence[T], seed: int) -> List[T]:
    """Fisher-Yates driven by a small LCG so a given day always produces the same order."""
    result = list(items)
    current = seed
    for i in range(len(result) - 1, 0, -1):
        current = (current * 1103515245 + 12345) & 0x7FFFFFFF
        j = current % (i + 1)
        result[i], result[j] = result[j], result[i]
    return result


# buy again ----------------------------------------------------------------------------------

def buy_again_scores(purchases: Sequence[PurchaseSummary], now: datetime) -> Dict[uuid.UUID, float]:
    if not purchases:
        return {}
    max_count = max(max(p.purchase_count for p in purchases), 1)
    scores = {}
    for p in purchases:
        recency = math.exp(-_days_ago(now, p.last_purchased_at) / BUY_AGAIN_RECENCY_DAYS)
        scores[p.product_id] = BUY_AGAIN_RECENCY_WEIGHT * recency + BUY_AGAIN_FREQUENCY_WEIGHT * (p.purchase_count / max_count)
    return scores


# personalized -------------------------------------------------------------------------------

def normalize(scores: Dict[T, float], points: float) -> Dict[T, float]:
    """Scale so the largest value maps to `points`; values below 1 are scaled against 1."""
    if not scores:
        return {}
    top = max(max(scores.values()), 1.0)
    return {k: v / top * points for k, v in scores.items()}


def view_rank_factor(index: int) -> float:
    return math.exp(-index / VIEW_RANK_DECAY)


def view_scores(views: Sequence[ViewRecord]) -> Dict[uuid.UUID, float]:
    """`views` newest first; the rank, not the timestamp, decays the weight."""
    scores = {}
    for idx, view in enumerate(views):
        count = view.view_count or 1
        scores[view.product_id] = min(count * VIEW_SCORE_WEIGHT * view_rank_factor(idx), VIEW_POINTS)
    return scores


def category_affinity(
    order_items: Sequence[AffinityOrderItem],
    views: Sequence[ViewRecord],
    product_categories: Dict[uuid.UUID, Optional[uuid.UUID]],
    now: datetime,
) -> Dict[uuid.UUID, float]:
    raw: Dict[uuid.UUID, float] = {}
    for item in order_items:
        if item.category_id is None:
            continue
        decay = math.exp(-_days_ago(now, item.order_created_at) / AFFINITY_HALF_LIFE_DAYS)
        raw[item.category_id] = raw.get(item.category_id, 0.0) + CATEGORY_AFFINITY_POINTS * decay

    for idx, view in enumerate(views):
        category = product_categories.get(view.product_id)
        if category is None:
            continue
        raw[category] = raw.get(category, 0.0) + (view.view_count or 1) * VIEW_CATEGORY_WEIGHT * view_rank_factor(idx)

    return normalize(raw, CATEGORY_AFFINITY_POINTS)


def freshness_bonus(created_at: Optional[datetime], now: datetime) -> float:
    if created_at is None:
        return 0.0
    age = _days_ago(now, created_at)
    if age < FRESHNESS_FULL_DAYS:
        return FRESHNESS_FULL_POINTS
    if age < FRESHNESS_HALF_DAYS:
        return FRESHNESS_HALF_POINTS
    return 0.0


def tie_breaker(user_id: uuid.UUID, day: date, product_id: uuid.UUID) -> float:
    """Stable within a calendar day, different across days, in [0, TIE_BREAKER_POINTS)."""
    digest = hashlib.sha256(f"{user_id}{day.isoformat()}{product_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big") / 2 ** 64 * TIE_BREAKER_POINTS


def apply_diversity(ranked: Sequence[ProductCard], max_per_category: int = MAX_PER_CATEGORY,
                    limit: int = PERSONALIZED_LIMIT) -> List[ProductCard]:
    counts: Dict[str, int] = {}
    picked = []
    for card in ranked:
        key = str(card.category_id) if card.category_id is not None else UNCATEGORIZED
        counts[key] = counts.get(key, 0) + 1
        if counts[key] > max_per_category:
            continue
        picked.append(card)
        if len(picked) >= limit:
            break
    return picked


def score_personalized(
    user_id: uuid.UUID,
    candidates: Sequence[ProductCard],
    order_items: Sequence[AffinityOrderItem],
    views: Sequence[ViewRecord],
    trending_raw: Dict[uuid.UUID, float],
    recently_purchased: Set[uuid.UUID],
    now: datetime,
) -> List[ProductCard]:
    categories = {c.id: c.category_id for c in candidates}
    affinity = category_affinity(order_items, views, categories, now)
    viewed = view_scores(views)
    trending = normalize(trending_raw, TRENDING_POINTS)
    today = now.date()

    scored: List[ProductCard] = []
    for card in candidates:
        if card.id in recently_purchased:
            continue

        score = 0.0
        reasons = []
        cat_score = affinity.get(card.category_id, 0.0) if card.category_id is not None else 0.0
        if cat_score:
            score += cat_score
            reasons.append("category_match")
        if viewed.get(card.id):
            score += viewed[card.id]
            reasons.append("viewed")
        trend = trending.get(card.id, 0.0)
        score += trend
        if trend > 5:
            reasons.append("trending")
        fresh = freshness_bonus(card.created_at, now)
        score += fresh
        if fresh == FRESHNESS_FULL_POINTS:
            reasons.append("new")
        score += tie_breaker(user_id, today, card.id)

        scored.append(card.model_copy(update={"score": round(score, 6), "reasons": reasons}))

    scored.sort(key=lambda c: (-c.score, str(c.id)))
    return apply_diversity(scored)
