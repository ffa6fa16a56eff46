import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Sequence
from sqlalchemy.exc import ProgrammingError
from freshcart.background_workers.view_tracking_worker import view_tracking_worker
from freshcart.cache.ttl_cache import FeatureAvailability, TTLCache, feature_availability, recommendation_cache
from freshcart.cache.utils import build_key
from freshcart.common.retries import retry_with_db_circuit
from freshcart.common.utils import now as utc_now
from freshcart.config.settings import config_settings
from freshcart.recommendations import repository as reco_repository
from freshcart.recommendations.constants import (
    COPURCHASE_FEATURE,
    FBT_DEFAULT_LIMIT,
    NEWEST_FALLBACK_EXTRA,
    RECENT_PURCHASE_EXCLUSION_DAYS,
    TRENDING_DEFAULT_DAYS,
    TRENDING_FALLBACK_DAYS,
    TRENDING_MIN_ITEMS,
    logger,
)
from freshcart.recommendations.models import ProductCard
from freshcart.recommendations.scoring import buy_again_scores, daily_seed, rank, score_personalized, score_trending, shuffle_with_seed


async def compute_trending(session, limit: int, days: int, at: datetime, *, repo=reco_repository) -> List[ProductCard]:
    """Time-decayed popularity over delivered orders, widening to 30 days and then to newest products."""
    window = days
    items = await repo.fetch_delivered_order_items(session, at - timedelta(days=window))
    if len(items) < TRENDING_MIN_ITEMS and window < TRENDING_FALLBACK_DAYS:
        window = TRENDING_FALLBACK_DAYS
        items = await repo.fetch_delivered_order_items(session, at - timedelta(days=window))

    ranked = rank(score_trending(items, at, window))
    if ranked:
        products = await repo.fetch_available_products(session, [pid for pid, _ in ranked])
        result = [
            products[pid].model_copy(update={"score": round(score, 6)})
            for pid, score in ranked
            if pid in products
        ][:limit]
        if result:
            return result

    logger.debug("trending.newest_fallback", extra={"window_days": window, "items": len(items)})
    newest = await repo.fetch_newest_products(session, limit + NEWEST_FALLBACK_EXTRA)
    return [p.model_copy(update={"score": 0.0}) for p in shuffle_with_seed(newest, daily_seed(at))[:limit]]


async def trending_with_cache(session, limit: int = 10, days: int = TRENDING_DEFAULT_DAYS, *,
                              at: Optional[datetime] = None, cache: Optional[TTLCache] = None,
                              repo=reco_repository) -> List[ProductCard]:
    cache = cache if cache is not None else recommendation_cache
    key = build_key("trending", limit, days)

    cached = await cache.get(key)
    if cached is not None:
        return [ProductCard.model_validate(c) for c in cached]

    result = await compute_trending(session, limit, days, at or utc_now(), repo=repo)
    await cache.set(key, [p.model_dump(mode="json") for p in result], config_settings.TRENDING_CACHE_TTL_SECONDS)
    return result


@retry_with_db_circuit()
async def get_trending_products(session, limit: int = 10, days: int = TRENDING_DEFAULT_DAYS, *,
                                at: Optional[datetime] = None, cache: Optional[TTLCache] = None,
                                repo=reco_repository) -> List[ProductCard]:
    return await trending_with_cache(session, limit, days, at=at, cache=cache, repo=repo)


async def _copurchased_or_empty(session, product_id, limit, exclude, repo, features: FeatureAvailability):
    if not features.is_available(COPURCHASE_FEATURE):
        return []
    try:
        return await repo.fetch_copurchased(session, product_id, limit, exclude)
    except ProgrammingError as exc:
        # the aggregate table may not be migrated yet; stop asking for the life of the process
        await session.rollback()
        features.mark_unavailable(COPURCHASE_FEATURE, str(exc.orig) if exc.orig is not None else str(exc))
        return []


@retry_with_db_circuit()
async def get_frequently_bought_together(session, product_id: uuid.UUID, limit: int = FBT_DEFAULT_LIMIT,
                                         exclude_ids: Sequence[uuid.UUID] = (), *, at: Optional[datetime] = None,
                                         cache: Optional[TTLCache] = None, features: Optional[FeatureAvailability] = None,
                                         repo=reco_repository) -> List[ProductCard]:
    """Co-purchases first, then same category, then trending, then newest.

    Each fallback runs only while fewer than FBT_MIN_RESULTS products have been collected.
    """
    features = features if features is not None else feature_availability
    min_results = config_settings.FBT_MIN_RESULTS

    exists, category_id = await repo.get_product_category(session, product_id)
    if not exists:
        return []

    excluded = {product_id, *exclude_ids}
    picked: List[ProductCard] = []

    def take(cards, source):
        for card in cards:
            if len(picked) >= limit:
                return
            if card.id in excluded:
                continue
            excluded.add(card.id)
            picked.append(card.model_copy(update={"reasons": [source]}))

    take(await _copurchased_or_empty(session, product_id, limit, list(excluded), repo, features), "bought_together")

    if len(picked) < min_results and category_id is not None:
        take(await repo.fetch_newest_products(session, limit, category_id=category_id, exclude_ids=list(excluded)),
             "same_category")

    if len(picked) < min_results:
        trending = await trending_with_cache(session, max(10, limit + len(excluded)), at=at, cache=cache, repo=repo)
        take(trending, "trending")

    if len(picked) < min_results:
        take(await repo.fetch_newest_products(session, limit, exclude_ids=list(excluded)), "newest")

    return picked


@retry_with_db_circuit()
async def get_buy_again_products(session, user_id: uuid.UUID, limit: int = 10, *,
                                 at: Optional[datetime] = None, repo=reco_repository) -> List[ProductCard]:
    at = at or utc_now()
    cutoff = at - timedelta(days=RECENT_PURCHASE_EXCLUSION_DAYS)
    purchases = await repo.fetch_purchase_summaries(session, user_id)

    # everything counts towards max_count, only the older purchases are offered
    scores = buy_again_scores(purchases, at)
    recent = {p.product_id for p in purchases if p.last_purchased_at >= cutoff}
    recent |= await repo.fetch_recent_purchase_ids(session, user_id, cutoff)
    for pid in recent:
        scores.pop(pid, None)

    ranked = rank(scores)
    products = await repo.fetch_available_products(session, [pid for pid, _ in ranked])
    return [
        products[pid].model_copy(update={"score": round(score, 6)})
        for pid, score in ranked
        if pid in products
    ][:limit]


@retry_with_db_circuit()
async def get_personalized_recommendations(session, user_id: Optional[uuid.UUID], *, at: Optional[datetime] = None,
                                           cache: Optional[TTLCache] = None, repo=reco_repository) -> List[ProductCard]:
    at = at or utc_now()
    if user_id is None:
        return await trending_with_cache(session, at=at, cache=cache, repo=repo)

    candidates = await repo.fetch_candidates(session)
    if not candidates:
        return []

    order_items = await repo.fetch_affinity_order_items(session, user_id)
    views = await repo.fetch_recent_views(session, user_id)
    recent = await repo.fetch_recent_purchase_ids(session, user_id, at - timedelta(days=RECENT_PURCHASE_EXCLUSION_DAYS))

    trending_items = await repo.fetch_delivered_order_items(session, at - timedelta(days=TRENDING_DEFAULT_DAYS))
    trending_raw = score_trending(trending_items, at, TRENDING_DEFAULT_DAYS)

    result = score_personalized(user_id, candidates, order_items, views, trending_raw, recent, at)
    logger.debug("personalized.scored", extra={"user_id": str(user_id), "candidates": len(candidates), "returned": len(result)})
    return result


def track_product_view(user_id: Optional[uuid.UUID], product_id: uuid.UUID, *, worker=view_tracking_worker) -> bool:
    """Queue a view for the signed-in user; returns False when nothing was queued."""
    return worker.track(user_id, product_id)
