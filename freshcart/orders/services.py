import uuid
from decimal import Decimal
from fastapi import HTTPException
from typing import Dict, List, Sequence
from freshcart.common.utils import money, now
from freshcart.config.settings import config_settings
from freshcart.orders import repository as order_repository
from freshcart.orders.constants import GENERIC_PLACE_ORDER_ERROR, logger
from freshcart.orders.copurchase import directional_pairs
from freshcart.orders.exceptions import (
    CouponAlreadyUsed,
    InsufficientStock,
    OrderNotFound,
    OrderPlacementError,
    OrderValidationError,
    ProductNotFound,
    ProductUnavailable,
    VariantNotFound,
)
from freshcart.orders.models import PlaceOrderIn, PlaceOrderResult, PricedLine, TransitionOutcome
from freshcart.orders.status_machine import STOCK_RESTORING_STATUSES, assert_transition, should_record_copurchase
from freshcart.schema.full_schema import OrderStatus
from freshcart.stock.models import StockChangeEvent
from freshcart.stock.publisher import publish_stock_changes


def validate_place_order(payload: PlaceOrderIn):
    if payload.user_id is None:
        raise OrderValidationError("User ID is required")
    if not payload.delivery_address or not payload.delivery_address.strip():
        raise OrderValidationError("Delivery address is required")
    if not payload.cart_items:
        raise OrderValidationError("Cart is empty")
    for line in payload.cart_items:
        if line.quantity is None or line.quantity < 1:
            raise OrderValidationError("Invalid quantity for item", product_id=line.product_id)


def compute_total(lines: Sequence[PricedLine], coupon_discount) -> Dict[str, Decimal]:
    subtotal = money(sum((line.price * line.quantity for line in lines), Decimal("0")))
    discount = money(max(Decimal(coupon_discount or 0), Decimal("0")))
    total = max(Decimal("0.00"), money(subtotal - discount))
    return {"subtotal": subtotal, "discount": discount, "total": total}


async def _price_lines(session, payload: PlaceOrderIn, repo) -> tuple:
    """Lock referenced rows and return (priced lines, locked products).

    Prices are read once, under lock; whatever the client sent is ignored.
    """
    product_ids = [line.product_id for line in payload.cart_items]
    locked = await repo.lock_products(session, product_ids)

    for pid in sorted(set(product_ids)):
        if pid not in locked:
            raise ProductNotFound(pid)

    # variant rows follow the same ascending-id lock order as products
    variant_keys = sorted({(line.variant_id, line.product_id) for line in payload.cart_items
                           if line.variant_id is not None})
    variants = {}
    for variant_id, product_id in variant_keys:
        variant = await repo.lock_variant(session, variant_id, product_id)
        if variant is None:
            raise VariantNotFound(variant_id, product_id)
        variants[(variant_id, product_id)] = variant

    lines: List[PricedLine] = []
    for line in payload.cart_items:
        price = locked[line.product_id].price
        if line.variant_id is not None:
            price = variants[(line.variant_id, line.product_id)].price
        lines.append(PricedLine(product_id=line.product_id, variant_id=line.variant_id,
                                quantity=line.quantity, price=price))
    return lines, locked


def _check_stock(lines: Sequence[PricedLine], locked) -> Dict[uuid.UUID, int]:
    requested: Dict[uuid.UUID, int] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    for pid in sorted(requested):
        product = locked[pid]
        if not product.is_active:
            raise ProductUnavailable(product.name, pid)
        if product.stock_quantity < requested[pid]:
            raise InsufficientStock(product.name, pid, product.stock_quantity)
    return requested


async def place_order(session, payload: PlaceOrderIn, *, repo=order_repository,
                      publish=publish_stock_changes) -> PlaceOrderResult:
    """Place an order in one all-or-nothing transaction.

    Never raises: every failure comes back as a PlaceOrderResult with success=False
    and nothing written.
    """
    try:
        validate_place_order(payload)
    except OrderPlacementError as exc:
        logger.info("order.place.invalid", extra={"error": exc.message})
        return PlaceOrderResult(success=False, error=exc.message, product_id=exc.product_id, http_status=exc.status_code)

    user_id = payload.user_id
    try:
        await repo.set_statement_timeout(session, config_settings.STATEMENT_TIMEOUT_MS)
        lines, locked = await _price_lines(session, payload, repo)
        requested = _check_stock(lines, locked)
        totals = compute_total(lines, payload.coupon_discount)

        order_id = await repo.insert_order(
            session,
            user_id=user_id,
            subtotal=totals["subtotal"],
            discount_amount=totals["discount"],
            total_amount=totals["total"],
            coupon_id=payload.coupon_id,
            delivery_address=payload.delivery_address.strip(),
        )
        await repo.insert_order_items(session, order_id, lines)

        for pid in sorted(requested):
            ok = await repo.decrement_stock(session, pid, requested[pid])
            if not ok:
                product = locked[pid]
                raise InsufficientStock(product.name, pid, product.stock_quantity)

        if payload.coupon_id is not None:
            inserted = await repo.insert_coupon_usage(session, user_id, payload.coupon_id, order_id)
            if not inserted:
                raise CouponAlreadyUsed()

        await repo.clear_cart(session, user_id)
        await session.commit()

    except OrderPlacementError as exc:
        await session.rollback()
        logger.info("order.place.rejected", extra={
            "user_id": str(user_id),
            "error": exc.message,
            "product_id": str(exc.product_id) if exc.product_id else None,
        })
        return PlaceOrderResult(success=False, error=exc.message, product_id=exc.product_id,
                                available=exc.available, http_status=exc.status_code)

    except Exception:
        await session.rollback()
        logger.exception("order.place.failed", extra={"user_id": str(user_id)})
        return PlaceOrderResult(success=False, error=GENERIC_PLACE_ORDER_ERROR, http_status=503)

    logger.info("order.placed", extra={"order_id": str(order_id), "user_id": str(user_id), "total": str(totals["total"])})

    events = [
        StockChangeEvent(
            product_id=pid,
            new_stock_quantity=locked[pid].stock_quantity - requested[pid],
            new_is_active=locked[pid].is_active,
            new_price=locked[pid].price,
        )
        for pid in sorted(requested)
    ]
    await _publish_quietly(publish, events)

    return PlaceOrderResult(success=True, order_id=order_id, total=totals["total"])


async def _publish_quietly(publish, events):
    # the write is already committed; a feed hiccup only delays monitors
    try:
        await publish(events)
    except Exception:
        logger.exception("stock_feed.publish_failed", extra={"events": len(events)})


async def transition_order_status(session, order_id: uuid.UUID, new_status: OrderStatus, *,
                                  repo=order_repository, publish=publish_stock_changes) -> TransitionOutcome:
    """Move one order through the status machine inside its own transaction.

    Raises OrderNotFound / InvalidStatusTransition; the caller's session is rolled back on error.
    """
    new_status = OrderStatus(new_status)
    try:
        order = await repo.get_order_for_update(session, order_id)
        if order is None:
            raise OrderNotFound(order_id)

        old_status = OrderStatus(order.status)
        if old_status == new_status:
            await session.rollback()
            return TransitionOutcome(order_id=order_id, previous_status=old_status, status=new_status, changed=False)

        assert_transition(old_status, new_status)

        restored: Dict[uuid.UUID, int] = {}
        if new_status in STOCK_RESTORING_STATUSES:
            lines = await repo.get_order_lines(session, order_id)
            restored = await repo.restore_stock(session, lines)

        pairs = []
        recorded = None
        ts = now()
        if should_record_copurchase(old_status, new_status, order.copurchase_recorded):
            pairs = directional_pairs(await repo.get_order_product_ids(session, order_id))
            await repo.upsert_copurchase_pairs(session, pairs, ts)
            recorded = True

        await repo.update_order_status(
            session,
            order_id,
            new_status,
            delivered_at=ts if new_status == OrderStatus.DELIVERED else None,
            copurchase_recorded=recorded,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    if pairs:
        logger.info("copurchase.recorded", extra={"order_id": str(order_id), "pairs": len(pairs)})
    logger.info("order.status_changed", extra={
        "order_id": str(order_id), "from_status": old_status.value, "to_status": new_status.value,
    })

    if restored:
        await _publish_quietly(publish, [
            StockChangeEvent(product_id=pid, new_stock_quantity=qty) for pid, qty in sorted(restored.items())
        ])

    return TransitionOutcome(order_id=order_id, previous_status=old_status, status=new_status,
                             changed=True, copurchase_pairs=len(pairs))


async def bulk_transition_order_status(session, order_ids: Sequence[uuid.UUID], new_status: OrderStatus, *,
                                       repo=order_repository, publish=publish_stock_changes) -> List[TransitionOutcome]:
    """Apply transition_order_status per order, one transaction each; failures don't stop the batch."""
    outcomes = []
    for order_id in dict.fromkeys(order_ids):
        try:
            outcome = await transition_order_status(session, order_id, new_status, repo=repo, publish=publish)
        except HTTPException as exc:
            outcome = TransitionOutcome(order_id=order_id, error=str(exc.detail))
        except Exception:
            logger.exception("order.bulk_status.failed", extra={"order_id": str(order_id)})
            outcome = TransitionOutcome(order_id=order_id, error="Status update failed")
        outcomes.append(outcome)
    return outcomes


async def get_order(session, order_id: uuid.UUID, *, repo=order_repository) -> dict:
    order = await repo.fetch_order_with_items(session, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order
