import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from freshcart.common.logging_setup import get_logger
from freshcart.common.utils import money, now
from freshcart.coupons import repository as coupon_repository
from freshcart.coupons.models import CouponRow, CouponValidation
from freshcart.schema.full_schema import DiscountType

logger = get_logger("freshcart.coupons")


def compute_discount(coupon: CouponRow, subtotal: Decimal) -> Decimal:
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = subtotal * coupon.discount_value / Decimal(100)
        if coupon.maximum_discount is not None and discount > coupon.maximum_discount:
            discount = coupon.maximum_discount
    else:
        discount = min(coupon.discount_value, subtotal)
    return money(discount)


def _invalid(error: str) -> CouponValidation:
    return CouponValidation(valid=False, error=error)


async def validate_coupon(session, user_id: Optional[uuid.UUID], code: Optional[str], subtotal, *,
                          repo=coupon_repository, at: Optional[datetime] = None) -> CouponValidation:
    """Check a coupon for a user's cart and compute the discount server-side."""
    if user_id is None:
        return _invalid("User is required")
    if code is None or not code.strip():
        return _invalid("Coupon code is required")
    if subtotal is None or Decimal(subtotal) <= 0:
        return _invalid("Invalid order subtotal")
    subtotal = Decimal(subtotal)

    coupon = await repo.find_active_coupon(session, code)
    if coupon is None:
        return _invalid("Invalid or inactive coupon code")

    if coupon.valid_until is not None and coupon.valid_until < (at or now()):
        return _invalid("This coupon has expired")

    if coupon.minimum_order is not None and subtotal < coupon.minimum_order:
        return _invalid(f"Minimum order of ₹{coupon.minimum_order} required")

    if not coupon.is_stackable and await repo.has_used_coupon(session, user_id, coupon.id):
        return _invalid("You have already used this coupon")

    discount = compute_discount(coupon, subtotal)
    logger.debug("coupon.validated", extra={"coupon_id": str(coupon.id), "discount": str(discount)})

    return CouponValidation(
        valid=True,
        coupon_id=coupon.id,
        code=coupon.code,
        discount=discount,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        description=coupon.description,
    )
