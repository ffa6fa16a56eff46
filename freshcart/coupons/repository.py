import uuid
from decimal import Decimal
from typing import Optional
from sqlalchemy import func, select
from freshcart.coupons.models import CouponRow
from freshcart.schema.full_schema import Coupon, CouponUsage


async def find_active_coupon(session, code: str) -> Optional[CouponRow]:
    stmt = select(Coupon).where(func.upper(Coupon.code) == code.strip().upper(), Coupon.is_active.is_(True))
    res = await session.execute(stmt)
    c = res.scalars().first()
    if c is None:
        return None
    return CouponRow(
        id=c.id,
        code=c.code,
        description=c.description,
        discount_type=c.discount_type,
        discount_value=Decimal(c.discount_value),
        minimum_order=Decimal(c.minimum_order) if c.minimum_order is not None else None,
        maximum_discount=Decimal(c.maximum_discount) if c.maximum_discount is not None else None,
        valid_until=c.valid_until,
        is_stackable=bool(c.is_stackable),
    )


async def has_used_coupon(session, user_id: uuid.UUID, coupon_id: uuid.UUID) -> bool:
    stmt = select(CouponUsage.id).where(CouponUsage.user_id == user_id, CouponUsage.coupon_id == coupon_id).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None
