import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class CouponValidateIn(BaseModel):
    code: Optional[str] = None
    subtotal: Optional[Decimal] = None


class CouponValidation(BaseModel):
    valid: bool
    error: Optional[str] = None
    coupon_id: Optional[uuid.UUID] = None
    code: Optional[str] = None
    discount: Optional[Decimal] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class CouponRow:
    id: uuid.UUID
    code: str
    description: Optional[str]
    discount_type: str
    discount_value: Decimal
    minimum_order: Optional[Decimal]
    maximum_discount: Optional[Decimal]
    valid_until: Optional[datetime]
    is_stackable: bool
