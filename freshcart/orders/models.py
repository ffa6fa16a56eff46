import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from freshcart.schema.full_schema import OrderStatus


class CartLineIn(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int
    # accepted for compatibility with older clients, never used for pricing
    price: Optional[Decimal] = None

    model_config = {"extra": "ignore"}


class PlaceOrderIn(BaseModel):
    # optional at the model level so missing values surface as order errors, not 422s
    user_id: Optional[uuid.UUID] = None
    delivery_address: Optional[str] = None
    cart_items: List[CartLineIn] = Field(default_factory=list)
    coupon_id: Optional[uuid.UUID] = None
    coupon_discount: Optional[Decimal] = None


class PlaceOrderResult(BaseModel):
    success: bool
    order_id: Optional[uuid.UUID] = None
    total: Optional[Decimal] = None
    error: Optional[str] = None
    product_id: Optional[uuid.UUID] = None
    available: Optional[int] = None
    http_status: int = Field(201, exclude=True)

    def as_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class StatusUpdateIn(BaseModel):
    status: OrderStatus


class BulkStatusUpdateIn(BaseModel):
    order_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    status: OrderStatus


class TransitionOutcome(BaseModel):
    order_id: uuid.UUID
    previous_status: Optional[OrderStatus] = None
    status: Optional[OrderStatus] = None
    changed: bool = False
    copurchase_pairs: int = 0
    error: Optional[str] = None


class OrderItemOut(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int
    price: Decimal


class OrderOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    status: OrderStatus
    subtotal: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    delivery_address: str
    created_at: datetime
    delivered_at: Optional[datetime] = None
    items: List[OrderItemOut] = Field(default_factory=list)


# rows read inside the order transaction

@dataclass(frozen=True)
class LockedProduct:
    id: uuid.UUID
    name: str
    price: Decimal
    stock_quantity: int
    is_active: bool


@dataclass(frozen=True)
class LockedVariant:
    id: uuid.UUID
    product_id: uuid.UUID
    price: Decimal


@dataclass(frozen=True)
class PricedLine:
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class OrderRow:
    id: uuid.UUID
    user_id: uuid.UUID
    status: str
    copurchase_recorded: bool


@dataclass(frozen=True)
class OrderLine:
    product_id: uuid.UUID
    quantity: int
