import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field


class ProductCard(BaseModel):
    id: uuid.UUID
    name: str
    price: Decimal
    mrp: Optional[Decimal] = None
    image_url: Optional[str] = None
    unit: Optional[str] = None
    stock_quantity: int
    category_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    score: Optional[float] = None
    reasons: List[str] = Field(default_factory=list)


class ViewIn(BaseModel):
    product_id: uuid.UUID


# rows the scorers consume

@dataclass(frozen=True)
class ScoredOrderItem:
    product_id: uuid.UUID
    quantity: int
    created_at: datetime


@dataclass(frozen=True)
class PurchaseSummary:
    product_id: uuid.UUID
    purchase_count: int
    last_purchased_at: datetime


@dataclass(frozen=True)
class AffinityOrderItem:
    product_id: uuid.UUID
    category_id: Optional[uuid.UUID]
    order_created_at: datetime


@dataclass(frozen=True)
class ViewRecord:
    product_id: uuid.UUID
    view_count: int
    last_viewed_at: datetime
