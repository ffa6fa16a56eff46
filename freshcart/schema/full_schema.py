import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlmodel import Column, Field, SQLModel, String
from uuid6 import uuid7
from freshcart.common.utils import now


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# --------------------------------------------------------------------------------------------
# catalog

class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    name: str = Field(sa_column=Column(String(128), nullable=False, unique=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    mrp: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))  # list price
    stock_quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default=text("0")))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=text("true")))
    unit: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    category_id: Optional[uuid.UUID] = Field(default=None,
        sa_column=Column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True))
    discount_percent: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    image_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )


class ProductVariant(SQLModel, table=True):
    __tablename__ = "product_variants"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    product_id: uuid.UUID = Field(
        sa_column=Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True))
    variant_name: str = Field(sa_column=Column(String(128), nullable=False))   # e.g. "500 g"
    variant_value: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 3), nullable=True))
    variant_unit: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    mrp: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    is_default: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default=text("false")))

    __table_args__ = (
        Index(
            "uq_product_variants_one_default",
            "product_id",
            unique=True,
            postgresql_where=text("is_default = true")
        ),
    )

# --------------------------------------------------------------------------------------------
# cart

class CartItem(SQLModel, table=True):
    __tablename__ = "cart_items"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    user_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), nullable=False, index=True))
    product_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False))
    variant_id: Optional[uuid.UUID] = Field(default=None,
        sa_column=Column(UUID(as_uuid=True), ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, server_default=text("1")))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    # (user, product, variant) is unique; NULL variants need their own partial index
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        Index("uq_cart_items_user_product_novariant", "user_id", "product_id",
              unique=True, postgresql_where=text("variant_id IS NULL")),
        Index("uq_cart_items_user_product_variant", "user_id", "product_id", "variant_id",
              unique=True, postgresql_where=text("variant_id IS NOT NULL")),
    )

# --------------------------------------------------------------------------------------------
# orders

class Coupon(SQLModel, table=True):
    __tablename__ = "coupons"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    code: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    discount_type: str = Field(default=DiscountType.FIXED.value, sa_column=Column(String(16), nullable=False))
    discount_value: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    minimum_order: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    maximum_discount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    valid_until: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=text("true")))
    is_stackable: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default=text("false")))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class Orders(SQLModel, table=True):
    __tablename__ = "orders"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    user_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), nullable=False, index=True))
    status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(32), nullable=False, index=True))
    subtotal: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    discount_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(10, 2), nullable=False, server_default=text("0")))
    total_amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))   # frozen at creation
    coupon_id: Optional[uuid.UUID] = Field(default=None,
        sa_column=Column(UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True))
    delivery_address: str = Field(sa_column=Column(Text, nullable=False))
    copurchase_recorded: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default=text("false")))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))
    delivered_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
        Index("ix_orders_user_delivered", "user_id", "created_at", postgresql_where=text("status = 'delivered'")),
    )


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    order_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True))
    variant_id: Optional[uuid.UUID] = Field(default=None,
        sa_column=Column(UUID(as_uuid=True), ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))   # snapshot, never recomputed
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))


class CouponUsage(SQLModel, table=True):
    __tablename__ = "coupon_usage"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    user_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), nullable=False, index=True))
    coupon_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True))
    order_id: Optional[uuid.UUID] = Field(default=None,
        sa_column=Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True))
    used_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("user_id", "coupon_id", name="uq_coupon_usage_user_coupon"),
    )

# --------------------------------------------------------------------------------------------
# recommendation aggregates

class ProductCoPurchase(SQLModel, table=True):
    __tablename__ = "product_co_purchases"

    product_id: uuid.UUID = Field(
        sa_column=Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True))
    co_product_id: uuid.UUID = Field(
        sa_column=Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True))
    co_purchase_count: int = Field(default=1, sa_column=Column(Integer, nullable=False, server_default=text("1")))
    last_purchased_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        CheckConstraint("product_id <> co_product_id", name="ck_co_purchase_no_self"),
        Index("ix_co_purchase_product_count", "product_id", "co_purchase_count"),
    )


class UserProductView(SQLModel, table=True):
    __tablename__ = "user_product_views"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(UUID(as_uuid=True), primary_key=True, default=uuid7))
    user_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), nullable=False))
    product_id: uuid.UUID = Field(sa_column=Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False))
    view_count: int = Field(default=1, sa_column=Column(Integer, nullable=False, server_default=text("1")))
    first_viewed_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    last_viewed_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_user_product_views_user_product"),
        Index("ix_user_product_views_recent", "user_id", "last_viewed_at"),
    )
