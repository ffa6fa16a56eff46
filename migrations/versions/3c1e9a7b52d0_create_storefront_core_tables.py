"""create storefront core tables

Revision ID: 3c1e9a7b52d0
Revises: 
Create Date: 2026-10-19 10:12:41.204117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c1e9a7b52d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "categories",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "products",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("mrp", sa.Numeric(10, 2), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("unit", sa.String(32), nullable=True),
        sa.Column("category_id", UUID, sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_created_at", "products", ["created_at"])

    op.create_table(
        "product_variants",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("product_id", UUID, sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_name", sa.String(128), nullable=False),
        sa.Column("variant_value", sa.Numeric(10, 3), nullable=True),
        sa.Column("variant_unit", sa.String(32), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("mrp", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])
    op.create_index("uq_product_variants_one_default", "product_variants", ["product_id"],
                    unique=True, postgresql_where=sa.text("is_default = true"))

    op.create_table(
        "cart_items",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("product_id", UUID, sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_id", UUID, sa.ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )
    op.create_index("ix_cart_items_user_id", "cart_items", ["user_id"])
    op.create_index("uq_cart_items_user_product_novariant", "cart_items", ["user_id", "product_id"],
                    unique=True, postgresql_where=sa.text("variant_id IS NULL"))
    op.create_index("uq_cart_items_user_product_variant", "cart_items", ["user_id", "product_id", "variant_id"],
                    unique=True, postgresql_where=sa.text("variant_id IS NOT NULL"))

    op.create_table(
        "coupons",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(16), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("minimum_order", sa.Numeric(10, 2), nullable=True),
        sa.Column("maximum_discount", sa.Numeric(10, 2), nullable=True),
        sa.Column("valid_until", TS, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_stackable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "orders",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("coupon_id", UUID, sa.ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=False),
        sa.Column("copurchase_recorded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.Column("delivered_at", TS, nullable=True),
        sa.CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_user_delivered", "orders", ["user_id", "created_at"],
                    postgresql_where=sa.text("status = 'delivered'"))

    op.create_table(
        "order_items",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", UUID, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("variant_id", UUID, sa.ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_product_id", "order_items", ["product_id"])
    op.create_index("ix_order_items_created_at", "order_items", ["created_at"])

    op.create_table(
        "coupon_usage",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("coupon_id", UUID, sa.ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("used_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "coupon_id", name="uq_coupon_usage_user_coupon"),
    )
    op.create_index("ix_coupon_usage_user_id", "coupon_usage", ["user_id"])
    op.create_index("ix_coupon_usage_coupon_id", "coupon_usage", ["coupon_id"])

    op.create_table(
        "product_co_purchases",
        sa.Column("product_id", UUID, sa.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("co_product_id", UUID, sa.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("co_purchase_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("last_purchased_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("product_id <> co_product_id", name="ck_co_purchase_no_self"),
    )
    op.create_index("ix_co_purchase_product_count", "product_co_purchases", ["product_id", "co_purchase_count"])

    op.create_table(
        "user_product_views",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("product_id", UUID, sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("first_viewed_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.Column("last_viewed_at", TS, nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "product_id", name="uq_user_product_views_user_product"),
    )
    op.create_index("ix_user_product_views_recent", "user_product_views", ["user_id", "last_viewed_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("user_product_views")
    op.drop_table("product_co_purchases")
    op.drop_table("coupon_usage")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("coupons")
    op.drop_table("cart_items")
    op.drop_table("product_variants")
    op.drop_table("products")
    op.drop_table("categories")
