import uuid
from decimal import Decimal
from typing import Optional
from sqlalchemy import select
from freshcart.schema.full_schema import Product, ProductVariant


async def fetch_product_details(session, product_id: uuid.UUID) -> Optional[dict]:
    res = await session.execute(select(Product).where(Product.id == product_id))
    product = res.scalar_one_or_none()
    if product is None:
        return None

    vres = await session.execute(
        select(ProductVariant)
        .where(ProductVariant.product_id == product_id)
        .order_by(ProductVariant.is_default.desc(), ProductVariant.price, ProductVariant.id)
    )
    variants = [
        {
            "id": v.id,
            "variant_name": v.variant_name,
            "variant_value": v.variant_value,
            "variant_unit": v.variant_unit,
            "price": Decimal(v.price),
            "mrp": v.mrp,
            "is_default": v.is_default,
        }
        for v in vres.scalars().all()
    ]
    return {
        "id": product.id,
        "name": product.name,
        "price": Decimal(product.price),
        "mrp": product.mrp,
        "unit": product.unit,
        "image_url": product.image_url,
        "category_id": product.category_id,
        "discount_percent": product.discount_percent,
        "stock_quantity": product.stock_quantity,
        "is_active": product.is_active,
        "created_at": product.created_at,
        "variants": variants,
    }
