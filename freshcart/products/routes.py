import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from freshcart.auth.dependencies import get_current_user_id, get_optional_user_id, require_admin
from freshcart.common.logging_setup import get_logger
from freshcart.common.utils import success_response
from freshcart.db.dependencies import get_session
from freshcart.products.repository import fetch_product_details
from freshcart.recommendations.services import track_product_view
from freshcart.stock.models import StockChangeEvent, StockUpdateIn
from freshcart.stock.publisher import publish_stock_changes
from freshcart.stock.repository import set_product_stock
from freshcart.stock.utils import is_low_stock, stock_status_label

logger = get_logger("freshcart.products")

prods_public_router = APIRouter()
prods_admin_router = APIRouter()


@prods_public_router.get("/{product_id}")
async def get_product(product_id: uuid.UUID, track: bool = False,
                      user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
                      session: AsyncSession = Depends(get_session)):

    product = await fetch_product_details(session, product_id)
    if product is None or not product["is_active"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    if track:
        track_product_view(user_id, product_id)

    stock = product["stock_quantity"]
    return success_response({
        **product,
        "stock_status": stock_status_label(stock),
        "low_stock": is_low_stock(stock),
    })


@prods_public_router.post("/{product_id}/views", status_code=status.HTTP_202_ACCEPTED)
async def record_product_view(product_id: uuid.UUID, user_id: uuid.UUID = Depends(get_current_user_id)):
    queued = track_product_view(user_id, product_id)
    return success_response({"queued": queued}, status_code=status.HTTP_202_ACCEPTED)


@prods_admin_router.patch("/{product_id}/stock", dependencies=[require_admin])
async def update_product_stock(product_id: uuid.UUID, payload: StockUpdateIn,
                               session: AsyncSession = Depends(get_session)):

    info = await set_product_stock(session, product_id, payload.stock_quantity, payload.is_active)
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    await session.commit()

    logger.info("product.stock_updated", extra={"product_id": str(product_id), "stock": info.stock_quantity})
    try:
        await publish_stock_changes([StockChangeEvent(
            product_id=info.product_id,
            new_stock_quantity=info.stock_quantity,
            new_is_active=info.is_active,
            new_price=info.price,
        )])
    except Exception:
        logger.exception("stock_feed.publish_failed", extra={"product_id": str(product_id)})

    return success_response(info.model_dump(mode="json"))
