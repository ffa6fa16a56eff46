import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from freshcart.auth.dependencies import get_current_user_id
from freshcart.cart.models import CartItemInput
from freshcart.cart.repository import (
    add_item,
    adjust_cart_to_stock,
    clear_cart,
    get_cart_stock_status,
    get_product_data,
    list_items,
    remove_item,
    remove_unavailable_cart_items,
)
from freshcart.common.logging_setup import get_logger
from freshcart.common.utils import success_response
from freshcart.db.dependencies import get_session

logger = get_logger("freshcart.cart")

carts_router = APIRouter()


@carts_router.get("")
async def get_cart(user_id: uuid.UUID = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    items = await list_items(session, user_id)
    return success_response({"items": [i.model_dump(mode="json") for i in items]})


@carts_router.post("/items")
async def add_to_cart(payload: CartItemInput, user_id: uuid.UUID = Depends(get_current_user_id),
                      session: AsyncSession = Depends(get_session)):

    product = await get_product_data(session, payload.product_id, payload.variant_id)
    if not product["is_active"] or product["stock_qty"] <= 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product is out of stock")

    item = await add_item(session, user_id, payload.product_id, payload.variant_id, payload.quantity)
    await session.commit()

    return success_response({"item": {**item, "product_id": payload.product_id, "variant_id": payload.variant_id}},
                            status_code=status.HTTP_201_CREATED)


@carts_router.delete("/items/{item_id}")
async def delete_cart_item(item_id: uuid.UUID, user_id: uuid.UUID = Depends(get_current_user_id),
                           session: AsyncSession = Depends(get_session)):
    removed = await remove_item(session, user_id, item_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cart item not found")
    await session.commit()
    return success_response({"removed": True})


@carts_router.delete("")
async def empty_cart(user_id: uuid.UUID = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    count = await clear_cart(session, user_id)
    await session.commit()
    return success_response({"removed_count": count})


@carts_router.get("/stock-status")
async def cart_stock_status(user_id: uuid.UUID = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    rows = await get_cart_stock_status(session, user_id)
    return success_response({
        "items": [r.model_dump(mode="json") for r in rows],
        "has_conflicts": any(r.has_conflict or r.is_out_of_stock for r in rows),
    })


@carts_router.post("/remove-unavailable")
async def cart_remove_unavailable(user_id: uuid.UUID = Depends(get_current_user_id),
                                  session: AsyncSession = Depends(get_session)):
    removed = await remove_unavailable_cart_items(session, user_id)
    await session.commit()
    if removed:
        logger.info("cart.unavailable_removed", extra={"user_id": str(user_id), "removed": len(removed)})
    return success_response({
        "success": True,
        "removed_count": len(removed),
        "removed_items": [r.model_dump(mode="json") for r in removed],
    })


@carts_router.post("/adjust-to-stock")
async def cart_adjust_to_stock(user_id: uuid.UUID = Depends(get_current_user_id),
                               session: AsyncSession = Depends(get_session)):
    result = await adjust_cart_to_stock(session, user_id)
    await session.commit()
    logger.info("cart.adjusted_to_stock", extra={
        "user_id": str(user_id), "adjusted": result.adjusted_count, "removed": result.removed_count,
    })
    return success_response({"success": True, **result.model_dump(mode="json")})
