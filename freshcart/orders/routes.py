import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from freshcart.auth.dependencies import get_current_user_id, require_admin
from freshcart.common.utils import build_error, json_error, success_response
from freshcart.db.dependencies import get_session
from freshcart.orders.constants import logger
from freshcart.orders.models import BulkStatusUpdateIn, OrderOut, PlaceOrderIn, StatusUpdateIn
from freshcart.orders.services import bulk_transition_order_status, get_order, place_order, transition_order_status

orders_router = APIRouter()
orders_admin_router = APIRouter()

_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: "ORDER_INVALID",
    status.HTTP_409_CONFLICT: "ORDER_CONFLICT",
    status.HTTP_503_SERVICE_UNAVAILABLE: "ORDER_FAILED",
}


@orders_router.post("/orders")
async def create_order(payload: PlaceOrderIn,
                       user_id: uuid.UUID = Depends(get_current_user_id),
                       session: AsyncSession = Depends(get_session)):

    if payload.user_id is not None and payload.user_id != user_id:
        logger.warning("order.place.user_mismatch", extra={"user_id": str(user_id)})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot place an order for another user")

    result = await place_order(session, payload)

    if not result.success:
        body = build_error(code=_ERROR_CODES.get(result.http_status, "ORDER_FAILED"),
                           details=result.as_payload())
        return json_error(body, status_code=result.http_status)

    return success_response(result.as_payload(), status_code=status.HTTP_201_CREATED)


@orders_router.get("/orders/{order_id}")
async def read_order(order_id: uuid.UUID,
                     user_id: uuid.UUID = Depends(get_current_user_id),
                     session: AsyncSession = Depends(get_session)):

    order = await get_order(session, order_id)
    if order["user_id"] != user_id:
        # don't reveal other users' orders
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order not found: {order_id}")

    return success_response(OrderOut.model_validate(order).model_dump(mode="json"))


@orders_admin_router.patch("/{order_id}/status", dependencies=[require_admin])
async def update_order_status(order_id: uuid.UUID, payload: StatusUpdateIn,
                              session: AsyncSession = Depends(get_session)):

    outcome = await transition_order_status(session, order_id, payload.status)
    return success_response(outcome.model_dump(mode="json"))


@orders_admin_router.post("/status", dependencies=[require_admin])
async def bulk_update_order_status(payload: BulkStatusUpdateIn,
                                   session: AsyncSession = Depends(get_session)):

    outcomes = await bulk_transition_order_status(session, payload.order_ids, payload.status)
    failed = sum(1 for o in outcomes if o.error)
    logger.info("order.bulk_status.done", extra={"total": len(outcomes), "failed": failed})
    return success_response({
        "updated": sum(1 for o in outcomes if o.changed),
        "failed": failed,
        "results": [o.model_dump(mode="json") for o in outcomes],
    })
