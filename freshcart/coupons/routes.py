import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from freshcart.auth.dependencies import get_current_user_id
from freshcart.common.utils import success_response
from freshcart.coupons.models import CouponValidateIn
from freshcart.coupons.services import validate_coupon
from freshcart.db.dependencies import get_session

coupons_router = APIRouter()


@coupons_router.post("/validate")
async def validate(payload: CouponValidateIn, user_id: uuid.UUID = Depends(get_current_user_id),
                   session: AsyncSession = Depends(get_session)):
    result = await validate_coupon(session, user_id, payload.code, payload.subtotal)
    return success_response(result.model_dump(mode="json", exclude_none=True))
