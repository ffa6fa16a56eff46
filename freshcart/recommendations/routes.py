import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from freshcart.auth.dependencies import get_current_user_id, get_optional_user_id
from freshcart.common.utils import success_response
from freshcart.db.dependencies import get_session
from freshcart.recommendations.services import (
    get_buy_again_products,
    get_frequently_bought_together,
    get_personalized_recommendations,
    get_trending_products,
)

recommendations_router = APIRouter()


def _cards(products) -> dict:
    return {"products": [p.model_dump(mode="json") for p in products]}


@recommendations_router.get("/trending")
async def trending(limit: int = Query(10, ge=1, le=50), days: int = Query(7, ge=1, le=90),
                   session: AsyncSession = Depends(get_session)):
    return success_response(_cards(await get_trending_products(session, limit, days)))


@recommendations_router.get("/frequently-bought-together/{product_id}")
async def frequently_bought_together(product_id: uuid.UUID, limit: int = Query(4, ge=1, le=20),
                                     exclude: Optional[List[uuid.UUID]] = Query(None),
                                     session: AsyncSession = Depends(get_session)):
    products = await get_frequently_bought_together(session, product_id, limit, exclude or [])
    return success_response(_cards(products))


@recommendations_router.get("/buy-again")
async def buy_again(limit: int = Query(10, ge=1, le=50),
                    user_id: uuid.UUID = Depends(get_current_user_id),
                    session: AsyncSession = Depends(get_session)):
    return success_response(_cards(await get_buy_again_products(session, user_id, limit)))


@recommendations_router.get("/personalized")
async def personalized(user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
                       session: AsyncSession = Depends(get_session)):
    products = await get_personalized_recommendations(session, user_id)
    return success_response({**_cards(products), "personalized": user_id is not None})
