import asyncio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from freshcart.common.logging_setup import get_logger
from freshcart.common.utils import success_response
from freshcart.db.dependencies import get_session
from freshcart.stock.dependencies import get_stock_feed, get_stock_fetcher
from freshcart.stock.models import CartLineForStock, StockCheckIn
from freshcart.stock.monitor import StockMonitor
from freshcart.stock.repository import check_stock_with_variants

logger = get_logger("freshcart.stock")

stock_router = APIRouter()

_cart_lines = TypeAdapter(List[CartLineForStock])


@stock_router.post("/check")
async def check_stock(payload: StockCheckIn, session: AsyncSession = Depends(get_session)):
    rows = await check_stock_with_variants(session, payload.items)
    return success_response({
        "items": [r.model_dump(mode="json") for r in rows],
        "all_available": all(r.is_available for r in rows),
    })


@stock_router.websocket("/monitor")
async def stock_monitor_ws(websocket: WebSocket, feed=Depends(get_stock_feed), fetcher=Depends(get_stock_fetcher)):
    """
    Live stock for a cart.

    Client messages: {"type": "cart", "items": [...]} to (re)target the watched lines,
    {"type": "refresh"} to force a read, {"type": "ack"} to clear the changed flag.
    Every snapshot the monitor produces is sent back as JSON.
    """
    await websocket.accept()
    monitor = StockMonitor(fetcher, feed)

    async def sender():
        async for snapshot in monitor.updates():
            await websocket.send_json({"type": "snapshot", "data": snapshot.model_dump(mode="json")})

    send_task = asyncio.create_task(sender())
    try:
        while True:
            message = await websocket.receive_json()
            kind = message.get("type") if isinstance(message, dict) else None

            if kind == "cart":
                try:
                    lines = _cart_lines.validate_python(message.get("items") or [])
                except ValidationError:
                    await websocket.send_json({"type": "error", "error": "invalid cart items"})
                    continue
                await monitor.update_cart(lines)
            elif kind == "refresh":
                await monitor.refresh()
            elif kind == "ack":
                monitor.acknowledge_changes()
            else:
                await websocket.send_json({"type": "error", "error": f"unknown message type: {kind}"})
    except WebSocketDisconnect:
        logger.debug("stock_monitor.disconnected")
    finally:
        await monitor.close()
        send_task.cancel()
        await asyncio.gather(send_task, return_exceptions=True)
