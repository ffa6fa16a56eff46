from contextlib import asynccontextmanager
from fastapi import FastAPI
from freshcart.api import cur_version
from freshcart.api.routers import admin_routers, public_routers
from freshcart.background_workers.stock_feed_listener import StockFeedListener
from freshcart.background_workers.view_tracking_worker import view_tracking_worker
from freshcart.common.custom_exceptions import register_all_exceptions
from freshcart.common.logging_setup import get_logger, setup_logging, shutdown_logging
from freshcart.config.admin_config import admin_config
from freshcart.config.settings import config_settings
from freshcart.db.connection import async_engine
from freshcart.middlewares.request_id_middleware import RequestIdMiddleware
from freshcart.stock.feed import stock_feed

logger = get_logger("freshcart.app")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()

    await view_tracking_worker()
    app.state.view_tracking_worker = view_tracking_worker

    listener = None
    if config_settings.STOCK_FEED_BACKEND == "redis":
        listener = StockFeedListener()
        listener.start()
    app.state.stock_feed_listener = listener

    logger.info("app.started", extra={"env": admin_config.ENV, "service": admin_config.SERVICE_NAME})
    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        if listener is not None:
            await listener.stop()
        await view_tracking_worker.shutdown(drain_timeout=5.0, wait_timeout=5.0)
        stock_feed.close()
        # safe to dispose DB engine after workers exit
        await async_engine.dispose()
        logger.info("app.stopped")
        shutdown_logging()


def create_app():
    app = FastAPI(
        title="Freshcart",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app


app = create_app()
