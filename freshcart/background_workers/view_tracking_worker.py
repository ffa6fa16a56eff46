import uuid
from typing import Any, Dict, Optional
from freshcart.background_workers.base_worker import BaseWorker
from freshcart.common.logging_setup import get_logger
from freshcart.common.utils import now
from freshcart.config.settings import config_settings
from freshcart.db.connection import async_session
from freshcart.recommendations import repository as reco_repository

logger = get_logger("freshcart.workers.view_tracking")

PRODUCT_VIEWED = "product_viewed"


class ViewTrackingWorker(BaseWorker):
    """Records product detail views off the request path; a failed write is logged and forgotten."""

    name = "view-tracking"

    def __init__(self, session_maker=async_session, repo=reco_repository,
                 workers_count: int = config_settings.VIEW_TRACKING_WORKERS, max_queue_size: int = 5000):
        super().__init__(workers_count=workers_count, max_queue_size=max_queue_size)
        self.session_maker = session_maker
        self.repo = repo

    def track(self, user_id: Optional[uuid.UUID], product_id: uuid.UUID) -> bool:
        if user_id is None:
            return False
        return self.enqueue({"event": PRODUCT_VIEWED, "user_id": user_id, "product_id": product_id, "at": now()})

    async def task_executor(self, task: Dict[str, Any], wname: str):
        if task.get("event") != PRODUCT_VIEWED:
            logger.warning("view_tracking.unknown_event", extra={"event": task.get("event")})
            return
        try:
            async with self.session_maker() as session:
                await self.repo.upsert_product_view(session, task["user_id"], task["product_id"], task["at"])
                await session.commit()
        except Exception as exc:
            # tracking must never surface to shoppers
            logger.debug("view_tracking.failed", extra={"product_id": str(task["product_id"]), "error": str(exc)})


view_tracking_worker = ViewTrackingWorker()
