import asyncio
from typing import Any, Dict, Optional
from freshcart.common.logging_setup import get_logger

logger = get_logger("freshcart.workers")

SENTINEL = None  # queue sentinel


class BaseWorker:
    """A pool of asyncio tasks draining one bounded queue; subclasses implement `task_executor`."""

    name = "worker"

    def __init__(self, workers_count: int = 2, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self.queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue(maxsize=max_queue_size)
        self.worker_loops: Dict[str, asyncio.Task] = {}
        self.workers_count: int = workers_count
        self.processed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self.worker_loops)

    async def __call__(self):
        if not self.worker_loops:
            # a fresh queue per start; queues bind to the event loop that first waits on them
            self.queue = asyncio.Queue(maxsize=self.max_queue_size)
            for i in range(self.workers_count):
                cur_worker_name = f"{self.name}:{i + 1}"
                self.worker_loops[cur_worker_name] = asyncio.create_task(self._worker_loop(cur_worker_name))
                logger.info("worker.started", extra={"worker": cur_worker_name})

    def enqueue(self, task: Dict[str, Any]) -> bool:
        """Fire-and-forget submit; a full queue drops the task."""
        try:
            self.queue.put_nowait(task)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("worker.queue_full", extra={"worker": self.name, "dropped": self.dropped})
            return False

    async def stop(self):
        """Send one sentinel per worker loop."""
        for _ in range(len(self.worker_loops)):
            await self.queue.put(SENTINEL)

    async def shutdown(self, *, drain_first: bool = True, drain_timeout: float = 30.0, wait_timeout: float = 30.0):
        """Graceful stop: optionally wait for the queue to drain, then send sentinels and await the loops."""
        if drain_first:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
                logger.debug("worker.queue_drained", extra={"worker": self.name})
            except asyncio.TimeoutError:
                logger.warning("worker.drain_timeout", extra={"worker": self.name})

        await self.stop()

        for wname, loop in self.worker_loops.items():
            try:
                await asyncio.wait_for(loop, timeout=wait_timeout)
            except asyncio.TimeoutError:
                logger.warning("worker.cancelled", extra={"worker": wname})
                loop.cancel()
                await asyncio.gather(loop, return_exceptions=True)
        self.worker_loops.clear()

    async def _worker_loop(self, cur_worker_name: str):
        while True:
            qitem = await self.queue.get()
            try:
                if qitem is SENTINEL:
                    logger.debug("worker.sentinel_received", extra={"worker": cur_worker_name})
                    break
                try:
                    await self.task_executor(qitem, cur_worker_name)
                    self.processed += 1
                except Exception:
                    logger.exception("worker.handler_failed", extra={"worker": cur_worker_name, "event": qitem.get("event")})
            finally:
                # always mark done for each get()
                self.queue.task_done()

        logger.info("worker.exiting", extra={"worker": cur_worker_name})

    async def task_executor(self, task: Dict[str, Any], wname: str):
        raise NotImplementedError
