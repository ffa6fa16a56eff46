import asyncio
import uuid
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from freshcart.common.logging_setup import get_logger
from freshcart.config.settings import config_settings
from freshcart.stock.feed import StockChangeFeed, StockSubscription
from freshcart.stock.models import CartLineForStock, ConflictType, MonitorSnapshot, PriceChange, StockConflict, StockInfo
from freshcart.stock.utils import has_stock_conflict

logger = get_logger("freshcart.stock.monitor")

StockFetcher = Callable[[Sequence[uuid.UUID]], Awaitable[List[StockInfo]]]


def cart_quantities(lines: Iterable[CartLineForStock]) -> Dict[uuid.UUID, int]:
    """Sum quantities per product; variants of one product share its stock."""
    totals: Dict[uuid.UUID, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def classify_conflict(info: StockInfo, cart_qty: int) -> Optional[ConflictType]:
    if cart_qty <= 0:
        return None
    if info.stock_quantity <= 0 or not info.is_active:
        return ConflictType.OUT_OF_STOCK
    if has_stock_conflict(cart_qty, info.stock_quantity):
        return ConflictType.INSUFFICIENT_STOCK
    return None


def seen_price_key(line: CartLineForStock) -> Tuple[uuid.UUID, Optional[uuid.UUID]]:
    return line.product_id, line.variant_id


def _live_price(info: StockInfo, variant_id: Optional[uuid.UUID]) -> Optional[Decimal]:
    if variant_id is None:
        return info.price
    # None when the variant is gone or the read did not include variant prices
    return info.variant_prices.get(variant_id)


def evaluate_stock(
    rows: Sequence[StockInfo],
    quantities: Dict[uuid.UUID, int],
    previous_stock: Dict[uuid.UUID, int],
    seen_prices: Optional[Dict[Tuple[uuid.UUID, Optional[uuid.UUID]], Decimal]] = None,
) -> Tuple[MonitorSnapshot, Dict[uuid.UUID, int]]:
    """Compare a fresh stock read with the cart and the previous read.

    `seen_prices` is keyed by (product_id, variant_id); variant lines compare against the variant price.

    Returns the snapshot and the stock levels to remember for the next comparison.
    """
    seen_prices = seen_prices or {}
    stock: Dict[uuid.UUID, StockInfo] = {}
    conflicts: Dict[uuid.UUID, StockConflict] = {}
    new_out: List[uuid.UUID] = []
    reduced: List[uuid.UUID] = []
    price_changes: List[PriceChange] = []
    remembered = dict(previous_stock)

    for info in rows:
        pid = info.product_id
        stock[pid] = info
        qty = quantities.get(pid, 0)
        if qty > 0:
            kind = classify_conflict(info, qty)
            if kind is not None:
                conflicts[pid] = StockConflict(
                    product_id=pid,
                    product_name=info.product_name,
                    cart_quantity=qty,
                    available_stock=info.stock_quantity,
                    conflict_type=kind,
                )
            prev = previous_stock.get(pid)
            if prev is not None:
                if prev > 0 and info.stock_quantity <= 0:
                    new_out.append(pid)
                elif prev > info.stock_quantity > 0:
                    reduced.append(pid)
        remembered[pid] = info.stock_quantity

    for (pid, variant_id), seen in seen_prices.items():
        info = stock.get(pid)
        if info is None or quantities.get(pid, 0) <= 0:
            continue
        live = _live_price(info, variant_id)
        if live is not None and Decimal(seen) != Decimal(live):
            price_changes.append(PriceChange(product_id=pid, variant_id=variant_id,
                                             seen_price=seen, current_price=live))

    snapshot = MonitorSnapshot(
        stock=stock,
        conflicts=conflicts,
        new_out_of_stock=new_out,
        stock_reduced=reduced,
        price_changes=price_changes,
        has_stock_changed=bool(new_out or reduced),
    )
    return snapshot, remembered


class StockMonitor:
    """
    Keeps a cart's view of live stock fresh.

    Subscribes to the stock feed for the watched products; every change event schedules a
    re-read of the whole watched set after `debounce_ms`, so a burst of updates costs one read.
    The subscription exists only while the watched set is non-empty. Consumers either read
    `snapshot` or drain `updates()`.
    """

    def __init__(
        self,
        fetch_stock: StockFetcher,
        feed: StockChangeFeed,
        *,
        debounce_ms: int = config_settings.STOCK_MONITOR_DEBOUNCE_MS,
        fetch_timeout: float = config_settings.STOCK_FETCH_TIMEOUT_SECONDS,
        enable_realtime: bool = True,
    ):
        self._fetch = fetch_stock
        self._feed = feed
        self._debounce = debounce_ms / 1000.0
        self._fetch_timeout = fetch_timeout
        self._enable_realtime = enable_realtime

        self._quantities: Dict[uuid.UUID, int] = {}
        self._seen_prices: Dict[Tuple[uuid.UUID, Optional[uuid.UUID]], Decimal] = {}
        self._previous_stock: Dict[uuid.UUID, int] = {}

        self._subscription: Optional[StockSubscription] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._reading = False
        self._follow_up = False
        self._refresh_lock = asyncio.Lock()
        self._updates: asyncio.Queue[Optional[MonitorSnapshot]] = asyncio.Queue(maxsize=16)

        self.snapshot = MonitorSnapshot()
        self.has_stock_changed = False
        self.new_out_of_stock: List[uuid.UUID] = []
        self.stock_reduced: List[uuid.UUID] = []
        self.refresh_count = 0

    @property
    def watched_ids(self) -> List[uuid.UUID]:
        return sorted(self._quantities)

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    async def start(self, lines: Sequence[CartLineForStock]) -> MonitorSnapshot:
        return await self.update_cart(lines)

    async def update_cart(self, lines: Sequence[CartLineForStock]) -> MonitorSnapshot:
        self._quantities = cart_quantities(lines)
        self._seen_prices = {seen_price_key(l): l.seen_price for l in lines if l.seen_price is not None}

        if not self._quantities:
            await self._teardown()
            self.snapshot = MonitorSnapshot()
            self._publish_snapshot(self.snapshot)
            return self.snapshot

        if self._enable_realtime:
            if self._subscription is None:
                self._subscription = self._feed.subscribe(self._quantities)
                self._pump_task = asyncio.create_task(self._pump(self._subscription))
            else:
                self._feed.retarget(self._subscription, self._quantities)

        return await self.refresh()

    async def refresh(self) -> MonitorSnapshot:
        ids = self.watched_ids
        if not ids:
            return self.snapshot

        async with self._refresh_lock:
            try:
                rows = await asyncio.wait_for(self._fetch(ids), timeout=self._fetch_timeout)
            except asyncio.TimeoutError:
                logger.error("stock_monitor.fetch_timeout", extra={"watched": len(ids)})
                return self.snapshot
            except Exception:
                # keep the last good snapshot; the next event or refresh tries again
                logger.exception("stock_monitor.refresh_failed", extra={"watched": len(ids)})
                return self.snapshot

            snapshot, self._previous_stock = evaluate_stock(rows, self._quantities, self._previous_stock, self._seen_prices)
            self.refresh_count += 1

            if snapshot.has_stock_changed:
                self.has_stock_changed = True
                self.new_out_of_stock = list(snapshot.new_out_of_stock)
                self.stock_reduced = list(snapshot.stock_reduced)

            snapshot.has_stock_changed = self.has_stock_changed
            self.snapshot = snapshot
            self._publish_snapshot(snapshot)
            return snapshot

    def acknowledge_changes(self):
        self.has_stock_changed = False
        self.new_out_of_stock = []
        self.stock_reduced = []
        self.snapshot.has_stock_changed = False

    async def updates(self):
        """Yield snapshots as they are produced, until the monitor is closed."""
        while True:
            snap = await self._updates.get()
            if snap is None:
                return
            yield snap

    async def close(self):
        await self._teardown()
        self._publish_snapshot(None)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _publish_snapshot(self, snapshot: Optional[MonitorSnapshot]):
        if self._updates.full():
            self._updates.get_nowait()
        self._updates.put_nowait(snapshot)

    def _schedule_refresh(self):
        if self._reading:
            # reads in flight run to completion; events seen meanwhile queue one follow-up
            self._follow_up = True
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounced_refresh())

    async def _debounced_refresh(self):
        await asyncio.sleep(self._debounce)
        self._reading = True
        try:
            await self.refresh()
        finally:
            self._reading = False
        if self._follow_up:
            self._follow_up = False
            self._debounce_task = asyncio.create_task(self._debounced_refresh())

    async def _pump(self, subscription: StockSubscription):
        async for event in subscription:
            if event.product_id in self._quantities:
                logger.debug("stock_monitor.update_received",
                             extra={"product_id": str(event.product_id), "new_stock": event.new_stock_quantity})
                self._schedule_refresh()

    async def _teardown(self):
        self._follow_up = False
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            await asyncio.gather(self._debounce_task, return_exceptions=True)
            self._debounce_task = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._pump_task is not None:
            await asyncio.gather(self._pump_task, return_exceptions=True)
            self._pump_task = None
