import asyncio
from decimal import Decimal
import pytest
from uuid6 import uuid7
from freshcart.stock.feed import StockChangeFeed
from freshcart.stock.models import CartLineForStock, ConflictType, StockChangeEvent, StockInfo
from freshcart.stock.monitor import StockMonitor, cart_quantities, classify_conflict, evaluate_stock


class FakeStockSource:
    """Mutable stock table that counts reads."""

    def __init__(self):
        self.rows = {}
        self.reads = 0
        self.fail = False
        self.delay = 0.0

    def set(self, pid, stock, name="Milk", price="50.00", is_active=True, variant_prices=None):
        self.rows[pid] = StockInfo(product_id=pid, product_name=name, stock_quantity=stock,
                                   is_active=is_active, price=Decimal(price),
                                   variant_prices={vid: Decimal(p) for vid, p in (variant_prices or {}).items()})

    async def __call__(self, ids):
        self.reads += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("db down")
        return [self.rows[pid] for pid in ids if pid in self.rows]


class GatedStockSource(FakeStockSource):
    """Reads block until released once `gate` is set."""

    def __init__(self):
        super().__init__()
        self.gate = False
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, ids):
        if self.gate:
            self.started.set()
            await self.release.wait()
        return await super().__call__(ids)


def line(pid, qty=1, seen_price=None, variant_id=None):
    return CartLineForStock(product_id=pid, variant_id=variant_id, quantity=qty, seen_price=seen_price)


def info(pid, stock, is_active=True):
    return StockInfo(product_id=pid, product_name="Milk", stock_quantity=stock, is_active=is_active, price=Decimal("50"))


async def settle(seconds=0.05):
    await asyncio.sleep(seconds)


def test_cart_quantities_sum_variants():
    pid, other = uuid7(), uuid7()
    lines = [line(pid, 2), CartLineForStock(product_id=pid, variant_id=uuid7(), quantity=3), line(other)]
    assert cart_quantities(lines) == {pid: 5, other: 1}


def test_classify_conflict():
    pid = uuid7()
    assert classify_conflict(info(pid, 0), 1) == ConflictType.OUT_OF_STOCK
    assert classify_conflict(info(pid, 9, is_active=False), 1) == ConflictType.OUT_OF_STOCK
    assert classify_conflict(info(pid, 2), 3) == ConflictType.INSUFFICIENT_STOCK
    assert classify_conflict(info(pid, 3), 3) is None


def test_evaluate_stock_detects_transitions():
    out, reduced, same = uuid7(), uuid7(), uuid7()
    previous = {out: 4, reduced: 10, same: 5}
    rows = [info(out, 0), info(reduced, 6), info(same, 5)]

    snapshot, remembered = evaluate_stock(rows, {out: 1, reduced: 8, same: 1}, previous)

    assert snapshot.new_out_of_stock == [out]
    assert snapshot.stock_reduced == [reduced]
    assert snapshot.has_stock_changed is True
    assert snapshot.conflicts[out].conflict_type == ConflictType.OUT_OF_STOCK
    assert snapshot.conflicts[reduced].conflict_type == ConflictType.INSUFFICIENT_STOCK
    assert same not in snapshot.conflicts
    assert remembered == {out: 0, reduced: 6, same: 5}


def test_first_read_reports_no_changes():
    pid = uuid7()
    snapshot, _ = evaluate_stock([info(pid, 0)], {pid: 1}, {})
    assert snapshot.has_stock_changed is False
    assert pid in snapshot.conflicts


@pytest.mark.asyncio
async def test_start_reads_stock_and_subscribes():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 10)

    async with StockMonitor(source, feed, debounce_ms=10) as monitor:
        snapshot = await monitor.start([line(pid, 2)])

        assert snapshot.stock[pid].stock_quantity == 10
        assert snapshot.conflicts == {}
        assert monitor.is_subscribed
        assert feed.subscriber_count == 1

    assert feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_burst_of_events_triggers_one_refresh():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 10)

    async with StockMonitor(source, feed, debounce_ms=30) as monitor:
        await monitor.start([line(pid, 1)])
        reads_before = source.reads

        for stock in (9, 8, 7, 6, 5):
            source.set(pid, stock)
            feed.publish(StockChangeEvent(product_id=pid, new_stock_quantity=stock))
            await asyncio.sleep(0)

        await settle(0.1)

        assert source.reads == reads_before + 1
        assert monitor.snapshot.stock[pid].stock_quantity == 5
        assert monitor.stock_reduced == [pid]
        assert monitor.has_stock_changed is True


@pytest.mark.asyncio
async def test_sold_out_product_flags_conflict_until_acknowledged():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 3)

    async with StockMonitor(source, feed, debounce_ms=5) as monitor:
        await monitor.start([line(pid, 2)])

        source.set(pid, 0)
        feed.publish(StockChangeEvent(product_id=pid, new_stock_quantity=0))
        await settle()

        assert monitor.new_out_of_stock == [pid]
        assert monitor.snapshot.conflicts[pid].conflict_type == ConflictType.OUT_OF_STOCK

        monitor.acknowledge_changes()
        assert monitor.has_stock_changed is False
        assert monitor.snapshot.has_stock_changed is False
        assert monitor.new_out_of_stock == []
        # conflicts are still reported, only the change flag is cleared
        assert pid in monitor.snapshot.conflicts


@pytest.mark.asyncio
async def test_events_for_other_products_are_ignored():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 3)

    async with StockMonitor(source, feed, debounce_ms=5) as monitor:
        await monitor.start([line(pid)])
        reads = source.reads

        feed.publish(StockChangeEvent(product_id=uuid7(), new_stock_quantity=0))
        await settle()

        assert source.reads == reads


@pytest.mark.asyncio
async def test_retargeting_and_emptying_the_cart():
    feed, source = StockChangeFeed(), FakeStockSource()
    first, second = uuid7(), uuid7()
    source.set(first, 3)
    source.set(second, 3)

    monitor = StockMonitor(source, feed, debounce_ms=5)
    await monitor.start([line(first)])
    await monitor.update_cart([line(second)])

    assert monitor.watched_ids == [second]
    assert feed.subscriber_count == 1
    reads = source.reads
    feed.publish(StockChangeEvent(product_id=first, new_stock_quantity=0))
    await settle()
    assert source.reads == reads

    snapshot = await monitor.update_cart([])
    assert snapshot.stock == {}
    assert not monitor.is_subscribed
    assert feed.subscriber_count == 0

    await monitor.close()


@pytest.mark.asyncio
async def test_price_changes_are_reported():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 3, price="55.00")

    async with StockMonitor(source, feed, enable_realtime=False) as monitor:
        snapshot = await monitor.start([line(pid, seen_price=Decimal("50.00"))])

    assert len(snapshot.price_changes) == 1
    assert snapshot.price_changes[0].current_price == Decimal("55.00")
    assert feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_failed_or_slow_reads_keep_the_last_snapshot():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 3)

    async with StockMonitor(source, feed, fetch_timeout=0.02, enable_realtime=False) as monitor:
        good = await monitor.start([line(pid)])

        source.fail = True
        assert await monitor.refresh() is good

        source.fail = False
        source.delay = 0.1
        assert await monitor.refresh() is good
        assert monitor.refresh_count == 1


@pytest.mark.asyncio
async def test_updates_stream_ends_on_close():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 3)

    monitor = StockMonitor(source, feed, enable_realtime=False)
    await monitor.start([line(pid)])
    await monitor.refresh()
    await monitor.close()

    received = [snap async for snap in monitor.updates()]
    assert len(received) == 2
    assert received[-1].stock[pid].stock_quantity == 3


@pytest.mark.asyncio
async def test_close_cancels_pending_refresh():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 3)

    monitor = StockMonitor(source, feed, debounce_ms=50)
    await monitor.start([line(pid)])
    reads = source.reads

    feed.publish(StockChangeEvent(product_id=pid, new_stock_quantity=1))
    await asyncio.sleep(0.01)
    await monitor.close()
    await asyncio.sleep(0.08)

    assert source.reads == reads
    assert feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_event_during_a_read_does_not_cancel_it():
    feed, source = StockChangeFeed(), GatedStockSource()
    pid = uuid7()
    source.set(pid, 10)

    async with StockMonitor(source, feed, debounce_ms=5) as monitor:
        await monitor.start([line(pid, 3)])
        reads = source.reads

        source.gate = True
        source.set(pid, 4)
        feed.publish(StockChangeEvent(product_id=pid, new_stock_quantity=4))
        await asyncio.wait_for(source.started.wait(), timeout=1)

        for stock in (3, 2):
            source.set(pid, stock)
            feed.publish(StockChangeEvent(product_id=pid, new_stock_quantity=stock))
            await settle(0.02)

        source.gate = False
        source.release.set()
        await settle(0.1)

        # the blocked read finished, then exactly one follow-up read ran
        assert source.reads == reads + 2
        assert monitor.refresh_count == 3
        assert monitor.snapshot.stock[pid].stock_quantity == 2
        assert monitor.snapshot.conflicts[pid].conflict_type == ConflictType.INSUFFICIENT_STOCK


@pytest.mark.asyncio
async def test_steady_events_keep_the_snapshot_fresh():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid = uuid7()
    source.set(pid, 10)

    async with StockMonitor(source, feed, debounce_ms=20) as monitor:
        await monitor.start([line(pid, 1)])
        source.delay = 0.015

        # events arrive slower than the debounce but faster than debounce plus read time
        for stock in range(9, -1, -1):
            source.set(pid, stock)
            feed.publish(StockChangeEvent(product_id=pid, new_stock_quantity=stock))
            await settle(0.03)

        await settle(0.2)

        assert monitor.refresh_count >= 4
        assert monitor.snapshot.stock[pid].stock_quantity == 0
        assert monitor.snapshot.conflicts[pid].conflict_type == ConflictType.OUT_OF_STOCK


def test_variant_lines_compare_against_the_variant_price():
    pid, small, large = uuid7(), uuid7(), uuid7()
    row = StockInfo(product_id=pid, product_name="Rice", stock_quantity=9, price=Decimal("400.00"),
                    variant_prices={small: Decimal("220.00"), large: Decimal("410.00")})
    seen = {(pid, small): Decimal("220.00"), (pid, large): Decimal("400.00")}

    snapshot, _ = evaluate_stock([row], {pid: 2}, {}, seen)

    assert [(c.variant_id, c.seen_price, c.current_price) for c in snapshot.price_changes] == [
        (large, Decimal("400.00"), Decimal("410.00")),
    ]


@pytest.mark.asyncio
async def test_monitor_keeps_seen_prices_per_variant():
    feed, source = StockChangeFeed(), FakeStockSource()
    pid, small, large = uuid7(), uuid7(), uuid7()
    source.set(pid, 9, price="400.00", variant_prices={small: "220.00", large: "400.00"})

    async with StockMonitor(source, feed, enable_realtime=False) as monitor:
        snapshot = await monitor.start([
            line(pid, seen_price=Decimal("220.00"), variant_id=small),
            line(pid, seen_price=Decimal("400.00"), variant_id=large),
        ])

    assert snapshot.price_changes == []
