"""
Low-stock checker.

Built once at startup with a session factory and a notifier. Each item is
reported once per (item, stock level, reorder level); once an item is no
longer low, or its level changes, its key is dropped so a later dip is
reported again.
"""
from decimal import Decimal
import asyncio
import logging
import threading

from hms.models.core import Branch, StockItem
from hms.services.notify import Alert

log = logging.getLogger(__name__)

TAG = "low-stock"


def _qty(x) -> str:
    # 12.500 -> "12.5", 3.000 -> "3"
    d = Decimal(str(x or 0)).normalize()
    return format(d, "f")


def item_key(item: StockItem) -> str:
    return f"{item.id}-{_qty(item.current_stock)}-{_qty(item.reorder_level)}"


def is_low(item: StockItem) -> bool:
    return bool(item.is_active) and Decimal(str(item.current_stock or 0)) <= Decimal(str(item.reorder_level or 0))


def build_alert(item: StockItem, branch: Branch | None = None) -> Alert:
    unit = item.unit or "units"
    where = f" at {branch.name}" if branch else ""
    return Alert(
        tag=TAG,
        title="Low Stock Alert",
        body=(f"{item.name} is running low ({_qty(item.current_stock)} {unit} remaining){where}. "
              f"Reorder level: {_qty(item.reorder_level)}"),
        data={
            "type": "low_stock",
            "stock_item_id": item.id,
            "branch_id": item.branch_id,
            "current_stock": _qty(item.current_stock),
            "reorder_level": _qty(item.reorder_level),
            "reorder_quantity": _qty(item.reorder_quantity),
        },
        branch_id=item.branch_id,
    )


class LowStockChecker:
    def __init__(self, session_factory, notifier, interval_minutes: float = 30):
        self.session_factory = session_factory
        self.notifier = notifier
        self.interval_minutes = interval_minutes
        # sweeps run on a worker thread while adjustments report from request threads
        self._notified_lock = threading.Lock()
        self.notified: set[str] = set()
        self._task: asyncio.Task | None = None

    def _claim(self, key: str) -> bool:
        with self._notified_lock:
            if key in self.notified:
                return False
            self.notified.add(key)
            return True

    def _send(self, db, item: StockItem) -> Alert | None:
        key = item_key(item)
        if not self._claim(key):
            return None
        branch = db.get(Branch, item.branch_id) if item.branch_id else None
        alert = build_alert(item, branch)
        try:
            self.notifier.notify(alert)
        except Exception:
            with self._notified_lock:
                self.notified.discard(key)
            raise
        log.info("low stock: %s (%s <= %s)", item.name, _qty(item.current_stock), _qty(item.reorder_level))
        return alert

    def check(self) -> list[Alert]:
        """One sweep over all active items. Returns the alerts sent."""
        with self._notified_lock:
            seen = set(self.notified)
        sent: list[Alert] = []
        with self.session_factory() as db:
            low = (
                db.query(StockItem)
                .filter(StockItem.is_active.is_(True), StockItem.current_stock <= StockItem.reorder_level)
                .order_by(StockItem.name.asc())
                .all()
            )
            for item in low:
                alert = self._send(db, item)
                if alert is not None:
                    sent.append(alert)
            current = {item_key(i) for i in low}
        # only prune keys this sweep saw; keys claimed meanwhile are newer than the query
        with self._notified_lock:
            self.notified -= seen - current
        log.info("low stock sweep: %d low, %d notified", len(low), len(sent))
        return sent

    def on_inventory_update(self, item_id: str) -> Alert | None:
        with self.session_factory() as db:
            item = db.get(StockItem, item_id)
            if item is None or not is_low(item):
                return None
            return self._send(db, item)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.check)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("low stock sweep failed")
            await asyncio.sleep(self.interval_minutes * 60)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            log.info("low stock monitoring already running")
            return
        log.info("starting low stock monitoring every %s min", self.interval_minutes)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("low stock monitoring stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
