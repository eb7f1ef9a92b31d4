"""
Analytics Dispatcher

Fire-and-forget recomputation of analytics after ledger writes. Tasks go
onto an in-process queue consumed by one worker thread; each task runs in
its own Session. Failures are logged and dropped so a broken refresh never
surfaces to the writer.

In inline mode (worker disabled) tasks run immediately in the submitting
thread instead of being queued.
"""

import logging
import queue
import threading
from collections.abc import Callable, Iterable

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .analytics import AnalyticsAggregator
from .ledger import LedgerStore
from .stock import StockCalculator

logger = logging.getLogger(__name__)

_STOP = object()


class AnalyticsDispatcher:
    def __init__(self, engine: Engine, inline: bool = False):
        self.engine = engine
        self.inline = inline
        self._queue: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None

    # ---------- lifecycle ----------

    def start(self) -> None:
        if self.inline:
            return
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name="analytics-dispatcher", daemon=True)
        self._worker.start()
        logger.info("Analytics dispatcher started")

    def stop(self, timeout: float = 5.0) -> None:
        if not self._worker:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None
        logger.info("Analytics dispatcher stopped")

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> int:
        """Run every queued task in the calling thread; returns how many ran"""
        ran = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return ran
            if task is not _STOP:
                self._execute(task)
                ran += 1
            self._queue.task_done()

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                self._execute(task)
            finally:
                self._queue.task_done()

    def _execute(self, task: tuple[str, Callable[[AnalyticsAggregator], object]]) -> None:
        label, job = task
        try:
            with Session(self.engine) as session:
                ledger = LedgerStore(session)
                job(AnalyticsAggregator(ledger, StockCalculator(ledger)))
        except Exception:
            logger.exception(f"Analytics task failed: {label}")

    # ---------- tasks ----------

    def submit(self, label: str, job: Callable[[AnalyticsAggregator], object]) -> None:
        if self.inline:
            self._execute((label, job))
            return
        self._queue.put((label, job))

    def refresh_snapshot(self, tenant_id: int) -> None:
        self.submit(
            f"snapshot tenant={tenant_id}",
            lambda aggregator: aggregator.save_daily_snapshot(tenant_id),
        )

    def refresh_ingredient(self, tenant_id: int, ingredient_id: int) -> None:
        self.submit(
            f"ingredient tenant={tenant_id} ingredient={ingredient_id}",
            lambda aggregator: aggregator.update_ingredient_analytics(tenant_id, ingredient_id),
        )

    def refresh_after_write(self, tenant_id: int, ingredient_ids: Iterable[int]) -> None:
        """One snapshot refresh plus one refresh per affected ingredient"""
        self.refresh_snapshot(tenant_id)
        for ingredient_id in sorted(set(ingredient_ids)):
            self.refresh_ingredient(tenant_id, ingredient_id)
