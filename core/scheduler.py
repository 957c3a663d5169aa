# core/scheduler.py
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import CatalogSyncError
from .feed import parse_feed
from .logger import get_logger
from .models import SyncReport
from .normalizer import normalize_feed
from .report import build_plaintext_summary, build_trigger_message
from .storage import CatalogStore
from .sync import DEFAULT_CAPACITY, reconcile

logger = get_logger(__name__)


@dataclass
class TriggerResult:
    success: bool
    message: str
    summary: str = ""
    total_count: Optional[int] = None
    report: Optional[SyncReport] = None
    already_running: bool = False


class SyncScheduler:
    """
    Runs reconciliation passes one at a time, on a fixed interval and on
    demand. Both paths go through trigger(), which owns the run-guard.
    """

    def __init__(
        self,
        fetch: Callable[[], str],
        store: CatalogStore,
        capacity: int = DEFAULT_CAPACITY,
        interval_minutes: int = 60,
    ):
        self.fetch = fetch
        self.store = store
        self.capacity = max(0, capacity)
        self.interval_minutes = max(1, interval_minutes)
        self._run_guard = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._run_guard.locked()

    def run_pass(self) -> SyncReport:
        """One full pass; pass-level errors propagate before any store mutation."""
        payload = self.fetch()
        feed = parse_feed(payload)
        return reconcile(
            self.store,
            normalize_feed(feed),
            capacity=self.capacity,
            received=feed.total,
        )

    def trigger(self, block: bool = False) -> TriggerResult:
        """
        Manual entry point. Returns "already running" instead of starting a
        second pass unless block is set. Never raises.
        """
        if not self._run_guard.acquire(blocking=block):
            logger.warning("Sync trigger ignored: a pass is already running.")
            return TriggerResult(
                success=False,
                message="Sync already in progress; try again later.",
                already_running=True,
            )

        try:
            logger.info("Starting product sync (capacity=%d)...", self.capacity)
            try:
                report = self.run_pass()
            except CatalogSyncError as e:
                logger.error("Error during product sync: %s", e)
                return self._failed(str(e))
            except Exception as e:
                logger.exception("Unexpected error during product sync: %s", e)
                return self._failed(str(e))

            return TriggerResult(
                success=True,
                message=build_trigger_message(True, report.final_count),
                summary=build_plaintext_summary(report),
                total_count=report.final_count,
                report=report,
            )
        finally:
            self._run_guard.release()

    def _failed(self, error: str) -> TriggerResult:
        try:
            total = self.store.count()
        except CatalogSyncError as e:
            logger.error("Could not count products after failed sync: %s", e)
            total = None
        return TriggerResult(
            success=False,
            message=build_trigger_message(False, total, error),
            summary=build_plaintext_summary(None, error),
            total_count=total,
        )

    def run_forever(self) -> None:
        """First pass immediately, then one every interval until stop()."""
        logger.info("Starting sync loop; every %d minutes.", self.interval_minutes)
        while not self._stop.is_set():
            try:
                result = self.trigger(block=True)
                logger.info(result.message)
            except Exception as e:
                logger.exception("Unhandled error in sync loop: %s", e)

            if self._stop.wait(self.interval_minutes * 60):
                break
        logger.info("Sync loop stopped.")

    def start(self) -> threading.Thread:
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="catalog-sync", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
