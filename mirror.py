import os
import signal
import threading

from core.logger import get_logger
from core.scheduler import SyncScheduler
from core.storage import CatalogStore
from fetchers import FETCHERS

logger = get_logger(__name__)


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        logger.error("Invalid %s=%r; using %d.", name, raw, default)
        value = default
    return max(minimum, value)


SYNC_CAPACITY = _env_int("SYNC_CAPACITY", 50, 0)
SYNC_INTERVAL_MINUTES = _env_int("SYNC_INTERVAL_MINUTES", 60, 1)
FEED_NAME = os.getenv("FEED_NAME", "famme").strip().lower()
MODE = os.getenv("MODE", "daemon").lower()  # "daemon" or "once"


def build_scheduler(store: CatalogStore | None = None) -> SyncScheduler:
    fetcher = FETCHERS.get(FEED_NAME)
    if not fetcher:
        logger.error("No fetcher registered for feed '%s'.", FEED_NAME)
        raise SystemExit(1)

    store = store or CatalogStore()
    store.ensure_db()
    return SyncScheduler(
        fetch=fetcher,
        store=store,
        capacity=SYNC_CAPACITY,
        interval_minutes=SYNC_INTERVAL_MINUTES,
    )


def run_once() -> int:
    scheduler = build_scheduler()
    logger.info("Manual product sync triggered")
    result = scheduler.trigger(block=True)
    for line in (result.summary or result.message).splitlines():
        logger.info(line)
    return 0 if result.success else 1


def run_daemon() -> None:
    scheduler = build_scheduler()
    stopped = threading.Event()

    def _shutdown(signum, _frame):
        logger.info("Received signal %d; stopping after the current pass.", signum)
        scheduler.stop()
        stopped.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    scheduler.start()
    stopped.wait()


if __name__ == "__main__":
    try:
        if MODE == "once":
            raise SystemExit(run_once())
        else:
            run_daemon()
    except SystemExit:
        raise
    except Exception as e:
        logger.exception("Fatal mirror error: %s", e)
        raise SystemExit(2)
