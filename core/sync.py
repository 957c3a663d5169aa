# core/sync.py
from itertools import islice
from typing import Iterable, Optional

from .errors import StoreUnavailableError
from .logger import get_logger
from .models import Candidate, Rejected, SyncReport
from .storage import CatalogStore, now_utc

logger = get_logger(__name__)

DEFAULT_CAPACITY = 50


def reconcile(
    store: CatalogStore,
    candidates: Iterable[Candidate],
    capacity: int = DEFAULT_CAPACITY,
    received: Optional[int] = None,
) -> SyncReport:
    """
    Converge the store toward a batch of normalized feed items.

    - At most `capacity` candidates are examined, in feed order; the rest of
      the iterable is never pulled.
    - Known external ids are always updated (local id and created_at kept).
    - Unknown ids are inserted while slots remain; slots are computed once
      from the store count at the start of the pass.
    - The pass ends by pruning the store to the `capacity` newest records.

    `received` is the total size of the feed, when known; entries beyond the
    examination cap are counted as skipped at capacity.

    Per-item failures are counted as skipped_invalid. StoreUnavailableError
    and failures of the initial count or the final prune abort the pass.
    """
    capacity = max(0, int(capacity))
    report = SyncReport(started_at=now_utc())
    initial_count = store.count()
    available_slots = max(0, capacity - initial_count)

    logger.debug(
        "Reconciling: capacity=%d, store=%d, available slots=%d",
        capacity, initial_count, available_slots,
    )

    for candidate in islice(candidates, capacity):
        report.examined += 1

        if isinstance(candidate, Rejected):
            report.skipped_invalid += 1
            continue

        report.price_warnings += candidate.price_warnings
        record = candidate.record

        try:
            existing = store.find_by_external_id(record.external_id)
            if existing is not None:
                record.local_id = existing.local_id
                record.created_at = existing.created_at
                store.upsert(record)
                report.updated += 1
            elif available_slots > 0:
                store.upsert(record)
                available_slots -= 1
                report.inserted += 1
            else:
                logger.debug("No slot left for product %s; skipping.", record.external_id)
                report.skipped_at_capacity += 1
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.warning("Failed to persist product %s: %s", record.external_id, e)
            report.skipped_invalid += 1

    if received is not None:
        report.received = received
        report.skipped_at_capacity += max(0, received - report.examined)
    else:
        report.received = report.examined

    report.pruned = store.prune_to_newest(capacity)
    report.final_count = store.count()
    report.finished_at = now_utc()

    logger.info(
        "Product sync completed. Received: %d, Processed: %d, Inserted: %d, Updated: %d, "
        "Skipped (invalid): %d, Skipped (limit): %d, Price warnings: %d, "
        "Deleted excess: %d, Total in DB: %d",
        report.received, report.examined, report.inserted, report.updated,
        report.skipped_invalid, report.skipped_at_capacity, report.price_warnings,
        report.pruned, report.final_count,
    )
    return report
