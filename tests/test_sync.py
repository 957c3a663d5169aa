from decimal import Decimal
from unittest import mock

import pytest

from core.errors import StoreError, StoreUnavailableError
from core.models import CatalogRecord, Normalized, Rejected
from core.normalizer import normalize_item
from core.storage import CatalogStore
from core.sync import reconcile
from tests.feeds import build_products_json, feed_json, product_node, sync_payload


def _snapshot(store):
    return sorted(
        (r.local_id, r.external_id, r.title, r.handle, r.price, r.category, r.variants, r.created_at)
        for r in store.find_page(0, 1000)
    )


def test_limits_to_capacity_saved_records(store):
    with mock.patch.object(store, "prune_to_newest", wraps=store.prune_to_newest) as prune:
        report = sync_payload(store, build_products_json(55), capacity=50)

    assert report.inserted == 50
    assert report.updated == 0
    assert report.skipped_at_capacity >= 5
    assert report.received == 55
    assert report.examined == 50
    assert report.final_count == 50
    prune.assert_called_once_with(50)

    saved = store.find_page(0, 100)
    assert all(r.variants for r in saved)
    assert {r.external_id for r in saved} == {1000 + i for i in range(50)}


def test_second_run_is_a_fixed_point(store):
    payload = build_products_json(55)
    sync_payload(store, payload, capacity=50)
    before = _snapshot(store)

    report = sync_payload(store, payload, capacity=50)

    assert report.inserted == 0
    assert report.pruned == 0
    assert report.updated == 50
    assert report.final_count == 50
    assert _snapshot(store) == before


@pytest.mark.parametrize("feed_size", [0, 1, 7, 10, 11, 30])
@pytest.mark.parametrize("capacity", [0, 1, 5, 10])
@pytest.mark.parametrize("preexisting", [0, 3, 12])
def test_capacity_is_conserved(tmp_path, feed_size, capacity, preexisting):
    store = CatalogStore(str(tmp_path / "c.sqlite3"))
    store.ensure_db()
    for i in range(preexisting):
        store.upsert(CatalogRecord(external_id=None, title=f"Manual {i}", handle=f"manual-{i}"))

    report = sync_payload(store, build_products_json(feed_size), capacity=capacity)

    assert store.count() <= capacity
    assert report.final_count == store.count()
    assert report.examined == min(feed_size, capacity)
    assert report.inserted <= max(0, capacity - preexisting)


def test_existing_record_is_updated_even_without_slots(store):
    sync_payload(store, build_products_json(3), capacity=3)

    feed = feed_json(
        [
            product_node(10),
            product_node(11),
            product_node(1, title="Product 1 (restocked)", price="120.00"),
        ]
    )
    report = sync_payload(store, feed, capacity=3)

    assert report.updated == 1
    assert report.inserted == 0
    assert report.skipped_at_capacity == 2
    assert store.count() == 3
    updated = store.find_by_external_id(1001)
    assert updated.title == "Product 1 (restocked)"
    assert updated.price == Decimal("120.00")
    assert store.find_by_external_id(1010) is None


def test_update_keeps_local_identity(store):
    sync_payload(store, build_products_json(2), capacity=5)
    original = store.find_by_external_id(1000)

    sync_payload(store, feed_json([product_node(0, handle="renamed")]), capacity=5)

    after = store.find_by_external_id(1000)
    assert after.local_id == original.local_id
    assert after.created_at == original.created_at
    assert after.updated_at > original.updated_at
    assert after.handle == "renamed"


def test_slots_come_from_store_occupancy(store):
    sync_payload(store, build_products_json(4), capacity=5)

    report = sync_payload(store, build_products_json(5, start=100), capacity=5)

    assert report.inserted == 1
    assert report.skipped_at_capacity == 4
    assert store.count() == 5


def test_stale_records_are_pruned_in_favour_of_refreshed_ones(store):
    sync_payload(store, build_products_json(5), capacity=5)

    report = sync_payload(store, build_products_json(3, start=2), capacity=3)

    assert report.updated == 3
    assert report.pruned == 2
    remaining = {r.external_id for r in store.find_page(0, 10)}
    assert remaining == {1002, 1003, 1004}


def test_invalid_items_are_counted_and_skipped(store):
    feed = feed_json(
        [
            product_node(0),
            product_node(1, title=" "),
            "not a product",
            {k: v for k, v in product_node(3).items() if k != "handle"},
            product_node(4),
        ]
    )

    report = sync_payload(store, feed, capacity=10)

    assert report.examined == 5
    assert report.skipped_invalid == 3
    assert report.inserted == 2
    assert store.find_by_external_id(1001) is None
    assert store.find_by_external_id(1003) is None


def test_invalid_items_count_towards_examination_cap(store):
    feed = feed_json([product_node(0, title=""), product_node(1), product_node(2)])

    report = sync_payload(store, feed, capacity=2)

    assert report.examined == 2
    assert report.skipped_invalid == 1
    assert report.inserted == 1
    assert report.skipped_at_capacity == 1
    assert store.find_by_external_id(1002) is None


def test_price_warnings_are_reported(store):
    feed = feed_json(
        [product_node(0, variants=[{"id": 1, "price": "12.50"}, {"id": 2, "price": "bad"}])]
    )

    report = sync_payload(store, feed, capacity=5)

    assert report.price_warnings == 1
    assert store.find_by_external_id(1000).price == Decimal("12.50")


def test_items_beyond_cap_are_never_pulled(store):
    pulled = []

    def candidates():
        for i in range(10):
            pulled.append(i)
            yield normalize_item(product_node(i))

    report = reconcile(store, candidates(), capacity=4)

    assert pulled == [0, 1, 2, 3]
    assert report.examined == 4
    assert report.received == 4


class FlakyStore(CatalogStore):
    def __init__(self, db_path, failing_ids):
        super().__init__(db_path)
        self.failing_ids = set(failing_ids)

    def upsert(self, record):
        if record.external_id in self.failing_ids:
            raise StoreError("disk hiccup")
        return super().upsert(record)


def test_persist_failure_is_isolated_to_one_item(tmp_path):
    store = FlakyStore(str(tmp_path / "c.sqlite3"), failing_ids={1001})
    store.ensure_db()

    report = sync_payload(store, build_products_json(3), capacity=10)

    assert report.skipped_invalid == 1
    assert report.inserted == 2
    assert store.count() == 2


class UnreachableStore(CatalogStore):
    def find_by_external_id(self, external_id):
        raise StoreUnavailableError("database gone")


def test_unreachable_store_aborts_the_pass(tmp_path):
    store = UnreachableStore(str(tmp_path / "c.sqlite3"))
    store.ensure_db()

    with pytest.raises(StoreUnavailableError):
        sync_payload(store, build_products_json(3), capacity=10)


def test_rejected_candidates_without_feed_total(store):
    candidates = [Rejected("missing id"), Normalized(normalize_item(product_node(0)).record)]

    report = reconcile(store, candidates, capacity=10)

    assert report.received == 2
    assert report.skipped_invalid == 1
    assert report.inserted == 1
    assert report.duration_seconds >= 0
    assert report.as_dict()["final_count"] == 1
