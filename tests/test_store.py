"""Tests for the JSON-file record store (creon_health/utils/store.py)."""

import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from creon_health.utils.models import (
    Catalog,
    ItemKind,
    Link,
    LinkStatusUpdate,
    Product,
    ProductStatusUpdate,
)
from creon_health.utils.store import JsonRecordStore, StoreError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TESTED_AT = datetime(2026, 3, 1, 2, 0, 0, tzinfo=timezone.utc)


def _catalog() -> Catalog:
    return Catalog(
        links=[
            Link(id="l1", owner_id="alice", url="https://a.example/1"),
            Link(id="l2", owner_id="bob", url="https://b.example/2", is_working=False),
        ],
        products=[
            Product(id="p1", owner_id="alice", affiliate_url="https://shop.example/p1"),
            Product(
                id="p2",
                owner_id="alice",
                affiliate_url="https://shop.example/p2",
                is_active=False,
                last_tested=TESTED_AT,
            ),
        ],
    )


def _write(tmp_path: Path, catalog: Catalog) -> JsonRecordStore:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(catalog.model_dump(mode="json")))
    return JsonRecordStore(path)


# ---------------------------------------------------------------------------
# load_catalog / save_catalog
# ---------------------------------------------------------------------------

class TestLoadCatalog:
    def test_missing_file_is_empty(self, tmp_path: Path):
        store = JsonRecordStore(tmp_path / "nope.json")
        catalog = store.load_catalog()
        assert catalog.links == []
        assert catalog.products == []

    def test_loads_records(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        catalog = store.load_catalog()
        assert [link.id for link in catalog.links] == ["l1", "l2"]
        assert catalog.products[1].last_tested == TESTED_AT

    def test_invalid_json_raises_store_error(self, tmp_path: Path):
        path = tmp_path / "catalog.json"
        path.write_text("{invalid json!!!")
        with pytest.raises(StoreError):
            JsonRecordStore(path).load_catalog()

    def test_invalid_schema_raises_store_error(self, tmp_path: Path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"links": [{"id": "x"}]}))
        with pytest.raises(StoreError):
            JsonRecordStore(path).load_catalog()

    def test_retries_transient_read_error(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        real_open = open
        calls = {"count": 0}

        def flaky_open(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise OSError("resource busy")
            return real_open(*args, **kwargs)

        with patch("creon_health.utils.store.open", side_effect=flaky_open, create=True):
            catalog = store.load_catalog()

        assert calls["count"] == 2
        assert len(catalog.links) == 2

    def test_persistent_read_error_raises_store_error(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())

        with patch(
            "creon_health.utils.store.open",
            side_effect=OSError("permission denied"),
            create=True,
        ):
            with pytest.raises(StoreError):
                store.load_catalog()


class TestSaveCatalog:
    def test_creates_parent_dirs_and_no_temp_file(self, tmp_path: Path):
        path = tmp_path / "data" / "catalog.json"
        store = JsonRecordStore(path)

        store.save_catalog(_catalog())

        assert path.exists()
        assert not path.with_suffix(".tmp").exists()
        saved = json.loads(path.read_text())
        assert len(saved["links"]) == 2

    def test_stamps_last_updated(self, tmp_path: Path):
        store = JsonRecordStore(tmp_path / "catalog.json")
        catalog = _catalog()
        catalog.last_updated = datetime(2020, 1, 1, tzinfo=timezone.utc)

        store.save_catalog(catalog)

        assert store.load_catalog().last_updated.year >= 2026


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:
    def test_find_all(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        assert len(store.find_all_links()) == 2
        assert len(store.find_all_products()) == 2

    def test_find_by_owner(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        assert [link.id for link in store.find_links_by_owner("alice")] == ["l1"]
        assert [p.id for p in store.find_products_by_owner("alice")] == ["p1", "p2"]
        assert store.find_products_by_owner("bob") == []

    def test_counts(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        assert store.count_by_kind(ItemKind.LINK) == 2
        assert store.count_working_by_kind(ItemKind.LINK) == 1
        assert store.count_by_kind(ItemKind.PRODUCT) == 2
        assert store.count_working_by_kind(ItemKind.PRODUCT) == 2

    def test_most_recently_tested(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        assert store.most_recently_tested(ItemKind.LINK) is None
        assert store.most_recently_tested(ItemKind.PRODUCT) == TESTED_AT


# ---------------------------------------------------------------------------
# Bulk writes
# ---------------------------------------------------------------------------

class TestBulkUpdates:
    def test_link_update_sets_status_and_visibility(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        updates = [
            LinkStatusUpdate(id="l1", is_working=False, is_active=False, last_tested=TESTED_AT),
        ]

        applied = store.bulk_update_link_status(updates)

        assert applied == 1
        link = store.find_all_links()[0]
        assert link.is_working is False
        assert link.is_active is False
        assert link.last_tested == TESTED_AT
        # Untouched link keeps its values
        assert store.find_all_links()[1].last_tested is None

    def test_product_update_keeps_visibility(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        updates = [
            ProductStatusUpdate(id="p1", is_working=False, last_tested=TESTED_AT),
            ProductStatusUpdate(id="p2", is_working=True, last_tested=TESTED_AT),
        ]

        applied = store.bulk_update_product_status(updates)

        assert applied == 2
        p1, p2 = store.find_all_products()
        assert p1.is_working is False
        assert p1.is_active is True
        assert p2.is_active is False

    def test_unknown_ids_are_skipped(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        updates = [
            LinkStatusUpdate(id="gone", is_working=True, is_active=True, last_tested=TESTED_AT),
            LinkStatusUpdate(id="l2", is_working=True, is_active=True, last_tested=TESTED_AT),
        ]

        applied = store.bulk_update_link_status(updates)

        assert applied == 1
        assert [link.id for link in store.find_all_links()] == ["l1", "l2"]

    def test_empty_updates_do_not_write(self, tmp_path: Path):
        path = tmp_path / "catalog.json"
        store = JsonRecordStore(path)

        assert store.bulk_update_link_status([]) == 0
        assert store.bulk_update_product_status([]) == 0
        assert not path.exists()

    def test_single_write_per_bulk_update(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        updates = [
            LinkStatusUpdate(id="l1", is_working=True, is_active=True, last_tested=TESTED_AT),
            LinkStatusUpdate(id="l2", is_working=True, is_active=True, last_tested=TESTED_AT),
        ]

        with patch.object(store, "save_catalog", wraps=store.save_catalog) as mock_save:
            store.bulk_update_link_status(updates)

        mock_save.assert_called_once()

    def test_write_failure_raises_store_error(self, tmp_path: Path):
        store = _write(tmp_path, _catalog())
        updates = [
            ProductStatusUpdate(id="p1", is_working=True, last_tested=TESTED_AT),
        ]

        with patch.object(JsonRecordStore, "_write_text", side_effect=OSError("disk full")):
            with pytest.raises(StoreError):
                store.bulk_update_product_status(updates)
