"""Record store contract and its JSON-file implementation.

The link tester only needs to enumerate links and products, write health
status back in bulk, and answer a few counting queries. ``RecordStore``
describes that contract; ``JsonRecordStore`` keeps the whole catalog in a
single JSON document and retries transient I/O errors with tenacity.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from creon_health.utils.models import (
    Catalog,
    ItemKind,
    Link,
    LinkStatusUpdate,
    Product,
    ProductStatusUpdate,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the record store cannot be read or written."""


class RecordStore(ABC):
    """Persistence operations required by the link tester."""

    @abstractmethod
    def find_all_links(self) -> list[Link]:
        ...

    @abstractmethod
    def find_all_products(self) -> list[Product]:
        ...

    @abstractmethod
    def find_links_by_owner(self, owner_id: str) -> list[Link]:
        ...

    @abstractmethod
    def find_products_by_owner(self, owner_id: str) -> list[Product]:
        ...

    @abstractmethod
    def bulk_update_link_status(self, updates: list[LinkStatusUpdate]) -> int:
        """Apply all link updates in one write. Returns the number applied."""
        ...

    @abstractmethod
    def bulk_update_product_status(self, updates: list[ProductStatusUpdate]) -> int:
        """Apply all product updates in one write. Returns the number applied."""
        ...

    @abstractmethod
    def most_recently_tested(self, kind: ItemKind) -> Optional[datetime]:
        ...

    @abstractmethod
    def count_by_kind(self, kind: ItemKind) -> int:
        ...

    @abstractmethod
    def count_working_by_kind(self, kind: ItemKind) -> int:
        ...


_io_retry = retry(
    retry=retry_if_exception_type(OSError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


class JsonRecordStore(RecordStore):
    """Record store backed by a single catalog JSON file.

    Every read is a point-in-time snapshot of the file. Bulk updates read
    the catalog once, apply every update, and replace the file atomically.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    # --- Raw catalog I/O ---

    @_io_retry
    def _read_text(self) -> str:
        with open(self.path, "r", encoding="utf-8") as f:
            return f.read()

    @_io_retry
    def _write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        tmp_path.replace(self.path)

    def load_catalog(self) -> Catalog:
        """Load the catalog, or an empty one if the file does not exist.

        Raises:
            StoreError: If the file cannot be read or does not validate.
        """
        if not self.path.exists():
            logger.warning("Catalog not found at %s, treating as empty", self.path)
            return Catalog()

        try:
            raw = json.loads(self._read_text())
            return Catalog.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.error("Failed to load catalog from %s: %s", self.path, exc)
            raise StoreError(f"Cannot read catalog {self.path}: {exc}") from exc

    def save_catalog(self, catalog: Catalog) -> None:
        """Persist the catalog atomically.

        Raises:
            StoreError: If the file cannot be written.
        """
        catalog.last_updated = datetime.now(timezone.utc)
        text = json.dumps(catalog.model_dump(mode="json"), indent=2, default=str)
        try:
            self._write_text(text)
        except OSError as exc:
            logger.error("Failed to save catalog to %s: %s", self.path, exc)
            raise StoreError(f"Cannot write catalog {self.path}: {exc}") from exc

        logger.info(
            "Saved catalog: %d links, %d products",
            len(catalog.links),
            len(catalog.products),
        )

    # --- Queries ---

    def find_all_links(self) -> list[Link]:
        return self.load_catalog().links

    def find_all_products(self) -> list[Product]:
        return self.load_catalog().products

    def find_links_by_owner(self, owner_id: str) -> list[Link]:
        return [link for link in self.load_catalog().links if link.owner_id == owner_id]

    def find_products_by_owner(self, owner_id: str) -> list[Product]:
        return [
            product
            for product in self.load_catalog().products
            if product.owner_id == owner_id
        ]

    def _items(self, kind: ItemKind) -> list[Link] | list[Product]:
        catalog = self.load_catalog()
        return catalog.links if kind == ItemKind.LINK else catalog.products

    def most_recently_tested(self, kind: ItemKind) -> Optional[datetime]:
        tested = [item.last_tested for item in self._items(kind) if item.last_tested]
        return max(tested) if tested else None

    def count_by_kind(self, kind: ItemKind) -> int:
        return len(self._items(kind))

    def count_working_by_kind(self, kind: ItemKind) -> int:
        return len([item for item in self._items(kind) if item.is_working])

    # --- Bulk writes ---

    def bulk_update_link_status(self, updates: list[LinkStatusUpdate]) -> int:
        if not updates:
            return 0

        catalog = self.load_catalog()
        by_id = {update.id: update for update in updates}
        applied = 0
        for link in catalog.links:
            update = by_id.get(link.id)
            if update is None:
                continue
            link.is_working = update.is_working
            link.is_active = update.is_active
            link.last_tested = update.last_tested
            applied += 1

        self._log_skipped("links", len(by_id), applied)
        self.save_catalog(catalog)
        return applied

    def bulk_update_product_status(self, updates: list[ProductStatusUpdate]) -> int:
        if not updates:
            return 0

        catalog = self.load_catalog()
        by_id = {update.id: update for update in updates}
        applied = 0
        for product in catalog.products:
            update = by_id.get(product.id)
            if update is None:
                continue
            product.is_working = update.is_working
            product.last_tested = update.last_tested
            applied += 1

        self._log_skipped("products", len(by_id), applied)
        self.save_catalog(catalog)
        return applied

    @staticmethod
    def _log_skipped(label: str, requested: int, applied: int) -> None:
        if applied < requested:
            # Items removed between the read and the write
            logger.warning(
                "Skipped %d %s updates for records no longer in the catalog",
                requested - applied,
                label,
            )
