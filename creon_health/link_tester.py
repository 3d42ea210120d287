"""Async health checker for profile links and affiliate products.

Probes each item's target URL with an httpx.AsyncClient GET, classifies
the outcome (status code, plus a product-page check for marketplace
affiliate links), and writes is_working / last_tested back to the record
store with one bulk update per item kind. Links additionally get
is_active set to their health so broken links drop off the public page.

Full runs probe items in concurrent batches with a pause between batches;
per-owner runs probe one item at a time with a shorter pause.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Sequence
from urllib.parse import urlparse

import httpx

from creon_health.classify import (
    ClassificationRule,
    build_rules,
    classify_url,
    is_working_response,
)
from creon_health.utils.config import TesterConfig
from creon_health.utils.models import (
    ItemKind,
    KindStats,
    LinkStatusUpdate,
    LinkTestResult,
    LinkTestStats,
    ProductStatusUpdate,
    TestableItem,
)
from creon_health.utils.store import RecordStore

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 255
ALLOWED_SCHEMES = {"http", "https"}


def _chunk(items: Sequence[TestableItem], size: int) -> list[Sequence[TestableItem]]:
    """Split items into consecutive batches of at most ``size``."""
    return [items[i:i + size] for i in range(0, len(items), size)]


class LinkTester:
    """Tests links and products and persists their health status."""

    def __init__(
        self,
        store: RecordStore,
        config: Optional[TesterConfig] = None,
        rules: Optional[list[ClassificationRule]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.config = config or TesterConfig()
        self.rules = rules if rules is not None else build_rules()
        self.transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        """Create an httpx.AsyncClient with the checker's headers, timeout and redirect cap."""
        return httpx.AsyncClient(
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.timeout_seconds,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            transport=self.transport,
        )

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    async def test_one(
        self,
        item_id: str,
        url: str,
        item_kind: ItemKind,
        client: Optional[httpx.AsyncClient] = None,
    ) -> LinkTestResult:
        """Probe one URL and classify the outcome.

        Never raises: transport failures and unexpected errors are returned
        as a not-working result carrying the error message.

        Args:
            item_id: The link or product id.
            url: The URL to probe.
            item_kind: Whether the item is a link or a product.
            client: Shared client for batch runs. A temporary one is
                created when omitted.

        Returns:
            The LinkTestResult for this probe.
        """
        if client is None:
            async with self._build_client() as own_client:
                return await self._probe(own_client, item_id, url, item_kind)
        return await self._probe(client, item_id, url, item_kind)

    async def _probe(
        self,
        client: httpx.AsyncClient,
        item_id: str,
        url: str,
        item_kind: ItemKind,
    ) -> LinkTestResult:
        test_kind = classify_url(url, self.rules)
        start = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        def failure(message: str) -> LinkTestResult:
            return LinkTestResult(
                item_id=item_id,
                url=url,
                item_kind=item_kind,
                is_working=False,
                response_time_ms=elapsed_ms(),
                error=message[:MAX_ERROR_LENGTH],
                test_kind=test_kind,
            )

        try:
            if urlparse(url).scheme not in ALLOWED_SCHEMES:
                logger.warning("%s %s has invalid URL scheme: %s", item_kind.value, item_id, url)
                return failure("Invalid URL scheme")

            logger.info("Testing %s: %s (type: %s)", item_kind.value, url, test_kind)
            response = await client.get(
                url,
                follow_redirects=True,
                timeout=self.config.timeout_seconds,
            )
            status = response.status_code
            final_url = str(response.url)
            is_working = is_working_response(status, final_url, test_kind, self.rules)
            response_time_ms = elapsed_ms()

            if is_working:
                logger.info(
                    "Working (%d): %s %s in %dms, final URL %s",
                    status, item_kind.value, url, response_time_ms, final_url,
                )
            else:
                logger.warning(
                    "Not working (%d, %s): %s %s, final URL %s",
                    status, test_kind, item_kind.value, url, final_url,
                )

            return LinkTestResult(
                item_id=item_id,
                url=url,
                item_kind=item_kind,
                is_working=is_working,
                status_code=status,
                final_url=final_url,
                response_time_ms=response_time_ms,
                test_kind=test_kind,
            )

        except httpx.TimeoutException:
            logger.warning("Timeout: %s %s", item_kind.value, url)
            return failure("Request timed out")
        except httpx.TooManyRedirects:
            logger.warning("Too many redirects: %s %s", item_kind.value, url)
            return failure("Too many redirects")
        except httpx.RequestError as exc:
            logger.warning("Request error: %s %s: %s", item_kind.value, url, exc)
            return failure(str(exc) or exc.__class__.__name__)
        except Exception as exc:
            logger.error("Unexpected error: %s %s: %s", item_kind.value, url, exc)
            return failure(str(exc) or exc.__class__.__name__)

    # ------------------------------------------------------------------
    # Batch runs
    # ------------------------------------------------------------------

    async def _run_batches(
        self,
        client: httpx.AsyncClient,
        items: Sequence[TestableItem],
        batch_size: int,
        delay: float,
        label: str,
    ) -> list[LinkTestResult]:
        """Probe items batch by batch; each batch runs concurrently and is awaited before the next."""
        results: list[LinkTestResult] = []
        batches = _chunk(items, batch_size)

        for index, batch in enumerate(batches, start=1):
            logger.info("Testing %s batch %d/%d", label, index, len(batches))
            batch_results = await asyncio.gather(
                *(
                    self.test_one(item.id, item.target_url, item.kind, client)
                    for item in batch
                )
            )
            results.extend(batch_results)

            if index < len(batches) and delay > 0:
                await asyncio.sleep(delay)

        return results

    async def _test_items(
        self,
        links: Sequence[TestableItem],
        products: Sequence[TestableItem],
        batch_size: int,
        delay: float,
    ) -> list[LinkTestResult]:
        """Test links then products with one shared client, then persist the results."""
        async with self._build_client() as client:
            results = await self._run_batches(client, links, batch_size, delay, "links")
            results.extend(
                await self._run_batches(client, products, batch_size, delay, "products")
            )

        self._update_items_status(results)
        return results

    async def test_all(self) -> list[LinkTestResult]:
        """Test every link and product in the store.

        Returns:
            Results in submission order: all links, then all products.

        Raises:
            Exception: Store read or bulk write failures are logged and re-raised.
        """
        logger.info("Starting link and product testing run")

        try:
            links = self.store.find_all_links()
            products = self.store.find_all_products()
        except Exception:
            logger.exception("Failed to load links and products for testing")
            raise

        logger.info("Found %d links and %d products to test", len(links), len(products))
        if not links and not products:
            logger.info("No links or products found to test")
            return []

        results = await self._test_items(
            links,
            products,
            self.config.batch_size,
            self.config.batch_delay_seconds,
        )

        logger.info(
            "Testing run completed. Tested %d links and %d products",
            len(links),
            len(products),
        )
        return results

    async def test_for_owner(self, owner_id: str) -> list[LinkTestResult]:
        """Test one owner's links and products sequentially.

        Args:
            owner_id: The account whose items should be tested.

        Returns:
            Results in submission order: the owner's links, then products.
        """
        logger.info("Starting link and product testing for owner: %s", owner_id)

        try:
            links = self.store.find_links_by_owner(owner_id)
            products = self.store.find_products_by_owner(owner_id)
        except Exception:
            logger.exception("Failed to load items for owner %s", owner_id)
            raise

        logger.info(
            "Found %d links and %d products for owner %s",
            len(links),
            len(products),
            owner_id,
        )
        if not links and not products:
            return []

        results = await self._test_items(
            links,
            products,
            batch_size=1,
            delay=self.config.owner_delay_seconds,
        )

        logger.info(
            "Testing completed for owner %s. Tested %d links and %d products",
            owner_id,
            len(links),
            len(products),
        )
        return results

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _update_items_status(self, results: list[LinkTestResult]) -> None:
        """Write all results back with a single bulk update per item kind."""
        tested_at = datetime.now(timezone.utc)

        link_updates = [
            LinkStatusUpdate(
                id=r.item_id,
                is_working=r.is_working,
                is_active=r.is_working,
                last_tested=tested_at,
            )
            for r in results
            if r.item_kind == ItemKind.LINK
        ]
        product_updates = [
            ProductStatusUpdate(
                id=r.item_id,
                is_working=r.is_working,
                last_tested=tested_at,
            )
            for r in results
            if r.item_kind == ItemKind.PRODUCT
        ]

        try:
            if link_updates:
                updated = self.store.bulk_update_link_status(link_updates)
                working = len([u for u in link_updates if u.is_working])
                logger.info(
                    "Updated %d links: %d working (active), %d not working (deactivated)",
                    updated,
                    working,
                    len(link_updates) - working,
                )

            if product_updates:
                updated = self.store.bulk_update_product_status(product_updates)
                working = len([u for u in product_updates if u.is_working])
                logger.info(
                    "Updated %d products: %d working, %d not working",
                    updated,
                    working,
                    len(product_updates) - working,
                )
        except Exception:
            logger.exception(
                "Failed to persist %d test results; unsaved results: %s",
                len(results),
                json.dumps([r.model_dump(mode="json") for r in results]),
            )
            raise

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _kind_stats(self, kind: ItemKind) -> KindStats:
        total = self.store.count_by_kind(kind)
        working = self.store.count_working_by_kind(kind)
        return KindStats(
            total=total,
            working=working,
            not_working=total - working,
            last_tested=self.store.most_recently_tested(kind),
        )

    def get_stats(self) -> LinkTestStats:
        """Return health counts and the most recent test time for links and products."""
        try:
            return LinkTestStats(
                links=self._kind_stats(ItemKind.LINK),
                products=self._kind_stats(ItemKind.PRODUCT),
            )
        except Exception:
            logger.exception("Failed to compute link and product test stats")
            raise
