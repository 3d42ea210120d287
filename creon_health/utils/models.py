"""Pydantic v2 data models for the Creon link health checker.

Defines the item kinds, the stored Link and Product records (only the
fields the checker reads or writes), the Catalog container, bulk status
updates, per-probe results, statistics, reports, and scheduler status.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

STANDARD_TEST = "standard"


class ItemKind(str, Enum):
    """Kinds of testable records."""

    LINK = "link"
    PRODUCT = "product"


class Link(BaseModel):
    """A short link on a user's profile page."""

    id: str
    owner_id: str
    title: str = ""
    url: str
    is_active: bool = True
    is_working: bool = True
    last_tested: Optional[datetime] = None

    @property
    def kind(self) -> ItemKind:
        return ItemKind.LINK

    @property
    def target_url(self) -> str:
        return self.url


class Product(BaseModel):
    """An affiliate product shown in a user's storefront."""

    id: str
    owner_id: str
    title: str = ""
    affiliate_url: str
    is_active: bool = True
    is_working: bool = True
    last_tested: Optional[datetime] = None

    @property
    def kind(self) -> ItemKind:
        return ItemKind.PRODUCT

    @property
    def target_url(self) -> str:
        return self.affiliate_url


TestableItem = Union[Link, Product]


class Catalog(BaseModel):
    """Top-level container for all links and products."""

    links: list[Link] = []
    products: list[Product] = []
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LinkStatusUpdate(BaseModel):
    """Bulk status update for a link; a link's visibility follows its health."""

    id: str
    is_working: bool
    is_active: bool
    last_tested: datetime


class ProductStatusUpdate(BaseModel):
    """Bulk status update for a product; visibility is left untouched."""

    id: str
    is_working: bool
    last_tested: datetime


class LinkTestResult(BaseModel):
    """Outcome of probing a single link or product URL."""

    item_id: str
    url: str
    item_kind: ItemKind
    is_working: bool
    status_code: Optional[int] = None
    final_url: Optional[str] = None
    response_time_ms: int = 0
    error: Optional[str] = None
    test_kind: str = STANDARD_TEST


class KindStats(BaseModel):
    """Health counts for one item kind."""

    total: int = 0
    working: int = 0
    not_working: int = 0
    last_tested: Optional[datetime] = None


class LinkTestStats(BaseModel):
    """Health counts for links and products."""

    links: KindStats = Field(default_factory=KindStats)
    products: KindStats = Field(default_factory=KindStats)

    def for_kind(self, kind: ItemKind) -> KindStats:
        return self.links if kind == ItemKind.LINK else self.products


class LinkTestReport(BaseModel):
    """Operator-facing summary of a test run."""

    tested: int
    working: int
    not_working: int
    results: list[LinkTestResult] = []
    stats: Union[LinkTestStats, KindStats]


class JobStatus(BaseModel):
    """Registry entry for a scheduled job."""

    name: str
    running: bool = True
    next_run_time: Optional[datetime] = None
