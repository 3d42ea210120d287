"""URL classification for marketplace-specific health checks.

Affiliate links for some marketplaces answer 200 even after the product is
gone, because the redirect chain falls back to a landing page. For those
marketplaces a successful response only counts when the final URL still
looks like a product page.

Rules are evaluated in order and the first match wins; anything unmatched
is a ``standard`` test where the status code alone decides.
"""

from typing import Callable, NamedTuple, Optional

from creon_health.utils.config import DEFAULT_MARKETPLACES, MarketplaceRule
from creon_health.utils.models import STANDARD_TEST


class ClassificationRule(NamedTuple):
    """An ordered (predicate, kind) pair plus the product-page check for that kind."""

    matches: Callable[[str], bool]
    kind: str
    is_product_page: Callable[[str], bool]


def _contains_any(needles: list[str]) -> Callable[[str], bool]:
    def check(value: str) -> bool:
        return any(needle in value for needle in needles)

    return check


def build_rules(marketplaces: Optional[list[MarketplaceRule]] = None) -> list[ClassificationRule]:
    """Build classification rules from marketplace config, preserving order."""
    if marketplaces is None:
        marketplaces = DEFAULT_MARKETPLACES
    return [
        ClassificationRule(
            matches=_contains_any(m.domains),
            kind=m.name,
            is_product_page=_contains_any(m.product_patterns),
        )
        for m in marketplaces
    ]


def classify_url(url: str, rules: list[ClassificationRule]) -> str:
    """Return the test kind for a URL: the first matching rule's kind, else standard."""
    for rule in rules:
        if rule.matches(url):
            return rule.kind
    return STANDARD_TEST


def is_working_response(
    status_code: int,
    final_url: str,
    test_kind: str,
    rules: list[ClassificationRule],
) -> bool:
    """Decide whether a completed HTTP response means the item works.

    Any status outside [200, 400) fails regardless of kind. Standard tests
    pass on status alone; marketplace tests also require the final URL to
    match one of the marketplace's product patterns.
    """
    if not 200 <= status_code < 400:
        return False
    if test_kind == STANDARD_TEST:
        return True
    for rule in rules:
        if rule.kind == test_kind:
            return rule.is_product_page(final_url)
    return False
