"""Operator-facing reports for manual retest requests.

The host API's "retest" endpoints run the tester and reply with counts,
the per-item results and fresh stats. ``kind`` narrows a report to links
or products only (the storefront's product retest reports products).
"""

import logging
from typing import Optional

from creon_health.link_tester import LinkTester
from creon_health.utils.models import (
    ItemKind,
    LinkTestReport,
    LinkTestResult,
    LinkTestStats,
)

logger = logging.getLogger(__name__)


def build_report(
    results: list[LinkTestResult],
    stats: LinkTestStats,
    kind: Optional[ItemKind] = None,
) -> LinkTestReport:
    """Summarize test results, optionally narrowed to one item kind."""
    if kind is not None:
        results = [r for r in results if r.item_kind == kind]

    working = len([r for r in results if r.is_working])
    return LinkTestReport(
        tested=len(results),
        working=working,
        not_working=len(results) - working,
        results=results,
        stats=stats.for_kind(kind) if kind is not None else stats,
    )


async def retest_all(tester: LinkTester, kind: Optional[ItemKind] = None) -> LinkTestReport:
    """Test every item in the store and report the outcome."""
    logger.info("Manual retest of all items requested")
    results = await tester.test_all()
    report = build_report(results, tester.get_stats(), kind)
    logger.info(
        "Retest complete: %d tested, %d working, %d not working",
        report.tested,
        report.working,
        report.not_working,
    )
    return report


async def retest_owner(
    tester: LinkTester,
    owner_id: str,
    kind: Optional[ItemKind] = None,
) -> LinkTestReport:
    """Test one owner's items and report the outcome."""
    logger.info("Manual retest requested by owner: %s", owner_id)
    results = await tester.test_for_owner(owner_id)
    report = build_report(results, tester.get_stats(), kind)
    logger.info(
        "Retest for owner %s complete: %d tested, %d working, %d not working",
        owner_id,
        report.tested,
        report.working,
        report.not_working,
    )
    return report
