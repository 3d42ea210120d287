"""CLI entry point for the Creon link health checker.

Supports running the scheduler or a single operation:
    python main.py --serve                 # Run the daily link-testing job (default)
    python main.py --test-all              # Test every link and product now
    python main.py --test-owner USER_ID    # Test one owner's links and products
    python main.py --test-url URL          # Probe a single URL without touching the store
    python main.py --stats                 # Print health statistics
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

logger = logging.getLogger("creon_health")


def _setup_logging() -> None:
    """Configure root logging with a timestamped format."""
    from creon_health.utils.config import LOG_LEVEL_ENV, get_setting

    level = (get_setting(LOG_LEVEL_ENV, "INFO") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def _run_step(name: str, func: object, is_async: bool = False) -> bool:
    """Execute a single operation with error isolation.

    Args:
        name: Human-readable step name for logging.
        func: Callable to execute (sync or async).
        is_async: Whether func is an async coroutine function.

    Returns:
        True if the step succeeded, False otherwise.
    """
    logger.info("Starting step: %s", name)
    try:
        if is_async:
            asyncio.run(func())
        else:
            func()
        logger.info("Completed step: %s", name)
        return True
    except Exception:
        logger.exception("Step failed: %s", name)
        return False


def _build_tester(config):
    """Wire a LinkTester to the JSON catalog named in config."""
    from creon_health.classify import build_rules
    from creon_health.link_tester import LinkTester
    from creon_health.utils.store import JsonRecordStore

    store = JsonRecordStore(config.storage.resolved_catalog_path())
    return LinkTester(store, config.tester, build_rules(config.marketplaces))


def _parse_kind(value: str | None):
    from creon_health.utils.models import ItemKind

    return ItemKind(value) if value else None


async def serve(config) -> None:
    """Start the scheduler and keep it running until SIGINT or SIGTERM."""
    from creon_health.scheduler import JobScheduler

    scheduler = JobScheduler(_build_tester(config), config.schedule)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still interrupts
            logger.debug("Signal handler for %s not supported", sig)

    scheduler.start_all()
    logger.info("Scheduler initialized")
    try:
        await stop_event.wait()
    finally:
        scheduler.shutdown()


def run_serve(config) -> bool:
    """Run the scheduler until shutdown."""
    return _run_step("Serve scheduled jobs", lambda: serve(config), is_async=True)


def run_test_all(config, kind: str | None = None) -> bool:
    """Test every link and product and print the report."""
    from creon_health.reports import retest_all

    async def step() -> None:
        report = await retest_all(_build_tester(config), _parse_kind(kind))
        print(report.model_dump_json(indent=2))

    return _run_step("Test all links and products", step, is_async=True)


def run_test_owner(config, owner_id: str, kind: str | None = None) -> bool:
    """Test one owner's links and products and print the report."""
    from creon_health.reports import retest_owner

    async def step() -> None:
        report = await retest_owner(_build_tester(config), owner_id, _parse_kind(kind))
        print(report.model_dump_json(indent=2))

    return _run_step(f"Test items for owner {owner_id}", step, is_async=True)


def run_test_url(config, url: str, item_kind: str = "link") -> bool:
    """Probe a single URL and print the result. Nothing is persisted."""

    async def step() -> None:
        result = await _build_tester(config).test_one("adhoc", url, _parse_kind(item_kind))
        print(result.model_dump_json(indent=2))

    return _run_step(f"Test URL {url}", step, is_async=True)


def run_stats(config) -> bool:
    """Print link and product health statistics."""

    def step() -> None:
        stats = _build_tester(config).get_stats()
        print(stats.model_dump_json(indent=2))

    return _run_step("Collect stats", step, is_async=False)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed namespace with the selected mode.
    """
    parser = argparse.ArgumentParser(
        description="Creon link health checker",
    )

    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--serve",
        action="store_true",
        help="Run the scheduled link-testing job until interrupted (default)",
    )
    group.add_argument(
        "--test-all",
        action="store_true",
        help="Test every link and product now",
    )
    group.add_argument(
        "--test-owner",
        metavar="OWNER_ID",
        help="Test the links and products of one owner",
    )
    group.add_argument(
        "--test-url",
        metavar="URL",
        help="Probe a single URL without updating the catalog",
    )
    group.add_argument(
        "--stats",
        action="store_true",
        help="Print link and product health statistics",
    )

    parser.add_argument(
        "--kind",
        choices=["link", "product"],
        help="Only report results for this item kind",
    )
    parser.add_argument(
        "--item-kind",
        choices=["link", "product"],
        default="link",
        help="Item kind used for --test-url (default: link)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml (default: project root)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point that dispatches to the selected mode.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).
    """
    from creon_health.utils.config import load_config

    _setup_logging()
    args = parse_args(argv)
    config = load_config(args.config)

    if args.test_all:
        ok = run_test_all(config, args.kind)
    elif args.test_owner:
        ok = run_test_owner(config, args.test_owner, args.kind)
    elif args.test_url:
        ok = run_test_url(config, args.test_url, args.item_kind)
    elif args.stats:
        ok = run_stats(config)
    else:
        # Default to serving (covers --serve and no args)
        ok = run_serve(config)

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
