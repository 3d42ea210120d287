"""Registry of named recurring jobs backed by APScheduler.

One JobScheduler is built at application start and handed to whatever
wires up the server and its shutdown hooks. It registers the daily
link-testing job and can hold further named jobs; each job is keyed by
name so it can be inspected, restarted, or triggered by hand.

A job whose body raises stays registered: the failure is logged and the
next scheduled firing goes ahead as normal.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from creon_health.link_tester import LinkTester
from creon_health.utils.config import ScheduleConfig
from creon_health.utils.models import JobStatus

logger = logging.getLogger(__name__)

LINK_TESTING_JOB = "link-testing"

JobFunc = Callable[[], Awaitable[Any]]


class JobScheduler:
    """Starts, stops, inspects and manually triggers named cron jobs."""

    def __init__(
        self,
        tester: LinkTester,
        schedule: Optional[ScheduleConfig] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self.schedule = schedule or ScheduleConfig()
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self.schedule.timezone)
        self._definitions: dict[str, tuple[str, JobFunc]] = {}
        self._jobs: dict[str, Job] = {}

        self.register(LINK_TESTING_JOB, self.schedule.link_testing_cron, tester.test_all)

    def _trigger(self, cron: str) -> CronTrigger:
        return CronTrigger.from_crontab(cron, timezone=self.schedule.timezone)

    def register(self, name: str, cron: str, func: JobFunc) -> None:
        """Add a job definition; it is scheduled on the next start_all().

        Raises:
            ValueError: If the cron expression is not a valid five-field crontab.
        """
        self._trigger(cron)
        self._definitions[name] = (cron, func)
        logger.debug("Registered job definition: %s (%s)", name, cron)

    def start_all(self) -> None:
        """Start the scheduler and every known job.

        Meant to be called once per process. Jobs are keyed by name, so a
        second call replaces the existing timers instead of adding more.
        """
        logger.info("Starting scheduled jobs...")
        if not self._scheduler.running:
            self._scheduler.start()

        for name, (cron, _) in self._definitions.items():
            self._jobs[name] = self._scheduler.add_job(
                self._run_scheduled,
                trigger=self._trigger(cron),
                args=[name],
                id=name,
                name=name,
                replace_existing=True,
                misfire_grace_time=None,
                coalesce=True,
            )
            logger.info(
                "Started job: %s - '%s' (%s)", name, cron, self.schedule.timezone
            )

        logger.info("All scheduled jobs started")

    def stop_all(self) -> None:
        """Stop every registered job and clear the registry.

        The underlying scheduler keeps running, so a later start_all()
        schedules the jobs again. Use shutdown() when the process exits.
        """
        logger.info("Stopping all scheduled jobs...")

        for name, job in self._jobs.items():
            job.remove()
            logger.info("Stopped job: %s", name)
        self._jobs.clear()
        logger.info("All scheduled jobs stopped")

    def shutdown(self) -> None:
        """Stop every job and shut the underlying scheduler down for good."""
        self.stop_all()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")

    async def _run_scheduled(self, name: str) -> None:
        """Body of a timer firing. Errors are logged, never raised into the scheduler."""
        _, func = self._definitions[name]
        logger.info("Starting scheduled job: %s", name)
        try:
            await func()
            logger.info("Scheduled job completed successfully: %s", name)
        except Exception:
            logger.exception("Scheduled job failed: %s", name)

    async def trigger_now(self, name: str = LINK_TESTING_JOB) -> Any:
        """Run a job's body immediately, bypassing its timer.

        Returns:
            Whatever the job body returns.

        Raises:
            KeyError: If no job with that name is known.
            Exception: Any error from the job body, after logging it.
        """
        if name not in self._definitions:
            raise KeyError(f"Unknown job: {name}")

        _, func = self._definitions[name]
        logger.info("Manually triggering job: %s", name)
        try:
            result = await func()
        except Exception:
            logger.exception("Manual job run failed: %s", name)
            raise

        logger.info("Manual job run completed successfully: %s", name)
        return result

    def get_status(self) -> list[JobStatus]:
        """Return one entry per registered job. Registered jobs are always running."""
        status: list[JobStatus] = []
        for name, job in self._jobs.items():
            current = self._scheduler.get_job(name) or job
            status.append(
                JobStatus(
                    name=name,
                    running=True,
                    next_run_time=getattr(current, "next_run_time", None),
                )
            )
        return status

    def restart(self, name: str) -> bool:
        """Stop and immediately restart a job's timer.

        Returns:
            True if the job was registered, False otherwise.
        """
        job = self._jobs.get(name)
        if job is None:
            return False

        job.pause()
        job.resume()
        logger.info("Restarted job: %s", name)
        return True
