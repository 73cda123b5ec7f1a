"""APScheduler integration for FastAPI.

Manages per-run jobs: a recurring live tick for simulation runs and a
one-shot job for backtests created through POST /api/runs.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from tradesim.engine.lifecycle import RunLifecycleManager
from tradesim.services.container import Services
from tradesim.utils.constants import INTERVAL_SECONDS
from tradesim.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def _job_id(run_id: str) -> str:
    return f"run_{run_id}"


def _get_trigger(interval: str) -> IntervalTrigger:
    # Support arbitrary "<N>m" / "<N>s" tick intervals
    if interval.endswith("m") and interval[:-1].isdigit():
        return IntervalTrigger(minutes=int(interval[:-1]))
    if interval.endswith("s") and interval[:-1].isdigit():
        return IntervalTrigger(seconds=int(interval[:-1]))
    return IntervalTrigger(seconds=INTERVAL_SECONDS.get(interval, 60))


class RunScheduler:
    """One AsyncIOScheduler per application instance."""

    def __init__(self, services: Services, tick_interval: str | None = None):
        self.services = services
        self.tick_interval = tick_interval or services.config.simulation_tick_interval
        self.scheduler = AsyncIOScheduler()

    def add_simulation_job(self, run_id: str):
        """Add or replace the recurring tick job for a simulation run."""
        from tradesim.engine.runner import run_simulation_tick

        self.scheduler.add_job(
            run_simulation_tick,
            trigger=_get_trigger(self.tick_interval),
            args=[run_id, self.services],
            id=_job_id(run_id),
            name=f"Simulation {run_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        logger.info(f"Scheduled simulation run {run_id} every {self.tick_interval}")

    def add_backtest_job(self, run_id: str):
        """Run a backtest once, as soon as the scheduler gets to it."""
        from tradesim.engine.runner import run_backtest_job

        self.scheduler.add_job(
            run_backtest_job,
            trigger=DateTrigger(run_date=utcnow()),
            args=[run_id, self.services],
            id=_job_id(run_id),
            name=f"Backtest {run_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info(f"Queued backtest run {run_id}")

    def remove_run_job(self, run_id: str):
        job_id = _job_id(run_id)
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            logger.info(f"Removed job for run {run_id}")

    def start(self):
        """Start the scheduler and resume every open simulation run."""
        with self.services.session() as session:
            runs = RunLifecycleManager(session, self.services.config).open_simulation_runs()
            for run in runs:
                self.add_simulation_job(run.id)

        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        """Current scheduler state for the API."""
        jobs = self.scheduler.get_jobs()
        return {
            "running": self.scheduler.running,
            "job_count": len(jobs),
            "tick_interval": self.tick_interval,
            "jobs": [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(j.next_run_time) if j.next_run_time else None,
                    "trigger": str(j.trigger),
                }
                for j in jobs
            ],
        }
