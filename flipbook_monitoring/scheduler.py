"""
Scheduler for periodic monitoring jobs

Uses APScheduler to run memory sampling and retention cleanup on a
background thread.
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.base import JobLookupError
from typing import Callable, List

from flipbook_monitoring.utils.logger import log


class MonitoringScheduler:
    """
    Owns one BackgroundScheduler.

    Jobs may be registered before or after ``start()``. Each job runs with
    ``max_instances=1`` so a slow run is never overlapped by the next one.
    """

    def __init__(self, scheduler: BackgroundScheduler = None):
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        name: str,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
    ) -> None:
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds, minutes=minutes, hours=hours),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1
        )
        log.info(f"Scheduled job: {job_id}")

    def remove_job(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
            log.info(f"Removed job: {job_id}")
            return True
        except JobLookupError:
            return False

    def start(self):
        """Start the scheduler"""
        if self.scheduler.running:
            return
        self.scheduler.start()
        log.info("Scheduler started")

    def stop(self):
        """Stop the scheduler"""
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        log.info("Scheduler stopped")

    def get_scheduled_jobs(self) -> List[dict]:
        """
        Get list of all scheduled jobs

        Returns:
            List of job info dicts
        """
        jobs = []

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)

            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': next_run.isoformat() if next_run else None,
                'trigger': str(job.trigger)
            })

        return jobs

    def pause_job(self, job_id: str) -> bool:
        """
        Pause a scheduled job

        Args:
            job_id: Job ID to pause

        Returns:
            True if successful
        """
        try:
            self.scheduler.pause_job(job_id)
            log.info(f"Paused job: {job_id}")
            return True

        except Exception as e:
            log.error(f"Error pausing job {job_id}: {str(e)}")
            return False

    def resume_job(self, job_id: str) -> bool:
        """
        Resume a paused job

        Args:
            job_id: Job ID to resume

        Returns:
            True if successful
        """
        try:
            self.scheduler.resume_job(job_id)
            log.info(f"Resumed job: {job_id}")
            return True

        except Exception as e:
            log.error(f"Error resuming job {job_id}: {str(e)}")
            return False
