# linkledger/scheduler.py
import logging
import time

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .core.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - [Scheduler] - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("Scheduler")


def job_listener(event):
    """Logs the outcome of every scheduled job run."""
    if event.exception:
        logger.error(f"Job {event.job_id} failed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully")


def get_sweep_interval_minutes() -> int:
    """`renewal_sweep_interval` setting row (minutes) wins over SWEEP_INTERVAL_MINUTES."""
    from .db.engine_sync import new_session
    from .services.settings_service import SettingsService

    default = get_settings().sweep_interval_minutes
    try:
        with new_session() as session:
            return SettingsService(session).get_positive_int("renewal_sweep_interval", default)
    except Exception as e:
        logger.warning(f"Could not read renewal_sweep_interval setting: {e}")
        return default


def build_scheduler() -> BackgroundScheduler:
    from .services.renewal_job import run_renewal_sweep

    scheduler = BackgroundScheduler(
        job_defaults={
            "coalesce": True,  # Missed runs collapse into one
            "max_instances": 1,  # Never two sweeps at once
            "misfire_grace_time": 300,
        }
    )
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    interval = get_sweep_interval_minutes()
    logger.info(f"Scheduling renewal sweep every {interval} minutes")
    scheduler.add_job(
        run_renewal_sweep,
        trigger=IntervalTrigger(minutes=interval),
        id="renewal_sweep",
        name="Subscription Renewal Sweep",
        replace_existing=True,
    )
    return scheduler


def run_scheduler():
    """
    Entry point for the scheduler process (`linkledger-scheduler`).
    """
    from .db.engine_sync import create_sync_db_and_tables
    from .services.renewal_job import run_renewal_sweep
    from .services.runtime import shutdown_runtime

    create_sync_db_and_tables()
    scheduler = build_scheduler()
    scheduler.start()
    logger.info("✅ Scheduler started")

    # First sweep right away instead of waiting a full interval
    run_renewal_sweep()

    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Stopping scheduler...")
        scheduler.shutdown()
        shutdown_runtime(wait=True)
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    run_scheduler()
