"""Background scheduler for periodic housekeeping."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cdn_console.config import settings
from cdn_console.middleware.rate_limit import invite_rate_limiter

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def sweep_rate_limits_job() -> None:
    """Evict elapsed invite rate-limit windows."""
    try:
        removed = invite_rate_limiter.sweep()
        if removed:
            logger.info(f"Rate limit sweep: removed {removed} expired windows")
    except Exception as e:
        logger.error(f"Rate limit sweep failed: {e}")


def start_scheduler() -> None:
    """Start the background scheduler."""
    scheduler.add_job(
        sweep_rate_limits_job,
        trigger=IntervalTrigger(minutes=settings.rate_limit_sweep_interval_minutes),
        id="sweep_invite_rate_limits",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started - rate limit sweep runs every "
        f"{settings.rate_limit_sweep_interval_minutes} minute(s)"
    )


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    scheduler.shutdown()
    logger.info("Scheduler stopped")
