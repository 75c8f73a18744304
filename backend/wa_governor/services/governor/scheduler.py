"""APScheduler Integration - background jobs for the health governor."""
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import structlog

from wa_governor.core.config import settings
from wa_governor.services.governor.governor import Governor

logger = structlog.get_logger()
_scheduler: Optional[BackgroundScheduler] = None
_governor: Optional[Governor] = None


def init_scheduler(governor: Governor) -> BackgroundScheduler:
    global _scheduler, _governor
    _governor = governor
    _scheduler = BackgroundScheduler(timezone="UTC")

    _scheduler.add_job(job_recalculate_all, IntervalTrigger(minutes=settings.GOVERNOR_RECALC_INTERVAL_MINUTES), id="health_recalculation", name="Health Recalculation", replace_existing=True, max_instances=1, coalesce=True)
    _scheduler.add_job(job_state_checks, IntervalTrigger(minutes=settings.GOVERNOR_STATE_CHECK_INTERVAL_MINUTES), id="warmup_state_check", name="Warmup State Check", replace_existing=True, max_instances=1, coalesce=True)
    _scheduler.add_job(job_daily_counter_reset, CronTrigger(hour=0, minute=0), id="daily_counter_reset", name="Daily Counter Reset", replace_existing=True)

    _scheduler.start()
    logger.info("Governor scheduler started", jobs=len(_scheduler.get_jobs()))
    return _scheduler


def shutdown_scheduler():
    global _scheduler, _governor
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("Governor scheduler stopped")
        _scheduler = None
    _governor = None


def job_recalculate_all():
    logger.info("Running scheduled health recalculation")
    try:
        result = _governor.recalculate_all(triggered_by="scheduler")
        logger.info("Health recalculation complete", run_id=result["run_id"],
                    succeeded=result["succeeded"], failed=result["failed"])
    except Exception as e:
        logger.error("Health recalculation failed", error=str(e))


def job_state_checks():
    logger.info("Running warmup state checks")
    try:
        result = _governor.run_state_checks(triggered_by="scheduler")
        logger.info("Warmup state checks complete", result=result)
    except Exception as e:
        logger.error("Warmup state checks failed", error=str(e))


def job_daily_counter_reset():
    logger.info("Resetting daily send counters")
    try:
        _governor.reset_daily_counters()
    except Exception as e:
        logger.error("Daily counter reset failed", error=str(e))


def get_scheduler_status() -> dict:
    if not _scheduler:
        return {"running": False, "jobs": []}
    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({"id": job.id, "name": job.name, "next_run": str(job.next_run_time) if job.next_run_time else None})
    return {"running": _scheduler.running, "jobs": jobs}
