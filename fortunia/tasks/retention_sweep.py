"""Celery task for the daily retention sweep.

Deletes readings older than RETENTION_DAYS together with their stored
share cards and source images, then repairs dangling share_card_url values.
Safe to re-run: a second run with the same cutoff deletes nothing.
"""

from fortunia.celery import celery_app
from fortunia.config import get_settings
from fortunia.container import create_retention_sweeper
from fortunia.db.session import get_session_factory
from fortunia.logging import clear_task_context, configure_task_logging, get_logger
from fortunia.services.clock import utc_now
from fortunia.services.retention import default_cutoff
from fortunia.storage.client import get_storage_client

logger = get_logger(__name__)


def run_retention_sweep() -> dict:
    """Build a sweeper from settings and run one sweep.

    Returns:
        The sweep summary (deletedReadings, deletedShareCards, cutoffDate, ...).
    """
    settings = get_settings()
    sweeper = create_retention_sweeper(
        settings, get_session_factory(), get_storage_client(settings)
    )
    summary = sweeper.sweep(default_cutoff(utc_now(), settings.retention_days))
    return summary.to_summary()


@celery_app.task(bind=True, max_retries=0, name="retention_sweep")
def retention_sweep(self, request_id: str | None = None) -> dict:
    """Scheduled retention sweep (beat: daily at 03:00 UTC)."""
    configure_task_logging(request_id=request_id, task_name="retention_sweep", task_id=self.request.id)
    logger.info("retention_task_started")
    try:
        summary = run_retention_sweep()
        logger.info(
            "retention_task_completed",
            deleted_readings=summary["deletedReadings"],
            deleted_files=summary["deletedShareCards"],
            status=summary["status"],
        )
        return summary
    except Exception as exc:
        logger.error("retention_task_failed", error_type=type(exc).__name__, error=str(exc))
        raise
    finally:
        clear_task_context()
