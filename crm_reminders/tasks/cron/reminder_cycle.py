import asyncio

from crm_reminders.celery import celery
from crm_reminders.db.session import get_sync_session
from crm_reminders.services.reminders.cycle import run_reminder_cycle
from crm_reminders.utils.context import request_id_scope
from crm_reminders.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def run_reminder_cycle_task(self, request_id: str):
    """
    Periodic reminder cycle, scheduled by beat every REMINDER_INTERVAL_SECONDS.

    Each tick:
    1. Scans follow-ups that are neither completed nor notified
    2. Claims and emails the ones whose reminder moment has arrived
    3. Sends the daily digest to users inside their summary window

    Ticks are never retried; a task missed or failed now is simply picked up
    by the next tick.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(_async_run_reminder_cycle(request_id))


async def _async_run_reminder_cycle(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    with request_id_scope(request_id):
        for db_session in get_sync_session():
            try:
                result = await run_reminder_cycle(db_session, request_id)
                logger.info(
                    "Reminder cycle task completed",
                    reminders_sent=result["reminders_sent"],
                    digests_sent=result["digests_sent"],
                )
                return result
            except Exception as e:
                logger.error(
                    "Reminder cycle task exception",
                    request_id=request_id,
                    error=str(e),
                    exc_info=True,
                )
                return {"success": False, "error": str(e), "request_id": request_id}
