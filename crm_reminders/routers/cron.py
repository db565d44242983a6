import secrets
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from crm_reminders.config.settings import settings
from crm_reminders.db.session import get_sync_session
from crm_reminders.services.reminders.cycle import run_reminder_cycle
from crm_reminders.utils.errors import AuthenticationError
from crm_reminders.utils.responses import ResponseBuilder

cron_router = APIRouter()


def _presented_secret(request: Request, secret: Optional[str]) -> str:
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return secret or ""


def verify_cron_secret(
    request: Request,
    secret: Optional[str] = Query(default=None),
) -> None:
    """Accepts the secret as a Bearer token or a `secret` query parameter."""
    presented = _presented_secret(request, secret)
    if not settings.CRON_SECRET or not secrets.compare_digest(
        presented.encode(), settings.CRON_SECRET.encode()
    ):
        raise AuthenticationError("Invalid cron secret", error_code="INVALID_CRON_SECRET")


@cron_router.api_route(
    "/reminders",
    methods=["GET", "POST"],
    dependencies=[Depends(verify_cron_secret)],
)
async def trigger_reminder_cycle(
    request: Request, db: Session = Depends(get_sync_session)
):
    """
    Run one reminder cycle on demand.

    Lets an external scheduler drive the cycle when no beat process is running.
    """
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    result = await run_reminder_cycle(db, request_id)

    if not result["success"]:
        return ResponseBuilder.error(
            request=request,
            message="Reminder cycle failed",
            error_code="REMINDER_CYCLE_FAILED",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            data=result,
        )

    return ResponseBuilder.success(
        request=request, data=result, message="Reminder cycle completed"
    )
