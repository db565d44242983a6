from fastapi import APIRouter, Request

from crm_reminders.config.settings import settings
from crm_reminders.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Returns application status and basic service information
    """
    return ResponseBuilder.success(
        request=request,
        data={"status": "healthy", "service": settings.NAME, "version": settings.VERSION},
        message="Service is running",
    )
