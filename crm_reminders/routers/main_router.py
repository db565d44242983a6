from fastapi import APIRouter

from crm_reminders.routers.cron import cron_router
from crm_reminders.routers.shared import shared_router

main_router = APIRouter()
main_router.include_router(cron_router, prefix="/cron", tags=["cron"])
main_router.include_router(shared_router, prefix="/shared", tags=["shared"])
