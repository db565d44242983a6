from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from crm_reminders.config.settings import settings
from crm_reminders.db.session import SessionLocal
from crm_reminders.middlewares import RequestIDMiddleware
from crm_reminders.routers import main_router
from crm_reminders.services.reminders.cycle import resolve_claim_support
from crm_reminders.utils.errors import setup_error_handlers
from crm_reminders.utils.logging import get_logger

# Initialize the logger
logger = get_logger()


def _resolve_claim_support_at_startup() -> None:
    db_session = SessionLocal()
    try:
        resolve_claim_support(db_session)
    except SQLAlchemyError as e:
        logger.warning(f"Claim support will be resolved on the first cycle: {e}")
    finally:
        db_session.close()


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(f"{settings.NAME} is starting up...")
    _resolve_claim_support_at_startup()
    yield
    logger.info(f"{settings.NAME} is shutting down...")


def create_application() -> FastAPI:
    """Initialize the FastAPI application with settings and lifespan events."""
    application = FastAPI(
        title=settings.NAME, version=settings.VERSION, lifespan=lifespan
    )

    # Setup error handlers
    setup_error_handlers(application)

    # Add CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "authorization"],
    )

    # Add custom middlewares
    application.add_middleware(RequestIDMiddleware)

    # Routers
    application.include_router(main_router, prefix=settings.API_PREFIX, tags=["APIs"])

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crm_reminders.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_config=None,
        log_level=None,
    )
