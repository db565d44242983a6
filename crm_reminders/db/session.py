from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from crm_reminders.config.settings import settings


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,
        # Claim races are decided by a single conditional UPDATE; READ COMMITTED
        # is enough for its row lock to serialize competing dispatchers
        "isolation_level": "READ COMMITTED",
    }


engine = create_engine(
    str(settings.DATABASE_URL),
    pool_pre_ping=True,
    echo=False,
    **_engine_options(str(settings.DATABASE_URL)),
)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


def get_sync_session():
    """Dependency to get sync database session"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
