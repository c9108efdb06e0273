"""
Database session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import logging

from app.core.settings import settings
from app.db.base import Base

logger = logging.getLogger(__name__)

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # FastAPI runs sync endpoints in a threadpool
    connect_args["check_same_thread"] = False

logger.info("Database connection configured", extra={"store_backend": settings.STORE_BACKEND})

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,  # Set to True for SQL query logging
    pool_pre_ping=True,  # Verify connections before using
    connect_args=connect_args,
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Dependency for getting database session

    Usage in FastAPI endpoints:
        @router.get("/inventory")
        def list_inventory(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Create all tables.

    Only used for the 'database' store backend; the hosted backend manages
    its own schema.
    """
    from app.models import inventory, job  # noqa: F401 - register models

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")
