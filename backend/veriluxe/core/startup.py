"""
Application startup tasks.

Handles initialization tasks that should run when the application starts:
- Database table creation
- Object storage bucket initialization
"""
import logging

from veriluxe.core.database import Base, engine
from veriluxe.services.storage_service import get_storage_service

logger = logging.getLogger(__name__)


def initialize_database() -> None:
    """Create any missing tables for the ORM models."""
    try:
        logger.info("Initializing database tables...")
        # Import models so they register on Base.metadata
        import veriluxe.models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("✅ Database tables ready")

    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}")
        logger.warning("⚠️  Application starting without verified database schema")


def initialize_storage() -> None:
    """
    Initialize object storage on application startup.

    Creates the images bucket if it doesn't exist and verifies connectivity.
    """
    try:
        logger.info("Initializing object storage...")
        storage = get_storage_service()
        storage.initialize_bucket()
        logger.info("✅ Object storage initialized successfully")

    except Exception as e:
        logger.error(f"❌ Failed to initialize object storage: {e}")
        # Don't fail the entire application - storage might be temporarily unavailable
        logger.warning("⚠️  Application starting without storage connectivity")


def run_startup_tasks() -> None:
    """
    Run all startup tasks.

    This function is called from the FastAPI lifespan handler.
    """
    logger.info("=" * 60)
    logger.info("Running application startup tasks...")
    logger.info("=" * 60)

    initialize_database()
    initialize_storage()

    logger.info("=" * 60)
    logger.info("✅ Startup tasks completed")
    logger.info("=" * 60)
