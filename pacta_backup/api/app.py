"""FastAPI application for pacta-backup."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import logging

from pacta_backup.backup import BackupManager, CommandDispatcher
from .config import settings
from .exceptions import register_exception_handlers
from .routers import backups, health

# Configure pacta-backup logger with app-managed pattern
# This ensures INFO logs are visible regardless of uvicorn's logging config
import sys
import os

backup_logger = logging.getLogger("pacta-backup")
backup_logger.setLevel(logging.INFO)

# App-managed pattern: attach our own handler and don't propagate
backup_logger.propagate = False

# Clear any existing handlers to avoid duplicates
backup_logger.handlers.clear()

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)

formatter = logging.Formatter(
    '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
console_handler.setFormatter(formatter)
backup_logger.addHandler(console_handler)

# Optional: Allow disabling app-managed logging via env var for production
if os.getenv("DISABLE_APP_LOGGING", "false").lower() == "true":
    backup_logger.handlers.clear()
    backup_logger.propagate = True  # Fall back to server-managed pattern

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage backup engine lifecycle."""
    manager = getattr(app.state, "backup_manager", None)

    if manager is None:
        logger.info("Initializing backup engine...")
        try:
            manager = BackupManager.from_config(settings.engine_config())
        except Exception as e:
            logger.error(f"Failed to initialize backup engine: {e}")
            raise
        app.state.backup_manager = manager
        app.state.dispatcher = CommandDispatcher(manager)

    await manager.start()
    logger.info("Backup engine started")

    yield

    # Cleanup
    logger.info("Shutting down backup engine...")
    await manager.close()


def create_app(manager: Optional[BackupManager] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        manager: Pre-built engine to serve instead of one built from settings
    """
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    if manager is not None:
        app.state.backup_manager = manager
        app.state.dispatcher = CommandDispatcher(manager)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(backups.router, prefix=settings.api_prefix)
    app.include_router(health.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": f"{settings.api_prefix}/docs"
        }

    return app


# Create default app instance
app = create_app()
