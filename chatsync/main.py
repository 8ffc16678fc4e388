"""
ChatSync - Main FastAPI Application
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import settings
from .api import chats_router
from .core.logging_config import setup_logging
from .core.workspace import ChatWorkspace, init_workspace

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    setup_logging(settings)

    workspace = ChatWorkspace.from_settings(settings)
    init_workspace(workspace)
    await workspace.load_chats()

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Persistence backend: {settings.persistence_backend}")
    logger.info(f"Completion configured: {workspace.completion.configured()}")
    yield
    # Shutdown
    await workspace.close()
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Multi-session chat with persisted history and streamed replies",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chats_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "persistence": settings.persistence_backend,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chatsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
