"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from content_engine.api.routes import router
from content_engine.config import settings
from content_engine.container import ServiceContainer
from content_engine.db.database import async_session_maker, close_db, init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Content Engine...")

    await init_db()
    logger.info("Database initialized")

    container = ServiceContainer.build(settings, async_session_maker)
    app.state.container = container
    container.scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down Content Engine...")
    container.scheduler.stop()
    await container.coordinator.shutdown()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Turns long videos into reviewed, scheduled short-form clips",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, *settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "content_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
