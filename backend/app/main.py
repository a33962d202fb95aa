"""Tribe - Notification Dispatch API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: Create tables and load message catalogs
    from app.database import Base, engine
    from app.services.messages import get_message_catalogs

    # Import all models so they're registered with Base
    from app import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    catalogs = get_message_catalogs()
    if not catalogs:
        logger.warning("No message catalogs loaded; every dispatch will fail to resolve")

    yield


app = FastAPI(
    title=settings.app_name,
    description="Session reminders, motivation and re-engagement notifications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.site_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from app.api import cron, sessions  # noqa: E402

app.include_router(cron.router, prefix="/api")
app.include_router(sessions.router, prefix="/api")
