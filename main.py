"""
Main FastAPI Application
Entry point for the announcement service
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from beanie import init_beanie
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from motor.motor_asyncio import AsyncIOMotorClient

from bulletin.config import settings
from bulletin.errors import BulletinError
from bulletin.logging_config import setup_logging
from bulletin.models.announcement import Announcement
from bulletin.models.employee import Employee
from bulletin.models.notification import Notification
from bulletin.services.cache import close_redis, create_redis_client
from bulletin.services.registry import build_services
from bulletin.services.scheduler import AnnouncementScheduler
from create_admin import ensure_default_admin

# Import routers
from bulletin.api.routes import announcements, auth, realtime

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Employee, Announcement, Notification]


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)

    # Initialize MongoDB
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    await init_beanie(database=client[settings.MONGODB_DB_NAME], document_models=DOCUMENT_MODELS)
    logger.info("Connected to MongoDB: %s", settings.MONGODB_DB_NAME)

    await ensure_default_admin()

    redis_client = await create_redis_client(settings)
    services = build_services(settings, redis_client=redis_client)
    app.state.services = services
    await services.tasks.start()

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = AnnouncementScheduler(services.lifecycle, settings.SCHEDULER_INTERVAL_SECONDS)
        scheduler.start()

    logger.info("Server running on %s:%s", settings.HOST, settings.PORT)

    yield

    # Shutdown
    logger.info("Shutting down...")
    if scheduler:
        await scheduler.stop()
    await services.tasks.stop()
    await close_redis(redis_client)
    client.close()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Announcement distribution service: targeted, time-boxed announcements with realtime delivery",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def jsonable_errors(errors):
    return [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
        for e in errors
    ]


@app.exception_handler(BulletinError)
async def bulletin_error_handler(request: Request, exc: BulletinError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": message, "errors": jsonable_errors(errors)},
    )


# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(announcements.router, prefix="/api/announcements", tags=["Announcements"])
app.include_router(realtime.router, tags=["Realtime"])

# Mount static files (for uploads)
os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Bulletin Announcement Service API",
        "version": settings.APP_VERSION,
        "docs": "/api/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    services = getattr(app.state, "services", None)
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "cache": bool(services and services.cache.enabled),
        "tasks": services.tasks.get_stats() if services else None,
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
