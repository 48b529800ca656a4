from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_library.core.errors import register_exception_handlers
from smart_library.core.logging import configure_logging, log_requests
from smart_library.core.rate_limit import limiter
from smart_library.core.settings import get_library_settings
from smart_library.db.mongo import (
    READING_SESSIONS,
    ensure_reading_session_indexes,
    get_mongo_client,
    get_reading_sessions_collection,
)
from smart_library.db.session import engine, get_session
from smart_library.models import Base
from smart_library.routers.admin import router as admin_router
from smart_library.routers.admin_users import router as admin_users_router
from smart_library.routers.analytics import router as analytics_router
from smart_library.routers.auth import router as auth_router
from smart_library.routers.books import router as books_router
from smart_library.routers.checkouts import router as checkouts_router
from smart_library.routers.reviews import router as reviews_router
from smart_library.routers.users import router as users_router

STATIC_DIR = Path(__file__).resolve().parent / "static"

settings = get_library_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_schema_on_startup:
        Base.metadata.create_all(bind=engine)
    if settings.mongo_init_on_startup:
        try:
            client = get_mongo_client()
            ensure_reading_session_indexes(client[settings.mongo_db_name][READING_SESSIONS])
        except PyMongoError as exc:
            logger.warning("MongoDB unavailable at startup, analytics disabled until it recovers: %s", exc)
    logger.info("Smart Library API started")
    yield


app = FastAPI(title="Smart Library API", version="1.0.0", lifespan=lifespan)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(log_requests)
register_exception_handlers(app)


@app.get("/health", tags=["system"])
def health(
    db: Session = Depends(get_session),
    collection: Collection = Depends(get_reading_sessions_collection),
) -> JSONResponse:
    """Report reachability of both data stores."""
    checks = {"mysql": "connected", "mongodb": "connected"}
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Relational database health check failed: %s", exc)
        checks["mysql"] = "disconnected"
    try:
        collection.find_one({}, {"_id": 1})
    except PyMongoError as exc:
        logger.error("MongoDB health check failed: %s", exc)
        checks["mongodb"] = "disconnected"

    healthy = all(value == "connected" for value in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "healthy" if healthy else "unhealthy", "databases": checks},
    )


@app.get("/api", tags=["system"])
def api_index() -> dict:
    return {
        "message": "Smart Library API",
        "version": app.version,
        "endpoints": {
            "auth": "/api/auth",
            "books": "/api/books",
            "users": "/api/users",
            "checkouts": "/api/checkouts",
            "reviews": "/api/reviews",
            "admin": "/api/admin",
            "analytics": "/api/analytics",
        },
    }


app.include_router(auth_router)
app.include_router(books_router)
app.include_router(users_router)
app.include_router(checkouts_router)
app.include_router(reviews_router)
app.include_router(admin_users_router)
app.include_router(admin_router)
app.include_router(analytics_router)

app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
