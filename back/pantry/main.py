import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from .db import check_db_connection, create_db_and_tables, engine, get_session
from .errors import PantryError
from .inventory_routes import router as inventory_router
from .settings import settings
from .tasks import AnalyticsDispatcher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Pantry API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(inventory_router, prefix="/inventory", tags=["Inventory"])

# Background analytics; the worker thread only runs between startup and shutdown.
# With the worker disabled, refreshes run inline after each write.
app.state.dispatcher = AnalyticsDispatcher(engine, inline=not settings.analytics_worker_enabled)


@app.exception_handler(PantryError)
def pantry_error_handler(request: Request, exc: PantryError) -> JSONResponse:
    logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": exc.details,
            },
        },
    )


@app.on_event("startup")
def on_startup() -> None:
    logger.info("Starting application...")
    create_db_and_tables()
    app.state.dispatcher.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    app.state.dispatcher.stop()
    logger.info("Application stopped")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/db")
def health_db(session: Session = Depends(get_session)) -> dict:
    """Check database connection."""
    try:
        check_db_connection(session.get_bind())
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ok", "database": "connected"}
