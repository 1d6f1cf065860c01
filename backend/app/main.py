from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

from app.core.config import settings
from app.routers import recommendations
from app.database import init_db
from app.services.recommendation_pipeline import build_default_pipeline
from app.utils.timing import utcnow

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("nearby")
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Server fingerprint for debugging
SERVER_BOOT_ID = f"nearby-backend::{os.getpid()}::{utcnow().isoformat()}"

app = FastAPI(debug=settings.DEBUG)

cors_origins = settings.cors_origins_list
logger.info("[CORS] allow_origins=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )

    # Ensure CORS headers are present in error responses
    origin = request.headers.get("origin")
    if origin and origin in cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# ----------------------------
# Routers
# ----------------------------
app.include_router(recommendations.router, prefix="/api")


@app.on_event("startup")
def on_startup() -> None:
    logger.info("[BOOT] %s (environment=%s)", SERVER_BOOT_ID, settings.ENVIRONMENT)
    init_db()
    app.state.pipeline = build_default_pipeline()
    if settings.ENABLE_SCHEDULER:
        from app.scheduler import start_scheduler

        start_scheduler(app.state.pipeline)


@app.on_event("shutdown")
def on_shutdown() -> None:
    if settings.ENABLE_SCHEDULER:
        from app.scheduler import stop_scheduler

        stop_scheduler()


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/health")
def api_health_check():
    return {"status": "ok"}
