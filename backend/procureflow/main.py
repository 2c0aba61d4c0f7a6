import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from procureflow.database import engine
from procureflow.models.base import Base
import procureflow.models  # noqa: F401 - register all tables for create_all
from procureflow.api.endpoints import rfps, vendors, proposals
from procureflow.services.ai_service import AIServiceError, ai_provider
from procureflow.services.email_service import EmailDeliveryError
from procureflow.services.file_service import ensure_upload_dir, UPLOAD_DIR, STATIC_PREFIX

logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    ensure_upload_dir()
    yield


app = FastAPI(title="ProcureFlow API", version="0.1.0", lifespan=lifespan)

# Stored proposal attachments are served from here; their URLs point at this mount
app.mount(STATIC_PREFIX, StaticFiles(directory=str(UPLOAD_DIR), check_dir=False), name="static")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rfps.router)
app.include_router(vendors.router)
app.include_router(proposals.router)


def _error_response(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"status": "error", "message": message, "details": str(exc)})


@app.exception_handler(AIServiceError)
async def ai_service_error_handler(request: Request, exc: AIServiceError):
    logger.error("AI step failed on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return _error_response("The language model step failed.", exc)


@app.exception_handler(EmailDeliveryError)
async def email_delivery_error_handler(request: Request, exc: EmailDeliveryError):
    logger.error("Email delivery failed on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return _error_response(str(exc), exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response("Internal server error.", exc)


@app.get("/health")
def health():
    """Health check endpoint for load balancers and readiness probes."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", e)
        database = "unreachable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": "procureflow-backend",
        "database": database,
        "ai_provider": ai_provider(),
    }
