"""FastAPI application setup for the bin GPS locator."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import router as api_router
from .config import settings
from .errors import BinLocatorError, InvalidCoordinate, NotFound, StorageUnavailable, SweepAlreadyRunning
from .service import get_services
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="bin_locator/main")

API_PREFIX = "/api/gps-backup"

_STATUS_CODES = {
    InvalidCoordinate: 400,
    NotFound: 404,
    SweepAlreadyRunning: 409,
    StorageUnavailable: 503,
}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Prepare storage and run the backup scheduler for the life of the app."""
    services = get_services()
    services.startup(start_scheduler=settings.scheduler_enabled)
    try:
        yield
    finally:
        get_services().shutdown()


app = FastAPI(title="Bin GPS Locator", lifespan=lifespan)


@app.exception_handler(BinLocatorError)
async def handle_bin_locator_error(request: Request, exc: BinLocatorError):
    """Map service errors to status codes with the {success, error} body clients expect."""
    status_code = next((code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


@app.get("/health")
def health():
    """Liveness probe; storage reachability lives under /status."""
    return {"ok": True}


app.include_router(api_router, prefix=API_PREFIX)
