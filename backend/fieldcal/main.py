import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fieldcal.api.v1.calendar import conflict_out
from fieldcal.api.v1.calendar import router as calendar_router
from fieldcal.api.v1.diagnostics import router as diagnostics_router
from fieldcal.core.config import get_settings
from fieldcal.core.errors import CalendarError, ConflictError
from fieldcal.schemas.calendar import ErrorResponse
from fieldcal.services.recurring_jobs import start_hold_expiry_worker

settings = get_settings()
_hold_expiry_task = None

logger = logging.getLogger(__name__)

app = FastAPI(
    title="FieldCal Scheduling API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


@app.on_event("startup")
async def _startup_jobs():
    global _hold_expiry_task
    if _hold_expiry_task is None and settings.enable_recurring_jobs:
        _hold_expiry_task = start_hold_expiry_worker()


@app.on_event("shutdown")
async def _shutdown_jobs():
    global _hold_expiry_task
    if _hold_expiry_task is not None:
        _hold_expiry_task.cancel()
        _hold_expiry_task = None


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(calendar_router, prefix="/api/v1", tags=["calendar"])
app.include_router(diagnostics_router, prefix="/api/v1", tags=["diagnostics"])


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.exception_handler(CalendarError)
async def _calendar_error_handler(request: Request, exc: CalendarError):
    body = ErrorResponse(detail=exc.message, code=exc.code)
    if isinstance(exc, ConflictError):
        body.conflicts = [conflict_out(item) for item in exc.conflicts]
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
