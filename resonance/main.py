from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from resonance.api.deps import build_services
from resonance.api.routes import research
from resonance.config import settings
from resonance.errors import (
    ExternalServiceError,
    RateLimitExceeded,
    ResonanceError,
    SchemaError,
    TaskNotFoundError,
    ValidationError,
)
from resonance.services import database
from resonance.services.logger import log_event, logger
from resonance.services.ticker import ProgressionTicker

_HTTP_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    429: "RATE_LIMITED",
    503: "SERVICE_UNAVAILABLE",
}


def error_response(status_code: int, message: str, code: str, details=None) -> JSONResponse:
    body = {"error": message, "code": code}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if database.db_available():
        await database.ensure_schema()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    ticker = None
    if settings.ticker_enabled:
        services = app.state.services
        ticker = ProgressionTicker(
            services.orchestrator,
            settings.ticker_interval_seconds,
            counters=services.limiter.counters,
        )
        ticker.start()
    log_event("startup", "Resonance API ready", database=database.db_available())
    yield
    # Shutdown
    if ticker is not None:
        await ticker.stop()
    await database.close_pool()


app = FastAPI(
    title="Resonance",
    description="Audience resonance research orchestrated over text generation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return error_response(400, exc.message, exc.code, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return error_response(400, "Invalid request", "VALIDATION_ERROR", details)


@app.exception_handler(TaskNotFoundError)
async def not_found_handler(request: Request, exc: TaskNotFoundError):
    return error_response(404, "Research task not found", exc.code)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, str(exc), exc.code)


@app.exception_handler(ExternalServiceError)
@app.exception_handler(SchemaError)
async def service_error_handler(request: Request, exc: ResonanceError):
    logger.warning(f"Upstream generation failed for {request.url.path}: {exc}")
    return error_response(503, "Text generation is unavailable, try again later", "SERVICE_UNAVAILABLE")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_CODES.get(exc.status_code, "INTERNAL_ERROR")
    return error_response(exc.status_code, str(exc.detail), code)


@app.exception_handler(ResonanceError)
async def resonance_error_handler(request: Request, exc: ResonanceError):
    logger.exception(f"Unhandled research error on {request.url.path}")
    return error_response(500, "Internal Server Error", "INTERNAL_ERROR")


# Routes
app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "resonance"}
