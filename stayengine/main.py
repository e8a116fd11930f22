from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import time
import uuid

from .config import settings
from .errors import StayEngineError
from .utils.logging_config import setup_logging, set_request_context, clear_request_context
from .utils.metrics import record_http_request
from .utils.rate_limiter import limiter

from .routers import availability, pricing, health, metrics

logger = logging.getLogger("stayengine")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    logger.info("Starting stayengine")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")
    logger.info(f"Apartments: {', '.join(sorted(settings.apartments))}")

    if not settings.has_upstream_credentials:
        logger.warning("BEDS24_ACCESS_TOKEN / BEDS24_REFRESH_TOKEN not set, availability checks will fail")
    if not settings.redis_url:
        logger.warning("REDIS_URL not set, using in-process cache only")

    yield

    logger.info("Shutting down stayengine")


# Create FastAPI app
app = FastAPI(
    title="StayEngine - Availability & Pricing API",
    description="Apartment availability, pricing and cache management",
    version="1.0.0",
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Cache-Status", "X-Response-Time"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


# Request metrics, labelled by route template to keep cardinality bounded
class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        path = getattr(route, "path", "unmatched")
        record_http_request(request.method, path, response.status_code, time.perf_counter() - start)
        return response


# Add other middleware AFTER CORS
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": "Too many requests, try again later", "code": "rate_limited"}
    )


@app.exception_handler(StayEngineError)
async def stayengine_error_handler(request: Request, exc: StayEngineError):
    """Categorized errors: safe message to the client, detail to the logs"""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}"
        + (f": {exc.detail}" if exc.detail else "")
    )
    headers = {"Retry-After": "30"} if exc.status_code == 503 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
        headers=headers,
    )


# Include routers
app.include_router(availability.router)
app.include_router(pricing.router)
app.include_router(health.router)
app.include_router(metrics.router)


@app.get("")
@app.get("/")
async def root():
    return {
        "message": "StayEngine availability & pricing API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running",
    }
