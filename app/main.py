"""Main FastAPI application with all middleware"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from app.core.config import settings
from app.core.events import lifespan
from app.core.exceptions import ExamPrepException, examprep_exception_handler
from app.core.middleware import setup_middleware
from app.core.monitoring import setup_health_endpoints, setup_monitoring_middleware
from app.core.rate_limit import RateLimiterRegistry
from app.api.v1 import api_router

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Affiliate, anti-fraud and rate limiting API for the exam-prep platform",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

# Rate limiter registry, looked up per request by RateLimitMiddleware
app.state.rate_limiters = RateLimiterRegistry.from_settings(settings)

app.add_exception_handler(ExamPrepException, examprep_exception_handler)

@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    """Custom 500 handler"""
    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": str(exc) if settings.DEBUG else "An internal error occurred",
            "code": "INTERNAL_ERROR",
        }
    )

# Add middleware
setup_middleware(app)
if settings.PROMETHEUS_ENABLED:
    setup_monitoring_middleware(app)

# Include routers
app.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")
setup_health_endpoints(app)

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "docs": "/api/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=settings.WORKERS
    )
