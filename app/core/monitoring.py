# ExamPrep Affiliate Monitoring Configuration
# Prometheus metrics and health checks

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Any
from sqlalchemy import text
from fastapi import FastAPI, Request, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from .config import settings
from .database import get_db_context

logger = logging.getLogger(__name__)

# HTTP metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])

# Abuse mitigation metrics
rate_limit_rejections = Counter(
    'rate_limit_rejections_total', 'Requests rejected by the rate limiter', ['route_class']
)
fraud_flags = Counter(
    'affiliate_fraud_flags_total', 'Referral activity flagged by the fraud check', ['event_type']
)

# Commission metrics
commissions_awarded = Counter('affiliate_commissions_awarded_total', 'Commissions awarded')
commission_amount = Counter('affiliate_commission_amount_total', 'Sum of awarded commission amounts')

def _endpoint_label(request: Request) -> str:
    # Route template keeps label cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)

def setup_monitoring_middleware(app: FastAPI):
    """Add monitoring middleware to track metrics"""

    @app.middleware("http")
    async def monitor_requests(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        endpoint = _endpoint_label(request)

        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(process_time)

        return response

async def get_health_status() -> Dict[str, Any]:
    """Get health status of the database"""

    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {}
    }

    start = time.time()
    try:
        async with get_db_context() as session:
            await session.execute(text("SELECT 1"))
        health_status["services"]["database"] = {
            "status": "healthy",
            "response_time_ms": round((time.time() - start) * 1000, 2)
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "unhealthy"

    return health_status

def setup_health_endpoints(app: FastAPI):
    """Setup health check and metrics endpoints"""

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint"""
        return {"status": "healthy", "version": settings.APP_VERSION}

    @app.get("/health/detailed", tags=["Health"])
    async def detailed_health_check():
        """Detailed health check with backing services"""
        return await get_health_status()

    @app.get("/metrics", tags=["Health"])
    async def metrics():
        """Prometheus metrics endpoint"""
        if not settings.PROMETHEUS_ENABLED:
            return {"error": "Metrics disabled"}

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
