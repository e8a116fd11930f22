"""
Metrics Router - Prometheus Metrics Endpoint

Exposes /metrics for Prometheus scraping: HTTP, cache tier and upstream
calendar metrics.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from ..utils.metrics import format_prometheus_metrics

router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.get("", response_class=PlainTextResponse)
@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def get_metrics():
    """Prometheus text format."""
    return PlainTextResponse(
        content=format_prometheus_metrics(),
        media_type="text/plain; charset=utf-8"
    )
