"""Prometheus scrape endpoint"""
from fastapi import APIRouter, Response

from ..metrics import get_metrics_content_type, get_metrics_text

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics():
    """Ingest, device, alert and notification counters in text exposition format"""
    return Response(content=get_metrics_text(), media_type=get_metrics_content_type())
