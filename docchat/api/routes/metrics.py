"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes all registered Prometheus metrics including:
    - docchat_ingestion_total{outcome}
    - docchat_chunker_fallback_total
    - docchat_chat_messages_total{outcome}
    - docchat_sse_subscribers
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
