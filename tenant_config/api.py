from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from tenant_config.core.config import get_settings
from tenant_config.metrics import generate_metrics_payload, metrics_content_type


router = APIRouter()


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
