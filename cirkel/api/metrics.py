from fastapi import APIRouter, Response

from cirkel.core.config import settings
from cirkel.core.errors import NotFoundError
from cirkel.core.metrics import METRICS


router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics_endpoint():
    if not settings.METRICS_ENABLED:
        raise NotFoundError("Metrics are disabled")
    payload = METRICS.export_prometheus()
    return Response(content=payload, media_type="text/plain; version=0.0.4")
