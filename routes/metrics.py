from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from services.metrics import render_prometheus

router = APIRouter(tags=["metrics"])

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


@router.get("/metrics", response_class=PlainTextResponse)
def prometheus_metrics():
    return PlainTextResponse(content=render_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE)
