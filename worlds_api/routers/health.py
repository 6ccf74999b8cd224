"""Liveness (/health), readiness (/ready), and metrics for load balancers and orchestrators."""
from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse

from worlds_api import metrics as metrics_module

router = APIRouter()


@router.get("/health")
def health():
    """Liveness: API process is up. No dependencies checked."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request, response: Response):
    """
    Readiness: Redis must answer, since attempt windows and locks live there.
    Returns 503 when it does not, so the orchestrator can stop sending traffic.
    """
    out = {"status": "ok", "checks": {}}
    if await request.app.state.cache.ping():
        out["checks"]["redis"] = "ok"
    else:
        out["checks"]["redis"] = "unreachable"
        out["status"] = "degraded"
        response.status_code = 503
    return out


@router.get("/metrics", response_class=PlainTextResponse)
def metrics():
    """Prometheus text exposition format: http_requests_total, shared_secret_attempts_total, process_uptime_seconds."""
    return PlainTextResponse(
        metrics_module.format_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
