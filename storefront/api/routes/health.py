from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring. Never rate limited. Reports cache
    namespace occupancy and throttle state sizes (no keys or identifiers).

    Returns:
        dict: ``status`` plus ``caches`` and ``rate_limit`` summaries when the
            application services are running.
    """

    payload: dict = {"status": "ok"}
    services = getattr(request.app.state, "services", None)
    if services is not None:
        payload["caches"] = {
            name: stats["entries"] for name, stats in services.caches.stats().items()
        }
        payload["rate_limit"] = {
            "enabled": services.rate_limit_enabled,
            **services.limiter.stats(),
        }
    return payload
