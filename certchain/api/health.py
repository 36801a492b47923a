"""Liveness, readiness and Prometheus scrape endpoints.

/health  liveness: 200 while the process can answer.  The body reports
         each backing store so a dashboard can show degradation, but a
         degraded store never fails the probe (restarting the container
         would not fix a ledger outage).
/ready   readiness: 503 while a configured registry or Redis is
         unreachable, so the load balancer stops routing issue/verify
         traffic here until it recovers.
/metrics Prometheus text exposition.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from certchain.api.dependencies import ServicesDep
from certchain.container import Services
from certchain.db.redis import check_redis

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database(services: Services) -> str:
    if services.engine is None:
        return "not_configured"
    try:
        async with services.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database readiness check failed")
        return "degraded"
    return "ok"


async def _check_redis(services: Services) -> str:
    if services.redis is None:
        return "not_configured"
    return "ok" if await check_redis(services.redis) else "degraded"


async def _checks(services: Services) -> dict[str, str]:
    return {
        "database": await _check_database(services),
        "redis": await _check_redis(services),
    }


@router.get("/health")
async def health(services: ServicesDep) -> dict:
    checks = await _checks(services)
    overall = "degraded" if "degraded" in checks.values() else "ok"
    pending = len(await services.registry.list_pending()) if overall == "ok" else None
    return {"status": overall, "checks": checks, "pending_operations": pending}


@router.get("/ready")
async def ready(services: ServicesDep) -> Response:
    checks = await _checks(services)
    if "degraded" in checks.values():
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
