"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Optional

from fastapi import APIRouter, Depends, Header, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from postsearch.api.search_management import require_admin
from postsearch.infra.redis import redis_client
from postsearch.obs import metrics as obs_metrics
from postsearch.settings import settings

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


async def require_metrics_access(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	await require_admin(X_Admin_Token=X_Admin_Token, authorization=authorization)


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok", "service": settings.service_name}


@router.get("/health/ready")
async def health_ready() -> Response:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=0.2)
	except Exception as exc:
		obs_metrics.mark_redis(False)
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return JSONResponse({"status": "unavailable", "redis": {"ok": False, "error": str(exc)}}, status_code=503)
	latency = perf_counter() - start
	obs_metrics.mark_redis(True, latency_seconds=latency)
	return JSONResponse({"status": "ok", "redis": {"ok": True, "latency_ms": round(latency * 1000, 2)}})


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
