from __future__ import annotations

import asyncio
import hmac
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from backend.app.api.deps import get_pipeline_factory, get_settings, get_store
from backend.app.core.settings import Settings
from backend.app.services.curated_store import SqlAlchemyCuratedStore
from backend.app.services.pipeline import CurationPipeline, PipelineFatalError

logger = logging.getLogger(__name__)

router = APIRouter()

# One pipeline run per process at a time.
_run_lock = asyncio.Lock()


def _authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    if not secret or not authorization:
        return False
    token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    return hmac.compare_digest(token.encode(), secret.encode())


@router.post("/runs")
async def trigger_run(
    authorization: Optional[str] = Header(default=None),
    config: Settings = Depends(get_settings),
    pipeline_factory: Callable[[], CurationPipeline] = Depends(get_pipeline_factory),
):
    if not config.cron_secret:
        logger.error("CRON_SECRET is not configured; refusing pipeline trigger")
    if not _authorized(authorization, config.cron_secret):
        raise HTTPException(status_code=401, detail="Invalid or missing authorization header")
    if _run_lock.locked():
        raise HTTPException(status_code=409, detail="A pipeline run is already in progress")

    async with _run_lock:
        pipeline = pipeline_factory()
        try:
            summary = await pipeline.run()
        except PipelineFatalError as exc:
            detail = {"stage": exc.stage, "message": exc.message}
            if exc.summary is not None:
                detail["run_id"] = exc.summary.run_id
            raise HTTPException(status_code=500, detail=detail) from exc
        finally:
            adapter = pipeline.vin_adapter
            if adapter is not None and hasattr(adapter, "aclose"):
                await adapter.aclose()
    return summary.to_dict()


@router.get("/runs")
async def list_runs(limit: int = 20, store: SqlAlchemyCuratedStore = Depends(get_store)):
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 100")
    return {"runs": store.list_run_summaries(limit)}


@router.get("/status")
async def pipeline_status(config: Settings = Depends(get_settings)):
    return {
        "cron_secret_configured": bool(config.cron_secret),
        "listing_source": config.listing_source,
        "vin_validation_enabled": not config.skip_vin_validation,
        "history_check_enabled": not config.skip_history_check,
        "history_api_configured": bool(config.vin_history_api_key),
        "scoring_strategy": config.scoring_strategy,
        "running": _run_lock.locked(),
    }
