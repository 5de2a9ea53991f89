from __future__ import annotations

from typing import AsyncIterator, Callable

from backend.app.core.settings import Settings, settings
from backend.app.services.curated_store import SqlAlchemyCuratedStore
from backend.app.services.pipeline import CurationPipeline, build_pipeline
from backend.app.services.vin_client import VinServiceAdapter


def get_settings() -> Settings:
    return settings


def get_store() -> SqlAlchemyCuratedStore:
    return SqlAlchemyCuratedStore()


async def get_vin_adapter() -> AsyncIterator[VinServiceAdapter]:
    adapter = VinServiceAdapter()
    try:
        yield adapter
    finally:
        await adapter.aclose()


def get_pipeline_factory() -> Callable[[], CurationPipeline]:
    return build_pipeline
