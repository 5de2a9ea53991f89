from fastapi import FastAPI

from backend.app.core.logging_config import configure_logging
from backend.app.core.settings import settings
from .routes import listings, pipeline, vin

configure_logging(settings.log_level, settings.log_format)

app = FastAPI(title="Curated Listings API", version="0.1.0")

app.include_router(listings.router, prefix="/listings", tags=["listings"])
app.include_router(vin.router, prefix="/vin", tags=["vin"])
app.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])
