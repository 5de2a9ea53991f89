from __future__ import annotations

import asyncio
import io
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx
import pandas as pd

from backend.app.core.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class ListingSourceError(Exception):
    """Raised when a source cannot deliver its raw listing set."""


class ListingSource(Protocol):
    name: str
    cost: float

    async def fetch_raw_listings(self, criteria: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _sanitize_row(columns: List[str], record: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for column in columns:
        value = record.get(column)
        if isinstance(value, (list, dict)):
            sanitized[column] = value
            continue
        if _is_null(value):
            sanitized[column] = None
            continue
        if isinstance(value, pd.Timestamp):
            sanitized[column] = value.date().isoformat()
        elif isinstance(value, datetime):
            sanitized[column] = value.isoformat()
        elif hasattr(value, "item"):
            # numpy scalars
            sanitized[column] = value.item()
        elif isinstance(value, str):
            sanitized[column] = value.strip()
        else:
            sanitized[column] = value
    return sanitized


def _load_table(filename: str, content: bytes) -> pd.DataFrame:
    buffer = io.BytesIO(content)
    lowered = filename.lower()
    try:
        if lowered.endswith(".csv"):
            df = pd.read_csv(buffer)
        elif lowered.endswith((".xlsx", ".xls")):
            df = pd.read_excel(buffer)
        else:
            raise ValueError(f"Unsupported listing file type: {filename}")
    except ValueError:
        raise
    except Exception as exc:
        raise ValueError(f"Unable to read listing table: {exc}") from exc

    df.columns = [str(col).strip() for col in df.columns]
    df = df.dropna(how="all")
    return df


def _rows_from_json(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("listings", payload.get("data"))
    if not isinstance(payload, list):
        raise ListingSourceError("Listing payload must be a list or contain a 'listings' list")
    return [row for row in payload if isinstance(row, dict)]


class FileListingSource:
    """Reads raw listings from a JSON, CSV or Excel export on disk."""

    cost = 0.0

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.name = f"file:{self.path.name}"

    async def fetch_raw_listings(self, criteria: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            content = await asyncio.to_thread(self.path.read_bytes)
        except OSError as exc:
            raise ListingSourceError(f"Unable to read {self.path}: {exc}") from exc

        if self.path.suffix.lower() == ".json":
            try:
                rows = _rows_from_json(json.loads(content.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise ListingSourceError(f"Invalid JSON in {self.path}: {exc}") from exc
        else:
            try:
                df = _load_table(self.path.name, content)
            except ValueError as exc:
                raise ListingSourceError(str(exc)) from exc
            columns = list(df.columns)
            rows = [_sanitize_row(columns, record) for record in df.to_dict(orient="records")]

        logger.info("Loaded %s raw listings from %s", len(rows), self.path)
        return rows


class HttpListingSource:
    """Pulls raw listings from a JSON listing feed."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 30.0,
        cost: float = 0.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.cost = cost
        self._transport = transport
        self.name = f"http:{httpx.URL(url).host}"

    async def fetch_raw_listings(self, criteria: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {k: v for k, v in (criteria or {}).items() if v is not None}
        if self.api_key:
            params["api_key"] = self.api_key
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url, params=params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise ListingSourceError(f"Listing feed request failed: {exc}") from exc
        except ValueError as exc:
            raise ListingSourceError("Listing feed returned invalid JSON") from exc

        rows = _rows_from_json(payload)
        logger.info("Fetched %s raw listings from %s", len(rows), self.name)
        return rows


def build_listing_source(config: Optional[Settings] = None) -> ListingSource:
    config = config or default_settings
    kind = (config.listing_source or "file").lower()
    if kind == "file":
        return FileListingSource(config.listing_source_path)
    if kind == "http":
        if not config.listing_source_url:
            raise ValueError("LISTING_SOURCE_URL is required for the http listing source")
        return HttpListingSource(config.listing_source_url, config.listing_source_api_key)
    raise ValueError(f"Unknown listing source '{config.listing_source}'")
