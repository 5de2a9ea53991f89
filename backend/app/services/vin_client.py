from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from backend.app.core.settings import settings
from backend.app.services.records import RawListing, is_valid_vin, normalize_vin

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class VinLookupError(Exception):
    """Base exception for VIN decode/history lookups."""


class VinLookupRetryableError(VinLookupError):
    """Raised when a retryable HTTP status is still failing after all attempts."""


class VinLookupTimeout(VinLookupError):
    """Raised when the provider did not answer in time."""


@dataclass
class VinDecodeResult:
    vin: str
    valid: bool
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    body_class: Optional[str] = None
    trim: Optional[str] = None
    engine_type: Optional[str] = None
    fuel_type: Optional[str] = None
    drive_type: Optional[str] = None
    manufacturer: Optional[str] = None
    plant_country: Optional[str] = None
    vehicle_type: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: List[Dict[str, Any]] = field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw_response", None)
        return data


@dataclass
class VinHistory:
    vin: str
    title_status: Optional[str] = None
    accident_count: Optional[int] = None
    owner_count: Optional[int] = None
    is_rental: Optional[bool] = None
    is_fleet: Optional[bool] = None
    has_lien: Optional[bool] = None
    flood_damage: Optional[bool] = None
    salvage_title: Optional[bool] = None
    odometer_rollback: Optional[bool] = None
    theft_record: Optional[bool] = None
    state_of_origin: Optional[str] = None
    last_reported_odometer: Optional[int] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)

    def payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw_response", None)
        return data


class VinAdapter(Protocol):
    async def decode_vin(self, vin: str) -> VinDecodeResult: ...

    async def get_history(self, vin: str) -> VinHistory: ...


class AsyncTransport(Protocol):
    async def get(
        self,
        path: str,
        params: Dict[str, Any],
        headers: Dict[str, str],
        timeout: float,
    ) -> httpx.Response: ...

    async def close(self) -> None: ...


class HttpxTransport:
    """httpx-based transport with connection pooling."""

    def __init__(self, base_url: str):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=None)

    async def get(
        self,
        path: str,
        params: Dict[str, Any],
        headers: Dict[str, str],
        timeout: float,
    ) -> httpx.Response:
        return await self._client.get(path, params=params, headers=headers, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()


class _JsonApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float,
        max_attempts: int,
        backoff_base: float,
        transport: Optional[AsyncTransport],
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._transport = transport or HttpxTransport(self.base_url)
        self._owns_transport = transport is None
        self._headers = {"Accept": "application/json", **(headers or {})}

    async def aclose(self) -> None:
        if self._owns_transport:
            await self._transport.close()

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        attempts = 0
        last_error: Optional[Exception] = None
        while attempts < self.max_attempts:
            try:
                response = await self._transport.get(path, params=params, headers=self._headers, timeout=self.timeout)
            except httpx.TimeoutException:
                last_error = VinLookupTimeout(f"Timed out calling {path}")
                logger.warning("Timeout calling %s (attempt %s/%s)", path, attempts + 1, self.max_attempts)
                await self._maybe_wait(attempts)
                attempts += 1
                continue
            except httpx.RequestError as exc:
                last_error = exc
                await self._maybe_wait(attempts)
                attempts += 1
                continue

            if response.status_code in RETRYABLE_STATUS:
                last_error = VinLookupRetryableError(f"Provider returned {response.status_code} for {path}")
                await self._maybe_wait(attempts)
                attempts += 1
                continue

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise VinLookupError(str(exc)) from exc

            try:
                body = response.json()
            except ValueError as exc:
                raise VinLookupError(f"Invalid JSON from {path}") from exc
            if not isinstance(body, dict):
                raise VinLookupError(f"Unexpected payload from {path}: expected an object, got {type(body).__name__}")
            return body

        if isinstance(last_error, VinLookupError):
            raise last_error
        if last_error:
            raise VinLookupError(str(last_error)) from last_error
        raise VinLookupError("VIN provider request failed")

    async def _maybe_wait(self, attempt: int) -> None:
        if attempt >= self.max_attempts - 1:
            return
        delay = self.backoff_base * (2 ** attempt)
        jitter = random.uniform(0, 0.3)
        await asyncio.sleep(delay + jitter)


class NhtsaVinDecoder(_JsonApiClient):
    """Decoder backed by the NHTSA vPIC ``DecodeVin`` endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: float = 10.0,
        max_attempts: int = 2,
        backoff_base: float = 0.5,
        transport: Optional[AsyncTransport] = None,
    ):
        super().__init__(
            base_url or settings.nhtsa_base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            backoff_base=backoff_base,
            transport=transport,
        )

    async def decode_vin(self, vin: str) -> VinDecodeResult:
        clean = normalize_vin(vin) or ""
        if len(clean) != 17:
            return VinDecodeResult(vin=clean, valid=False, error_message=f"Invalid VIN length: {len(clean)} characters (expected 17)")
        if not is_valid_vin(clean):
            return VinDecodeResult(vin=clean, valid=False, error_message="VIN contains invalid characters (I, O, or Q)")

        body = await self._get(f"/DecodeVin/{clean}", {"format": "json"})
        return parse_nhtsa_decode(clean, body)


def parse_nhtsa_decode(vin: str, body: Dict[str, Any]) -> VinDecodeResult:
    results = body.get("Results") or []
    if not results:
        return VinDecodeResult(vin=vin, valid=False, error_message="No data returned from NHTSA API")

    values: Dict[str, Optional[str]] = {}
    for item in results:
        if isinstance(item, dict) and item.get("Variable"):
            value = item.get("Value")
            values[item["Variable"]] = value if value not in ("", None) else None

    error_code = values.get("Error Code")
    if error_code and error_code != "0":
        return VinDecodeResult(
            vin=vin,
            valid=False,
            error_message=values.get("Error Text") or "Invalid VIN according to NHTSA",
            raw_response=results,
        )

    year_text = values.get("Model Year")
    try:
        year = int(year_text) if year_text else None
    except ValueError:
        year = None

    make = values.get("Make")
    model = values.get("Model")
    valid = bool(make and model and year)
    return VinDecodeResult(
        vin=vin,
        valid=valid,
        make=make,
        model=model,
        year=year,
        body_class=values.get("Body Class"),
        trim=values.get("Trim"),
        engine_type=values.get("Engine Model"),
        fuel_type=values.get("Fuel Type - Primary"),
        drive_type=values.get("Drive Type"),
        manufacturer=values.get("Manufacturer Name"),
        plant_country=values.get("Plant Country"),
        vehicle_type=values.get("Vehicle Type"),
        error_message=None if valid else "Incomplete vehicle data from NHTSA",
        raw_response=results,
    )


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _int_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class VinHistoryClient(_JsonApiClient):
    """Vehicle history lookups against a VinAudit-style JSON report API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout: float = 15.0,
        max_attempts: int = 2,
        backoff_base: float = 0.5,
        transport: Optional[AsyncTransport] = None,
    ):
        super().__init__(
            base_url or settings.vin_history_base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            backoff_base=backoff_base,
            transport=transport,
        )
        self.api_key = api_key or settings.vin_history_api_key

    async def get_history(self, vin: str) -> VinHistory:
        clean = normalize_vin(vin) or ""
        params: Dict[str, Any] = {"vin": clean, "format": "json"}
        if self.api_key:
            params["key"] = self.api_key
        body = await self._get("/pullreport", params)
        if body.get("success") is False:
            raise VinLookupError(body.get("error") or f"History report unavailable for {clean}")
        return parse_history_report(clean, body)


def parse_history_report(vin: str, body: Dict[str, Any]) -> VinHistory:
    report = body.get("report") if isinstance(body.get("report"), dict) else body
    salvage = _pick(report, "salvage_title", "salvage")
    title = _pick(report, "title_status", "title")
    if title is None and salvage is not None:
        title = "salvage" if salvage else "clean"
    state = _pick(report, "state_of_origin", "state")
    return VinHistory(
        vin=vin,
        title_status=str(title).lower() if title is not None else None,
        accident_count=_int_or_none(_pick(report, "accident_count", "accidents")),
        owner_count=_int_or_none(_pick(report, "owner_count", "owners")),
        is_rental=_pick(report, "is_rental", "rental"),
        is_fleet=_pick(report, "is_fleet", "fleet"),
        has_lien=_pick(report, "has_lien", "lien"),
        flood_damage=_pick(report, "flood_damage", "flood"),
        salvage_title=salvage,
        odometer_rollback=_pick(report, "odometer_rollback"),
        theft_record=_pick(report, "theft_record", "theft"),
        state_of_origin=str(state).upper() if state else None,
        last_reported_odometer=_int_or_none(_pick(report, "last_reported_odometer")),
        raw_response=body,
    )


class VinServiceAdapter:
    """Joins a decoder and a history client behind the :class:`VinAdapter` interface."""

    def __init__(self, decoder: Optional[NhtsaVinDecoder] = None, history: Optional[VinHistoryClient] = None):
        self.decoder = decoder or NhtsaVinDecoder()
        self.history = history or VinHistoryClient()

    async def decode_vin(self, vin: str) -> VinDecodeResult:
        return await self.decoder.decode_vin(vin)

    async def get_history(self, vin: str) -> VinHistory:
        return await self.history.get_history(vin)

    async def aclose(self) -> None:
        await self.decoder.aclose()
        await self.history.aclose()


def verify_decoded(listing: RawListing, decoded: VinDecodeResult) -> List[str]:
    """Compare decoded make/model/year with what the listing claims.

    Make and year must match exactly (make case-insensitively); model matches
    when either name contains the other, so "RAV4" matches "RAV4 Hybrid".
    """
    if not decoded.valid:
        return [decoded.error_message or "Invalid VIN"]

    issues: List[str] = []
    claimed_make = (listing.make or "").lower()
    if (decoded.make or "").lower() != claimed_make:
        issues.append(f'Make mismatch: VIN shows "{decoded.make}", listing shows "{listing.make}"')

    decoded_model = (decoded.model or "").lower()
    claimed_model = (listing.model or "").lower()
    if decoded_model not in claimed_model and claimed_model not in decoded_model:
        issues.append(f'Model mismatch: VIN shows "{decoded.model}", listing shows "{listing.model}"')

    if decoded.year != listing.year:
        issues.append(f"Year mismatch: VIN shows {decoded.year}, listing shows {listing.year}")
    return issues
