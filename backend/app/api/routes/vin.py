from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from backend.app.api.deps import get_vin_adapter
from backend.app.services.records import RawListing, normalize_vin
from backend.app.services.vin_client import VinAdapter, VinLookupError, VinLookupTimeout, verify_decoded

router = APIRouter()


@router.get("/{vin}")
async def vin_check(
    vin: str,
    make: Optional[str] = None,
    model: Optional[str] = None,
    year: Optional[int] = None,
    adapter: VinAdapter = Depends(get_vin_adapter),
):
    """Decode a VIN; with make, model and year given, also verify them against the decode."""
    clean = normalize_vin(vin) or ""
    try:
        decoded = await adapter.decode_vin(clean)
    except VinLookupTimeout as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except VinLookupError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    response = {"vin": clean, "valid": decoded.valid, "decoded": decoded.payload()}
    if make and model and year:
        claimed = RawListing(vin=clean, make=make, model=model, year=year)
        issues = verify_decoded(claimed, decoded)
        response["verification"] = {"matches": not issues, "issues": issues}
    return response
