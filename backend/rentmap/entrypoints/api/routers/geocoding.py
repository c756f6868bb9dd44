# rentmap/entrypoints/api/routers/geocoding.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_services, require_api_key
from ....container import Services
from ....schemas import GeocodeBatchIn, GeocodeIn, GeocodeOut, ReverseGeocodeIn, ReverseGeocodeOut

router = APIRouter(tags=["geocoding"])


@router.post("/geocode", response_model=GeocodeOut, dependencies=[Depends(require_api_key)])
async def geocode(body: GeocodeIn, services: Services = Depends(get_services)) -> GeocodeOut:
    result = await services.geocoder.resolve(body.address)
    if result is None:
        raise HTTPException(status_code=400, detail="address must not be empty")
    return GeocodeOut(**result.to_dict())


@router.post("/geocode/batch", response_model=list[GeocodeOut | None], dependencies=[Depends(require_api_key)])
async def geocode_batch(body: GeocodeBatchIn, services: Services = Depends(get_services)) -> list[GeocodeOut | None]:
    results = await services.geocoder.batch_resolve(body.addresses)
    return [GeocodeOut(**r.to_dict()) if r is not None else None for r in results]


@router.post("/geocode/reverse", response_model=ReverseGeocodeOut, dependencies=[Depends(require_api_key)])
async def reverse_geocode(body: ReverseGeocodeIn, services: Services = Depends(get_services)) -> ReverseGeocodeOut:
    return ReverseGeocodeOut(address=await services.geocoder.reverse(body.latitude, body.longitude))
