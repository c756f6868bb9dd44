# rentmap/entrypoints/api/routers/listings.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_services
from ....adapters.repos.listings import ListingRepository
from ....container import Services
from ....domain.types import Bounds
from ....schemas import ClustersOut
from ....service_layer.clustering import MapListing

router = APIRouter(tags=["listings"])


@router.get("/listings/clusters", response_model=ClustersOut)
async def listing_clusters(
    zoom: int = Query(..., ge=0, le=22),
    north: float = Query(..., ge=-90, le=90),
    south: float = Query(..., ge=-90, le=90),
    east: float = Query(..., ge=-180, le=180),
    west: float = Query(..., ge=-180, le=180),
    services: Services = Depends(get_services),
) -> ClustersOut:
    if south > north or west > east:
        raise HTTPException(status_code=400, detail="bounds must satisfy south <= north and west <= east")
    bounds = Bounds(north=north, south=south, east=east, west=west)

    async with services.session_maker() as session:
        rows = await ListingRepository(session).list_with_coordinates(bounds)
        listings = [MapListing.from_model(r) for r in rows]

    items = services.clustering.cluster(listings, zoom, bounds)
    return ClustersOut(zoom=zoom, total=len(listings), items=[i.to_dict() for i in items])
