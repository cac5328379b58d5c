"""Service catalogue - vendors offering a service, ranked with a price for the site"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..domain.pricing.calculator import calculate_quote
from ..domain.pricing.settings import load_pricing_settings
from ..domain.reassignment.ranking import build_candidates, find_equivalent_services, rank_candidates
from ..models import Service

router = APIRouter(prefix="/services", tags=["Services"])


@router.get("/{service_id}/vendors")
async def list_service_vendors(
    service_id: int,
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    db: Session = Depends(get_db),
):
    """
    All approved vendors offering the same service (name and category), best first.
    Each entry carries the quote the customer would pay at the given coordinates.
    """
    service = db.query(Service).filter(Service.id == service_id).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")

    settings = load_pricing_settings(db)
    services = find_equivalent_services(db, service.name, service.category, excluded_vendor_ids=[])
    ranked = rank_candidates(build_candidates(services, latitude, longitude))

    vendors = []
    for candidate in ranked:
        quote = calculate_quote(candidate.price, candidate.distance_km, settings)
        vendors.append(
            {
                "vendor_id": candidate.vendor_id,
                "service_id": candidate.service_id,
                "name": candidate.vendor.name,
                "city": candidate.vendor.city,
                "average_rating": candidate.average_rating,
                "success_ratio": candidate.success_ratio,
                "experience_years": candidate.experience_years,
                "machine_type": candidate.service.machine_type,
                "quote": quote.present(),
            }
        )
    return {"service_id": service_id, "vendors": vendors, "count": len(vendors)}
