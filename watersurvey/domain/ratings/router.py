"""Rating routers - customers rate completed surveys, anyone can read a vendor's ratings"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_customer
from ...database import get_db
from ..bookings.schemas import ActionResponse
from .schemas import RatingCreate, RatingResponse, VendorRatingsResponse
from .service import RatingService

router = APIRouter(prefix="/ratings", tags=["Ratings"])


def get_rating_service(db: Session = Depends(get_db)) -> RatingService:
    """Dependency injection for RatingService"""
    return RatingService(db)


@router.post("/bookings/{booking_id}", response_model=ActionResponse, status_code=201)
async def rate_booking(
    booking_id: int,
    body: RatingCreate,
    customer: Actor = Depends(get_current_customer),
    service: RatingService = Depends(get_rating_service),
):
    rating = service.submit_rating(
        customer.id, booking_id, body.model_dump(exclude={"review"}), body.review
    )
    return ActionResponse(message="Thank you for your rating", data=RatingResponse.model_validate(rating))


@router.get("/vendors/{vendor_id}", response_model=VendorRatingsResponse)
async def list_vendor_ratings(
    vendor_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    service: RatingService = Depends(get_rating_service),
):
    vendor, ratings = service.list_vendor_ratings(vendor_id, skip=skip, limit=limit)
    if vendor is None:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return VendorRatingsResponse(
        vendor_id=vendor.id,
        average_rating=vendor.average_rating or 0,
        total_ratings=vendor.total_ratings or 0,
        success_ratio=vendor.success_ratio or 0,
        ratings=[RatingResponse.model_validate(r) for r in ratings],
    )
