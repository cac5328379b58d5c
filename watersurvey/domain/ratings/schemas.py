"""Rating domain schemas"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RatingCreate(BaseModel):
    accuracy: int = Field(..., ge=1, le=5)
    professionalism: int = Field(..., ge=1, le=5)
    behavior: int = Field(..., ge=1, le=5)
    visit_timing: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    vendor_id: int
    accuracy: int
    professionalism: int
    behavior: int
    visit_timing: int
    overall: float
    review: Optional[str] = None
    is_success: Optional[bool] = None
    created_at: Optional[datetime] = None


class VendorRatingsResponse(BaseModel):
    vendor_id: int
    average_rating: float
    total_ratings: int
    success_ratio: float
    ratings: List[RatingResponse]
