"""Vendor candidate search and ranking for (re)assignment"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ...models import Service, Vendor
from ..pricing.calculator import distance_between


@dataclass(frozen=True)
class Candidate:
    vendor_id: int
    service_id: int
    average_rating: float
    success_ratio: float
    experience_years: int
    distance_km: Optional[float]
    price: float
    vendor: Optional[Vendor] = None
    service: Optional[Service] = None


def rank_key(candidate: Candidate):
    """rating desc, success ratio desc, experience desc, distance asc (unknown distance last)"""
    return (
        -(candidate.average_rating or 0),
        -(candidate.success_ratio or 0),
        -(candidate.experience_years or 0),
        candidate.distance_km is None,
        candidate.distance_km or 0,
    )


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=rank_key)


def find_equivalent_services(
    db: Session, name: str, category: str, excluded_vendor_ids: Iterable[int]
) -> List[Service]:
    """Approved, active services with the same name and category from active vendors"""
    query = (
        db.query(Service)
        .join(Vendor, Service.vendor_id == Vendor.id)
        .filter(
            Service.name == name,
            Service.category == category,
            Service.status == "APPROVED",
            Service.is_active.is_(True),
            Vendor.is_active.is_(True),
            Vendor.is_approved.is_(True),
        )
    )
    excluded = list(excluded_vendor_ids)
    if excluded:
        query = query.filter(Service.vendor_id.notin_(excluded))
    return query.all()


def build_candidates(services: Iterable[Service], latitude, longitude) -> List[Candidate]:
    candidates = []
    for service in services:
        vendor = service.vendor
        candidates.append(
            Candidate(
                vendor_id=vendor.id,
                service_id=service.id,
                average_rating=vendor.average_rating or 0,
                success_ratio=vendor.success_ratio or 0,
                experience_years=vendor.experience_years or 0,
                distance_km=distance_between((vendor.latitude, vendor.longitude), (latitude, longitude)),
                price=service.price,
                vendor=vendor,
                service=service,
            )
        )
    return candidates
