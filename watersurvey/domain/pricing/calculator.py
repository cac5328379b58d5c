"""
Pricing calculator

Pure functions: distance, travel surcharge, tax, customer split and vendor
payout. Amounts are carried at full precision; present() rounds to two decimals
for display only, so recomputing a quote on reassignment never compounds
rounding error.
"""

import math
from dataclasses import asdict, dataclass, replace
from typing import Optional

EARTH_RADIUS_KM = 6371


@dataclass(frozen=True)
class PricingSettings:
    base_radius_km: float = 30
    per_km_rate: float = 10
    tax_rate: float = 0.18
    advance_ratio: float = 0.4
    platform_fee_rate: float = 0.15
    vendor_gst_rate: float = 0.18


@dataclass(frozen=True)
class Quote:
    """Customer-facing price for one booking. Swapped as a whole, never patched."""

    base_service_fee: float
    distance_km: Optional[float]
    travel_charges: float
    subtotal: float
    gst_amount: float
    total_amount: float
    advance_amount: float
    remaining_amount: float

    def with_advance(self, advance_paid: float) -> "Quote":
        """Re-split the total around an advance that has already been collected"""
        return replace(
            self, advance_amount=advance_paid, remaining_amount=self.total_amount - advance_paid
        )

    def as_columns(self) -> dict:
        return asdict(self)

    def present(self) -> dict:
        return {
            key: (present(value) if isinstance(value, float) else value)
            for key, value in asdict(self).items()
        }


@dataclass(frozen=True)
class VendorPayout:
    base_amount: float
    gst: float
    platform_fee: float
    total: float
    site_visit_payment: float
    report_upload_payment: float

    def as_columns(self) -> dict:
        return {
            "payout_base_amount": self.base_amount,
            "payout_gst": self.gst,
            "payout_platform_fee": self.platform_fee,
            "payout_total": self.total,
            "site_visit_amount": self.site_visit_payment,
            "report_upload_amount": self.report_upload_payment,
        }


def present(amount: Optional[float]) -> Optional[float]:
    """Round an amount to two decimals for responses"""
    if amount is None:
        return None
    return round(amount, 2)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(origin, destination) -> Optional[float]:
    """
    Distance between two (lat, lng) pairs, or None when either side has no
    coordinates.
    """
    if not origin or not destination:
        return None
    if None in (origin[0], origin[1], destination[0], destination[1]):
        return None
    return haversine_km(origin[0], origin[1], destination[0], destination[1])


def travel_surcharge(distance_km: Optional[float], settings: PricingSettings) -> float:
    if distance_km is None or distance_km <= settings.base_radius_km:
        return 0.0
    return (distance_km - settings.base_radius_km) * settings.per_km_rate


def calculate_quote(
    base_price: float, distance_km: Optional[float], settings: PricingSettings
) -> Quote:
    travel = travel_surcharge(distance_km, settings)
    subtotal = base_price + travel
    tax = subtotal * settings.tax_rate
    total = subtotal + tax
    advance = total * settings.advance_ratio
    return Quote(
        base_service_fee=base_price,
        distance_km=distance_km,
        travel_charges=travel,
        subtotal=subtotal,
        gst_amount=tax,
        total_amount=total,
        advance_amount=advance,
        remaining_amount=total - advance,
    )


def compute_vendor_share(
    base_service_fee: float, travel_charges: float, settings: PricingSettings
) -> VendorPayout:
    """Vendor earnings: platform fee deducted, GST added, split into two equal halves"""
    base_amount = base_service_fee + travel_charges
    gst = base_amount * settings.vendor_gst_rate
    platform_fee = base_amount * settings.platform_fee_rate
    total = base_amount - platform_fee + gst
    return VendorPayout(
        base_amount=base_amount,
        gst=gst,
        platform_fee=platform_fee,
        total=total,
        site_visit_payment=total / 2,
        report_upload_payment=total / 2,
    )
