"""Pricing settings - platform_settings rows override the environment defaults"""

import logging

from sqlalchemy.orm import Session

from ...config import (
    ADVANCE_RATIO,
    BASE_RADIUS_KM,
    GST_PERCENTAGE,
    PLATFORM_FEE_PERCENTAGE,
    TRAVEL_CHARGE_PER_KM,
    VENDOR_GST_PERCENTAGE,
)
from ...models import PlatformSetting
from .calculator import PricingSettings

logger = logging.getLogger(__name__)

SETTING_KEYS = ("TRAVEL_CHARGE_PER_KM", "BASE_RADIUS_KM", "GST_PERCENTAGE")


def _as_float(raw, default: float, key: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Invalid value for setting {key}: {raw!r}, using default {default}")
        return default


def load_pricing_settings(db: Session) -> PricingSettings:
    rows = db.query(PlatformSetting).filter(PlatformSetting.key.in_(SETTING_KEYS)).all()
    values = {row.key: row.value for row in rows}

    per_km = TRAVEL_CHARGE_PER_KM
    if "TRAVEL_CHARGE_PER_KM" in values:
        per_km = _as_float(values["TRAVEL_CHARGE_PER_KM"], per_km, "TRAVEL_CHARGE_PER_KM")
    radius = BASE_RADIUS_KM
    if "BASE_RADIUS_KM" in values:
        radius = _as_float(values["BASE_RADIUS_KM"], radius, "BASE_RADIUS_KM")
    gst = GST_PERCENTAGE
    if "GST_PERCENTAGE" in values:
        gst = _as_float(values["GST_PERCENTAGE"], gst, "GST_PERCENTAGE")

    return PricingSettings(
        base_radius_km=radius,
        per_km_rate=per_km,
        tax_rate=gst / 100,
        advance_ratio=ADVANCE_RATIO,
        platform_fee_rate=PLATFORM_FEE_PERCENTAGE / 100,
        vendor_gst_rate=VENDOR_GST_PERCENTAGE / 100,
    )
