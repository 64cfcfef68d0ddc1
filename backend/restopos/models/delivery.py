from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z, utcnow
from .enums import PricingModel, enum_type


class DeliveryChargeConfig(db.Model):
    """
    Per-branch delivery pricing.

    STATIC:  flat static_charge
    DYNAMIC: base_charge + per_km_charge * distance, up to max_distance_km
    Orders at or above free_delivery_threshold deliver free under either model.
    """
    __tablename__ = "delivery_charge_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, nullable=False, unique=True)

    pricing_model = db.Column(enum_type(PricingModel, "delivery_pricing_model"), nullable=False, default=PricingModel.STATIC)
    static_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    base_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    per_km_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    max_distance_km = db.Column(db.Numeric(8, 2), nullable=True)
    free_delivery_threshold_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "pricing_model": self.pricing_model.value,
            "static_charge": str(from_cents(self.static_charge_cents)),
            "base_charge": str(from_cents(self.base_charge_cents)),
            "per_km_charge": str(from_cents(self.per_km_charge_cents)),
            "max_distance_km": str(self.max_distance_km) if self.max_distance_km is not None else None,
            "free_delivery_threshold": (
                str(from_cents(self.free_delivery_threshold_cents))
                if self.free_delivery_threshold_cents is not None
                else None
            ),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
