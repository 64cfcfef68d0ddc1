# Overview: Delivery fee calculation and per-branch delivery pricing configuration.

"""
Delivery Fee Calculator

WHY: Delivery orders carry a fee computed from branch configuration, the
order subtotal and (for distance pricing) the delivery distance.

RULES (evaluated in this order):
1. No active config for the branch -> default static fee (logged)
2. subtotal >= free_delivery_threshold -> free
3. STATIC  -> static_charge
4. DYNAMIC -> base_charge + per_km_charge * distance (distance required,
   rejected beyond max_distance_km)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..errors import DistanceRequired, InvalidAmount, InvalidDeliveryConfig, OutOfDeliveryRange
from ..extensions import db
from ..models import DeliveryChargeConfig, PricingModel
from ..money import MoneyInput, to_cents, from_cents, multiply, format_money


# Branch defaults when a config row is first created without explicit values
DEFAULT_BASE_CHARGE = "50.00"
DEFAULT_PER_KM_CHARGE = "20.00"
DEFAULT_MAX_DISTANCE_KM = "15"
DEFAULT_FREE_DELIVERY_THRESHOLD = "1500.00"


@dataclass(frozen=True)
class DeliveryFeeResult:
    fee_cents: int
    free_delivery: bool = False
    distance_km: Decimal | None = None
    pricing_model: PricingModel = PricingModel.STATIC
    used_default: bool = False

    @property
    def fee(self) -> Decimal:
        return from_cents(self.fee_cents)

    def to_dict(self) -> dict:
        return {
            "delivery_charge": str(self.fee),
            "free_delivery": self.free_delivery,
            "distance_km": str(self.distance_km) if self.distance_km is not None else None,
            "pricing_model": self.pricing_model.value,
            "used_default": self.used_default,
        }


def _parse_distance(distance_km) -> Decimal | None:
    if distance_km is None or distance_km == "":
        return None
    try:
        dist = Decimal(str(distance_km)) if isinstance(distance_km, float) else Decimal(distance_km)
    except (InvalidOperation, TypeError, ValueError):
        raise DistanceRequired(f"'{distance_km}' is not a valid distance", field="distance_km")
    if not dist.is_finite() or dist < 0:
        raise DistanceRequired("Delivery distance must be a non-negative number", field="distance_km")
    return dist


def get_delivery_config(branch_id: int) -> DeliveryChargeConfig | None:
    return db.session.query(DeliveryChargeConfig).filter_by(branch_id=branch_id).first()


def _default_fee_cents() -> int:
    return to_cents(current_app.config.get("DEFAULT_DELIVERY_CHARGE", "50.00"), field="DEFAULT_DELIVERY_CHARGE")


def calculate_delivery_fee(
    branch_id: int,
    subtotal: MoneyInput,
    distance_km=None,
) -> DeliveryFeeResult:
    """
    Compute the delivery fee for an order.

    Args:
        branch_id: Branch fulfilling the delivery
        subtotal: Order subtotal (before discount), used for free delivery
        distance_km: Distance in km; required for DYNAMIC pricing

    Raises:
        DistanceRequired: DYNAMIC pricing without a distance
        OutOfDeliveryRange: distance beyond the branch's max_distance_km
    """
    subtotal_cents = to_cents(subtotal, field="subtotal")
    distance = _parse_distance(distance_km)

    config = get_delivery_config(branch_id)
    if config is None or not config.is_active:
        fee_cents = _default_fee_cents()
        current_app.logger.warning(
            "No active delivery config for branch %s; charging default fee %s",
            branch_id, format_money(fee_cents),
        )
        return DeliveryFeeResult(fee_cents=fee_cents, distance_km=distance, used_default=True)

    threshold = config.free_delivery_threshold_cents
    if threshold is not None and subtotal_cents >= threshold:
        return DeliveryFeeResult(
            fee_cents=0,
            free_delivery=True,
            distance_km=distance,
            pricing_model=config.pricing_model,
        )

    if config.pricing_model == PricingModel.STATIC:
        return DeliveryFeeResult(
            fee_cents=config.static_charge_cents,
            distance_km=distance,
            pricing_model=PricingModel.STATIC,
        )

    if distance is None:
        raise DistanceRequired(field="distance_km")

    if config.max_distance_km is not None and distance > Decimal(config.max_distance_km):
        raise OutOfDeliveryRange(
            f"Delivery distance {distance} km exceeds the {config.max_distance_km} km limit",
            field="distance_km",
            details={"max_distance_km": str(config.max_distance_km), "distance_km": str(distance)},
        )

    fee_cents = config.base_charge_cents + multiply(config.per_km_charge_cents, distance)
    return DeliveryFeeResult(
        fee_cents=fee_cents,
        distance_km=distance,
        pricing_model=PricingModel.DYNAMIC,
    )


# =============================================================================
# CONFIGURATION
# =============================================================================

def _money_field(data: dict, key: str) -> int | None:
    if key not in data:
        return None
    try:
        cents = to_cents(data[key], field=key)
    except InvalidAmount as exc:
        raise InvalidDeliveryConfig(f"{key} must be a valid amount", field=key) from exc
    if cents < 0:
        raise InvalidDeliveryConfig(f"{key} cannot be negative", field=key)
    return cents


def upsert_delivery_config(branch_id: int, data: dict) -> DeliveryChargeConfig:
    """
    Create or update a branch's delivery pricing.

    Keys (all optional on update): pricing_model, static_charge, base_charge,
    per_km_charge, max_distance_km, free_delivery_threshold, is_active.
    Passing free_delivery_threshold / max_distance_km as null disables them.
    """
    config = get_delivery_config(branch_id)
    if config is None:
        config = DeliveryChargeConfig(
            branch_id=branch_id,
            pricing_model=PricingModel.STATIC,
            static_charge_cents=_default_fee_cents(),
            base_charge_cents=to_cents(DEFAULT_BASE_CHARGE),
            per_km_charge_cents=to_cents(DEFAULT_PER_KM_CHARGE),
            max_distance_km=Decimal(DEFAULT_MAX_DISTANCE_KM),
            free_delivery_threshold_cents=to_cents(DEFAULT_FREE_DELIVERY_THRESHOLD),
            is_active=True,
        )
        db.session.add(config)

    if "pricing_model" in data:
        try:
            config.pricing_model = PricingModel(data["pricing_model"])
        except ValueError:
            db.session.rollback()
            raise InvalidDeliveryConfig("pricing_model must be static or dynamic", field="pricing_model")

    try:
        for key, column in (
            ("static_charge", "static_charge_cents"),
            ("base_charge", "base_charge_cents"),
            ("per_km_charge", "per_km_charge_cents"),
        ):
            cents = _money_field(data, key)
            if cents is not None:
                setattr(config, column, cents)

        if "free_delivery_threshold" in data:
            config.free_delivery_threshold_cents = (
                None if data["free_delivery_threshold"] is None else _money_field(data, "free_delivery_threshold")
            )

        if "max_distance_km" in data:
            raw = data["max_distance_km"]
            if raw is None:
                config.max_distance_km = None
            else:
                dist = _parse_distance(raw)
                if dist is None or dist <= 0:
                    raise InvalidDeliveryConfig("max_distance_km must be greater than zero", field="max_distance_km")
                config.max_distance_km = dist
    except (InvalidDeliveryConfig, DistanceRequired) as exc:
        db.session.rollback()
        if isinstance(exc, DistanceRequired):
            raise InvalidDeliveryConfig(exc.message, field="max_distance_km") from exc
        raise

    if "is_active" in data:
        config.is_active = bool(data["is_active"])

    db.session.commit()
    current_app.logger.info("Delivery config updated for branch %s (%s)", branch_id, config.pricing_model.value)
    return config
