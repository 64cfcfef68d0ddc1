from decimal import Decimal

import pytest

from restopos.errors import DistanceRequired, InvalidDeliveryConfig, OutOfDeliveryRange
from restopos.models import PricingModel
from restopos.services import delivery_service


@pytest.fixture
def static_config(db_session, branch_id):
    return delivery_service.upsert_delivery_config(branch_id, {
        "pricing_model": "static",
        "static_charge": "50",
        "free_delivery_threshold": "1500",
    })


@pytest.fixture
def dynamic_config(db_session, branch_id):
    return delivery_service.upsert_delivery_config(branch_id, {
        "pricing_model": "dynamic",
        "base_charge": "50",
        "per_km_charge": "20",
        "max_distance_km": "15",
        "free_delivery_threshold": "1500",
    })


def test_missing_config_charges_default_fee(db_session, branch_id):
    result = delivery_service.calculate_delivery_fee(branch_id, "800.00")
    assert result.fee == Decimal("50.00")
    assert result.used_default is True
    assert result.free_delivery is False


def test_inactive_config_charges_default_fee(db_session, branch_id, static_config):
    delivery_service.upsert_delivery_config(branch_id, {"is_active": False, "static_charge": "90"})
    result = delivery_service.calculate_delivery_fee(branch_id, "800.00")
    assert result.fee == Decimal("50.00")
    assert result.used_default is True


@pytest.mark.parametrize("subtotal,fee", [
    ("1500.00", "0.00"),
    ("2500.00", "0.00"),
    ("1499.99", "50.00"),
    ("1499.00", "50.00"),
])
def test_static_pricing_with_free_threshold(branch_id, static_config, subtotal, fee):
    result = delivery_service.calculate_delivery_fee(branch_id, subtotal)
    assert result.fee == Decimal(fee)
    assert result.free_delivery is (fee == "0.00")
    assert result.pricing_model == PricingModel.STATIC


@pytest.mark.parametrize("distance,fee", [
    ("5", "150.00"),
    (5, "150.00"),
    ("2.5", "100.00"),
    ("0", "50.00"),
    ("15", "350.00"),
])
def test_dynamic_pricing(branch_id, dynamic_config, distance, fee):
    result = delivery_service.calculate_delivery_fee(branch_id, "600.00", distance)
    assert result.fee == Decimal(fee)
    assert result.pricing_model == PricingModel.DYNAMIC


def test_dynamic_pricing_needs_distance(branch_id, dynamic_config):
    with pytest.raises(DistanceRequired):
        delivery_service.calculate_delivery_fee(branch_id, "600.00")


def test_dynamic_pricing_beyond_max_distance(branch_id, dynamic_config):
    with pytest.raises(OutOfDeliveryRange) as exc:
        delivery_service.calculate_delivery_fee(branch_id, "600.00", "15.5")
    assert exc.value.details["max_distance_km"] == "15.00"


def test_free_threshold_applies_before_distance(branch_id, dynamic_config):
    result = delivery_service.calculate_delivery_fee(branch_id, "1500.00")
    assert result.fee_cents == 0
    assert result.free_delivery is True


def test_negative_distance_rejected(branch_id, dynamic_config):
    with pytest.raises(DistanceRequired):
        delivery_service.calculate_delivery_fee(branch_id, "600.00", "-1")


def test_new_config_gets_branch_defaults(db_session, branch_id):
    config = delivery_service.upsert_delivery_config(branch_id, {})
    assert config.pricing_model == PricingModel.STATIC
    assert config.static_charge_cents == 5000
    assert config.base_charge_cents == 5000
    assert config.per_km_charge_cents == 2000
    assert config.max_distance_km == Decimal("15")
    assert config.free_delivery_threshold_cents == 150000


def test_threshold_can_be_disabled(branch_id, static_config):
    delivery_service.upsert_delivery_config(branch_id, {"free_delivery_threshold": None})
    assert delivery_service.calculate_delivery_fee(branch_id, "5000.00").fee == Decimal("50.00")


@pytest.mark.parametrize("data", [
    {"pricing_model": "flat"},
    {"static_charge": "-1"},
    {"per_km_charge": "abc"},
    {"max_distance_km": "0"},
    {"max_distance_km": "far"},
])
def test_invalid_config_rejected(db_session, branch_id, data):
    with pytest.raises(InvalidDeliveryConfig):
        delivery_service.upsert_delivery_config(branch_id, data)
    assert delivery_service.get_delivery_config(branch_id) is None
