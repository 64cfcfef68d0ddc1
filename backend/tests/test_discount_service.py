from decimal import Decimal

import pytest

from restopos.errors import (
    InvalidDiscount,
    InvalidPromoCode,
    PromoBranchMismatch,
    PromoExpired,
    PromoMinOrderNotMet,
    PromoNotFound,
    PromoNotYetValid,
    PromoPerUserLimitReached,
    PromoUsageLimitReached,
)
from restopos.models import PromoCode, PromoCodeRedemption
from restopos.services import discount_service


# =============================================================================
# MANUAL DISCOUNTS
# =============================================================================

def test_manual_percentage_discount():
    result = discount_service.apply_manual_discount("1000.00", "percentage", "10")
    assert result.discount_amount == Decimal("100.00")
    assert result.reason == "Manual discount (10%)"
    assert result.promo_code_id is None


def test_manual_fixed_discount_capped_at_subtotal():
    result = discount_service.apply_manual_discount("1000.00", "fixed", "1500", reason="Complaint")
    assert result.discount_cents == 100000
    assert result.reason == "Complaint"


def test_manual_full_percentage_zeroes_subtotal():
    result = discount_service.apply_manual_discount("845.50", "percentage", "100")
    assert result.discount_amount == Decimal("845.50")


@pytest.mark.parametrize("discount_type,value", [
    ("percentage", "0"),
    ("fixed", "-5"),
    ("percentage", "150"),
    ("percentage", "NaN"),
    ("bogus", "10"),
    ("fixed", None),
])
def test_manual_discount_rejects_bad_input(discount_type, value):
    with pytest.raises(InvalidDiscount):
        discount_service.apply_manual_discount("1000.00", discount_type, value)


@pytest.mark.parametrize("discount_type,value", [
    ("fixed", "0.004"),
    ("percentage", "0.01"),
])
def test_manual_discount_rounding_to_zero_rejected(discount_type, value):
    with pytest.raises(InvalidDiscount) as exc:
        discount_service.apply_manual_discount("10.00", discount_type, value)
    assert exc.value.field == "value"


# =============================================================================
# PROMO REDEMPTION
# =============================================================================

def test_redeem_percentage_promo(db_session, make_promo, branch_id):
    promo = make_promo()

    result = discount_service.redeem_promo_code("save10", "2000.00", branch_id, user_id=7)

    assert result.discount_amount == Decimal("200.00")
    assert result.promo_code_id == promo.id
    assert result.redemption_id is not None
    db_session.refresh(promo)
    assert promo.usage_count == 1
    assert db_session.query(PromoCodeRedemption).filter_by(promo_code_id=promo.id, user_id=7).count() == 1


def test_promo_max_discount_cap(db_session, make_promo, branch_id):
    make_promo("HALF", discount_value="50", max_discount_amount="300")
    result = discount_service.redeem_promo_code("HALF", "2000.00", branch_id)
    assert result.discount_amount == Decimal("300.00")


def test_fixed_promo_never_exceeds_subtotal(db_session, make_promo, branch_id):
    make_promo("FLAT500", discount_type="fixed", discount_value="500")
    result = discount_service.redeem_promo_code("FLAT500", "350.00", branch_id)
    assert result.discount_amount == Decimal("350.00")


def test_preview_does_not_consume_usage(db_session, make_promo, branch_id):
    promo = make_promo(usage_limit=1)

    result = discount_service.preview_promo_code("SAVE10", "1000.00", branch_id)

    assert result.discount_amount == Decimal("100.00")
    assert result.redemption_id is None
    db_session.refresh(promo)
    assert promo.usage_count == 0


def test_unknown_and_inactive_codes(db_session, make_promo, branch_id):
    with pytest.raises(PromoNotFound):
        discount_service.redeem_promo_code("NOPE", "1000.00", branch_id)

    promo = make_promo()
    discount_service.deactivate_promo_code(promo.id)
    with pytest.raises(PromoNotFound):
        discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id)


def test_expired_and_not_yet_valid(db_session, make_promo, branch_id):
    make_promo("OLD", valid_from="2019-01-01T00:00:00Z", valid_until="2020-01-01T00:00:00Z")
    make_promo("FUTURE", valid_from="2999-01-01T00:00:00Z")

    with pytest.raises(PromoExpired):
        discount_service.redeem_promo_code("OLD", "1000.00", branch_id)
    with pytest.raises(PromoNotYetValid):
        discount_service.redeem_promo_code("FUTURE", "1000.00", branch_id)


def test_branch_scope(db_session, make_promo, branch_id):
    make_promo("BRANCH2", branch_id=2)
    with pytest.raises(PromoBranchMismatch):
        discount_service.redeem_promo_code("BRANCH2", "1000.00", branch_id)
    assert discount_service.redeem_promo_code("BRANCH2", "1000.00", 2).discount_cents == 10000


def test_minimum_order(db_session, make_promo, branch_id):
    make_promo(min_order_amount="500")
    with pytest.raises(PromoMinOrderNotMet) as exc:
        discount_service.redeem_promo_code("SAVE10", "499.99", branch_id)
    assert exc.value.details["min_order_amount"] == "500.00"
    assert discount_service.redeem_promo_code("SAVE10", "500.00", branch_id).discount_cents == 5000


def test_validation_order_first_failure_wins(db_session, make_promo, branch_id):
    # Expired, wrong branch and below minimum: expiry is reported
    make_promo(
        "MANY",
        valid_from="2019-01-01T00:00:00Z",
        valid_until="2020-01-01T00:00:00Z",
        branch_id=2,
        min_order_amount="5000",
    )
    with pytest.raises(PromoExpired):
        discount_service.redeem_promo_code("MANY", "10.00", branch_id)


def test_exhausted_promo_fails_without_touching_usage(db_session, make_promo, branch_id):
    promo = make_promo(usage_limit=1)
    discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id, user_id=1)

    for user_id in (2, 3):
        with pytest.raises(PromoUsageLimitReached):
            discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id, user_id=user_id)

    db_session.refresh(promo)
    assert promo.usage_count == 1
    assert db_session.query(PromoCodeRedemption).count() == 1


def test_per_user_limit(db_session, make_promo, branch_id):
    promo = make_promo(per_user_limit=1)
    discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id, user_id=7)

    with pytest.raises(PromoPerUserLimitReached):
        discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id, user_id=7)

    # Another customer is unaffected
    discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id, user_id=8)
    db_session.refresh(promo)
    assert promo.usage_count == 2


def test_release_redemption_gives_back_the_use(db_session, make_promo, branch_id):
    promo = make_promo(usage_limit=1)
    result = discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id)

    discount_service.release_redemption(result.redemption_id)

    db_session.refresh(promo)
    assert promo.usage_count == 0
    assert db_session.get(PromoCodeRedemption, result.redemption_id) is None
    assert discount_service.redeem_promo_code("SAVE10", "1000.00", branch_id).discount_cents == 10000


# =============================================================================
# ADMINISTRATION
# =============================================================================

def test_create_promo_normalizes_code(db_session, make_promo):
    promo = make_promo("  summer25 ", discount_value="25")
    assert promo.code == "SUMMER25"
    assert db_session.query(PromoCode).filter_by(code="SUMMER25").count() == 1


@pytest.mark.parametrize("fields", [
    {"discount_value": "150"},
    {"discount_value": "0"},
    {"discount_type": "bogo"},
    {"usage_limit": 0},
    {"valid_from": "2030-01-01T00:00:00Z", "valid_until": "2029-01-01T00:00:00Z"},
])
def test_create_promo_validation(db_session, make_promo, fields):
    with pytest.raises(InvalidPromoCode):
        make_promo("BAD", **fields)


def test_duplicate_code_rejected(db_session, make_promo):
    make_promo()
    with pytest.raises(InvalidPromoCode):
        make_promo("save10")


def test_update_and_list_promo_codes(db_session, make_promo, branch_id):
    everywhere = make_promo("ALL")
    make_promo("OTHER", branch_id=2)
    discount_service.update_promo_code(everywhere.id, {"description": "Weekend deal", "usage_limit": 5})

    codes = {p.code for p in discount_service.list_promo_codes(branch_id)}
    assert codes == {"ALL"}
    assert discount_service.get_promo_code_by_code("all").usage_limit == 5
