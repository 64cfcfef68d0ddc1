"""
Discount Engine

WHY: Every discount on an order comes from exactly one of two places: a
staff member applying a manual discount at the till, or a customer redeeming
a promo code. Both produce a DiscountResult the order ledger consumes.

DESIGN PRINCIPLES:
- Discounts never exceed the subtotal (an order total is never negative)
- Promo validation runs in a fixed order; the first failing check wins
- Redemption checks and increments usage in one atomic statement, so two
  concurrent redemptions cannot both take the last use
- Failed redemptions never touch usage counters
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import (
    InvalidDiscount,
    InvalidPromoCode,
    PromoNotFound,
    PromoExpired,
    PromoNotYetValid,
    PromoBranchMismatch,
    PromoMinOrderNotMet,
    PromoUsageLimitReached,
    PromoPerUserLimitReached,
)
from ..extensions import db
from ..models import PromoCode, PromoCodeRedemption, DiscountType
from ..money import MoneyInput, to_cents, to_decimal, from_cents, percent_of, format_money
from ..time_utils import utcnow, parse_iso_datetime
from .concurrency import run_with_retry


@dataclass(frozen=True)
class DiscountResult:
    """Discount to apply to an order, as consumed by order_service.create_order."""
    discount_cents: int
    reason: str | None = None
    promo_code_id: int | None = None
    redemption_id: int | None = None

    @property
    def discount_amount(self) -> Decimal:
        return from_cents(self.discount_cents)

    def to_dict(self) -> dict:
        return {
            "discount_amount": str(self.discount_amount),
            "reason": self.reason,
            "promo_code_id": self.promo_code_id,
            "redemption_id": self.redemption_id,
        }


NO_DISCOUNT = DiscountResult(discount_cents=0)


def _parse_discount_type(discount_type) -> DiscountType:
    try:
        return DiscountType(discount_type)
    except ValueError:
        raise InvalidDiscount(
            f"Unknown discount type '{discount_type}'. Must be one of: percentage, fixed",
            field="discount_type",
        )


def _parse_value(value, *, field: str = "value") -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidDiscount("Discount value is required", field=field)
    try:
        dec = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidDiscount(f"'{value}' is not a valid discount value", field=field)
    if not dec.is_finite():
        raise InvalidDiscount("Discount value must be finite", field=field)
    return dec


def _compute_discount_cents(subtotal_cents: int, discount_type: DiscountType, value: Decimal) -> int:
    if discount_type == DiscountType.PERCENTAGE:
        return percent_of(subtotal_cents, value)
    return to_cents(value, field="value")


# =============================================================================
# MANUAL DISCOUNTS
# =============================================================================

def apply_manual_discount(
    subtotal: MoneyInput,
    discount_type: str,
    value: MoneyInput,
    reason: str | None = None,
) -> DiscountResult:
    """
    Compute a staff-applied discount.

    Args:
        subtotal: Order subtotal
        discount_type: "percentage" or "fixed"
        value: Percentage in (0, 100] or a fixed amount > 0
        reason: Free-text reason kept on the order for audit

    Raises:
        InvalidDiscount: value <= 0, percentage above 100, non-finite input,
            or a discount that rounds to zero cents
    """
    subtotal_cents = to_cents(subtotal, field="subtotal")
    dtype = _parse_discount_type(discount_type)
    dec = _parse_value(value)

    if dec <= 0:
        raise InvalidDiscount("Discount value must be greater than zero", field="value")

    if dtype == DiscountType.PERCENTAGE and dec > 100:
        raise InvalidDiscount("Percentage discount cannot exceed 100", field="value")

    discount_cents = min(_compute_discount_cents(subtotal_cents, dtype, dec), max(subtotal_cents, 0))
    if discount_cents <= 0:
        raise InvalidDiscount("Discount amounts to nothing on this subtotal", field="value")

    if reason is None:
        reason = f"Manual discount ({dec}%)" if dtype == DiscountType.PERCENTAGE else "Manual discount"

    return DiscountResult(discount_cents=discount_cents, reason=reason)


# =============================================================================
# PROMO CODE VALIDATION
# =============================================================================

def _normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def get_promo_code_by_code(code: str) -> PromoCode | None:
    return db.session.query(PromoCode).filter_by(code=_normalize_code(code)).first()


def _user_redemption_count(promo_code_id: int, user_id: int) -> int:
    return (
        db.session.query(func.count(PromoCodeRedemption.id))
        .filter_by(promo_code_id=promo_code_id, user_id=user_id)
        .scalar()
        or 0
    )


def _validate_promo(promo: PromoCode | None, subtotal_cents: int, branch_id: int, user_id: int | None, now) -> None:
    """Eligibility checks, in order. First failure wins."""
    if promo is None or not promo.is_active:
        raise PromoNotFound(field="code")

    if promo.valid_from and now < promo.valid_from:
        raise PromoNotYetValid(field="code", details={"valid_from": promo.valid_from.isoformat()})

    if promo.valid_until and now > promo.valid_until:
        raise PromoExpired(field="code", details={"valid_until": promo.valid_until.isoformat()})

    if promo.branch_id is not None and promo.branch_id != branch_id:
        raise PromoBranchMismatch(field="branch_id")

    if subtotal_cents < (promo.min_order_cents or 0):
        raise PromoMinOrderNotMet(
            f"Minimum order for this code is {format_money(promo.min_order_cents)}",
            field="subtotal",
            details={"min_order_amount": str(from_cents(promo.min_order_cents))},
        )

    if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
        raise PromoUsageLimitReached(field="code")

    if promo.per_user_limit is not None and user_id is not None:
        if _user_redemption_count(promo.id, user_id) >= promo.per_user_limit:
            raise PromoPerUserLimitReached(field="code")


def _promo_discount_cents(promo: PromoCode, subtotal_cents: int) -> int:
    discount = _compute_discount_cents(subtotal_cents, promo.discount_type, Decimal(promo.discount_value))
    if promo.max_discount_cents is not None:
        discount = min(discount, promo.max_discount_cents)
    return max(0, min(discount, subtotal_cents))


def preview_promo_code(
    code: str,
    subtotal: MoneyInput,
    branch_id: int,
    user_id: int | None = None,
) -> DiscountResult:
    """Validate a code and compute its discount without redeeming it (cart display)."""
    subtotal_cents = to_cents(subtotal, field="subtotal")
    promo = get_promo_code_by_code(code)
    _validate_promo(promo, subtotal_cents, branch_id, user_id, utcnow())
    return DiscountResult(
        discount_cents=_promo_discount_cents(promo, subtotal_cents),
        reason=f"Promo code {promo.code}",
        promo_code_id=promo.id,
    )


def redeem_promo_code(
    code: str,
    subtotal: MoneyInput,
    branch_id: int,
    user_id: int | None = None,
) -> DiscountResult:
    """
    Redeem a promo code against a subtotal.

    Validation order (first failing check wins): exists and active, validity
    window, branch scope, minimum order, total usage limit, per-user limit.

    ATOMICITY: usage_count is incremented by a conditional UPDATE
    (usage_count < usage_limit) in the same transaction as the redemption
    row. If the UPDATE matches nothing, another redemption took the last use
    and this one fails with PromoUsageLimitReached without side effects.

    Returns:
        DiscountResult with promo_code_id and redemption_id set; the
        redemption is attached to the order by order_service.create_order.
    """
    subtotal_cents = to_cents(subtotal, field="subtotal")

    def _op():
        now = utcnow()
        promo = get_promo_code_by_code(code)
        _validate_promo(promo, subtotal_cents, branch_id, user_id, now)
        discount_cents = _promo_discount_cents(promo, subtotal_cents)

        stmt = (
            update(PromoCode)
            .where(PromoCode.id == promo.id, PromoCode.is_active.is_(True))
            .where(or_(PromoCode.usage_limit.is_(None), PromoCode.usage_count < PromoCode.usage_limit))
            .values(usage_count=PromoCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if not result.rowcount:
            db.session.rollback()
            raise PromoUsageLimitReached(field="code")

        # The increment holds the row lock now; recount per-user under it
        if promo.per_user_limit is not None and user_id is not None:
            if _user_redemption_count(promo.id, user_id) >= promo.per_user_limit:
                db.session.rollback()
                raise PromoPerUserLimitReached(field="code")

        redemption = PromoCodeRedemption(
            promo_code_id=promo.id,
            user_id=user_id,
            branch_id=branch_id,
            discount_cents=discount_cents,
            redeemed_at=now,
        )
        db.session.add(redemption)
        db.session.commit()

        current_app.logger.info(
            "Promo code %s redeemed (discount %s, branch %s, user %s)",
            promo.code, format_money(discount_cents), branch_id, user_id,
        )

        return DiscountResult(
            discount_cents=discount_cents,
            reason=f"Promo code {promo.code}",
            promo_code_id=promo.id,
            redemption_id=redemption.id,
        )

    return run_with_retry(_op)


def attach_redemption_to_order(redemption_id: int, order_id: int) -> None:
    """Link a redemption to the order it paid for. Caller commits."""
    redemption = db.session.get(PromoCodeRedemption, redemption_id)
    if redemption is None:
        raise InvalidDiscount(f"Promo redemption {redemption_id} not found", field="redemption_id")
    if redemption.order_id is not None and redemption.order_id != order_id:
        raise InvalidDiscount("Promo redemption already used by another order", field="redemption_id")
    redemption.order_id = order_id


def release_redemption(redemption_id: int) -> None:
    """
    Give back a redemption whose order was never created.

    Only unattached redemptions are released; the usage counter is
    decremented in the same transaction the row is removed.
    """
    def _op():
        redemption = db.session.get(PromoCodeRedemption, redemption_id)
        if redemption is None or redemption.order_id is not None:
            return
        db.session.execute(
            update(PromoCode)
            .where(PromoCode.id == redemption.promo_code_id, PromoCode.usage_count > 0)
            .values(usage_count=PromoCode.usage_count - 1)
            .execution_options(synchronize_session=False)
        )
        db.session.delete(redemption)
        db.session.commit()
        current_app.logger.info("Promo redemption %s released", redemption_id)

    run_with_retry(_op)


# =============================================================================
# PROMO CODE ADMINISTRATION
# =============================================================================

_PROMO_FIELDS = (
    "description", "discount_type", "discount_value", "min_order_amount", "max_discount_amount",
    "usage_limit", "per_user_limit", "valid_from", "valid_until", "branch_id", "is_active",
)


def _optional_limit(value, field: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise InvalidPromoCode(f"{field} must be an integer", field=field)
    if limit < 1:
        raise InvalidPromoCode(f"{field} must be at least 1", field=field)
    return limit


def _optional_datetime(value, field: str):
    if value in (None, ""):
        return None
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise InvalidPromoCode(f"{field} must be an ISO-8601 datetime", field=field)
    return value


def _apply_promo_fields(promo: PromoCode, data: dict) -> None:
    if "description" in data:
        promo.description = data["description"]

    if "discount_type" in data:
        try:
            promo.discount_type = DiscountType(data["discount_type"])
        except ValueError:
            raise InvalidPromoCode("discount_type must be percentage or fixed", field="discount_type")

    if "discount_value" in data:
        try:
            value = _parse_value(data["discount_value"], field="discount_value")
        except InvalidDiscount as exc:
            raise InvalidPromoCode(exc.message, field="discount_value")
        promo.discount_value = value

    if "min_order_amount" in data:
        promo.min_order_cents = to_cents(data["min_order_amount"] or 0, field="min_order_amount")

    if "max_discount_amount" in data:
        raw = data["max_discount_amount"]
        promo.max_discount_cents = None if raw in (None, "") else to_cents(raw, field="max_discount_amount")

    if "usage_limit" in data:
        promo.usage_limit = _optional_limit(data["usage_limit"], "usage_limit")

    if "per_user_limit" in data:
        promo.per_user_limit = _optional_limit(data["per_user_limit"], "per_user_limit")

    if "valid_from" in data:
        promo.valid_from = _optional_datetime(data["valid_from"], "valid_from") or utcnow()

    if "valid_until" in data:
        promo.valid_until = _optional_datetime(data["valid_until"], "valid_until")

    if "branch_id" in data:
        promo.branch_id = data["branch_id"]

    if "is_active" in data:
        promo.is_active = bool(data["is_active"])


def _check_promo(promo: PromoCode) -> None:
    value = Decimal(promo.discount_value)
    if value <= 0:
        raise InvalidPromoCode("discount_value must be greater than zero", field="discount_value")
    if promo.discount_type == DiscountType.PERCENTAGE and value > 100:
        raise InvalidPromoCode("Percentage discount cannot exceed 100", field="discount_value")
    if promo.min_order_cents < 0:
        raise InvalidPromoCode("min_order_amount cannot be negative", field="min_order_amount")
    if promo.max_discount_cents is not None and promo.max_discount_cents <= 0:
        raise InvalidPromoCode("max_discount_amount must be greater than zero", field="max_discount_amount")
    if promo.valid_until and promo.valid_from and promo.valid_until < promo.valid_from:
        raise InvalidPromoCode("valid_until must be after valid_from", field="valid_until")
    if promo.usage_limit is not None and promo.usage_count > promo.usage_limit:
        raise InvalidPromoCode("usage_limit is below the current usage count", field="usage_limit")


def create_promo_code(code: str, data: dict) -> PromoCode:
    """
    Create a promo code.

    Required keys: discount_type, discount_value. Everything else from
    _PROMO_FIELDS is optional.
    """
    normalized = _normalize_code(code)
    if not normalized:
        raise InvalidPromoCode("code is required", field="code")
    if get_promo_code_by_code(normalized):
        raise InvalidPromoCode(f"Promo code '{normalized}' already exists", field="code")
    for required in ("discount_type", "discount_value"):
        if required not in data:
            raise InvalidPromoCode(f"{required} is required", field=required)

    promo = PromoCode(code=normalized, usage_count=0, min_order_cents=0, valid_from=utcnow(), is_active=True)
    _apply_promo_fields(promo, {k: v for k, v in data.items() if k in _PROMO_FIELDS})
    _check_promo(promo)

    db.session.add(promo)
    db.session.commit()
    return promo


def update_promo_code(promo_id: int, data: dict) -> PromoCode:
    promo = db.session.get(PromoCode, promo_id)
    if promo is None:
        raise PromoNotFound(field="promo_id")

    _apply_promo_fields(promo, {k: v for k, v in data.items() if k in _PROMO_FIELDS})
    try:
        _check_promo(promo)
    except InvalidPromoCode:
        db.session.rollback()
        raise

    db.session.commit()
    return promo


def deactivate_promo_code(promo_id: int) -> PromoCode:
    return update_promo_code(promo_id, {"is_active": False})


def list_promo_codes(branch_id: int | None = None, active_only: bool = False) -> list[PromoCode]:
    q = db.session.query(PromoCode)
    if branch_id:
        q = q.filter((PromoCode.branch_id == branch_id) | (PromoCode.branch_id.is_(None)))
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(PromoCode.created_at.desc()).all()


def get_promo_redemptions(promo_code_id: int) -> list[PromoCodeRedemption]:
    return (
        db.session.query(PromoCodeRedemption)
        .filter_by(promo_code_id=promo_code_id)
        .order_by(PromoCodeRedemption.redeemed_at.desc())
        .all()
    )
