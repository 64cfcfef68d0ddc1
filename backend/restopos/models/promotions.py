from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z, utcnow
from .enums import DiscountType, enum_type


class PromoCode(db.Model):
    """
    Customer-redeemable discount code.

    Can be valid at every branch (branch_id=NULL) or a single branch.
    discount_value holds an amount for FIXED and a percentage (0-100, two
    decimals) for PERCENTAGE.

    INVARIANT: usage_count never exceeds usage_limit (guarded by a CHECK
    constraint and the conditional increment in discount_service).
    """
    __tablename__ = "promo_codes"
    __table_args__ = (
        db.CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promo_codes_usage_within_limit",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    discount_type = db.Column(enum_type(DiscountType, "promo_discount_type"), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)

    min_order_cents = db.Column(db.Integer, nullable=False, default=0)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    per_user_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    valid_until = db.Column(db.DateTime, nullable=True)

    branch_id = db.Column(db.Integer, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "min_order_amount": str(from_cents(self.min_order_cents)),
            "max_discount_amount": (
                str(from_cents(self.max_discount_cents)) if self.max_discount_cents is not None else None
            ),
            "usage_limit": self.usage_limit,
            "per_user_limit": self.per_user_limit,
            "usage_count": self.usage_count,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "branch_id": self.branch_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PromoCodeRedemption(db.Model):
    """One successful redemption; backs per-user limits and the usage audit."""
    __tablename__ = "promo_code_redemptions"
    __table_args__ = (
        db.Index("ix_promo_redemptions_promo_user", "promo_code_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey("promo_codes.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    branch_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    discount_cents = db.Column(db.Integer, nullable=False)
    redeemed_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    promo_code = db.relationship("PromoCode", backref=db.backref("redemptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "promo_code_id": self.promo_code_id,
            "user_id": self.user_id,
            "branch_id": self.branch_id,
            "order_id": self.order_id,
            "discount": str(from_cents(self.discount_cents)),
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
