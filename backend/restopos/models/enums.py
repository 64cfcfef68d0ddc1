from __future__ import annotations

from enum import Enum

from ..extensions import db


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINE_IN = "dine-in"


class OrderSource(str, Enum):
    ONLINE = "online"
    POS = "pos"
    PHONE = "phone"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    JAZZCASH = "jazzcash"
    SPLIT = "split"  # order-level only; each leg records its own method


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    AWAITING_VERIFICATION = "awaiting_verification"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PaymentRecordStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"
    PENDING_VERIFICATION = "pending_verification"
    REJECTED = "rejected"


class PaymentKind(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class SessionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PricingModel(str, Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class TableStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"


class ActorRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    CUSTOMER = "customer"


# Tender methods a single payment record can carry
TENDER_METHODS = (PaymentMethod.CASH, PaymentMethod.CARD, PaymentMethod.JAZZCASH)


def enum_type(enum_cls: type[Enum], name: str) -> db.Enum:
    """Closed-set string column: stored as the enum value, guarded by a CHECK constraint."""
    return db.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )
