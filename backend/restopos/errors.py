# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors.

Every error carries a stable ``code`` and an optional ``field`` so the UI can
render a specific message ("discount exceeds order subtotal") instead of a
generic failure.

KINDS:
- validation:   bad input shape/range, rejected before any state change
- not_found:    referenced record does not exist
- business:     expected, recoverable rule violation the caller must handle
- consistency:  a late or out-of-order fact that must not touch committed records
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all expected failures raised by the services."""

    code = "DOMAIN_ERROR"
    kind = "business"
    http_status = 400
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None, *, field: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "kind": self.kind,
            "field": self.field,
            "details": self.details,
        }


class ValidationError(DomainError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    kind = "validation"
    http_status = 400


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    kind = "not_found"
    http_status = 404


class BusinessRuleError(DomainError):
    """409-level business rule conflict."""
    code = "BUSINESS_RULE"
    kind = "business"
    http_status = 409


class ConsistencyError(DomainError):
    code = "CONSISTENCY"
    kind = "consistency"
    http_status = 409


# =============================================================================
# VALIDATION
# =============================================================================

class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be a finite decimal number"


class InvalidDiscount(ValidationError):
    code = "INVALID_DISCOUNT"
    default_message = "Invalid discount"


class InvalidPromoCode(ValidationError):
    code = "INVALID_PROMO_CODE"
    default_message = "Invalid promo code definition"


class DistanceRequired(ValidationError):
    code = "DISTANCE_REQUIRED"
    default_message = "Delivery distance is required for distance-based pricing"


class InvalidDeliveryConfig(ValidationError):
    code = "INVALID_DELIVERY_CONFIG"
    default_message = "Invalid delivery charge configuration"


class InvalidOrder(ValidationError):
    code = "INVALID_ORDER"
    default_message = "Invalid order"


class InvalidPaymentMethod(ValidationError):
    code = "INVALID_PAYMENT_METHOD"
    default_message = "Invalid payment method"


# =============================================================================
# NOT FOUND
# =============================================================================

class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    default_message = "Order not found"


class PaymentNotFound(NotFoundError):
    code = "PAYMENT_NOT_FOUND"
    default_message = "Payment not found"


class SessionNotFound(NotFoundError):
    code = "SESSION_NOT_FOUND"
    default_message = "POS session not found"


class TableNotFound(NotFoundError):
    code = "TABLE_NOT_FOUND"
    default_message = "Table not found"


# =============================================================================
# PROMO CODES
# =============================================================================

class PromoError(BusinessRuleError):
    code = "PROMO_ERROR"
    http_status = 422


class PromoNotFound(PromoError):
    code = "PROMO_NOT_FOUND"
    http_status = 404
    default_message = "Promo code not found or inactive"


class PromoExpired(PromoError):
    code = "PROMO_EXPIRED"
    default_message = "Promo code has expired"


class PromoNotYetValid(PromoError):
    code = "PROMO_NOT_YET_VALID"
    default_message = "Promo code is not valid yet"


class PromoBranchMismatch(PromoError):
    code = "PROMO_BRANCH_MISMATCH"
    default_message = "Promo code is not valid at this branch"


class PromoMinOrderNotMet(PromoError):
    code = "PROMO_MIN_ORDER_NOT_MET"
    default_message = "Order subtotal is below the promo code minimum"


class PromoUsageLimitReached(PromoError):
    code = "PROMO_USAGE_LIMIT_REACHED"
    default_message = "Promo code usage limit reached"


class PromoPerUserLimitReached(PromoError):
    code = "PROMO_PER_USER_LIMIT_REACHED"
    default_message = "You have already used this promo code the maximum number of times"


# =============================================================================
# DELIVERY
# =============================================================================

class OutOfDeliveryRange(BusinessRuleError):
    code = "OUT_OF_DELIVERY_RANGE"
    http_status = 422
    default_message = "Address is outside the delivery range"


# =============================================================================
# ORDERS
# =============================================================================

class InvalidTransition(BusinessRuleError):
    code = "INVALID_TRANSITION"
    default_message = "Order status transition not allowed"


class TransitionForbidden(BusinessRuleError):
    code = "TRANSITION_FORBIDDEN"
    http_status = 403
    default_message = "Only staff can change order status"


class TableUnavailable(BusinessRuleError):
    code = "TABLE_UNAVAILABLE"
    default_message = "Table is not available"


# =============================================================================
# PAYMENTS
# =============================================================================

class OrderNotPayable(BusinessRuleError):
    code = "ORDER_NOT_PAYABLE"
    default_message = "Order cannot accept payments"


class AmountMismatch(BusinessRuleError):
    code = "AMOUNT_MISMATCH"
    http_status = 422
    default_message = "Payment amount must equal the outstanding balance"


class SplitAmountMismatch(BusinessRuleError):
    code = "SPLIT_AMOUNT_MISMATCH"
    http_status = 422
    default_message = "Split payment legs must add up to the order total"


class RefundExceedsOriginal(BusinessRuleError):
    code = "REFUND_EXCEEDS_ORIGINAL"
    http_status = 422
    default_message = "Refund exceeds the amount still refundable on this payment"


class PaymentNotVerifiable(BusinessRuleError):
    code = "PAYMENT_NOT_VERIFIABLE"
    default_message = "Payment is not awaiting verification"


# =============================================================================
# POS SESSIONS
# =============================================================================

class SessionAlreadyOpen(BusinessRuleError):
    code = "SESSION_ALREADY_OPEN"
    default_message = "A POS session is already open for this till"


class SessionClosed(ConsistencyError):
    code = "SESSION_CLOSED"
    default_message = "POS session is closed"
