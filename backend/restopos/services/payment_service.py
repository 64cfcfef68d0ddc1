# Overview: Service-layer operations for payments; encapsulates business logic and database work.

"""
Payment Processing Service

WHY: Settle orders with cash, card or JazzCash, in one tender or split
across several, and refund them when needed.

DESIGN PRINCIPLES:
- Payments are separate records (many-to-one with orders)
- Non-cash tender must equal the outstanding balance
- Cash over-tender is returned as change; only the applied amount is stored
- Split legs must add up to the outstanding balance and are written in one
  transaction
- Refunds are new negative records; originals are never rewritten
- The POS session is notified after the payment commits. A rejected
  notification is logged and reported but never undoes the payment
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    DomainError,
    InvalidAmount,
    InvalidPaymentMethod,
    OrderNotFound,
    OrderNotPayable,
    AmountMismatch,
    SplitAmountMismatch,
    RefundExceedsOriginal,
    PaymentNotFound,
    PaymentNotVerifiable,
)
from ..extensions import db
from ..models import (
    Order,
    OrderStatus,
    OrderPaymentStatus,
    PaymentRecord,
    PaymentRecordStatus,
    PaymentKind,
    PaymentMethod,
    TENDER_METHODS,
)
from ..money import MoneyInput, to_cents, from_cents, amounts_match, format_money
from ..time_utils import utcnow
from . import session_service
from .concurrency import lock_for_update, run_with_retry
from .event_service import append_event


@dataclass
class PaymentOutcome:
    """Result of a payment, verification or refund, including the session hook result."""
    order: Order
    payments: list[PaymentRecord]
    change_cents: int = 0
    session_applied: bool | None = None
    session_error: str | None = None
    session_error_code: str | None = None

    @property
    def change_amount(self):
        return from_cents(self.change_cents)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(include_items=False),
            "payments": [p.to_dict() for p in self.payments],
            "change_amount": str(self.change_amount),
            "session_applied": self.session_applied,
            "session_error": self.session_error,
            "session_error_code": self.session_error_code,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _parse_method(method) -> PaymentMethod:
    try:
        parsed = PaymentMethod(method)
    except ValueError:
        parsed = None
    if parsed not in TENDER_METHODS:
        allowed = ", ".join(m.value for m in TENDER_METHODS)
        raise InvalidPaymentMethod(f"Invalid payment method '{method}'. Must be one of: {allowed}", field="method")
    return parsed


def _positive_cents(amount: MoneyInput, field_name: str) -> int:
    cents = to_cents(amount, field=field_name)
    if cents <= 0:
        raise InvalidAmount("Payment amount must be greater than zero", field=field_name)
    return cents


def _lock_payable_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFound(field="order_id")

    if order.status == OrderStatus.CANCELLED:
        raise OrderNotPayable("Cannot take payment for a cancelled order", field="order_id")
    if order.payment_status == OrderPaymentStatus.AWAITING_VERIFICATION:
        raise OrderNotPayable("A payment for this order is awaiting verification", field="order_id")
    if order.balance_due_cents <= 0:
        raise OrderNotPayable("Order has no outstanding balance", field="order_id")
    return order


def _refresh_order_payment_status(order: Order) -> None:
    """
    Recompute amount_paid and payment_status from the order's payment records.

    PAID once the net amount (completed payments less refunds) covers the
    total. Refunds move the order to PARTIALLY_REFUNDED or REFUNDED only if
    its payments had covered the total; a refund on a partly paid order
    leaves it PENDING with the balance still collectable. An unverified
    submission holds it at AWAITING_VERIFICATION.
    """
    db.session.flush()
    rows = (
        db.session.query(PaymentRecord.kind, PaymentRecord.status, func.coalesce(func.sum(PaymentRecord.amount_cents), 0))
        .filter(PaymentRecord.order_id == order.id)
        .group_by(PaymentRecord.kind, PaymentRecord.status)
        .all()
    )

    paid = 0
    refunded = 0
    awaiting = False
    for kind, status, total in rows:
        if kind == PaymentKind.REFUND:
            refunded += -int(total)
        elif status in session_service.COUNTED_STATUSES:
            paid += int(total)
        elif status == PaymentRecordStatus.PENDING_VERIFICATION:
            awaiting = True

    net = paid - refunded
    order.amount_paid_cents = net

    if net >= order.total_cents:
        order.payment_status = OrderPaymentStatus.PAID
    elif awaiting:
        order.payment_status = OrderPaymentStatus.AWAITING_VERIFICATION
    elif refunded > 0 and paid >= order.total_cents:
        order.payment_status = (
            OrderPaymentStatus.REFUNDED if net <= 0 else OrderPaymentStatus.PARTIALLY_REFUNDED
        )
    else:
        order.payment_status = OrderPaymentStatus.PENDING
    order.updated_at = utcnow()


def _record_event(event_type: str, order: Order, payment: PaymentRecord, actor_id, **payload) -> None:
    append_event(
        branch_id=order.branch_id,
        event_type=event_type,
        order_id=order.id,
        payment_id=payment.id,
        session_id=payment.session_id,
        actor_id=actor_id,
        to_status=order.payment_status.value,
        payload={
            "method": payment.method.value,
            "amount": str(payment.amount),
            **payload,
        },
    )


def _notify_session(outcome: PaymentOutcome) -> PaymentOutcome:
    """
    Post committed, counted payments to their POS session.

    Runs after the payment transaction has committed. Any failure is
    logged and written as session.notification_rejected; the payment stays.
    """
    for payment in outcome.payments:
        if payment.session_id is None or payment.status not in session_service.COUNTED_STATUSES:
            continue

        try:
            session_service.apply_payment_to_session(payment.session_id, payment.id)
        except DomainError as exc:
            current_app.logger.warning(
                "Session %s rejected payment %s: %s", payment.session_id, payment.id, exc.message
            )
            _record_rejection(outcome, payment, exc.message, exc.code)
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(
                "Failed to apply payment %s to session %s", payment.id, payment.session_id
            )
            _record_rejection(outcome, payment, "Session update failed", "SESSION_UPDATE_FAILED")
        else:
            if outcome.session_applied is None:
                outcome.session_applied = True

    return outcome


def _record_rejection(outcome: PaymentOutcome, payment: PaymentRecord, message: str, code: str) -> None:
    outcome.session_applied = False
    outcome.session_error = message
    outcome.session_error_code = code
    try:
        append_event(
            branch_id=outcome.order.branch_id,
            event_type="session.notification_rejected",
            order_id=payment.order_id,
            payment_id=payment.id,
            session_id=payment.session_id,
            note=message,
            payload={"code": code, "amount": str(payment.amount), "method": payment.method.value},
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record session rejection for payment %s", payment.id)


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_single_payment(
    order_id: int,
    method: str,
    amount: MoneyInput,
    reference: str | None = None,
    *,
    recorded_by: int | None = None,
    awaiting_verification: bool = False,
) -> PaymentOutcome:
    """
    Record one tender against an order.

    Args:
        order_id: Order being paid
        method: cash, card or jazzcash
        amount: Amount tendered. Cash may exceed the balance (change is
            returned) or fall short (partial payment). Card and JazzCash
            must equal the outstanding balance.
        reference: Card auth code / JazzCash transaction id
        recorded_by: Actor taking the payment
        awaiting_verification: Non-cash submission a staff member must
            verify before it counts (e.g. a JazzCash screenshot)

    Raises:
        InvalidPaymentMethod, InvalidAmount, OrderNotFound, OrderNotPayable,
        AmountMismatch
    """
    tender = _parse_method(method)
    tendered_cents = _positive_cents(amount, "amount")

    if awaiting_verification and tender == PaymentMethod.CASH:
        raise InvalidPaymentMethod("Cash payments cannot await verification", field="method")

    def _op():
        order = _lock_payable_order(order_id)
        balance = order.balance_due_cents

        change_cents = 0
        if tender == PaymentMethod.CASH:
            applied_cents = min(tendered_cents, balance)
            change_cents = tendered_cents - applied_cents
        else:
            if not amounts_match(tendered_cents, balance):
                raise AmountMismatch(
                    f"{tender.value} payment of {format_money(tendered_cents)} does not match "
                    f"the balance of {format_money(balance)}",
                    field="amount",
                    details={"balance_due": str(from_cents(balance)), "amount": str(from_cents(tendered_cents))},
                )
            applied_cents = balance

        payment = PaymentRecord(
            order_id=order.id,
            session_id=order.session_id,
            kind=PaymentKind.PAYMENT,
            method=tender,
            status=PaymentRecordStatus.PENDING_VERIFICATION if awaiting_verification else PaymentRecordStatus.COMPLETED,
            amount_cents=applied_cents,
            tendered_cents=tendered_cents if tender == PaymentMethod.CASH else None,
            change_cents=change_cents,
            refunded_cents=0,
            reference=reference,
            recorded_by_actor_id=recorded_by,
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        _refresh_order_payment_status(order)
        _record_event(
            "payment.submitted" if awaiting_verification else "payment.recorded",
            order, payment, recorded_by,
            change=str(from_cents(change_cents)),
        )

        db.session.commit()
        return PaymentOutcome(order=order, payments=[payment], change_cents=change_cents)

    outcome = run_with_retry(_op)
    current_app.logger.info(
        "Payment %s on order %s: %s %s (status %s)",
        outcome.payments[0].id, outcome.order.order_number, tender.value,
        format_money(outcome.payments[0].amount_cents), outcome.order.payment_status.value,
    )
    return _notify_session(outcome)


def record_split_payment(order_id: int, legs: list[dict], *, recorded_by: int | None = None) -> PaymentOutcome:
    """
    Record a split payment: several tenders settling one balance together.

    Each leg is {method, amount, reference?}. Legs must add up to the
    outstanding balance; all legs commit together or not at all.

    Raises:
        SplitAmountMismatch: legs do not add up to the balance
    """
    if not isinstance(legs, list) or len(legs) < 2:
        raise SplitAmountMismatch("A split payment needs at least two legs", field="legs")

    parsed = []
    for i, leg in enumerate(legs):
        if not isinstance(leg, dict):
            raise InvalidAmount(f"Leg {i} must be an object", field=f"legs[{i}]")
        try:
            tender = _parse_method(leg.get("method"))
        except InvalidPaymentMethod as exc:
            raise InvalidPaymentMethod(exc.message, field=f"legs[{i}].method")
        parsed.append((tender, _positive_cents(leg.get("amount"), f"legs[{i}].amount"), leg.get("reference")))

    legs_total = sum(cents for _, cents, _ in parsed)

    def _op():
        order = _lock_payable_order(order_id)
        balance = order.balance_due_cents

        if not amounts_match(legs_total, balance):
            raise SplitAmountMismatch(
                f"Split legs total {format_money(legs_total)} but the balance is {format_money(balance)}",
                field="legs",
                details={"legs_total": str(from_cents(legs_total)), "balance_due": str(from_cents(balance))},
            )

        group = uuid.uuid4().hex
        now = utcnow()
        payments = []
        for tender, cents, reference in parsed:
            payment = PaymentRecord(
                order_id=order.id,
                session_id=order.session_id,
                kind=PaymentKind.PAYMENT,
                method=tender,
                status=PaymentRecordStatus.COMPLETED,
                amount_cents=cents,
                tendered_cents=cents if tender == PaymentMethod.CASH else None,
                change_cents=0,
                refunded_cents=0,
                split_group=group,
                reference=reference,
                recorded_by_actor_id=recorded_by,
                created_at=now,
            )
            db.session.add(payment)
            payments.append(payment)
        db.session.flush()

        order.payment_method = PaymentMethod.SPLIT
        _refresh_order_payment_status(order)
        for payment in payments:
            _record_event("payment.recorded", order, payment, recorded_by, split_group=group)

        db.session.commit()
        return PaymentOutcome(order=order, payments=payments)

    outcome = run_with_retry(_op)
    current_app.logger.info(
        "Split payment on order %s: %s legs totalling %s",
        outcome.order.order_number, len(outcome.payments), format_money(legs_total),
    )
    return _notify_session(outcome)


# =============================================================================
# VERIFICATION
# =============================================================================

def _lock_pending_payment(payment_id: int) -> PaymentRecord:
    payment = lock_for_update(db.session.query(PaymentRecord).filter_by(id=payment_id)).first()
    if payment is None:
        raise PaymentNotFound(field="payment_id")
    if payment.status != PaymentRecordStatus.PENDING_VERIFICATION:
        raise PaymentNotVerifiable(
            f"Payment {payment_id} is {payment.status.value}, not awaiting verification",
            field="payment_id",
        )
    return payment


def verify_payment(payment_id: int, *, verified_by: int | None = None) -> PaymentOutcome:
    """Accept an awaiting-verification submission; it now counts toward the order."""
    def _op():
        payment = _lock_pending_payment(payment_id)
        order = lock_for_update(db.session.query(Order).filter_by(id=payment.order_id)).first()

        payment.status = PaymentRecordStatus.COMPLETED
        payment.verified_at = utcnow()
        _refresh_order_payment_status(order)
        _record_event("payment.verified", order, payment, verified_by)

        db.session.commit()
        return PaymentOutcome(order=order, payments=[payment])

    return _notify_session(run_with_retry(_op))


def reject_payment(payment_id: int, reason: str | None = None, *, rejected_by: int | None = None) -> PaymentOutcome:
    """Reject an awaiting-verification submission; the order goes back to PENDING."""
    def _op():
        payment = _lock_pending_payment(payment_id)
        order = lock_for_update(db.session.query(Order).filter_by(id=payment.order_id)).first()

        payment.status = PaymentRecordStatus.REJECTED
        payment.reason = reason
        _refresh_order_payment_status(order)
        _record_event("payment.rejected", order, payment, rejected_by, reason=reason)

        db.session.commit()
        return PaymentOutcome(order=order, payments=[payment])

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_payment(
    payment_id: int,
    amount: MoneyInput | None = None,
    reason: str | None = None,
    *,
    recorded_by: int | None = None,
) -> PaymentOutcome:
    """
    Refund all or part of a completed payment.

    Creates a refund record (kind=refund, negative amount, same method) and
    adds to the original's refunded_cents. The original flips to REFUNDED
    once nothing is left to refund. Order payment status becomes
    PARTIALLY_REFUNDED or REFUNDED. Refunds never change order status.

    Args:
        amount: Defaults to everything still refundable on the payment

    Raises:
        RefundExceedsOriginal: amount above what is still refundable
    """
    requested_cents = None if amount is None else _positive_cents(amount, "amount")

    def _op():
        original = lock_for_update(db.session.query(PaymentRecord).filter_by(id=payment_id)).first()
        if original is None:
            raise PaymentNotFound(field="payment_id")
        if original.kind != PaymentKind.PAYMENT:
            raise RefundExceedsOriginal("Refund records cannot be refunded", field="payment_id")

        refundable = original.refundable_cents
        refund_cents = refundable if requested_cents is None else requested_cents
        if refund_cents <= 0 or refund_cents > refundable:
            raise RefundExceedsOriginal(
                f"Refund of {format_money(refund_cents)} exceeds the refundable {format_money(refundable)}",
                field="amount",
                details={"refundable": str(from_cents(refundable))},
            )

        order = lock_for_update(db.session.query(Order).filter_by(id=original.order_id)).first()

        refund = PaymentRecord(
            order_id=original.order_id,
            session_id=original.session_id,
            kind=PaymentKind.REFUND,
            method=original.method,
            status=PaymentRecordStatus.COMPLETED,
            amount_cents=-refund_cents,
            change_cents=0,
            refunded_cents=0,
            refund_of_id=original.id,
            reason=reason,
            recorded_by_actor_id=recorded_by,
            created_at=utcnow(),
        )
        db.session.add(refund)

        original.refunded_cents = (original.refunded_cents or 0) + refund_cents
        if original.refundable_cents == 0:
            original.status = PaymentRecordStatus.REFUNDED
        db.session.flush()

        _refresh_order_payment_status(order)
        _record_event("payment.refunded", order, refund, recorded_by, refund_of_id=original.id, reason=reason)

        db.session.commit()
        return PaymentOutcome(order=order, payments=[refund])

    outcome = run_with_retry(_op)
    current_app.logger.info(
        "Refund %s on order %s: %s (%s)",
        outcome.payments[0].id, outcome.order.order_number,
        format_money(-outcome.payments[0].amount_cents), reason or "no reason given",
    )
    return _notify_session(outcome)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> PaymentRecord:
    payment = db.session.get(PaymentRecord, payment_id)
    if payment is None:
        raise PaymentNotFound(field="payment_id")
    return payment


def get_order_payments(order_id: int) -> list[PaymentRecord]:
    return (
        db.session.query(PaymentRecord)
        .filter_by(order_id=order_id)
        .order_by(PaymentRecord.created_at.asc(), PaymentRecord.id.asc())
        .all()
    )


def get_outstanding_balance(order_id: int):
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(field="order_id")
    return order.balance_due


def get_payment_summary(order_id: int) -> dict:
    """
    Payment summary for an order.

    Returns:
        {total, amount_paid, balance_due, payment_status, refunded, by_method}
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(field="order_id")

    payments = get_order_payments(order_id)
    by_method: dict[str, int] = {}
    refunded = 0
    for payment in payments:
        if payment.kind == PaymentKind.REFUND:
            refunded += -payment.amount_cents
        if payment.status in session_service.COUNTED_STATUSES:
            by_method[payment.method.value] = by_method.get(payment.method.value, 0) + payment.amount_cents

    return {
        "order_id": order.id,
        "total": str(order.total),
        "amount_paid": str(order.amount_paid),
        "balance_due": str(order.balance_due),
        "refunded": str(from_cents(refunded)),
        "payment_status": order.payment_status.value,
        "payment_count": sum(1 for p in payments if p.kind == PaymentKind.PAYMENT),
        "by_method": {method: str(from_cents(cents)) for method, cents in by_method.items()},
    }
