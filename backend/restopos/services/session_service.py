# Overview: POS session (cashier shift) lifecycle and reconciliation.

"""
POS Session Reconciler

WHY: Cash accountability per till. Every payment taken under a session
posts its amount to the session's running totals; at end of shift the
counted cash is compared with the expected cash.

DESIGN PRINCIPLES:
- One OPEN session per (branch, till), guaranteed by a partial unique index
- Each payment is applied at most once (unique payment_id on the
  application row); replays return the existing application
- Order count moves once per order, not once per payment leg
- Closed sessions are immutable; late payments are rejected with
  SessionClosed and the totals stay as they were
- expected_cash = opening_cash + cash_sales (cash refunds reduce cash_sales)
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvalidAmount,
    PaymentNotFound,
    PaymentNotVerifiable,
    SessionAlreadyOpen,
    SessionClosed,
    SessionNotFound,
)
from ..extensions import db
from ..models import (
    POSSession,
    SessionPaymentApplication,
    SessionStatus,
    PaymentRecord,
    PaymentRecordStatus,
    PaymentKind,
    TENDER_METHODS,
)
from ..money import MoneyInput, to_cents, from_cents, format_money
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_session_number
from .event_service import append_event


COUNTED_STATUSES = (PaymentRecordStatus.COMPLETED, PaymentRecordStatus.REFUNDED)


@dataclass(frozen=True)
class SessionCloseResult:
    session: POSSession
    expected_cash_cents: int
    cash_difference_cents: int

    def to_dict(self) -> dict:
        return {
            "session": self.session.to_dict(),
            "expected_cash": str(from_cents(self.expected_cash_cents)),
            "cash_difference": str(from_cents(self.cash_difference_cents)),
        }


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_session(
    branch_id: int,
    cashier_id: int,
    opening_cash: MoneyInput,
    till: str | None = None,
    notes: str | None = None,
) -> POSSession:
    """
    Open a cashier session on a till.

    Raises:
        SessionAlreadyOpen: the till already has an OPEN session (including
            when a concurrent open wins the race on the unique index)
        InvalidAmount: negative or unparsable opening cash
    """
    opening_cents = to_cents(opening_cash, field="opening_cash")
    if opening_cents < 0:
        raise InvalidAmount("Opening cash cannot be negative", field="opening_cash")
    if not cashier_id:
        raise InvalidAmount("cashier_id is required", field="cashier_id")

    till = (till or current_app.config.get("DEFAULT_TILL", "MAIN")).strip().upper()

    existing = get_active_session(branch_id, till)
    if existing is not None:
        raise SessionAlreadyOpen(
            f"Session {existing.session_number} is already open on till {till}",
            field="till",
            details={"session_id": existing.id},
        )

    now = utcnow()
    session = POSSession(
        session_number=next_session_number(branch_id),
        branch_id=branch_id,
        till=till,
        opened_by_actor_id=cashier_id,
        status=SessionStatus.OPEN,
        opening_cash_cents=opening_cents,
        notes=notes,
        opened_at=now,
    )
    db.session.add(session)

    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise SessionAlreadyOpen(f"A session is already open on till {till}", field="till")

    append_event(
        branch_id=branch_id,
        event_type="session.opened",
        session_id=session.id,
        actor_id=cashier_id,
        to_status=SessionStatus.OPEN.value,
        payload={"till": till, "opening_cash": str(from_cents(opening_cents))},
    )
    db.session.commit()

    current_app.logger.info(
        "POS session %s opened on branch %s till %s with float %s",
        session.session_number, branch_id, till, format_money(opening_cents),
    )
    return session


def close_session(
    session_id: int,
    counted_cash: MoneyInput,
    notes: str | None = None,
    *,
    closed_by: int | None = None,
) -> SessionCloseResult:
    """
    Close a session and compute the cash difference.

    expected_cash = opening_cash + cash_sales
    cash_difference = counted_cash - expected_cash (negative means short)

    Totals are frozen as they stand; nothing is recomputed here.
    """
    counted_cents = to_cents(counted_cash, field="counted_cash")
    if counted_cents < 0:
        raise InvalidAmount("Counted cash cannot be negative", field="counted_cash")

    def _op():
        session = lock_for_update(db.session.query(POSSession).filter_by(id=session_id)).first()
        if session is None:
            raise SessionNotFound(field="session_id")
        if not session.is_open:
            raise SessionClosed(f"Session {session.session_number} is already closed", field="session_id")

        expected = session.opening_cash_cents + session.cash_sales_cents
        difference = counted_cents - expected

        session.status = SessionStatus.CLOSED
        session.closed_at = utcnow()
        session.closed_by_actor_id = closed_by
        session.closing_cash_cents = counted_cents
        session.expected_cash_cents = expected
        session.cash_difference_cents = difference
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes

        append_event(
            branch_id=session.branch_id,
            event_type="session.closed",
            session_id=session.id,
            actor_id=closed_by,
            from_status=SessionStatus.OPEN.value,
            to_status=SessionStatus.CLOSED.value,
            payload={
                "expected_cash": str(from_cents(expected)),
                "counted_cash": str(from_cents(counted_cents)),
                "cash_difference": str(from_cents(difference)),
            },
        )
        db.session.commit()
        return SessionCloseResult(session=session, expected_cash_cents=expected, cash_difference_cents=difference)

    result = run_with_retry(_op)

    log = current_app.logger.warning if result.cash_difference_cents else current_app.logger.info
    log(
        "POS session %s closed: expected %s, difference %s",
        result.session.session_number,
        format_money(result.expected_cash_cents),
        format_money(result.cash_difference_cents),
    )
    return result


# =============================================================================
# PAYMENT HOOK
# =============================================================================

def _existing_application(payment_id: int) -> SessionPaymentApplication | None:
    return db.session.query(SessionPaymentApplication).filter_by(payment_id=payment_id).first()


def apply_payment_to_session(session_id: int, payment_id: int) -> SessionPaymentApplication:
    """
    Post one payment (or refund) to a session's running totals.

    Idempotent on payment_id: a second call returns the first application
    and leaves the totals alone.

    Payments add to their method sub-total and total_sales; the first
    payment of an order also bumps total_orders. Refund records carry a
    negative amount: they reduce their method sub-total and add to
    total_refunds.

    Raises:
        SessionNotFound / SessionClosed: the session cannot take the payment
        PaymentNotFound: unknown payment id
        PaymentNotVerifiable: the payment is not completed yet
    """
    def _op():
        existing = _existing_application(payment_id)
        if existing is not None:
            return existing

        session = lock_for_update(db.session.query(POSSession).filter_by(id=session_id)).first()
        if session is None:
            raise SessionNotFound(field="session_id")
        if not session.is_open:
            raise SessionClosed(
                f"Session {session.session_number} is closed; payment {payment_id} not applied",
                field="session_id",
                details={"payment_id": payment_id},
            )

        payment = db.session.get(PaymentRecord, payment_id)
        if payment is None:
            raise PaymentNotFound(field="payment_id")
        if payment.status not in COUNTED_STATUSES:
            raise PaymentNotVerifiable(
                f"Payment {payment_id} is {payment.status.value} and cannot be applied",
                field="payment_id",
            )

        column = POSSession.SUBTOTAL_COLUMNS[payment.method]
        setattr(session, column, getattr(session, column) + payment.amount_cents)

        counted_order = False
        if payment.kind == PaymentKind.REFUND:
            session.total_refunds_cents += -payment.amount_cents
        else:
            session.total_sales_cents += payment.amount_cents
            already_counted = (
                db.session.query(SessionPaymentApplication.id)
                .filter_by(session_id=session.id, order_id=payment.order_id, counted_order=True)
                .first()
            )
            if already_counted is None:
                session.total_orders += 1
                counted_order = True

        application = SessionPaymentApplication(
            session_id=session.id,
            payment_id=payment.id,
            order_id=payment.order_id,
            method=payment.method,
            amount_cents=payment.amount_cents,
            counted_order=counted_order,
            applied_at=utcnow(),
        )
        db.session.add(application)

        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent call applied this payment first
            db.session.rollback()
            winner = _existing_application(payment_id)
            if winner is None:
                raise
            return winner
        return application

    return run_with_retry(_op)


on_payment_recorded = apply_payment_to_session


# =============================================================================
# QUERIES
# =============================================================================

def get_session(session_id: int) -> POSSession:
    session = db.session.get(POSSession, session_id)
    if session is None:
        raise SessionNotFound(field="session_id")
    return session


def get_active_session(branch_id: int, till: str | None = None) -> POSSession | None:
    till = (till or current_app.config.get("DEFAULT_TILL", "MAIN")).strip().upper()
    return (
        db.session.query(POSSession)
        .filter_by(branch_id=branch_id, till=till, status=SessionStatus.OPEN)
        .first()
    )


def list_sessions(branch_id: int | None = None, status: str | None = None, limit: int = 50) -> list[POSSession]:
    q = db.session.query(POSSession)
    if branch_id is not None:
        q = q.filter(POSSession.branch_id == branch_id)
    if status:
        q = q.filter(POSSession.status == SessionStatus(status))
    return q.order_by(POSSession.opened_at.desc(), POSSession.id.desc()).limit(limit).all()


def get_session_summary(session_id: int) -> dict:
    """Shift report built from the session's own running totals."""
    session = get_session(session_id)
    applications = (
        db.session.query(SessionPaymentApplication)
        .filter_by(session_id=session_id)
        .order_by(SessionPaymentApplication.id.asc())
        .all()
    )

    by_method = {method.value: 0 for method in TENDER_METHODS}
    for app_row in applications:
        by_method[app_row.method.value] += app_row.amount_cents

    return {
        "session": session.to_dict(),
        "payments_applied": len(applications),
        "net_sales": str(from_cents(session.total_sales_cents - session.total_refunds_cents)),
        "by_method": {method: str(from_cents(cents)) for method, cents in by_method.items()},
        "expected_cash": str(session.expected_cash),
    }


def audit_session(session_id: int) -> dict:
    """
    Compare the session's running totals with the payment log.

    Read-only. The payment log is the source of truth: every counted
    payment record tied to the session is summed independently and each
    running total is checked against it. Payments logged against the
    session but never applied (e.g. rejected after close) are listed.
    """
    session = get_session(session_id)

    records = (
        db.session.query(PaymentRecord)
        .filter(PaymentRecord.session_id == session_id, PaymentRecord.status.in_(COUNTED_STATUSES))
        .order_by(PaymentRecord.id.asc())
        .all()
    )
    applied_ids = {
        row.payment_id
        for row in db.session.query(SessionPaymentApplication.payment_id).filter_by(session_id=session_id).all()
    }

    by_method = defaultdict(int)
    sales = 0
    refunds = 0
    orders = set()
    for record in records:
        by_method[record.method] += record.amount_cents
        if record.kind == PaymentKind.REFUND:
            refunds += -record.amount_cents
        else:
            sales += record.amount_cents
            orders.add(record.order_id)

    expected = {
        "total_sales_cents": sales,
        "total_refunds_cents": refunds,
        "total_orders": len(orders),
    }
    for method, column in POSSession.SUBTOTAL_COLUMNS.items():
        expected[column] = by_method.get(method, 0)

    discrepancies = []
    for column, log_value in expected.items():
        running = getattr(session, column)
        if running != log_value:
            discrepancies.append({"field": column, "session": running, "payment_log": log_value})

    unapplied = [record.id for record in records if record.id not in applied_ids]

    return {
        "session_id": session.id,
        "session_number": session.session_number,
        "status": session.status.value,
        "matches": not discrepancies and not unapplied,
        "discrepancies": discrepancies,
        "unapplied_payment_ids": unapplied,
        "payment_log": {
            "total_sales": str(from_cents(sales)),
            "total_refunds": str(from_cents(refunds)),
            "total_orders": len(orders),
            "by_method": {
                method.value: str(from_cents(by_method.get(method, 0)))
                for method in TENDER_METHODS
            },
        },
    }
