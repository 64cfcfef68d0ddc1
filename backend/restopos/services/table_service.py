# Overview: Dining table registry and dine-in occupancy.

from __future__ import annotations

from ..errors import TableNotFound, TableUnavailable, ValidationError
from ..extensions import db
from ..models import DiningTable, TableStatus
from .concurrency import lock_for_update


def create_table(branch_id: int, table_number: str, seats: int = 4) -> DiningTable:
    table_number = (table_number or "").strip()
    if not table_number:
        raise ValidationError("table_number is required", field="table_number")
    try:
        seats = int(seats)
    except (TypeError, ValueError):
        raise ValidationError("seats must be an integer", field="seats")
    if seats < 1:
        raise ValidationError("seats must be at least 1", field="seats")

    existing = db.session.query(DiningTable).filter_by(branch_id=branch_id, table_number=table_number).first()
    if existing:
        raise ValidationError(f"Table '{table_number}' already exists in this branch", field="table_number")

    table = DiningTable(branch_id=branch_id, table_number=table_number, seats=seats, status=TableStatus.AVAILABLE)
    db.session.add(table)
    db.session.commit()
    return table


def get_table(table_id: int) -> DiningTable:
    table = db.session.get(DiningTable, table_id)
    if table is None:
        raise TableNotFound(field="table_id")
    return table


def list_tables(branch_id: int, status: str | None = None) -> list[DiningTable]:
    q = db.session.query(DiningTable).filter_by(branch_id=branch_id)
    if status:
        try:
            q = q.filter(DiningTable.status == TableStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown table status '{status}'", field="status")
    return q.order_by(DiningTable.table_number.asc()).all()


def set_table_status(table_id: int, status: str) -> DiningTable:
    """
    Manually mark a table available or reserved.

    OCCUPIED is only reached through a dine-in order; a table holding an
    active order cannot be changed by hand.
    """
    try:
        new_status = TableStatus(status)
    except ValueError:
        raise ValidationError("status must be available or reserved", field="status")
    if new_status == TableStatus.OCCUPIED:
        raise ValidationError("Tables are occupied by placing a dine-in order", field="status")

    table = lock_for_update(db.session.query(DiningTable).filter_by(id=table_id)).first()
    if table is None:
        raise TableNotFound(field="table_id")
    if table.current_order_id is not None:
        raise TableUnavailable(
            f"Table {table.table_number} is occupied by order {table.current_order_id}",
            field="table_id",
        )

    table.status = new_status
    db.session.commit()
    return table


def occupy_table(table_id: int, branch_id: int, order_id: int) -> DiningTable:
    """Seat an order at a table. Runs inside the caller's transaction."""
    table = lock_for_update(db.session.query(DiningTable).filter_by(id=table_id)).first()
    if table is None:
        raise TableNotFound(field="table_id")
    if table.branch_id != branch_id:
        raise TableUnavailable("Table belongs to another branch", field="table_id")
    if table.current_order_id is not None and table.current_order_id != order_id:
        raise TableUnavailable(
            f"Table {table.table_number} is occupied by order {table.current_order_id}",
            field="table_id",
        )

    table.status = TableStatus.OCCUPIED
    table.current_order_id = order_id
    return table


def release_table(table_id: int, order_id: int) -> DiningTable | None:
    """Free a table when its order finishes. Caller commits; no-op if another order holds it."""
    table = lock_for_update(db.session.query(DiningTable).filter_by(id=table_id)).first()
    if table is None or table.current_order_id != order_id:
        return None
    table.status = TableStatus.AVAILABLE
    table.current_order_id = None
    return table
