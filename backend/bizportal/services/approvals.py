"""
Shared lifecycle for advances and claims.

Both follow pending -> approved | rejected, then approved -> paid. Edits and
deletes are only valid while a record is pending.
"""

import calendar
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def is_editable(record: Any) -> bool:
    return record.status == "pending"


def apply_decision(
    record: Any,
    status: str,
    approver_id: uuid.UUID,
    approval_notes: str | None,
    rejection_reason: str | None,
) -> None:
    """Move a pending record to approved or rejected."""
    if record.status != "pending":
        raise ValueError(f"Cannot change status of a {record.status} record")
    record.status = status
    record.approved_by = approver_id
    record.approved_at = datetime.now(timezone.utc)
    record.approval_notes = approval_notes
    record.rejection_reason = rejection_reason if status == "rejected" else None
    logger.info("%s %s -> %s by %s", type(record).__name__, record.id, status, approver_id)


def mark_paid(record: Any) -> None:
    if record.status != "approved":
        raise ValueError("Only approved records can be marked as paid")
    record.status = "paid"
    record.paid_at = datetime.now(timezone.utc)
    logger.info("%s %s marked paid", type(record).__name__, record.id)


async def summarize(
    db: AsyncSession,
    model: Any,
    business_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> dict:
    """Counts and amounts per status for one business, optionally one user."""

    def _count(status: str):
        return func.coalesce(func.sum(case((model.status == status, 1), else_=0)), 0)

    q = select(
        func.count(model.id),
        _count("pending"),
        _count("approved"),
        _count("rejected"),
        _count("paid"),
        func.coalesce(func.sum(model.amount), 0),
        func.coalesce(func.sum(case((model.status == "pending", model.amount), else_=0)), 0),
        func.coalesce(func.sum(model.remaining_amount), 0),
    ).where(model.business_id == business_id, model.deleted_at.is_(None))
    if user_id is not None:
        q = q.where(model.user_id == user_id)

    row = (await db.execute(q)).one()
    total, pending, approved, rejected, paid, total_amount, pending_amount, remaining = row
    return {
        "total": int(total),
        "pending": int(pending),
        "approved": int(approved),
        "rejected": int(rejected),
        "paid": int(paid),
        "total_amount": float(total_amount),
        "pending_amount": float(pending_amount),
        "total_remaining": float(remaining),
    }


def month_range(month: str) -> tuple[date, date]:
    """First and last day of a 'YYYY-MM' month."""
    year, month_num = (int(part) for part in month.split("-"))
    return date(year, month_num, 1), date(year, month_num, calendar.monthrange(year, month_num)[1])
