# Overview: Expense claims; staff and drivers submit, office staff approve or reject (maker-checker).

"""
Expense Service

FLOW:
    any user:  submit_expense   -> expense (pending), no money moves
    staff:     approve_expense  -> procedures.approve_expense (atomic)
           or  reject_expense   -> expense rejected, no money moves

The submitter (maker) can never decide their own claim.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Expense, User
from ..models.auth import STAFF_ROLES
from ..models.finance import (
    EXPENSE_PENDING,
    EXPENSE_APPROVED,
    EXPENSE_REJECTED,
    VALID_EXPENSE_STATUSES,
)
from ..time_utils import day_bounds, utcnow
from . import procedures
from .concurrency import run_committed, lock_for_update
from .ledger_service import format_amount
from .results import (
    ActionResult,
    ServiceError,
    NOT_FOUND,
    VALIDATION,
    FINANCIAL_RECORD_FAILURE,
    EXTERNAL_PROCEDURE_FAILURE,
)
from .tenant_service import ActorContext, require_actor, scoped


TREND_DAYS = 7


class ExpenseError(ServiceError):
    """Raised when an expense claim cannot be created or decided."""

    code = VALIDATION


def _claim(actor: ActorContext, expense_id, *, for_update: bool = False) -> Expense:
    expense = None
    if expense_id:
        query = scoped(Expense, actor).filter(Expense.id == expense_id)
        if for_update:
            query = lock_for_update(query)
        expense = query.first()
    if expense is None:
        raise ExpenseError("Expense not found", code=NOT_FOUND)
    if expense.status != EXPENSE_PENDING:
        raise ExpenseError(f"Expense is already {expense.status}")
    return expense


# =============================================================================
# SUBMIT (maker)
# =============================================================================

def submit_expense(
    actor: ActorContext | None,
    amount_cents: int,
    category: str | None,
    description: str | None = None,
    occurred_at: datetime | None = None,
) -> ActionResult:
    """Record an expense claim for approval."""
    try:
        actor = require_actor(actor)
        if amount_cents is None or amount_cents <= 0:
            raise ExpenseError("Invalid amount")
        category = (category or "").strip()
        if not category:
            raise ExpenseError("Category is required")

        def _op():
            expense = Expense(
                tenant_id=actor.tenant_id,
                user_id=actor.actor_id,
                amount_cents=amount_cents,
                category=category,
                description=description,
                status=EXPENSE_PENDING,
                created_at=occurred_at or utcnow(),
            )
            db.session.add(expense)
            db.session.flush()
            return expense.id

        expense_id = run_committed(_op)
        current_app.logger.info(
            "Expense %s submitted by %s: %s (%s)",
            expense_id, actor.actor_id, format_amount(amount_cents), category,
        )
        return ActionResult.ok("Expense Submitted", expense_id=expense_id)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to submit expense")
        return ActionResult.fail(f"Expense Creation Failed: {exc}", FINANCIAL_RECORD_FAILURE)


# =============================================================================
# DECISION (checker)
# =============================================================================

def approve_expense(actor: ActorContext | None, expense_id: int | None) -> ActionResult:
    """Approve a pending claim via the atomic approval procedure."""
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)
        expense = _claim(actor, expense_id)
        if expense.user_id == actor.actor_id:
            raise ExpenseError("You cannot approve your own expense")
        claim_id = expense.id

        outcome = procedures.approve_expense(claim_id, actor.actor_id, actor.tenant_id)
        if not outcome.get("success"):
            raise ExpenseError(outcome.get("message") or "Approval failed", code=EXTERNAL_PROCEDURE_FAILURE)

        current_app.logger.info("Expense %s approved by %s", claim_id, actor.actor_id)
        return ActionResult.ok(outcome.get("message"), expense_id=claim_id)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Expense approval failed for %s: %s", expense_id, exc)
        return ActionResult.fail(f"Approval Failed: {exc}", EXTERNAL_PROCEDURE_FAILURE)


def reject_expense(actor: ActorContext | None, expense_id: int | None) -> ActionResult:
    """Reject a pending claim. Nothing was applied, so nothing is reversed."""
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)

        def _op():
            expense = _claim(actor, expense_id, for_update=True)
            if expense.user_id == actor.actor_id:
                raise ExpenseError("You cannot reject your own expense")

            expense.status = EXPENSE_REJECTED
            expense.processed_by_user_id = actor.actor_id
            expense.processed_at = utcnow()
            return expense.id

        rejected_id = run_committed(_op)
        current_app.logger.info("Expense %s rejected by %s", rejected_id, actor.actor_id)
        return ActionResult.ok("Expense Rejected", expense_id=rejected_id)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Expense rejection failed for %s: %s", expense_id, exc)
        return ActionResult.fail(f"Rejection Failed: {exc}", FINANCIAL_RECORD_FAILURE)


# =============================================================================
# READS
# =============================================================================

def get_expenses(actor: ActorContext | None, status: str | None = EXPENSE_PENDING) -> list[dict]:
    """Claims of the tenant with one status (None = all), newest first, with submitter names."""
    actor = require_actor(actor, roles=STAFF_ROLES)
    if status is not None and status not in VALID_EXPENSE_STATUSES:
        raise ExpenseError(f"Invalid status: {status}. Must be one of {list(VALID_EXPENSE_STATUSES)}")

    query = (
        db.session.query(Expense, User.name, User.role)
        .outerjoin(User, User.id == Expense.user_id)
        .filter(Expense.tenant_id == actor.tenant_id)
    )
    if status is not None:
        query = query.filter(Expense.status == status)

    rows = []
    for expense, user_name, user_role in query.order_by(Expense.created_at.desc(), Expense.id.desc()):
        row = expense.to_dict()
        row["user_name"] = user_name
        row["user_role"] = user_role
        rows.append(row)
    return rows


def get_expense_stats(actor: ActorContext | None, today: datetime | None = None) -> dict:
    """
    Dashboard figures for the tenant's expenses.

    - month_spend_cents: approved claims since the first of the month
    - pending_liability_cents: claims still waiting for a decision
    - top_category: approved category with the largest total, with its share
    - weekly_trend: approved totals for today and the six days before it
    """
    actor = require_actor(actor, roles=STAFF_ROLES)
    today_start, _ = day_bounds(today or utcnow())
    month_start = today_start.replace(day=1)
    trend_start = today_start - timedelta(days=TREND_DAYS - 1)

    approved = scoped(Expense, actor).filter(Expense.status == EXPENSE_APPROVED)

    month_spend = (
        approved.filter(Expense.created_at >= month_start)
        .with_entities(func.coalesce(func.sum(Expense.amount_cents), 0))
        .scalar()
    )
    pending_liability = (
        scoped(Expense, actor)
        .filter(Expense.status == EXPENSE_PENDING)
        .with_entities(func.coalesce(func.sum(Expense.amount_cents), 0))
        .scalar()
    )

    by_category = (
        approved.with_entities(Expense.category, func.sum(Expense.amount_cents))
        .group_by(Expense.category)
        .all()
    )
    total_approved = sum(amount for _, amount in by_category)
    top_category = {"name": "N/A", "amount_cents": 0, "percentage": 0}
    for name, amount in sorted(by_category):
        if amount > top_category["amount_cents"]:
            top_category = {"name": name, "amount_cents": amount, "percentage": 0}
    if total_approved > 0:
        top_category["percentage"] = round(top_category["amount_cents"] * 100 / total_approved)

    buckets = {trend_start + timedelta(days=offset): 0 for offset in range(TREND_DAYS)}
    for created_at, amount in approved.filter(Expense.created_at >= trend_start).with_entities(
        Expense.created_at, Expense.amount_cents
    ):
        day, _ = day_bounds(created_at.replace(tzinfo=None))
        if day in buckets:
            buckets[day] += amount

    return {
        "month_spend_cents": month_spend or 0,
        "pending_liability_cents": pending_liability or 0,
        "top_category": top_category,
        "weekly_trend": [
            {"date": day.strftime("%Y-%m-%d"), "day": day.strftime("%a"), "amount_cents": amount}
            for day, amount in buckets.items()
        ],
    }
