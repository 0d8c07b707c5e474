# Overview: Atomic database procedures; multi-table units that must commit or roll back as one.

"""
Stored-procedure style units of work.

approve_driver_handover is the one place where the handover request, the
driver wallet, the company cash book and the held cylinders all change;
approve_expense settles an expense claim against the wallet or the cash
book. Each runs as ONE database transaction: every write is staged,
then a single commit. Business refusals come back as
{"success": False, "message": ...} after a rollback; database errors roll
back and propagate.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Transaction, Expense, User
from ..models.finance import (
    TXN_HANDOVER_REQUEST,
    HANDOVER_PENDING,
    HANDOVER_APPROVED,
    EXPENSE_PENDING,
    EXPENSE_APPROVED,
)
from ..time_utils import utcnow
from . import asset_service, ledger_service
from .concurrency import lock_for_update
from .ledger_service import LedgerError


HANDOVER_LEDGER_CATEGORY = "driver_handover"
EXPENSE_LEDGER_CATEGORY = "expense"


def approve_driver_handover(transaction_id: int, admin_user_id: int, tenant_id: int) -> dict:
    """
    Finalize a pending handover request.

    Steps (single transaction):
    1. Lock the request row; it must be a pending handover of this tenant
    2. Debit the driver's wallet by the handed-over amount (never below zero)
    3. Credit the company cash book
    4. Move every handover_pending cylinder of the driver to the warehouse
    5. Mark the request approved (processed_by / processed_at)

    Returns:
        {"success": bool, "message": str, "cylinders_received": int}
    """
    try:
        request = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id, tenant_id=tenant_id)
        ).first()
        if request is None or request.type != TXN_HANDOVER_REQUEST:
            db.session.rollback()
            return {"success": False, "message": "Handover request not found"}
        if request.status != HANDOVER_PENDING:
            db.session.rollback()
            return {"success": False, "message": f"Handover request is already {request.status}"}

        driver_id = request.user_id
        amount = request.amount_cents or 0

        if amount > 0:
            ledger_service.debit_driver_wallet(tenant_id, driver_id, amount)
            ledger_service.append_company_entry(
                tenant_id=tenant_id,
                amount_cents=amount,
                category=HANDOVER_LEDGER_CATEGORY,
                description=request.description,
                admin_id=admin_user_id,
                transaction_id=request.id,
            )

        received = asset_service.move_held_to_warehouse(tenant_id, driver_id)

        request.status = HANDOVER_APPROVED
        request.processed_by_user_id = admin_user_id
        request.processed_at = utcnow()
        db.session.commit()

    except LedgerError as exc:
        db.session.rollback()
        return {"success": False, "message": str(exc)}
    except SQLAlchemyError:
        db.session.rollback()
        raise

    return {
        "success": True,
        "message": "Handover Approved Successfully",
        "cylinders_received": received,
    }


def approve_expense(expense_id: int, admin_user_id: int, tenant_id: int) -> dict:
    """
    Finalize a pending expense claim.

    Steps (single transaction):
    1. Lock the claim row; it must be a pending claim of this tenant
    2. Driver claims: debit the driver's wallet (paid from collected cash)
       Staff claims: book a debit in the company cash book
    3. Mark the claim approved (processed_by / processed_at)

    Returns:
        {"success": bool, "message": str}
    """
    try:
        expense = lock_for_update(
            db.session.query(Expense).filter_by(id=expense_id, tenant_id=tenant_id)
        ).first()
        if expense is None:
            db.session.rollback()
            return {"success": False, "message": "Expense not found"}
        if expense.status != EXPENSE_PENDING:
            db.session.rollback()
            return {"success": False, "message": f"Expense is already {expense.status}"}

        claimant = db.session.query(User).filter_by(id=expense.user_id, tenant_id=tenant_id).first()
        description = f"Expense #{expense.id}: {expense.description or expense.category}"

        if claimant is not None and claimant.is_driver:
            ledger_service.debit_driver_wallet(tenant_id, claimant.id, expense.amount_cents)
        else:
            entry = ledger_service.append_company_entry(
                tenant_id=tenant_id,
                amount_cents=-expense.amount_cents,
                category=f"{EXPENSE_LEDGER_CATEGORY}:{expense.category}",
                description=description,
                admin_id=admin_user_id,
            )
            expense.ledger_entry_id = entry.id

        expense.status = EXPENSE_APPROVED
        expense.processed_by_user_id = admin_user_id
        expense.processed_at = utcnow()
        db.session.commit()

    except LedgerError as exc:
        db.session.rollback()
        return {"success": False, "message": str(exc)}
    except SQLAlchemyError:
        db.session.rollback()
        raise

    return {"success": True, "message": "Expense Approved Successfully"}
