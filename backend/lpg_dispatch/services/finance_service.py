# Overview: Office finance operations; customer payments, verification and manual cash book entries.

"""
Finance Service

WHY: Not every payment arrives at the door. Customers also pay at the
office in cash, by bank transfer or by cheque, and the office books its
own income and expenses.

RULES:
- Cash is real money on receipt: customer debt goes down and the company
  cash book goes up in the same unit of work.
- Bank and cheque payments are stored as pending_verification and have NO
  financial effect until a staff member verifies them.
- Rejecting a pending payment only changes its status.
- Customers are always verified against the caller's tenant before any
  of their rows are read or written.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Transaction, Customer
from ..models.auth import STAFF_ROLES
from ..models.finance import (
    TXN_PAYMENT,
    PAYMENT_CASH,
    PAYMENT_BANK,
    PAYMENT_CHEQUE,
    PAYMENT_PENDING_VERIFICATION,
    PAYMENT_VERIFIED,
    PAYMENT_REJECTED,
)
from ..time_utils import utcnow
from . import ledger_service
from .concurrency import run_committed, lock_for_update
from .results import ActionResult, ServiceError, NOT_FOUND, VALIDATION
from .tenant_service import ActorContext, require_actor, scoped


ENTRY_INCOME = "income"
ENTRY_EXPENSE = "expense"
VALID_ENTRY_TYPES = (ENTRY_INCOME, ENTRY_EXPENSE)

CATEGORY_CUSTOMER_PAYMENT = "customer_payment"
CATEGORY_PAYMENT_VERIFIED = "customer_payment_verified"

OFFICE_PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_BANK, PAYMENT_CHEQUE)


class FinanceError(ServiceError):
    """Raised for finance operation errors."""

    code = VALIDATION


def _tenant_customer(actor: ActorContext, customer_id) -> Customer:
    customer = None
    if customer_id:
        customer = scoped(Customer, actor).filter(Customer.id == customer_id).first()
    if customer is None:
        raise FinanceError("Customer not found or access denied", code=NOT_FOUND)
    return customer


def _pending_payment(actor: ActorContext, transaction_id) -> Transaction:
    if not transaction_id:
        raise FinanceError("Transaction ID missing")
    txn = lock_for_update(
        scoped(Transaction, actor).filter(Transaction.id == transaction_id, Transaction.type == TXN_PAYMENT)
    ).first()
    if txn is None:
        raise FinanceError("Transaction not found", code=NOT_FOUND)
    if txn.status != PAYMENT_PENDING_VERIFICATION:
        raise FinanceError("Transaction already processed")
    return txn


# =============================================================================
# CUSTOMER PAYMENTS
# =============================================================================

def _stage_cash_payment(
    actor: ActorContext,
    customer_id: int,
    amount_cents: int,
    description: str | None,
    occurred_at: datetime,
    category: str = CATEGORY_CUSTOMER_PAYMENT,
) -> Transaction:
    txn = Transaction(
        tenant_id=actor.tenant_id,
        type=TXN_PAYMENT,
        amount_cents=-amount_cents,
        payment_method=PAYMENT_CASH,
        customer_id=customer_id,
        user_id=actor.actor_id,
        description=description or "Direct Payment at Office",
        created_at=occurred_at,
    )
    db.session.add(txn)
    db.session.flush()

    ledger_service.apply_customer_balance(actor.tenant_id, customer_id, -amount_cents)
    ledger_service.append_company_entry(
        tenant_id=actor.tenant_id,
        amount_cents=amount_cents,
        category=category,
        description=txn.description,
        admin_id=actor.actor_id,
        transaction_id=txn.id,
        occurred_at=occurred_at,
    )
    return txn


def record_customer_payment(
    actor: ActorContext | None,
    customer_id: int | None,
    amount_cents: int,
    payment_method: str = PAYMENT_CASH,
    description: str | None = None,
    proof_url: str | None = None,
    occurred_at: datetime | None = None,
) -> ActionResult:
    """
    Record a payment received at the office.

    Cash is applied immediately; bank and cheque wait for verification.
    """
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)
        if amount_cents is None or amount_cents <= 0:
            raise FinanceError("Invalid amount")
        if payment_method not in OFFICE_PAYMENT_METHODS:
            raise FinanceError(
                f"Invalid payment method: {payment_method}. Must be one of {list(OFFICE_PAYMENT_METHODS)}"
            )
        customer = _tenant_customer(actor, customer_id)
        customer_pk = customer.id
        when = occurred_at or utcnow()

        if payment_method == PAYMENT_CASH:
            def _op():
                return _stage_cash_payment(actor, customer_pk, amount_cents, description, when).id
            status = None
        else:
            def _op():
                txn = Transaction(
                    tenant_id=actor.tenant_id,
                    type=TXN_PAYMENT,
                    amount_cents=-amount_cents,
                    payment_method=payment_method,
                    status=PAYMENT_PENDING_VERIFICATION,
                    customer_id=customer_pk,
                    user_id=actor.actor_id,
                    description=description or f"{payment_method.title()} payment from customer",
                    proof_url=proof_url,
                    created_at=when,
                )
                db.session.add(txn)
                db.session.flush()
                return txn.id
            status = PAYMENT_PENDING_VERIFICATION

        transaction_id = run_committed(_op)
        current_app.logger.info(
            "Customer %s payment %s recorded (%s, %s)",
            customer_pk, transaction_id, payment_method, status or "applied",
        )
        return ActionResult.ok("Payment Recorded", transaction_id=transaction_id, status=status)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)


def verify_payment(actor: ActorContext | None, transaction_id: int | None) -> ActionResult:
    """Verify a bank/cheque payment: reduce customer debt, credit the cash book."""
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)

        def _op():
            txn = _pending_payment(actor, transaction_id)
            amount = abs(txn.amount_cents)

            txn.status = PAYMENT_VERIFIED
            txn.processed_by_user_id = actor.actor_id
            txn.processed_at = utcnow()

            if txn.customer_id:
                ledger_service.apply_customer_balance(actor.tenant_id, txn.customer_id, -amount)
            ledger_service.append_company_entry(
                tenant_id=actor.tenant_id,
                amount_cents=amount,
                category=CATEGORY_PAYMENT_VERIFIED,
                description=f"Verified {txn.payment_method} from Customer (Txn #{txn.id})",
                admin_id=actor.actor_id,
                transaction_id=txn.id,
            )
            return txn.id

        verified_id = run_committed(_op)
        current_app.logger.info("Payment %s verified by %s", verified_id, actor.actor_id)
        return ActionResult.ok("Payment Verified Successfully", transaction_id=verified_id)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)


def reject_payment(actor: ActorContext | None, transaction_id: int | None) -> ActionResult:
    """Mark a pending bank/cheque payment rejected. Nothing was applied, so nothing is reversed."""
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)

        def _op():
            txn = _pending_payment(actor, transaction_id)
            txn.status = PAYMENT_REJECTED
            txn.processed_by_user_id = actor.actor_id
            txn.processed_at = utcnow()
            return txn.id

        rejected_id = run_committed(_op)
        current_app.logger.info("Payment %s rejected by %s", rejected_id, actor.actor_id)
        return ActionResult.ok("Payment Rejected", transaction_id=rejected_id)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)


# =============================================================================
# MANUAL CASH BOOK ENTRIES
# =============================================================================

def record_company_entry(
    actor: ActorContext | None,
    entry_type: str,
    amount_cents: int,
    category: str,
    description: str | None = None,
    occurred_at: datetime | None = None,
    customer_id: int | None = None,
) -> ActionResult:
    """
    Book manual income or expense in the company cash book.

    An income entry in the "customer_payment" category with a customer is
    also posted to that customer's ledger as a cash payment.
    """
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)
        if entry_type not in VALID_ENTRY_TYPES:
            raise FinanceError(f"Invalid entry type: {entry_type}. Must be one of {list(VALID_ENTRY_TYPES)}")
        if amount_cents is None or amount_cents <= 0:
            raise FinanceError("Invalid amount")
        if not category:
            raise FinanceError("Category is required")

        when = occurred_at or utcnow()
        linked_customer = None
        if customer_id and category == CATEGORY_CUSTOMER_PAYMENT:
            if entry_type != ENTRY_INCOME:
                raise FinanceError("Customer payments must be income")
            linked_customer = _tenant_customer(actor, customer_id).id

        def _op():
            if linked_customer is not None:
                txn = _stage_cash_payment(actor, linked_customer, amount_cents, description, when, category)
                return None, txn.id
            signed = amount_cents if entry_type == ENTRY_INCOME else -amount_cents
            entry = ledger_service.append_company_entry(
                tenant_id=actor.tenant_id,
                amount_cents=signed,
                category=category,
                description=description,
                admin_id=actor.actor_id,
                occurred_at=when,
            )
            return entry.id, None

        entry_id, transaction_id = run_committed(_op)
        current_app.logger.info(
            "Cash book %s of %s (%s) booked by %s",
            entry_type, ledger_service.format_amount(amount_cents), category, actor.actor_id,
        )
        return ActionResult.ok("Entry Recorded", entry_id=entry_id, transaction_id=transaction_id)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)


# =============================================================================
# READS
# =============================================================================

def get_pending_payments(actor: ActorContext | None) -> list[dict]:
    """Bank/cheque payments waiting for verification, newest first."""
    actor = require_actor(actor, roles=STAFF_ROLES)
    rows = (
        db.session.query(Transaction, Customer.name)
        .outerjoin(Customer, Customer.id == Transaction.customer_id)
        .filter(
            Transaction.tenant_id == actor.tenant_id,
            Transaction.type == TXN_PAYMENT,
            Transaction.status == PAYMENT_PENDING_VERIFICATION,
        )
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )
    payments = []
    for txn, customer_name in rows:
        row = txn.to_dict()
        row["customer_name"] = customer_name
        payments.append(row)
    return payments


def get_customer_ledger(actor: ActorContext | None, customer_id: int | None) -> dict:
    """
    A customer's transactions, newest first, with the running balance.

    Raises FinanceError(not_found) before reading any transaction when the
    customer is not in the caller's tenant.
    """
    actor = require_actor(actor)
    customer = _tenant_customer(actor, customer_id)
    entries = (
        scoped(Transaction, actor)
        .filter(Transaction.customer_id == customer.id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )
    return {
        "customer": customer.to_dict(),
        "entries": [entry.to_dict() for entry in entries],
    }
