# Overview: Ledger Writer; appends financial transactions and maintains running balances.

from __future__ import annotations

from datetime import datetime, timedelta

from ..extensions import db
from ..models import Transaction, Customer, EmployeeWallet, CompanyLedgerEntry, Order
from ..models.finance import (
    TXN_SALE,
    TXN_PAYMENT,
    PAYMENT_CASH,
    LEDGER_CREDIT,
    LEDGER_DEBIT,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update
from .results import ServiceError, FINANCIAL_RECORD_FAILURE, INSUFFICIENT_FUNDS
"""
Ledger Invariants (authoritative)

- Transactions are append-only; only status/processed_* change later.
- A delivered order with a nonzero total has exactly one "sale" (+total).
- A "payment" (-received) exists iff something was received, and its
  created_at is PAYMENT_ORDER_OFFSET after its sale so time-sorted lists
  always show the sale first.
- Customer.current_balance_cents moves by exactly (sale - payment).
- The driver wallet grows by every received amount, whatever the declared
  payment method: partial cash on a "credit" order is still cash in hand.
- Balance rows are updated under a row lock with a version check; a
  conflicting writer raises StaleDataError and the unit of work is retried.
"""

PAYMENT_ORDER_OFFSET = timedelta(seconds=1)


class LedgerError(ServiceError):
    """Raised when a financial record cannot be written."""

    code = FINANCIAL_RECORD_FAILURE


# =============================================================================
# TRANSACTIONS
# =============================================================================

def record_sale(
    *,
    tenant_id: int,
    order: Order,
    actor_id: int,
    payment_method: str | None,
    proof_url: str | None = None,
    occurred_at: datetime | None = None,
) -> Transaction:
    """Append the "sale" entry (+total due) for a delivered order."""
    txn = Transaction(
        tenant_id=tenant_id,
        order_id=order.id,
        customer_id=order.customer_id,
        user_id=actor_id,
        type=TXN_SALE,
        amount_cents=order.total_amount_cents,
        payment_method=payment_method or "pending",
        description=f"Order #{order.display_id} - Delivered",
        proof_url=proof_url,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def record_payment(
    *,
    tenant_id: int,
    order: Order,
    actor_id: int,
    amount_received_cents: int,
    payment_method: str | None,
    sale_occurred_at: datetime,
    proof_url: str | None = None,
) -> Transaction:
    """Append the "payment" entry (-received), ordered strictly after its sale."""
    if amount_received_cents <= 0:
        raise LedgerError("Payment amount must be positive")

    txn = Transaction(
        tenant_id=tenant_id,
        order_id=order.id,
        customer_id=order.customer_id,
        user_id=actor_id,
        type=TXN_PAYMENT,
        amount_cents=-amount_received_cents,
        payment_method=payment_method or PAYMENT_CASH,
        description=f"Payment Received (Order #{order.display_id})",
        proof_url=proof_url,
        created_at=sale_occurred_at + PAYMENT_ORDER_OFFSET,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


# =============================================================================
# RUNNING BALANCES
# =============================================================================

def apply_customer_balance(tenant_id: int, customer_id: int, delta_cents: int) -> Customer:
    """
    Add ``delta_cents`` to the customer's running debt.

    Positive delta increases debt (unpaid part of a sale); negative delta
    reduces it (payments).
    """
    customer = lock_for_update(
        db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id)
    ).first()
    if not customer:
        raise LedgerError(f"Customer {customer_id} not found for balance update")

    if delta_cents:
        customer.current_balance_cents = (customer.current_balance_cents or 0) + delta_cents
        db.session.flush()
    return customer


def _locked_wallet(tenant_id: int, driver_id: int, *, create: bool) -> EmployeeWallet | None:
    wallet = lock_for_update(
        db.session.query(EmployeeWallet).filter_by(user_id=driver_id, tenant_id=tenant_id)
    ).first()
    if wallet is None and create:
        wallet = EmployeeWallet(tenant_id=tenant_id, user_id=driver_id, balance_cents=0)
        db.session.add(wallet)
        db.session.flush()
    return wallet


def get_wallet_balance(tenant_id: int, driver_id: int) -> int:
    wallet = db.session.query(EmployeeWallet).filter_by(user_id=driver_id, tenant_id=tenant_id).first()
    return wallet.balance_cents if wallet else 0


def credit_driver_wallet(tenant_id: int, driver_id: int, amount_cents: int) -> EmployeeWallet:
    """Increase the cash the driver is holding (creates the wallet on first use)."""
    if amount_cents <= 0:
        raise LedgerError("Wallet credit must be positive")

    wallet = _locked_wallet(tenant_id, driver_id, create=True)
    wallet.balance_cents = (wallet.balance_cents or 0) + amount_cents
    wallet.updated_at = utcnow()
    db.session.flush()
    return wallet


def debit_driver_wallet(tenant_id: int, driver_id: int, amount_cents: int) -> EmployeeWallet:
    """
    Decrease the driver's cash in hand.

    Raises LedgerError(insufficient_funds) rather than going negative.
    """
    if amount_cents <= 0:
        raise LedgerError("Wallet debit must be positive")

    wallet = _locked_wallet(tenant_id, driver_id, create=False)
    balance = wallet.balance_cents if wallet else 0
    if wallet is None or balance < amount_cents:
        raise LedgerError(
            f"Insufficient Funds. Wallet Balance: {format_amount(balance)}",
            code=INSUFFICIENT_FUNDS,
        )

    wallet.balance_cents = balance - amount_cents
    wallet.updated_at = utcnow()
    db.session.flush()
    return wallet


# =============================================================================
# COMPANY CASH BOOK
# =============================================================================

def append_company_entry(
    *,
    tenant_id: int,
    amount_cents: int,
    category: str,
    description: str | None = None,
    admin_id: int | None = None,
    transaction_id: int | None = None,
    occurred_at: datetime | None = None,
) -> CompanyLedgerEntry:
    """Append a signed entry to the company cash book (+ in, - out)."""
    if amount_cents == 0:
        raise LedgerError("Ledger amount must be nonzero")

    entry = CompanyLedgerEntry(
        tenant_id=tenant_id,
        amount_cents=amount_cents,
        transaction_type=LEDGER_CREDIT if amount_cents > 0 else LEDGER_DEBIT,
        category=category,
        description=description,
        admin_id=admin_id,
        transaction_id=transaction_id,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def format_amount(amount_cents: int) -> str:
    """Human-readable currency amount for user-facing messages."""
    return f"Rs {amount_cents / 100:,.2f}"
