from __future__ import annotations

from ..extensions import db
from lpg_dispatch.time_utils import to_utc_z


# Transaction types
TXN_SALE = "sale"
TXN_PAYMENT = "payment"
TXN_HANDOVER_REQUEST = "handover_request"

# Handover request statuses
HANDOVER_PENDING = "pending"
HANDOVER_APPROVED = "approved"
HANDOVER_REJECTED = "rejected"

# Payment verification statuses (bank / cheque)
PAYMENT_PENDING_VERIFICATION = "pending_verification"
PAYMENT_VERIFIED = "verified"
PAYMENT_REJECTED = "rejected"

# Payment methods
PAYMENT_CASH = "cash"
PAYMENT_CREDIT = "credit"
PAYMENT_BANK = "bank"
PAYMENT_CHEQUE = "cheque"

VALID_PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_BANK, PAYMENT_CHEQUE)

# Company ledger directions
LEDGER_CREDIT = "credit"
LEDGER_DEBIT = "debit"

# Expense claim statuses
EXPENSE_PENDING = "pending"
EXPENSE_APPROVED = "approved"
EXPENSE_REJECTED = "rejected"

VALID_EXPENSE_STATUSES = (EXPENSE_PENDING, EXPENSE_APPROVED, EXPENSE_REJECTED)


class Transaction(db.Model):
    """
    Customer / driver scoped ledger entry.

    SIGN CONVENTION (customer debt view):
    - sale:    +amount (increases what the customer owes)
    - payment: -amount (decreases what the customer owes)
    - handover_request: +amount of cash the driver is handing in

    status is NULL for posted sale/payment entries. Handover requests move
    pending -> approved | rejected; bank/cheque payments move
    pending_verification -> verified | rejected. Rows are never deleted and
    only status/processed_* change after insert.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_tenant_type_status", "tenant_id", "type", "status"),
        db.Index("ix_transactions_customer_created", "customer_id", "created_at"),
        db.Index("ix_transactions_order", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    type = db.Column(db.String(24), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=True)
    status = db.Column(db.String(24), nullable=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    description = db.Column(db.String(512), nullable=True)
    proof_url = db.Column(db.String(512), nullable=True)

    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Business time; set explicitly so sale/payment ordering is deterministic
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    customer = db.relationship("Customer", foreign_keys=[customer_id])
    user = db.relationship("User", foreign_keys=[user_id])
    receiver = db.relationship("User", foreign_keys=[receiver_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "receiver_id": self.receiver_id,
            "description": self.description,
            "proof_url": self.proof_url,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
        }


class EmployeeWallet(db.Model):
    """
    Cash physically held by a driver (company liability).

    One row per driver. Incremented by cash received at delivery,
    decremented when a handover is approved. Versioned so concurrent
    settlements cannot silently lose an update.
    """
    __tablename__ = "employee_wallets"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("wallet", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "balance_cents": self.balance_cents,
            "updated_at": to_utc_z(self.updated_at),
        }


class CompanyLedgerEntry(db.Model):
    """
    Company cash book. Append-only; amount is signed (+ money in, - money out).
    """
    __tablename__ = "company_ledger"
    __table_args__ = (
        db.Index("ix_company_ledger_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(8), nullable=False)
    category = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(512), nullable=True)

    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "amount_cents": self.amount_cents,
            "transaction_type": self.transaction_type,
            "category": self.category,
            "description": self.description,
            "admin_id": self.admin_id,
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
        }


class SettlementStep(db.Model):
    """
    Idempotency log for delivery settlement.

    One row per (order, step) committed together with the step's own
    writes. A retried settlement skips every step already present here.
    """
    __tablename__ = "settlement_steps"
    __table_args__ = (
        db.UniqueConstraint("order_id", "step", name="uq_settlement_steps_order_step"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    step = db.Column(db.String(32), nullable=False)
    detail = db.Column(db.String(255), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "step": self.step,
            "detail": self.detail,
            "completed_at": to_utc_z(self.completed_at),
        }


class Expense(db.Model):
    """
    Expense claim (fuel, repairs, wages...) waiting for a staff decision.

    Claims move pending -> approved | rejected exactly once. Money only
    moves on approval, inside procedures.approve_expense.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(512), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=EXPENSE_PENDING)

    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("company_ledger.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "description": self.description,
            "status": self.status,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }
