# Overview: Pytest coverage for office payments, verification and cash book entries.

import pytest

from lpg_dispatch.models import Transaction, CompanyLedgerEntry
from lpg_dispatch.models.finance import (
    TXN_PAYMENT,
    PAYMENT_PENDING_VERIFICATION,
    PAYMENT_VERIFIED,
    PAYMENT_REJECTED,
    LEDGER_DEBIT,
)
from lpg_dispatch.services import finance_service, ledger_service
from lpg_dispatch.services.results import UNAUTHORIZED, NOT_FOUND, VALIDATION

from conftest import actor_for


@pytest.fixture
def indebted_customer(db_session, tenant_a, customer_a):
    """Customer A owes Rs 100."""
    ledger_service.apply_customer_balance(tenant_a.id, customer_a.id, 10_000)
    db_session.commit()
    return customer_a


def _balance(db_session, customer):
    db_session.expire_all()
    return db_session.get(type(customer), customer.id).current_balance_cents


class TestCustomerPayments:

    def test_cash_is_applied_immediately(self, db_session, cashier_actor, indebted_customer):
        result = finance_service.record_customer_payment(cashier_actor, indebted_customer.id, 4_000, "cash")

        assert result.success
        assert result.data["status"] is None
        txn = db_session.get(Transaction, result.data["transaction_id"])
        assert txn.type == TXN_PAYMENT
        assert txn.amount_cents == -4_000
        assert txn.description == "Direct Payment at Office"
        assert _balance(db_session, indebted_customer) == 6_000
        entry = db_session.query(CompanyLedgerEntry).filter_by(transaction_id=txn.id).one()
        assert entry.amount_cents == 4_000
        assert entry.category == finance_service.CATEGORY_CUSTOMER_PAYMENT

    def test_cheque_waits_for_verification(self, db_session, cashier_actor, indebted_customer):
        result = finance_service.record_customer_payment(cashier_actor, indebted_customer.id, 4_000, "cheque")

        assert result.data["status"] == PAYMENT_PENDING_VERIFICATION
        assert _balance(db_session, indebted_customer) == 10_000
        assert db_session.query(CompanyLedgerEntry).count() == 0

        pending = finance_service.get_pending_payments(cashier_actor)
        assert [p["id"] for p in pending] == [result.data["transaction_id"]]
        assert pending[0]["customer_name"] == indebted_customer.name

    def test_credit_is_not_an_office_payment_method(self, db_session, cashier_actor, indebted_customer):
        result = finance_service.record_customer_payment(cashier_actor, indebted_customer.id, 100, "credit")
        assert result.code == VALIDATION

    def test_driver_cannot_record_office_payments(self, db_session, driver_actor, indebted_customer):
        result = finance_service.record_customer_payment(driver_actor, indebted_customer.id, 100, "cash")
        assert result.code == UNAUTHORIZED

    def test_foreign_customer_is_not_found(self, db_session, cashier_actor, customer_b):
        result = finance_service.record_customer_payment(cashier_actor, customer_b.id, 100, "cash")
        assert result.code == NOT_FOUND


class TestVerification:

    @pytest.fixture
    def bank_payment(self, cashier_actor, indebted_customer):
        result = finance_service.record_customer_payment(cashier_actor, indebted_customer.id, 7_500, "bank")
        return result.data["transaction_id"]

    def test_verify_reduces_debt_and_credits_cash_book(self, db_session, admin_a, admin_actor,
                                                       indebted_customer, bank_payment):
        result = finance_service.verify_payment(admin_actor, bank_payment)

        assert result.success
        assert result.message == "Payment Verified Successfully"
        txn = db_session.get(Transaction, bank_payment)
        assert txn.status == PAYMENT_VERIFIED
        assert txn.processed_by_user_id == admin_a.id
        assert _balance(db_session, indebted_customer) == 2_500
        entry = db_session.query(CompanyLedgerEntry).one()
        assert entry.amount_cents == 7_500
        assert entry.description == f"Verified bank from Customer (Txn #{bank_payment})"

    def test_verify_twice_is_refused(self, db_session, admin_actor, indebted_customer, bank_payment):
        finance_service.verify_payment(admin_actor, bank_payment)
        again = finance_service.verify_payment(admin_actor, bank_payment)

        assert again.error == "Transaction already processed"
        assert _balance(db_session, indebted_customer) == 2_500

    def test_reject_has_no_financial_effect(self, db_session, admin_actor, indebted_customer, bank_payment):
        result = finance_service.reject_payment(admin_actor, bank_payment)

        assert result.message == "Payment Rejected"
        assert db_session.get(Transaction, bank_payment).status == PAYMENT_REJECTED
        assert _balance(db_session, indebted_customer) == 10_000
        assert db_session.query(CompanyLedgerEntry).count() == 0

    def test_other_tenant_cannot_verify(self, db_session, admin_b, bank_payment):
        result = finance_service.verify_payment(actor_for(admin_b), bank_payment)
        assert result.code == NOT_FOUND


class TestCompanyEntries:

    def test_expense_is_negative_debit(self, db_session, admin_actor):
        result = finance_service.record_company_entry(admin_actor, "expense", 2_500, "fuel", "Diesel")

        entry = db_session.get(CompanyLedgerEntry, result.data["entry_id"])
        assert entry.amount_cents == -2_500
        assert entry.transaction_type == LEDGER_DEBIT

    def test_customer_payment_income_posts_to_customer(self, db_session, admin_actor, indebted_customer):
        result = finance_service.record_company_entry(
            admin_actor, "income", 3_000, "customer_payment", customer_id=indebted_customer.id,
        )

        assert result.success
        assert result.data["transaction_id"] is not None
        assert _balance(db_session, indebted_customer) == 7_000

    @pytest.mark.parametrize("entry_type,amount,category", [
        ("gift", 100, "misc"),
        ("income", 0, "misc"),
        ("income", 100, ""),
    ])
    def test_invalid_entries(self, db_session, admin_actor, entry_type, amount, category):
        result = finance_service.record_company_entry(admin_actor, entry_type, amount, category)
        assert result.code == VALIDATION


class TestCustomerLedger:

    def test_entries_newest_first(self, db_session, cashier_actor, indebted_customer):
        finance_service.record_customer_payment(cashier_actor, indebted_customer.id, 1_000, "cash")
        finance_service.record_customer_payment(cashier_actor, indebted_customer.id, 2_000, "cheque")

        ledger = finance_service.get_customer_ledger(cashier_actor, indebted_customer.id)

        assert ledger["customer"]["id"] == indebted_customer.id
        assert [e["amount_cents"] for e in ledger["entries"]] == [-2_000, -1_000]

    def test_foreign_customer_raises_not_found(self, db_session, cashier_actor, customer_b):
        with pytest.raises(finance_service.FinanceError) as exc:
            finance_service.get_customer_ledger(cashier_actor, customer_b.id)
        assert exc.value.code == NOT_FOUND
