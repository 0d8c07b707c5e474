# Overview: Pytest coverage for ledger writer entries and running balances.

import pytest

from lpg_dispatch.models import EmployeeWallet, CompanyLedgerEntry
from lpg_dispatch.models.finance import TXN_SALE, TXN_PAYMENT, LEDGER_CREDIT, LEDGER_DEBIT
from lpg_dispatch.services import ledger_service
from lpg_dispatch.services.ledger_service import LedgerError, PAYMENT_ORDER_OFFSET
from lpg_dispatch.services.results import INSUFFICIENT_FUNDS
from lpg_dispatch.time_utils import utcnow


def test_sale_and_payment_are_ordered_by_offset(db_session, tenant_a, driver_a, customer_a, make_order):
    order = make_order(tenant_a, customer_a, driver_a, total_cents=10_000, friendly_id="ORD-7")
    sold_at = utcnow()

    sale = ledger_service.record_sale(
        tenant_id=tenant_a.id, order=order, actor_id=driver_a.id, payment_method=None, occurred_at=sold_at,
    )
    payment = ledger_service.record_payment(
        tenant_id=tenant_a.id, order=order, actor_id=driver_a.id, amount_received_cents=4_000,
        payment_method="cash", sale_occurred_at=sale.created_at,
    )
    db_session.commit()

    assert sale.type == TXN_SALE
    assert sale.amount_cents == 10_000
    assert sale.payment_method == "pending"
    assert sale.description == "Order #ORD-7 - Delivered"
    assert payment.type == TXN_PAYMENT
    assert payment.amount_cents == -4_000
    assert payment.created_at == sold_at + PAYMENT_ORDER_OFFSET
    assert payment.created_at > sale.created_at


def test_payment_requires_positive_amount(db_session, tenant_a, driver_a, customer_a, make_order):
    order = make_order(tenant_a, customer_a, driver_a)
    with pytest.raises(LedgerError):
        ledger_service.record_payment(
            tenant_id=tenant_a.id, order=order, actor_id=driver_a.id, amount_received_cents=0,
            payment_method="cash", sale_occurred_at=utcnow(),
        )


def test_customer_balance_moves_by_delta(db_session, tenant_a, customer_a):
    ledger_service.apply_customer_balance(tenant_a.id, customer_a.id, 6_000)
    ledger_service.apply_customer_balance(tenant_a.id, customer_a.id, -2_500)
    db_session.commit()

    db_session.refresh(customer_a)
    assert customer_a.current_balance_cents == 3_500


def test_customer_balance_is_tenant_scoped(db_session, tenant_b, customer_a):
    with pytest.raises(LedgerError):
        ledger_service.apply_customer_balance(tenant_b.id, customer_a.id, 100)


def test_wallet_credit_creates_then_increments(db_session, tenant_a, driver_a):
    ledger_service.credit_driver_wallet(tenant_a.id, driver_a.id, 1_000)
    ledger_service.credit_driver_wallet(tenant_a.id, driver_a.id, 500)
    db_session.commit()

    wallets = db_session.query(EmployeeWallet).filter_by(user_id=driver_a.id).all()
    assert len(wallets) == 1
    assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 1_500


def test_wallet_debit_never_goes_negative(db_session, tenant_a, driver_a, fund_wallet):
    fund_wallet(driver_a, 30_000)

    with pytest.raises(LedgerError) as exc:
        ledger_service.debit_driver_wallet(tenant_a.id, driver_a.id, 50_000)

    assert exc.value.code == INSUFFICIENT_FUNDS
    assert str(exc.value) == "Insufficient Funds. Wallet Balance: Rs 300.00"
    db_session.rollback()
    assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 30_000


def test_wallet_debit_without_wallet_is_insufficient(db_session, tenant_a, driver_a):
    with pytest.raises(LedgerError) as exc:
        ledger_service.debit_driver_wallet(tenant_a.id, driver_a.id, 1)
    assert exc.value.code == INSUFFICIENT_FUNDS


def test_company_entry_direction_follows_sign(db_session, tenant_a, admin_a):
    income = ledger_service.append_company_entry(
        tenant_id=tenant_a.id, amount_cents=2_000, category="misc", admin_id=admin_a.id,
    )
    expense = ledger_service.append_company_entry(
        tenant_id=tenant_a.id, amount_cents=-700, category="fuel", admin_id=admin_a.id,
    )
    db_session.commit()

    assert income.transaction_type == LEDGER_CREDIT
    assert expense.transaction_type == LEDGER_DEBIT
    assert db_session.query(CompanyLedgerEntry).count() == 2


def test_company_entry_rejects_zero(db_session, tenant_a):
    with pytest.raises(LedgerError):
        ledger_service.append_company_entry(tenant_id=tenant_a.id, amount_cents=0, category="misc")


def test_format_amount():
    assert ledger_service.format_amount(123_456) == "Rs 1,234.56"
