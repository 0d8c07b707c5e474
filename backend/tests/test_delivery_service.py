# Overview: Pytest coverage for delivery settlement and trip start.

"""
Delivery Settlement Tests

Covers:
1. Stock failures mutate nothing
2. Sale/payment pair, ordering and amounts
3. Customer balance delta and wallet credit (any payment method)
4. Asset moves (delivery + returns)
5. Partial failure + retry resumes without duplicates
6. Fully settled orders are refused
7. Tenant / driver scoping
"""

import io

import pytest
from sqlalchemy.exc import OperationalError
from werkzeug.datastructures import FileStorage

from lpg_dispatch.models import Order, Transaction, SettlementStep, Cylinder
from lpg_dispatch.models.cylinders import (
    CYLINDER_FULL,
    CYLINDER_EMPTY,
    CYLINDER_AT_CUSTOMER,
    LOCATION_CUSTOMER,
    LOCATION_DRIVER,
)
from lpg_dispatch.models.orders import ORDER_ASSIGNED, ORDER_ON_TRIP, ORDER_DELIVERED
from lpg_dispatch.models.finance import TXN_SALE, TXN_PAYMENT
from lpg_dispatch.services import delivery_service, ledger_service
from lpg_dispatch.services.delivery_service import SETTLEMENT_STEPS, STEP_PAYMENT_RECORDED
from lpg_dispatch.services.ledger_service import LedgerError, PAYMENT_ORDER_OFFSET
from lpg_dispatch.services.results import (
    UNAUTHORIZED,
    NOT_FOUND,
    VALIDATION,
    ZERO_STOCK,
    INSUFFICIENT_STOCK,
    ORDER_UPDATE_FAILURE,
    FINANCIAL_RECORD_FAILURE,
)

from conftest import actor_for, get_cylinder


def _txns(db_session, order_id):
    db_session.expire_all()
    return db_session.query(Transaction).filter_by(order_id=order_id).order_by(Transaction.created_at).all()


def _balance(db_session, customer):
    db_session.expire_all()
    db_session.refresh(customer)
    return customer.current_balance_cents


@pytest.fixture
def loaded_order(tenant_a, driver_a, customer_a, make_order, make_cylinders):
    """Order for 2 cylinders (Rs 50.00) with 3 full cylinders on the truck."""
    order = make_order(tenant_a, customer_a, driver_a, total_cents=5_000, quantity=2)
    make_cylinders(tenant_a, ["F-1", "F-2", "F-3"], holder_id=driver_a.id)
    return order


class TestStockPreflight:

    def test_zero_stock_fails_before_any_mutation(self, db_session, tenant_a, driver_a, driver_actor,
                                                  customer_a, make_order):
        order = make_order(tenant_a, customer_a, driver_a, quantity=2)

        result = delivery_service.complete_delivery(driver_actor, order.id, 5_000, "cash")

        assert not result.success
        assert result.code == ZERO_STOCK
        assert result.error == "No cylinders found on truck! Cannot complete delivery."
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == ORDER_ASSIGNED
        assert _txns(db_session, order.id) == []
        assert db_session.query(SettlementStep).count() == 0
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 0
        assert _balance(db_session, customer_a) == 0

    def test_insufficient_stock_fails_before_any_mutation(self, db_session, tenant_a, driver_a, driver_actor,
                                                          customer_a, make_order, make_cylinders):
        order = make_order(tenant_a, customer_a, driver_a, quantity=3)
        make_cylinders(tenant_a, ["F-1"], holder_id=driver_a.id)

        result = delivery_service.complete_delivery(driver_actor, order.id, 5_000, "cash")

        assert result.code == INSUFFICIENT_STOCK
        assert "You have 1, but order needs 3" in result.error
        assert db_session.get(Order, order.id).status == ORDER_ASSIGNED
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_FULL
        assert _txns(db_session, order.id) == []


class TestSettlement:

    def test_full_settlement_with_partial_payment(self, db_session, tenant_a, driver_a, driver_actor,
                                                  customer_a, loaded_order):
        result = delivery_service.complete_delivery(
            driver_actor, loaded_order.id, 3_000, "cash", notes="Left at gate",
        )

        assert result.success, result.error
        assert result.data["delivered_cylinders"] == 2

        order = db_session.get(Order, loaded_order.id)
        assert order.status == ORDER_DELIVERED
        assert order.amount_received_cents == 3_000
        assert order.payment_method == "cash"
        assert order.notes == "Left at gate"
        assert order.trip_completed_at is not None

        sale, payment = _txns(db_session, loaded_order.id)
        assert sale.type == TXN_SALE and sale.amount_cents == 5_000
        assert payment.type == TXN_PAYMENT and payment.amount_cents == -3_000
        assert payment.created_at - sale.created_at == PAYMENT_ORDER_OFFSET

        assert _balance(db_session, customer_a) == 2_000
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 3_000

    def test_three_full_two_required_leaves_one_on_truck(self, db_session, tenant_a, driver_actor,
                                                          customer_a, loaded_order):
        delivery_service.complete_delivery(driver_actor, loaded_order.id, 5_000, "cash")

        cylinders = {s: get_cylinder(s, tenant_a.id) for s in ("F-1", "F-2", "F-3")}
        at_customer = [c for c in cylinders.values() if c.status == CYLINDER_AT_CUSTOMER]
        assert len(at_customer) == 2
        for cylinder in at_customer:
            assert cylinder.current_location_type == LOCATION_CUSTOMER
            assert cylinder.current_holder_id == customer_a.id
            assert cylinder.last_order_id == loaded_order.id
        assert cylinders["F-3"].status == CYLINDER_FULL
        assert cylinders["F-3"].current_location_type == LOCATION_DRIVER

    def test_nothing_received_records_only_the_sale(self, db_session, tenant_a, driver_a, driver_actor,
                                                    customer_a, loaded_order):
        result = delivery_service.complete_delivery(driver_actor, loaded_order.id, 0, "credit")

        assert result.success
        txns = _txns(db_session, loaded_order.id)
        assert [t.type for t in txns] == [TXN_SALE]
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 0
        assert _balance(db_session, customer_a) == 5_000
        steps = {s.step for s in db_session.query(SettlementStep).filter_by(order_id=loaded_order.id)}
        assert STEP_PAYMENT_RECORDED not in steps

    def test_cash_on_credit_order_still_reaches_wallet(self, db_session, tenant_a, driver_a, driver_actor,
                                                       loaded_order):
        delivery_service.complete_delivery(driver_actor, loaded_order.id, 1_500, "credit")
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 1_500

    def test_returns_by_serial_come_back_empty(self, db_session, tenant_a, driver_a, driver_actor,
                                               customer_a, loaded_order, make_cylinders):
        make_cylinders(tenant_a, ["OLD-1", "OLD-2"], holder_id=customer_a.id,
                       status=CYLINDER_AT_CUSTOMER, location=LOCATION_CUSTOMER)

        result = delivery_service.complete_delivery(
            driver_actor, loaded_order.id, 5_000, "cash", returned_serials=["OLD-1", "OLD-2"],
        )

        assert result.data["returned_cylinders"] == 2
        old = get_cylinder("OLD-1", tenant_a.id)
        assert old.status == CYLINDER_EMPTY
        assert old.current_location_type == LOCATION_DRIVER
        assert old.current_holder_id == driver_a.id

    def test_legacy_return_count(self, db_session, tenant_a, driver_actor, customer_a, loaded_order,
                                 make_cylinders):
        make_cylinders(tenant_a, ["OLD-1"], holder_id=customer_a.id,
                       status=CYLINDER_AT_CUSTOMER, location=LOCATION_CUSTOMER)

        result = delivery_service.complete_delivery(
            driver_actor, loaded_order.id, 5_000, "cash", returned_empty_count=1,
        )

        assert result.data["returned_cylinders"] == 1
        assert get_cylinder("OLD-1", tenant_a.id).status == CYLINDER_EMPTY
        # The cylinders this order just delivered stay with the customer
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_AT_CUSTOMER
        assert get_cylinder("F-2", tenant_a.id).status == CYLINDER_AT_CUSTOMER

    def test_proof_upload_sets_public_url(self, app, db_session, driver_actor, loaded_order):
        proof = FileStorage(stream=io.BytesIO(b"\xff\xd8jpeg"), filename="gate photo.JPG")

        result = delivery_service.complete_delivery(driver_actor, loaded_order.id, 5_000, "cash", proof_file=proof)

        assert result.success
        url = db_session.get(Order, loaded_order.id).proof_url
        assert url.startswith("/uploads/receipts/delivery_%s_" % loaded_order.id)
        assert url.endswith(".jpg")

    def test_failed_proof_upload_does_not_block_delivery(self, db_session, driver_actor, loaded_order,
                                                         monkeypatch):
        def _disk_full(self, dst, *args, **kwargs):
            raise OSError("No space left on device")

        monkeypatch.setattr(FileStorage, "save", _disk_full)
        proof = FileStorage(stream=io.BytesIO(b"\xff\xd8jpeg"), filename="gate.jpg")

        result = delivery_service.complete_delivery(driver_actor, loaded_order.id, 5_000, "cash", proof_file=proof)

        assert result.success, result.error
        assert result.data["proof_url"] is None
        db_session.expire_all()
        order = db_session.get(Order, loaded_order.id)
        assert order.status == ORDER_DELIVERED
        assert order.proof_url is None

    def test_all_steps_are_logged_once(self, db_session, driver_actor, loaded_order):
        delivery_service.complete_delivery(driver_actor, loaded_order.id, 100, "cash")

        steps = [s.step for s in db_session.query(SettlementStep).filter_by(order_id=loaded_order.id)]
        assert sorted(steps) == sorted(SETTLEMENT_STEPS)


class TestRecovery:

    def test_retry_after_ledger_failure_completes_without_duplicates(self, db_session, monkeypatch, tenant_a,
                                                                     driver_a, driver_actor, customer_a,
                                                                     loaded_order):
        real_apply = ledger_service.apply_customer_balance

        def broken_apply(*args, **kwargs):
            raise LedgerError("balance table unavailable")

        monkeypatch.setattr(ledger_service, "apply_customer_balance", broken_apply)
        first = delivery_service.complete_delivery(driver_actor, loaded_order.id, 2_000, "cash")

        assert not first.success
        assert first.code == FINANCIAL_RECORD_FAILURE
        assert first.error.startswith("Financial Record Failed:")
        # Order stays delivered; earlier ledger entries stay
        assert db_session.get(Order, loaded_order.id).status == ORDER_DELIVERED
        assert len(_txns(db_session, loaded_order.id)) == 2
        assert _balance(db_session, customer_a) == 0

        monkeypatch.setattr(ledger_service, "apply_customer_balance", real_apply)
        # Different inputs on retry are ignored in favour of the recorded ones
        second = delivery_service.complete_delivery(driver_actor, loaded_order.id, 9_999, "bank")

        assert second.success, second.error
        txns = _txns(db_session, loaded_order.id)
        assert [t.type for t in txns] == [TXN_SALE, TXN_PAYMENT]
        assert txns[1].amount_cents == -2_000
        assert _balance(db_session, customer_a) == 3_000
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 2_000
        delivered = db_session.query(Cylinder).filter_by(status=CYLINDER_AT_CUSTOMER).count()
        assert delivered == 2

    def test_fully_settled_order_is_refused(self, db_session, tenant_a, driver_a, driver_actor, customer_a,
                                            loaded_order):
        delivery_service.complete_delivery(driver_actor, loaded_order.id, 1_000, "cash")

        again = delivery_service.complete_delivery(driver_actor, loaded_order.id, 1_000, "cash")

        assert not again.success
        assert again.code == VALIDATION
        assert "already delivered" in again.error
        assert len(_txns(db_session, loaded_order.id)) == 2
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 1_000
        assert _balance(db_session, customer_a) == 4_000

    def test_store_failure_before_any_step_is_a_result(self, db_session, tenant_a, driver_a, driver_actor,
                                                       loaded_order, monkeypatch):
        def _database_locked(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(delivery_service, "ensure_driver_stock", _database_locked)

        result = delivery_service.complete_delivery(driver_actor, loaded_order.id, 5_000, "cash")

        assert not result.success
        assert result.code == ORDER_UPDATE_FAILURE
        assert "database is locked" in result.error
        db_session.expire_all()
        assert db_session.get(Order, loaded_order.id).status == ORDER_ASSIGNED
        assert db_session.query(SettlementStep).count() == 0
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 0


class TestScopingAndValidation:

    def test_missing_actor_fails_closed(self, db_session, loaded_order):
        result = delivery_service.complete_delivery(None, loaded_order.id, 0, "cash")
        assert result.code == UNAUTHORIZED

    def test_other_drivers_order_is_not_found(self, db_session, driver_a2, loaded_order):
        result = delivery_service.complete_delivery(actor_for(driver_a2), loaded_order.id, 0, "cash")
        assert result.code == NOT_FOUND
        assert result.error == "Order not found or access denied"

    def test_cross_tenant_order_is_not_found(self, db_session, driver_b, loaded_order):
        result = delivery_service.complete_delivery(actor_for(driver_b), loaded_order.id, 0, "cash")
        assert result.code == NOT_FOUND

    @pytest.mark.parametrize("order_id,received,method,message", [
        (None, 0, "cash", "Missing Order ID"),
        (1, -5, "cash", "Received amount cannot be negative"),
        (1, 0, "barter", "Invalid payment method"),
    ])
    def test_invalid_input(self, db_session, driver_actor, order_id, received, method, message):
        result = delivery_service.complete_delivery(driver_actor, order_id, received, method)
        assert result.code == VALIDATION
        assert message in result.error


class TestStartTrip:

    def test_moves_own_assigned_orders_on_trip(self, db_session, tenant_a, driver_a, driver_a2, driver_actor,
                                               customer_a, make_order):
        mine = make_order(tenant_a, customer_a, driver_a)
        theirs = make_order(tenant_a, customer_a, driver_a2)

        result = delivery_service.start_trip(driver_actor, [mine.id, theirs.id])

        assert result.success
        assert result.data["started"] == 1
        db_session.expire_all()
        assert db_session.get(Order, mine.id).status == ORDER_ON_TRIP
        assert db_session.get(Order, mine.id).trip_started_at is not None
        assert db_session.get(Order, theirs.id).status == ORDER_ASSIGNED

    def test_empty_selection_is_validation(self, db_session, driver_actor):
        result = delivery_service.start_trip(driver_actor, [])
        assert result.code == VALIDATION
        assert result.error == "No orders selected"

    def test_no_matching_orders_is_not_found(self, db_session, driver_actor):
        result = delivery_service.start_trip(driver_actor, [12345])
        assert result.code == NOT_FOUND

    def test_on_trip_order_can_be_delivered(self, db_session, driver_actor, loaded_order):
        delivery_service.start_trip(driver_actor, [loaded_order.id])
        result = delivery_service.complete_delivery(driver_actor, loaded_order.id, 5_000, "cash")
        assert result.success
