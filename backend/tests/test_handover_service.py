# Overview: Pytest coverage for the driver handover maker-checker workflow.

"""
Handover Workflow Tests

Covers:
1. Request validation (receiver, amounts, one pending request)
2. Insufficient funds detected before any lock
3. Ownership failures revert the lock and create no request
4. Approval: wallet debit, cash book credit, cylinders to warehouse
5. Rejection: held cylinders revert to empty on the truck
6. Checker rules (staff only, never the maker, tenant scoped)
7. Data-store failures come back as results, holds are released
"""

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from lpg_dispatch.models import Transaction, CompanyLedgerEntry
from lpg_dispatch.models.cylinders import (
    CYLINDER_FULL,
    CYLINDER_EMPTY,
    CYLINDER_HANDOVER_PENDING,
    LOCATION_WAREHOUSE,
    LOCATION_DRIVER,
)
from lpg_dispatch.models.finance import (
    TXN_HANDOVER_REQUEST,
    HANDOVER_PENDING,
    HANDOVER_APPROVED,
    HANDOVER_REJECTED,
)
from lpg_dispatch.services import handover_service, ledger_service, procedures
from lpg_dispatch.services.results import (
    UNAUTHORIZED,
    NOT_FOUND,
    VALIDATION,
    INSUFFICIENT_FUNDS,
    OWNERSHIP_VALIDATION_FAILURE,
    FINANCIAL_RECORD_FAILURE,
    EXTERNAL_PROCEDURE_FAILURE,
)

from conftest import actor_for, get_cylinder


def _requests(db_session):
    db_session.expire_all()
    return db_session.query(Transaction).filter_by(type=TXN_HANDOVER_REQUEST).all()


@pytest.fixture
def truck(tenant_a, driver_a, make_cylinders):
    """Driver A holds one full and one empty cylinder."""
    make_cylinders(tenant_a, ["F-1"], holder_id=driver_a.id)
    make_cylinders(tenant_a, ["E-1"], holder_id=driver_a.id, status=CYLINDER_EMPTY)


@pytest.fixture
def pending_request(db_session, driver_a, driver_actor, admin_a, truck, fund_wallet):
    """Rs 200 + both cylinders handed to admin A, wallet holds Rs 300."""
    fund_wallet(driver_a, 30_000)
    result = handover_service.process_handover(driver_actor, 20_000, ["F-1", "E-1"], admin_a.id)
    assert result.success, result.error
    return result.data["transaction_id"]


class TestProcessHandover:

    def test_creates_pending_request_and_locks_cylinders(self, db_session, tenant_a, driver_a, admin_a,
                                                         pending_request):
        request = db_session.get(Transaction, pending_request)

        assert request.status == HANDOVER_PENDING
        assert request.amount_cents == 20_000
        assert request.user_id == driver_a.id
        assert request.receiver_id == admin_a.id
        assert request.payment_method == "cash"
        assert request.description == "Handover Request: Rs 200.00 + 2 Cylinders"
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_HANDOVER_PENDING
        assert get_cylinder("E-1", tenant_a.id).status == CYLINDER_HANDOVER_PENDING
        # Nothing moves financially until approval
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 30_000

    def test_receiver_is_required(self, db_session, driver_actor, truck):
        result = handover_service.process_handover(driver_actor, 0, ["F-1"], None)
        assert result.code == VALIDATION
        assert result.error == "Please select a receiver."

    def test_receiver_must_be_staff_in_tenant(self, db_session, driver_actor, driver_a2, admin_b, truck):
        assert handover_service.process_handover(driver_actor, 0, ["F-1"], driver_a2.id).code == NOT_FOUND
        assert handover_service.process_handover(driver_actor, 0, ["F-1"], admin_b.id).code == NOT_FOUND

    def test_something_must_be_handed_over(self, db_session, driver_actor, admin_a):
        result = handover_service.process_handover(driver_actor, 0, [], admin_a.id)
        assert result.code == VALIDATION

    def test_insufficient_funds_checked_before_any_lock(self, db_session, tenant_a, driver_a, driver_actor,
                                                         admin_a, truck, fund_wallet):
        fund_wallet(driver_a, 30_000)

        result = handover_service.process_handover(driver_actor, 50_000, ["F-1", "E-1"], admin_a.id)

        assert result.code == INSUFFICIENT_FUNDS
        assert result.error == "Insufficient Funds. Wallet Balance: Rs 300.00"
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_FULL
        assert get_cylinder("E-1", tenant_a.id).status == CYLINDER_EMPTY
        assert _requests(db_session) == []

    def test_partial_ownership_reverts_and_creates_nothing(self, db_session, tenant_a, driver_a, driver_actor,
                                                           admin_a, truck):
        result = handover_service.process_handover(driver_actor, 0, ["F-1", "E-1", "NOT-MINE"], admin_a.id)

        assert result.code == OWNERSHIP_VALIDATION_FAILURE
        assert result.error == "Ownership Validation Failed: You do not possess all selected cylinders."
        full = get_cylinder("F-1", tenant_a.id)
        assert full.status == CYLINDER_EMPTY
        assert full.current_holder_id == driver_a.id
        assert full.hold_token is None
        assert get_cylinder("E-1", tenant_a.id).status == CYLINDER_EMPTY
        assert _requests(db_session) == []

    def test_no_owned_cylinders_locked(self, db_session, driver_actor, admin_a, monkeypatch):
        releases = []
        monkeypatch.setattr(handover_service, "_release_batch", lambda *args: releases.append(args))

        result = handover_service.process_handover(driver_actor, 0, ["GHOST"], admin_a.id)

        assert result.code == OWNERSHIP_VALIDATION_FAILURE
        assert result.error.startswith("Update failed. No assets locked.")
        # Nothing was locked, so there is no batch to release
        assert releases == []

    def test_one_pending_request_per_driver(self, db_session, driver_actor, admin_a, pending_request):
        result = handover_service.process_handover(driver_actor, 100, [], admin_a.id)
        assert result.code == VALIDATION
        assert "pending handover" in result.error

    def test_cash_only_handover(self, db_session, driver_a, driver_actor, cashier_a, fund_wallet):
        fund_wallet(driver_a, 5_000)
        result = handover_service.process_handover(driver_actor, 5_000, [], cashier_a.id)
        assert result.success
        assert result.data["locked_cylinders"] == 0


class TestApproveHandover:

    def test_approval_settles_cash_and_cylinders(self, db_session, tenant_a, driver_a, admin_a, admin_actor,
                                                 pending_request):
        result = handover_service.approve_handover(admin_actor, pending_request)

        assert result.success, result.error
        assert result.message == "Handover Approved Successfully"
        assert result.data["cylinders_received"] == 2

        request = db_session.get(Transaction, pending_request)
        assert request.status == HANDOVER_APPROVED
        assert request.processed_by_user_id == admin_a.id
        assert request.processed_at is not None

        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 10_000
        entry = db_session.query(CompanyLedgerEntry).filter_by(transaction_id=pending_request).one()
        assert entry.amount_cents == 20_000
        assert entry.category == procedures.HANDOVER_LEDGER_CATEGORY

        full = get_cylinder("F-1", tenant_a.id)
        empty = get_cylinder("E-1", tenant_a.id)
        assert full.current_location_type == LOCATION_WAREHOUSE
        assert full.current_holder_id is None
        assert full.status == CYLINDER_EMPTY
        assert empty.status == CYLINDER_EMPTY
        assert handover_service.get_pending_handovers(admin_actor) == []

    def test_cannot_approve_twice(self, db_session, admin_actor, cashier_actor, pending_request):
        handover_service.approve_handover(admin_actor, pending_request)
        again = handover_service.approve_handover(cashier_actor, pending_request)
        assert again.code == VALIDATION
        assert "already approved" in again.error

    def test_procedure_refusal_maps_to_external_failure(self, db_session, tenant_a, driver_a, admin_actor,
                                                        pending_request):
        # Cash left the wallet some other way since the request was made
        ledger_service.debit_driver_wallet(tenant_a.id, driver_a.id, 25_000)
        db_session.commit()

        result = handover_service.approve_handover(admin_actor, pending_request)

        assert result.code == EXTERNAL_PROCEDURE_FAILURE
        assert result.error.startswith("Insufficient Funds")
        # Single transaction: nothing moved
        assert db_session.get(Transaction, pending_request).status == HANDOVER_PENDING
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_HANDOVER_PENDING
        assert db_session.query(CompanyLedgerEntry).count() == 0

    def test_driver_cannot_approve(self, db_session, driver_actor, pending_request):
        result = handover_service.approve_handover(driver_actor, pending_request)
        assert result.code == UNAUTHORIZED

    def test_other_tenant_cannot_see_request(self, db_session, admin_b, pending_request):
        result = handover_service.approve_handover(actor_for(admin_b), pending_request)
        assert result.code == NOT_FOUND

    def test_staff_cannot_approve_own_request(self, db_session, tenant_a, admin_a, admin_actor, cashier_a,
                                              cashier_actor, fund_wallet):
        fund_wallet(cashier_a, 1_000)
        created = handover_service.process_handover(cashier_actor, 1_000, [], admin_a.id)
        assert created.success

        result = handover_service.approve_handover(cashier_actor, created.data["transaction_id"])
        assert result.code == VALIDATION


class TestRejectHandover:

    def test_rejection_reverts_cylinders_to_empty(self, db_session, tenant_a, driver_a, admin_a, admin_actor,
                                                pending_request):
        result = handover_service.reject_handover(admin_actor, pending_request)

        assert result.success
        request = db_session.get(Transaction, pending_request)
        assert request.status == HANDOVER_REJECTED
        assert request.processed_by_user_id == admin_a.id

        full = get_cylinder("F-1", tenant_a.id)
        empty = get_cylinder("E-1", tenant_a.id)
        assert full.status == CYLINDER_EMPTY
        assert empty.status == CYLINDER_EMPTY
        assert full.current_location_type == LOCATION_DRIVER
        assert full.current_holder_id == driver_a.id
        # No financial reversal
        assert ledger_service.get_wallet_balance(tenant_a.id, driver_a.id) == 30_000
        assert db_session.query(CompanyLedgerEntry).count() == 0

    def test_driver_can_request_again_after_rejection(self, db_session, driver_actor, admin_a, admin_actor,
                                                      pending_request):
        handover_service.reject_handover(admin_actor, pending_request)
        again = handover_service.process_handover(driver_actor, 0, ["F-1"], admin_a.id)
        assert again.success, again.error

    def test_rejecting_decided_request_fails(self, db_session, admin_actor, pending_request):
        handover_service.approve_handover(admin_actor, pending_request)
        result = handover_service.reject_handover(admin_actor, pending_request)
        assert result.code == VALIDATION


def _database_locked(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestStoreFailures:

    def test_insert_failure_releases_hold(self, db_session, tenant_a, driver_a, driver_actor, admin_a,
                                          truck, monkeypatch):
        def _broken_insert(*args):
            raise SQLAlchemyError("insert refused")

        monkeypatch.setattr(handover_service, "_insert_request", _broken_insert)

        result = handover_service.process_handover(driver_actor, 0, ["F-1", "E-1"], admin_a.id)

        assert not result.success
        assert result.code == FINANCIAL_RECORD_FAILURE
        assert result.error.startswith("Transaction Creation Failed: insert refused")
        assert "may remain locked" in result.error
        for serial in ("F-1", "E-1"):
            cylinder = get_cylinder(serial, tenant_a.id)
            assert cylinder.status == CYLINDER_EMPTY
            assert cylinder.hold_token is None
            assert cylinder.current_holder_id == driver_a.id
        assert _requests(db_session) == []

    def test_wallet_read_failure_is_a_result(self, db_session, tenant_a, driver_actor, admin_a, truck,
                                             monkeypatch):
        monkeypatch.setattr(handover_service, "get_wallet_balance", _database_locked)

        result = handover_service.process_handover(driver_actor, 0, ["F-1"], admin_a.id)

        assert not result.success
        assert result.code == FINANCIAL_RECORD_FAILURE
        assert "database is locked" in result.error
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_FULL
        assert _requests(db_session) == []

    def test_approval_read_failure_is_a_result(self, db_session, tenant_a, admin_actor, pending_request,
                                               monkeypatch):
        monkeypatch.setattr(handover_service, "_load_request", _database_locked)

        result = handover_service.approve_handover(admin_actor, pending_request)

        assert not result.success
        assert result.code == EXTERNAL_PROCEDURE_FAILURE
        assert result.error.startswith("Approval Failed:")
        assert db_session.get(Transaction, pending_request).status == HANDOVER_PENDING
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_HANDOVER_PENDING

    def test_rejection_failure_is_a_result(self, db_session, tenant_a, admin_actor, pending_request,
                                           monkeypatch):
        monkeypatch.setattr(handover_service.asset_service, "release_hold", _database_locked)

        result = handover_service.reject_handover(admin_actor, pending_request)

        assert result.code == FINANCIAL_RECORD_FAILURE
        assert get_cylinder("F-1", tenant_a.id).status == CYLINDER_HANDOVER_PENDING


class TestPendingHandovers:

    def test_lists_locked_serials_and_names(self, db_session, admin_actor, pending_request):
        rows = handover_service.get_pending_handovers(admin_actor)

        assert len(rows) == 1
        assert rows[0]["id"] == pending_request
        assert rows[0]["driver_name"] == "Asad Driver"
        assert rows[0]["receiver_name"] == "Zara Admin"
        assert rows[0]["cylinder_serials"] == ["E-1", "F-1"]

    def test_other_tenant_sees_nothing(self, db_session, admin_b, pending_request):
        assert handover_service.get_pending_handovers(actor_for(admin_b)) == []
