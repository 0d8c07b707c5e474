# Overview: Handover Request Workflow; driver hands cash and cylinders to office staff (maker-checker).

"""
Driver handover workflow.

FLOW:
    driver:  process_handover  -> cylinders locked (handover_pending)
                                  + handover_request transaction (pending)
    staff:   approve_handover  -> procedures.approve_driver_handover (atomic)
         or  reject_handover   -> cylinders back to "empty" on the truck
                                  + request rejected

The request does not list its cylinders. At approval or rejection they are
found as "handover_pending cylinders held by the requesting driver", which
is why a driver may only have one pending request at a time.

The maker (driver) can never be the checker: approvals and rejections need
a staff role, and staff cannot decide their own requests.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Transaction, User
from ..models.auth import STAFF_ROLES
from ..models.finance import (
    TXN_HANDOVER_REQUEST,
    HANDOVER_PENDING,
    HANDOVER_REJECTED,
    PAYMENT_CASH,
)
from ..time_utils import utcnow
from . import asset_service, procedures
from .concurrency import run_committed
from .ledger_service import format_amount, get_wallet_balance
from .results import (
    ActionResult,
    ServiceError,
    NOT_FOUND,
    VALIDATION,
    INSUFFICIENT_FUNDS,
    OWNERSHIP_VALIDATION_FAILURE,
    FINANCIAL_RECORD_FAILURE,
    EXTERNAL_PROCEDURE_FAILURE,
)
from .tenant_service import ActorContext, require_actor, scoped, get_tenant_user


class HandoverError(ServiceError):
    """Raised when a handover request cannot be created or decided."""

    code = VALIDATION


def _pending_request_for(actor: ActorContext, driver_id: int) -> Transaction | None:
    return (
        scoped(Transaction, actor)
        .filter(
            Transaction.type == TXN_HANDOVER_REQUEST,
            Transaction.user_id == driver_id,
            Transaction.status == HANDOVER_PENDING,
        )
        .first()
    )


def _load_request(actor: ActorContext, transaction_id) -> Transaction:
    request = None
    if transaction_id:
        request = (
            scoped(Transaction, actor)
            .filter(Transaction.id == transaction_id, Transaction.type == TXN_HANDOVER_REQUEST)
            .first()
        )
    if request is None:
        raise HandoverError("Handover request not found or access denied", code=NOT_FOUND)
    if request.status != HANDOVER_PENDING:
        raise HandoverError(f"Handover request is already {request.status}")
    return request


def _release_batch(actor: ActorContext, hold_token: str) -> None:
    run_committed(lambda: asset_service.release_hold(actor.tenant_id, actor.actor_id, hold_token=hold_token))


def _insert_request(actor: ActorContext, receiver_id: int, amount: int, locked: int) -> int:
    txn = Transaction(
        tenant_id=actor.tenant_id,
        type=TXN_HANDOVER_REQUEST,
        amount_cents=amount,
        payment_method=PAYMENT_CASH,
        status=HANDOVER_PENDING,
        user_id=actor.actor_id,
        receiver_id=receiver_id,
        description=f"Handover Request: {format_amount(amount)} + {locked} Cylinders",
        created_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn.id


# =============================================================================
# REQUEST (maker)
# =============================================================================

def process_handover(
    actor: ActorContext | None,
    deposit_amount_cents: int,
    returned_serials: Iterable[str] | None,
    receiver_id: int | None,
) -> ActionResult:
    """
    Create a handover request: lock the driver's cylinders and record the cash.

    Args:
        actor: The driver handing over
        deposit_amount_cents: Cash being handed in (may be 0 for cylinders only)
        returned_serials: Serials of cylinders on the truck being handed in
        receiver_id: Staff member receiving the handover

    Returns:
        ActionResult with transaction_id and locked count on success.
    """
    try:
        actor = require_actor(actor)
        serials = asset_service.normalize_serials(returned_serials)
        amount = deposit_amount_cents or 0

        if not receiver_id:
            raise HandoverError("Please select a receiver.")
        if amount < 0:
            raise HandoverError("Deposit amount cannot be negative")
        if amount == 0 and not serials:
            raise HandoverError("Nothing to hand over. Enter an amount or select cylinders.")

        receiver = get_tenant_user(actor, receiver_id, roles=STAFF_ROLES)
        if receiver.id == actor.actor_id:
            raise HandoverError("You cannot hand over to yourself")

        if _pending_request_for(actor, actor.actor_id):
            raise HandoverError("You already have a pending handover request")

        balance = get_wallet_balance(actor.tenant_id, actor.actor_id)
        if amount > balance:
            raise HandoverError(
                f"Insufficient Funds. Wallet Balance: {format_amount(balance)}",
                code=INSUFFICIENT_FUNDS,
            )

        locked = 0
        hold_token = None
        if serials:
            locked, hold_token = run_committed(
                lambda: asset_service.lock_for_handover(actor.tenant_id, actor.actor_id, serials)
            )
            if locked == 0:
                raise HandoverError(
                    "Update failed. No assets locked. Ensure you possess these cylinders.",
                    code=OWNERSHIP_VALIDATION_FAILURE,
                )
            if locked != len(serials):
                _release_batch(actor, hold_token)
                raise HandoverError(
                    "Ownership Validation Failed: You do not possess all selected cylinders.",
                    code=OWNERSHIP_VALIDATION_FAILURE,
                )

        try:
            transaction_id = run_committed(lambda: _insert_request(actor, receiver.id, amount, locked))
        except SQLAlchemyError as exc:
            if hold_token:
                try:
                    _release_batch(actor, hold_token)
                except SQLAlchemyError:
                    current_app.logger.warning(
                        "Could not release handover hold %s for driver %s", hold_token, actor.actor_id,
                        exc_info=True,
                    )
            raise HandoverError(
                f"Transaction Creation Failed: {exc}. Assets may remain locked - please contact Admin.",
                code=FINANCIAL_RECORD_FAILURE,
            ) from exc

        current_app.logger.info(
            "Driver %s requested handover %s to %s: %s, %s cylinders",
            actor.actor_id, transaction_id, receiver.id, format_amount(amount), locked,
        )
        return ActionResult.ok(
            "Handover request submitted",
            transaction_id=transaction_id,
            locked_cylinders=locked,
        )

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Handover request failed for driver %s", actor.actor_id)
        return ActionResult.fail(f"Handover Failed: {exc}", FINANCIAL_RECORD_FAILURE)


# =============================================================================
# DECISION (checker)
# =============================================================================

def approve_handover(actor: ActorContext | None, transaction_id: int | None) -> ActionResult:
    """Approve a pending handover via the atomic approval procedure."""
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)
        request = _load_request(actor, transaction_id)
        if request.user_id == actor.actor_id:
            raise HandoverError("You cannot approve your own handover request")
        request_id = request.id

        try:
            outcome = procedures.approve_driver_handover(request_id, actor.actor_id, actor.tenant_id)
        except SQLAlchemyError as exc:
            current_app.logger.error("Handover approval procedure failed for %s: %s", request_id, exc)
            raise HandoverError(f"Approval Failed: {exc}", code=EXTERNAL_PROCEDURE_FAILURE) from exc

        if not outcome.get("success"):
            raise HandoverError(
                outcome.get("message") or "Approval Failed",
                code=EXTERNAL_PROCEDURE_FAILURE,
            )

        current_app.logger.info("Handover %s approved by %s", request_id, actor.actor_id)
        return ActionResult.ok(
            outcome.get("message"),
            transaction_id=request_id,
            cylinders_received=outcome.get("cylinders_received", 0),
        )

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Handover approval failed for %s", transaction_id)
        return ActionResult.fail(f"Approval Failed: {exc}", EXTERNAL_PROCEDURE_FAILURE)


def reject_handover(actor: ActorContext | None, transaction_id: int | None) -> ActionResult:
    """
    Reject a pending handover: held cylinders revert to "empty", request marked rejected.

    No money moves; the wallet was never debited for a pending request.
    """
    try:
        actor = require_actor(actor, roles=STAFF_ROLES)
        request = _load_request(actor, transaction_id)
        if request.user_id == actor.actor_id:
            raise HandoverError("You cannot reject your own handover request")
        request_id = request.id
        driver_id = request.user_id

        def _reject():
            released = asset_service.release_hold(actor.tenant_id, driver_id)
            marked = (
                scoped(Transaction, actor)
                .filter(Transaction.id == request_id, Transaction.status == HANDOVER_PENDING)
                .update(
                    {
                        Transaction.status: HANDOVER_REJECTED,
                        Transaction.processed_by_user_id: actor.actor_id,
                        Transaction.processed_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if not marked:
                raise HandoverError("Handover request was already processed")
            return released

        released = run_committed(_reject)

        current_app.logger.info(
            "Handover %s rejected by %s; %s cylinders returned to driver %s",
            request_id, actor.actor_id, released, driver_id,
        )
        return ActionResult.ok("Handover Rejected", transaction_id=request_id, cylinders_released=released)

    except ServiceError as exc:
        db.session.rollback()
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Handover rejection failed for %s: %s", transaction_id, exc)
        return ActionResult.fail(f"Rejection Failed: {exc}", FINANCIAL_RECORD_FAILURE)


# =============================================================================
# READS
# =============================================================================

def get_pending_handovers(actor: ActorContext | None) -> list[dict]:
    """Pending requests of the tenant, oldest first, with each driver's held serials."""
    actor = require_actor(actor, roles=STAFF_ROLES)
    requests = (
        scoped(Transaction, actor)
        .filter(Transaction.type == TXN_HANDOVER_REQUEST, Transaction.status == HANDOVER_PENDING)
        .order_by(Transaction.created_at, Transaction.id)
        .all()
    )

    user_ids = {r.user_id for r in requests} | {r.receiver_id for r in requests if r.receiver_id}
    names = {}
    if user_ids:
        names = {
            user.id: user.name
            for user in scoped(User, actor).filter(User.id.in_(user_ids))
        }

    rows = []
    for request in requests:
        row = request.to_dict()
        row["driver_name"] = names.get(request.user_id)
        row["receiver_name"] = names.get(request.receiver_id)
        row["cylinder_serials"] = asset_service.held_serials(actor.tenant_id, request.user_id)
        rows.append(row)
    return rows
