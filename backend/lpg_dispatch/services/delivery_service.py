# Overview: Delivery Settlement Orchestrator; settles one delivered order step by step.

"""
Delivery settlement.

WHY: Completing a delivery touches four kinds of state (order, ledger,
balances, cylinders). Each step is its own committed unit of work, so a
failure half way leaves the earlier steps in place. Instead of pretending
to roll back, every step is logged in settlement_steps in the same commit
as its writes, and a retried settlement resumes at the first missing step.

SEQUENCE (per order):
1. Load the order for this driver only (tenant + driver filter)
2. Stock check: driver must hold enough full cylinders (before ANY write)
3. Proof upload (failure is logged, never fatal)
4. Order -> delivered                          [order_delivered]
5. Sale entry                                  [sale_recorded]
6. Payment entry + driver wallet credit        [payment_recorded]   (received > 0)
7. Customer balance += total - received        [balance_applied]
8. Cylinders driver -> customer                [cylinders_delivered]
9. Returns customer -> driver (empty)          [returns_processed]

Steps 5-7 failing is a "financial record failure"; the order stays
delivered (the gas was physically delivered) and a retry completes the
books without duplicating what already landed.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage

from ..extensions import db
from ..models import Order, Transaction, SettlementStep
from ..models.orders import ORDER_ASSIGNED, ORDER_ON_TRIP, ORDER_DELIVERED, ACTIVE_ORDER_STATUSES
from ..models.finance import TXN_SALE, VALID_PAYMENT_METHODS
from ..time_utils import utcnow
from . import asset_service, ledger_service, proof_storage
from .concurrency import run_committed
from .ledger_service import LedgerError
from .results import (
    ActionResult,
    ServiceError,
    NOT_FOUND,
    VALIDATION,
    ORDER_UPDATE_FAILURE,
    FINANCIAL_RECORD_FAILURE,
    ASSET_MOVE_FAILURE,
)
from .stock_service import ensure_driver_stock
from .tenant_service import ActorContext, require_actor, scoped


STEP_ORDER_DELIVERED = "order_delivered"
STEP_SALE_RECORDED = "sale_recorded"
STEP_PAYMENT_RECORDED = "payment_recorded"
STEP_BALANCE_APPLIED = "balance_applied"
STEP_CYLINDERS_DELIVERED = "cylinders_delivered"
STEP_RETURNS_PROCESSED = "returns_processed"

SETTLEMENT_STEPS = (
    STEP_ORDER_DELIVERED,
    STEP_SALE_RECORDED,
    STEP_PAYMENT_RECORDED,
    STEP_BALANCE_APPLIED,
    STEP_CYLINDERS_DELIVERED,
    STEP_RETURNS_PROCESSED,
)


class SettlementError(ServiceError):
    """Raised when a settlement stage fails; the message names the stage."""

    code = VALIDATION


# =============================================================================
# HELPERS
# =============================================================================

def _load_order(actor: ActorContext, order_id: int) -> Order | None:
    return (
        scoped(Order, actor)
        .filter(Order.id == order_id, Order.driver_id == actor.actor_id)
        .first()
    )


def completed_steps(order_id: int) -> set[str]:
    rows = db.session.query(SettlementStep.step).filter_by(order_id=order_id)
    return {row.step for row in rows}


def _log_step(actor: ActorContext, order_id: int, step: str, detail: str | None = None) -> None:
    db.session.add(SettlementStep(
        tenant_id=actor.tenant_id,
        order_id=order_id,
        step=step,
        detail=detail,
        completed_at=utcnow(),
    ))
    db.session.flush()


def _required_steps(received_cents: int) -> list[str]:
    steps = list(SETTLEMENT_STEPS)
    if received_cents <= 0:
        steps.remove(STEP_PAYMENT_RECORDED)
    return steps


def _validate_inputs(
    order_id,
    received_amount_cents: int,
    payment_method: str | None,
    returned_empty_count: int,
) -> None:
    if not order_id:
        raise SettlementError("Missing Order ID")
    if received_amount_cents is None or received_amount_cents < 0:
        raise SettlementError("Received amount cannot be negative")
    if returned_empty_count is not None and returned_empty_count < 0:
        raise SettlementError("Returned empty count cannot be negative")
    if payment_method and payment_method not in VALID_PAYMENT_METHODS:
        raise SettlementError(
            f"Invalid payment method: {payment_method}. Must be one of {list(VALID_PAYMENT_METHODS)}"
        )


# =============================================================================
# TRIP START
# =============================================================================

def start_trip(actor: ActorContext | None, order_ids: Iterable[int] | None) -> ActionResult:
    """
    Put the driver's selected assigned orders on the road.

    Only the caller's own orders in their own tenant are touched.
    """
    try:
        actor = require_actor(actor)
        ids = sorted({int(order_id) for order_id in (order_ids or [])})
        if not ids:
            raise SettlementError("No orders selected")

        def _op():
            return (
                scoped(Order, actor)
                .filter(
                    Order.id.in_(ids),
                    Order.driver_id == actor.actor_id,
                    Order.status == ORDER_ASSIGNED,
                )
                .update(
                    {Order.status: ORDER_ON_TRIP, Order.trip_started_at: utcnow()},
                    synchronize_session=False,
                )
            )

        started = run_committed(_op)
        if not started:
            raise SettlementError("No assigned orders found for this trip", code=NOT_FOUND)

        current_app.logger.info("Driver %s started trip with %s order(s)", actor.actor_id, started)
        return ActionResult.ok("Trip started", started=started)

    except (TypeError, ValueError):
        return ActionResult.fail("Order ids must be integers")
    except ServiceError as exc:
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to start trip")
        return ActionResult.fail(f"Trip start failed: {exc}", ORDER_UPDATE_FAILURE)


# =============================================================================
# DELIVERY SETTLEMENT
# =============================================================================

def complete_delivery(
    actor: ActorContext | None,
    order_id: int | None,
    received_amount_cents: int = 0,
    payment_method: str | None = None,
    proof_file: FileStorage | None = None,
    returned_serials: Iterable[str] | None = None,
    returned_empty_count: int = 0,
    notes: str | None = None,
) -> ActionResult:
    """
    Settle a delivered order: stock check, order update, ledger, assets.

    Args:
        actor: The driver completing the delivery
        order_id: Order being delivered (must be assigned to this driver)
        received_amount_cents: Money collected at the door (0 = full credit)
        payment_method: cash | credit | bank | cheque
        proof_file: Optional proof-of-delivery upload
        returned_serials: Serials of cylinders taken back from the customer
        returned_empty_count: Legacy count of returns when no serials given
        notes: Free-text delivery notes

    Returns:
        ActionResult; on failure ``error`` names the failing stage.
    """
    try:
        actor = require_actor(actor)
        _validate_inputs(order_id, received_amount_cents, payment_method, returned_empty_count)
        return _settle(
            actor,
            int(order_id),
            received_amount_cents,
            payment_method,
            proof_file,
            asset_service.normalize_serials(returned_serials),
            returned_empty_count or 0,
            notes or "",
        )
    except ServiceError as exc:
        db.session.rollback()
        if exc.code in (FINANCIAL_RECORD_FAILURE, ASSET_MOVE_FAILURE, ORDER_UPDATE_FAILURE):
            current_app.logger.error("Settlement of order %s stopped: %s", order_id, exc)
        return ActionResult.from_error(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Settlement of order %s failed", order_id)
        return ActionResult.fail(f"Delivery Failed: {exc}", ORDER_UPDATE_FAILURE)


def _settle(
    actor: ActorContext,
    order_id: int,
    received_cents: int,
    payment_method: str | None,
    proof_file: FileStorage | None,
    returned_serials: list[str],
    returned_empty_count: int,
    notes: str,
) -> ActionResult:
    order = _load_order(actor, order_id)
    if not order:
        raise SettlementError("Order not found or access denied", code=NOT_FOUND)

    done = completed_steps(order.id)
    if STEP_ORDER_DELIVERED in done:
        # Resume with what was recorded the first time, not the retry's inputs
        received_cents = order.amount_received_cents or 0
        payment_method = order.payment_method
    elif order.status not in ACTIVE_ORDER_STATUSES:
        raise SettlementError(f"Order #{order.display_id} is already {order.status}")

    remaining = [step for step in _required_steps(received_cents) if step not in done]
    if not remaining:
        raise SettlementError(f"Order #{order.display_id} is already {ORDER_DELIVERED}")

    required_qty = order.required_quantity
    customer_id = order.customer_id
    total_due = order.total_amount_cents

    # A. Stock check (read-only, before any mutation)
    if STEP_CYLINDERS_DELIVERED in remaining:
        ensure_driver_stock(actor.tenant_id, actor.actor_id, required_qty)

    # B. Proof upload (non-fatal)
    proof_url = order.proof_url
    if STEP_ORDER_DELIVERED in remaining:
        proof_url = proof_storage.save_delivery_proof(order.id, proof_file)

    # C. Order status
    if STEP_ORDER_DELIVERED in remaining:
        def _mark_delivered():
            current = _load_order(actor, order_id)
            current.status = ORDER_DELIVERED
            current.amount_received_cents = received_cents
            current.payment_method = payment_method
            current.trip_completed_at = utcnow()
            current.notes = notes
            current.proof_url = proof_url
            _log_step(actor, order_id, STEP_ORDER_DELIVERED)

        try:
            run_committed(_mark_delivered)
        except SQLAlchemyError as exc:
            raise SettlementError(f"Order Update Failed: {exc}", code=ORDER_UPDATE_FAILURE) from exc

    # D. Financials
    try:
        _record_financials(actor, order_id, remaining, received_cents, payment_method, proof_url,
                           customer_id, total_due)
    except (LedgerError, SQLAlchemyError) as exc:
        raise SettlementError(f"Financial Record Failed: {exc}", code=FINANCIAL_RECORD_FAILURE) from exc

    # E. Cylinders
    try:
        delivered, returned = _move_assets(actor, order_id, remaining, required_qty,
                                           returned_serials, returned_empty_count)
    except SQLAlchemyError as exc:
        raise SettlementError(f"Inventory Update Failed: {exc}", code=ASSET_MOVE_FAILURE) from exc

    current_app.logger.info(
        "Order %s delivered by driver %s: received=%s delivered=%s returned=%s",
        order_id, actor.actor_id, received_cents, delivered, returned,
    )
    return ActionResult.ok(
        "Delivery completed",
        order_id=order_id,
        proof_url=proof_url,
        delivered_cylinders=delivered,
        returned_cylinders=returned,
    )


def _record_financials(
    actor: ActorContext,
    order_id: int,
    remaining: list[str],
    received_cents: int,
    payment_method: str | None,
    proof_url: str | None,
    customer_id: int,
    total_due: int,
) -> None:
    if STEP_SALE_RECORDED in remaining:
        def _sale():
            order = _load_order(actor, order_id)
            ledger_service.record_sale(
                tenant_id=actor.tenant_id,
                order=order,
                actor_id=actor.actor_id,
                payment_method=payment_method,
                proof_url=proof_url,
                occurred_at=utcnow(),
            )
            _log_step(actor, order_id, STEP_SALE_RECORDED)

        run_committed(_sale)

    if STEP_PAYMENT_RECORDED in remaining:
        def _payment():
            order = _load_order(actor, order_id)
            sale = (
                db.session.query(Transaction)
                .filter_by(tenant_id=actor.tenant_id, order_id=order_id, type=TXN_SALE)
                .order_by(Transaction.id)
                .first()
            )
            if sale is None:
                raise LedgerError(f"No sale entry found for order {order_id}")
            ledger_service.record_payment(
                tenant_id=actor.tenant_id,
                order=order,
                actor_id=actor.actor_id,
                amount_received_cents=received_cents,
                payment_method=payment_method,
                sale_occurred_at=sale.created_at,
                proof_url=proof_url,
            )
            # Any cash received is cash in the driver's hand, whatever the method
            ledger_service.credit_driver_wallet(actor.tenant_id, actor.actor_id, received_cents)
            _log_step(actor, order_id, STEP_PAYMENT_RECORDED)

        run_committed(_payment)

    if STEP_BALANCE_APPLIED in remaining:
        delta = total_due - received_cents

        def _balance():
            ledger_service.apply_customer_balance(actor.tenant_id, customer_id, delta)
            _log_step(actor, order_id, STEP_BALANCE_APPLIED, detail=f"delta={delta}")

        run_committed(_balance)


def _move_assets(
    actor: ActorContext,
    order_id: int,
    remaining: list[str],
    required_qty: int,
    returned_serials: list[str],
    returned_empty_count: int,
) -> tuple[int, int]:
    delivered = returned = 0

    if STEP_CYLINDERS_DELIVERED in remaining:
        def _deliver():
            order = _load_order(actor, order_id)
            moved = asset_service.deliver_order_cylinders(actor.tenant_id, order, actor.actor_id, required_qty)
            _log_step(actor, order_id, STEP_CYLINDERS_DELIVERED, detail=f"moved={moved}")
            return moved

        delivered = run_committed(_deliver)
        if delivered < required_qty:
            current_app.logger.warning(
                "Order %s needed %s cylinders but only %s moved to the customer",
                order_id, required_qty, delivered,
            )

    if STEP_RETURNS_PROCESSED in remaining:
        def _returns():
            order = _load_order(actor, order_id)
            moved = asset_service.return_cylinders(
                actor.tenant_id,
                order,
                actor.actor_id,
                serials=returned_serials,
                count=returned_empty_count,
            )
            _log_step(actor, order_id, STEP_RETURNS_PROCESSED, detail=f"moved={moved}")
            return moved

        returned = run_committed(_returns)
        expected = len(returned_serials) or returned_empty_count
        if returned < expected:
            current_app.logger.warning(
                "Order %s expected %s returned cylinders but only %s matched",
                order_id, expected, returned,
            )

    return delivered, returned
