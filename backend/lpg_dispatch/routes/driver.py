# Overview: Flask API routes for the driver app; deliveries, trips, handovers, expense claims and truck views.

"""
Driver API routes.

Write endpoints return the service ActionResult as JSON with the status
mapped from its error code. Tenant and driver identity always come from
the session (g.actor).
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_DRIVER
from ..services import delivery_service, driver_service, expense_service, handover_service
from ..services.results import ServiceError, HTTP_STATUS_BY_CODE
from ..validation import (
    ValidationError,
    request_payload,
    coerce_int,
    coerce_amount_cents,
    coerce_serials,
    coerce_date,
)


driver_bp = Blueprint("driver", __name__, url_prefix="/api/driver")


def _result_response(result):
    return jsonify(result.to_dict()), result.http_status


def _error_response(exc: ServiceError):
    return jsonify({"error": str(exc), "code": exc.code}), HTTP_STATUS_BY_CODE.get(exc.code, 400)


# =============================================================================
# WRITES
# =============================================================================

@driver_bp.route("/orders/<int:order_id>/complete", methods=["POST"])
@require_auth
@require_role(ROLE_DRIVER)
def complete_delivery_route(order_id: int):
    """
    Settle a delivered order.

    Request (JSON or multipart form):
    {
        "received_amount_cents": int,
        "payment_method": "cash" | "credit" | "bank" | "cheque",
        "returned_serials": [str] | "A,B",
        "returned_empty_count": int (legacy, when no serials),
        "notes": str,
        "proof": file (multipart only)
    }

    Returns:
        200: Delivered
        400: Invalid input
        404: Order not found for this driver
        409: Not enough full cylinders on the truck
        500: A settlement stage failed (retry resumes where it stopped)
    """
    try:
        data = request_payload(request)
        result = delivery_service.complete_delivery(
            g.actor,
            order_id,
            received_amount_cents=coerce_amount_cents(data.get("received_amount_cents"), "received_amount_cents") or 0,
            payment_method=data.get("payment_method") or None,
            proof_file=request.files.get("proof"),
            returned_serials=coerce_serials(data.get("returned_serials")),
            returned_empty_count=coerce_int(data.get("returned_empty_count"), "returned_empty_count", minimum=0) or 0,
            notes=data.get("notes"),
        )
        return _result_response(result)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to complete delivery for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.route("/trips/start", methods=["POST"])
@require_auth
@require_role(ROLE_DRIVER)
def start_trip_route():
    """
    Start a trip with the selected assigned orders.

    Request body: {"order_ids": [int]}
    """
    try:
        data = request_payload(request)
        order_ids = data.get("order_ids") or []
        if not isinstance(order_ids, list):
            order_ids = [order_ids]
        ids = [coerce_int(order_id, "order_ids", required=True) for order_id in order_ids]
        return _result_response(delivery_service.start_trip(g.actor, ids))

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start trip")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.route("/handovers", methods=["POST"])
@require_auth
@require_role(ROLE_DRIVER)
def create_handover_route():
    """
    Hand cash and cylinders over to a staff member (pending approval).

    Request body:
    {
        "receiver_id": int,
        "deposit_amount_cents": int,
        "serials": [str]
    }

    Returns:
        200: Request created, cylinders locked
        400: Invalid input or insufficient funds
        404: Receiver not found in this tenant
        409: Some cylinders are not on this driver's truck
    """
    try:
        data = request_payload(request)
        result = handover_service.process_handover(
            g.actor,
            deposit_amount_cents=coerce_amount_cents(data.get("deposit_amount_cents"), "deposit_amount_cents") or 0,
            returned_serials=coerce_serials(data.get("serials")),
            receiver_id=coerce_int(data.get("receiver_id"), "receiver_id"),
        )
        return _result_response(result)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create handover request")
        return jsonify({"error": "Internal server error"}), 500


@driver_bp.route("/expenses", methods=["POST"])
@require_auth
@require_role(ROLE_DRIVER)
def submit_expense_route():
    """
    Claim a road expense (fuel, toll, repair) for office approval.

    Request body:
    {
        "amount_cents": int,
        "category": str,
        "description": str (optional)
    }
    """
    try:
        data = request_payload(request)
        result = expense_service.submit_expense(
            g.actor,
            amount_cents=coerce_amount_cents(data.get("amount_cents"), "amount_cents", required=True),
            category=data.get("category"),
            description=data.get("description"),
        )
        return _result_response(result)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit driver expense")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# READS
# =============================================================================

@driver_bp.get("/inventory")
@require_auth
@require_role(ROLE_DRIVER)
def inventory_route():
    try:
        return jsonify(driver_service.get_driver_inventory(g.actor)), 200
    except ServiceError as e:
        return _error_response(e)


@driver_bp.get("/assets")
@require_auth
@require_role(ROLE_DRIVER)
def assets_route():
    try:
        return jsonify({"cylinders": driver_service.get_driver_assets(g.actor)}), 200
    except ServiceError as e:
        return _error_response(e)


@driver_bp.get("/orders")
@require_auth
@require_role(ROLE_DRIVER)
def orders_route():
    """Active route (assigned + on trip)."""
    try:
        return jsonify({"orders": driver_service.get_driver_orders(g.actor)}), 200
    except ServiceError as e:
        return _error_response(e)


@driver_bp.get("/orders/completed")
@require_auth
@require_role(ROLE_DRIVER)
def completed_orders_route():
    """Delivered orders for ?date=YYYY-MM-DD (default today)."""
    try:
        day = coerce_date(request.args.get("date"), "date")
        return jsonify({"orders": driver_service.get_completed_orders(g.actor, day)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ServiceError as e:
        return _error_response(e)


@driver_bp.get("/stats")
@require_auth
@require_role(ROLE_DRIVER)
def stats_route():
    try:
        return jsonify(driver_service.get_driver_stats(g.actor)), 200
    except ServiceError as e:
        return _error_response(e)


@driver_bp.get("/receivers")
@require_auth
@require_role(ROLE_DRIVER)
def receivers_route():
    try:
        return jsonify({"receivers": driver_service.get_receivers(g.actor)}), 200
    except ServiceError as e:
        return _error_response(e)
