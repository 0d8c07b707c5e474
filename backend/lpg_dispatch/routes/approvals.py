# Overview: Flask API routes for office approvals; handover decisions, payment verification and expense claims.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.auth import STAFF_ROLES
from ..models.finance import EXPENSE_PENDING
from ..services import expense_service, handover_service, finance_service
from ..services.results import ServiceError, HTTP_STATUS_BY_CODE


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


def _result_response(result):
    return jsonify(result.to_dict()), result.http_status


def _run_decision(operation, transaction_id: int, label: str):
    try:
        return _result_response(operation(g.actor, transaction_id))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s %s", label, transaction_id)
        return jsonify({"error": "Internal server error"}), 500


@approvals_bp.get("/handovers")
@require_auth
@require_role(*STAFF_ROLES)
def pending_handovers_route():
    """Pending handover requests with the serials each driver has on hold."""
    try:
        return jsonify({"handovers": handover_service.get_pending_handovers(g.actor)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "code": e.code}), HTTP_STATUS_BY_CODE.get(e.code, 400)


@approvals_bp.route("/handovers/<int:transaction_id>/approve", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def approve_handover_route(transaction_id: int):
    """
    Approve a handover: wallet debit, cash book credit, cylinders to warehouse.

    Returns:
        200: Approved
        400: Not pending / own request
        404: Not found in this tenant
        502: Approval procedure refused or failed
    """
    return _run_decision(handover_service.approve_handover, transaction_id, "approve handover")


@approvals_bp.route("/handovers/<int:transaction_id>/reject", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def reject_handover_route(transaction_id: int):
    """Reject a handover: held cylinders go back to the driver's truck."""
    return _run_decision(handover_service.reject_handover, transaction_id, "reject handover")


@approvals_bp.get("/payments")
@require_auth
@require_role(*STAFF_ROLES)
def pending_payments_route():
    """Bank/cheque payments waiting for verification."""
    try:
        return jsonify({"payments": finance_service.get_pending_payments(g.actor)}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "code": e.code}), HTTP_STATUS_BY_CODE.get(e.code, 400)


@approvals_bp.route("/payments/<int:transaction_id>/verify", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def verify_payment_route(transaction_id: int):
    return _run_decision(finance_service.verify_payment, transaction_id, "verify payment")


@approvals_bp.route("/payments/<int:transaction_id>/reject", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def reject_payment_route(transaction_id: int):
    return _run_decision(finance_service.reject_payment, transaction_id, "reject payment")


@approvals_bp.get("/expenses")
@require_auth
@require_role(*STAFF_ROLES)
def expenses_route():
    """Expense claims by ?status= (pending by default, "all" for every claim)."""
    status = request.args.get("status") or EXPENSE_PENDING
    try:
        rows = expense_service.get_expenses(g.actor, None if status == "all" else status)
        return jsonify({"expenses": rows}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "code": e.code}), HTTP_STATUS_BY_CODE.get(e.code, 400)


@approvals_bp.route("/expenses/<int:expense_id>/approve", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def approve_expense_route(expense_id: int):
    """
    Approve a claim: the driver's wallet or the cash book pays it.

    Returns:
        200: Approved
        400: Not pending / own claim
        404: Not found in this tenant
        502: Approval procedure refused or failed
    """
    return _run_decision(expense_service.approve_expense, expense_id, "approve expense")


@approvals_bp.route("/expenses/<int:expense_id>/reject", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def reject_expense_route(expense_id: int):
    return _run_decision(expense_service.reject_expense, expense_id, "reject expense")
