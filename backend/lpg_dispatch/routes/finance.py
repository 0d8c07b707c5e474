# Overview: Flask API routes for office finance; customer payments, cash book entries, expenses, customer ledger.

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.auth import STAFF_ROLES
from ..models.finance import PAYMENT_CASH
from ..services import expense_service, finance_service
from ..services.results import ServiceError, HTTP_STATUS_BY_CODE
from ..validation import ValidationError, request_payload, coerce_int, coerce_amount_cents, coerce_date


finance_bp = Blueprint("finance", __name__, url_prefix="/api/finance")


@finance_bp.route("/payments", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def record_payment_route():
    """
    Record a customer payment received at the office.

    Request body:
    {
        "customer_id": int,
        "amount_cents": int,
        "payment_method": "cash" | "bank" | "cheque",
        "description": str (optional),
        "date": "YYYY-MM-DD" (optional)
    }
    """
    try:
        data = request_payload(request)
        result = finance_service.record_customer_payment(
            g.actor,
            customer_id=coerce_int(data.get("customer_id"), "customer_id", required=True),
            amount_cents=coerce_amount_cents(data.get("amount_cents"), "amount_cents", required=True),
            payment_method=data.get("payment_method") or PAYMENT_CASH,
            description=data.get("description"),
            occurred_at=coerce_date(data.get("date"), "date"),
        )
        return jsonify(result.to_dict()), result.http_status

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record customer payment")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.route("/entries", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def record_entry_route():
    """
    Manual cash book entry.

    Request body:
    {
        "type": "income" | "expense",
        "amount_cents": int,
        "category": str,
        "description": str (optional),
        "date": "YYYY-MM-DD" (optional),
        "customer_id": int (optional, with category "customer_payment")
    }
    """
    try:
        data = request_payload(request)
        result = finance_service.record_company_entry(
            g.actor,
            entry_type=data.get("type"),
            amount_cents=coerce_amount_cents(data.get("amount_cents"), "amount_cents", required=True),
            category=data.get("category"),
            description=data.get("description"),
            occurred_at=coerce_date(data.get("date"), "date"),
            customer_id=coerce_int(data.get("customer_id"), "customer_id"),
        )
        return jsonify(result.to_dict()), result.http_status

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record cash book entry")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.get("/customers/<int:customer_id>/ledger")
@require_auth
@require_role(*STAFF_ROLES)
def customer_ledger_route(customer_id: int):
    try:
        return jsonify(finance_service.get_customer_ledger(g.actor, customer_id)), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "code": e.code}), HTTP_STATUS_BY_CODE.get(e.code, 400)


@finance_bp.route("/expenses", methods=["POST"])
@require_auth
@require_role(*STAFF_ROLES)
def submit_expense_route():
    """
    Claim an office expense; another staff member approves it.

    Request body:
    {
        "amount_cents": int,
        "category": str,
        "description": str (optional),
        "date": "YYYY-MM-DD" (optional)
    }
    """
    try:
        data = request_payload(request)
        result = expense_service.submit_expense(
            g.actor,
            amount_cents=coerce_amount_cents(data.get("amount_cents"), "amount_cents", required=True),
            category=data.get("category"),
            description=data.get("description"),
            occurred_at=coerce_date(data.get("date"), "date"),
        )
        return jsonify(result.to_dict()), result.http_status

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit expense")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.get("/expenses/stats")
@require_auth
@require_role(*STAFF_ROLES)
def expense_stats_route():
    """Month spend, pending liability, top category and the seven-day trend."""
    try:
        return jsonify(expense_service.get_expense_stats(g.actor)), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "code": e.code}), HTTP_STATUS_BY_CODE.get(e.code, 400)
