# Overview: Flask API routes for staff administration; profile edits, activation and password resets.

"""
Admin routes for account management inside the caller's tenant.

Provides endpoints for:
- listing accounts (optionally one role)
- editing name, role, phone and vehicle
- deactivating / reactivating an account
- resetting a password

Deactivation, password resets and role changes revoke the user's sessions.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_auth, require_role
from ..models.auth import ADMIN_ROLES
from ..services import staff_service
from ..services.results import ServiceError, HTTP_STATUS_BY_CODE
from ..validation import ValidationError, request_payload


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _result_response(result):
    return jsonify(result.to_dict()), result.http_status


def _run_account_change(label: str, user_id: int, operation, *args, **kwargs):
    try:
        return _result_response(operation(g.actor, user_id, *args, **kwargs))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s user %s", label, user_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/users")
@require_auth
@require_role(*ADMIN_ROLES)
def list_users_route():
    """Accounts of the tenant; ?role=driver narrows to one role."""
    try:
        users = staff_service.list_users(g.actor, request.args.get("role") or None)
        return jsonify({"users": users}), 200
    except ServiceError as e:
        return jsonify({"error": str(e), "code": e.code}), HTTP_STATUS_BY_CODE.get(e.code, 400)


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@require_auth
@require_role(*ADMIN_ROLES)
def update_user_route(user_id: int):
    """
    Edit an account.

    Request body (all optional):
    {
        "name": str,
        "role": "admin" | "manager" | "cashier" | "driver",
        "phone_number": str,
        "vehicle_number": str
    }

    A role change logs the user out everywhere.
    """
    try:
        data = request_payload(request)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return _run_account_change(
        "update",
        user_id,
        staff_service.update_user,
        name=data.get("name"),
        role=data.get("role"),
        phone_number=data.get("phone_number"),
        vehicle_number=data.get("vehicle_number"),
    )


@admin_bp.post("/users/<int:user_id>/deactivate")
@require_auth
@require_role(*ADMIN_ROLES)
def deactivate_user_route(user_id: int):
    """
    Deactivate an account.

    This will:
    1. Set is_active=False
    2. Revoke all active sessions for the user
    """
    return _run_account_change("deactivate", user_id, staff_service.set_user_active, False)


@admin_bp.post("/users/<int:user_id>/reactivate")
@require_auth
@require_role(*ADMIN_ROLES)
def reactivate_user_route(user_id: int):
    return _run_account_change("reactivate", user_id, staff_service.set_user_active, True)


@admin_bp.post("/users/<int:user_id>/reset-password")
@require_auth
@require_role(*ADMIN_ROLES)
def reset_password_route(user_id: int):
    """
    Reset a user's password.

    Request body:
    - new_password: str (required)
    """
    try:
        data = request_payload(request)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return _run_account_change(
        "reset password of", user_id, staff_service.reset_password, data.get("new_password")
    )
