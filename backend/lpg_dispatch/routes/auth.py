# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

Login names the tenant by code; the session returned carries the tenant
and role for every later request.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth
from lpg_dispatch.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body:
    {
        "tenant": str (tenant code),
        "username": str,
        "password": str
    }

    Token must be included in the Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        tenant_code = data.get("tenant") or data.get("tenant_code")
        username = data.get("username")
        password = data.get("password")

        if not all([tenant_code, username, password]):
            return jsonify({"error": "tenant, username and password required"}), 400

        user = auth_service.authenticate(tenant_code, username, password)
        if not user:
            current_app.logger.info("Failed login for %s@%s", username, tenant_code)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "tenant_id": session.tenant_id,
            "role": session.role,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful",
        }), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """Revoke session token (logout). Expects Authorization: Bearer <token>."""
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]
        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user and tenant context."""
    return jsonify({
        "user": g.current_user.to_dict(),
        "tenant_id": g.tenant_id,
        "role": g.actor.role,
    }), 200
