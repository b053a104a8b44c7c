"""
JSON endpoints: identity tokens, the privileged role change, and the admin
user listing. Errors come back as ``{"error": code, "message": ...}``.
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from biblioteca import identity, limiter
from biblioteca.exceptions import PermissionDeniedError, UnauthenticatedError, ValidationError
from biblioteca.models import User
from biblioteca.permissions import can_list_all_users

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _bearer_token():
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


@api_bp.route("/id-token")
@login_required
def id_token():
    return jsonify({"idToken": identity.issue_id_token(current_user._get_current_object())})


@api_bp.route("/set-role", methods=["POST"])
@limiter.limit("30 per minute")
def set_role():
    token = _bearer_token()
    caller = identity.verify_id_token(token) if token else None
    result = identity.set_role(caller, request.get_json(silent=True))
    return jsonify(result)


@api_bp.route("/admin/users", methods=["POST"])
@limiter.limit("30 per minute")
def list_users():
    body = request.get_json(silent=True) or {}
    token = body.get("idToken")
    if not token:
        raise UnauthenticatedError("No token provided")

    claims = identity.verify_id_token(token)
    if not can_list_all_users(claims.get("role")):
        raise PermissionDeniedError("Forbidden: User is not an admin.")

    max_users = current_app.config["USER_LIST_MAX"]
    limit = body.get("limit", max_users)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer.")

    users = User.query.order_by(User.created_at).limit(min(limit, max_users)).all()
    return jsonify({"users": [u.to_dict() for u in users]})
