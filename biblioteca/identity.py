"""
Identity resolution, the privileged role change, and signed identity tokens.

The account's custom claims are authoritative for the role; the ``users``
profile record mirrors them so roles can be listed and queried.
"""

import logging
from dataclasses import dataclass, field
from datetime import timezone
from typing import Optional

from flask import current_app, g
from flask_login import current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import SQLAlchemyError

from biblioteca import db
from biblioteca import audit
from biblioteca.exceptions import (
    InternalError,
    InvalidTokenError,
    PermissionDeniedError,
    TokenExpiredError,
    UnauthenticatedError,
    ValidationError,
)
from biblioteca.models import ROLE_ADMIN, ROLE_USER, Account, User, utcnow
from biblioteca import permissions

logger = logging.getLogger(__name__)

_TOKEN_SALT = "biblioteca-id-token"


@dataclass
class SessionContext:
    """Who is acting in the current request, and with which role."""

    uid: str
    email: str
    name: str
    role: str
    avatar_url: Optional[str] = None
    profile: Optional[User] = field(default=None, repr=False)

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    def owns(self, entity):
        return getattr(entity, "created_by", None) == self.uid

    def can_manage_document(self, document):
        return permissions.can_manage_document(self.role, self.owns(document))

    def can_manage_folder(self, folder):
        return permissions.can_manage_folder(self.role, self.owns(folder))

    @property
    def can_manage_categories(self):
        return permissions.can_manage_category(self.role)

    @property
    def can_list_all_users(self):
        return permissions.can_list_all_users(self.role)


def _as_utc(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def initial_claims():
    """Claims for a brand-new account: the very first one becomes Admin."""
    if Account.query.count() == 0:
        return {"role": ROLE_ADMIN}
    return {}


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  IDENTITY RESOLVER                                                 ║
# ╚══════════════════════════════════════════════════════════════════════╝


def resolve_identity(account):
    """Return the SessionContext for ``account``, reconciling its profile.

    Creates the profile on first sight, overwrites a stored role that
    disagrees with the role claim, and writes nothing when both agree.
    """
    claim_role = account.claim_role if permissions.is_valid_role(account.claim_role) else None
    profile = db.session.get(User, account.id)
    now = utcnow()
    changed = False

    if profile is None:
        profile = User(
            id=account.id,
            name=account.display_name or account.email,
            email=account.email,
            role=claim_role or ROLE_USER,
            avatar_url=account.photo_url,
            created_at=now,
            last_activity=now,
        )
        db.session.add(profile)
        changed = True
        logger.info("Created profile for %s with role %s", account.email, profile.role)
    else:
        if claim_role and profile.role != claim_role:
            logger.info(
                "Profile role for %s was %s, claims say %s; updating",
                account.email, profile.role, claim_role,
            )
            profile.role = claim_role
            changed = True

        interval = current_app.config.get("LAST_ACTIVITY_INTERVAL", 300)
        last = _as_utc(profile.last_activity)
        if last is None or (now - last).total_seconds() > interval:
            profile.last_activity = now
            changed = True

    if changed:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not save profile for %s", account.email)
            raise InternalError("Could not load your profile. Please try again.")

    return SessionContext(
        uid=account.id,
        email=account.email,
        name=profile.name or account.email,
        role=claim_role or profile.role or ROLE_USER,
        avatar_url=profile.avatar_url,
        profile=profile,
    )


def load_session_context():
    """``before_request`` hook: resolve the signed-in account once per request."""
    g.session_ctx = None
    if current_user.is_authenticated:
        g.session_ctx = resolve_identity(current_user._get_current_object())


def get_session_context():
    return g.get("session_ctx")


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  PRIVILEGED ROLE CHANGE                                            ║
# ╚══════════════════════════════════════════════════════════════════════╝


def set_role(caller, payload):
    """Set ``payload["role"]`` on account ``payload["uid"]``.

    ``caller`` is the verified claims mapping of whoever is asking. Only an
    Admin claim may change roles. Backend failures surface as a generic
    InternalError.
    """
    if not caller:
        raise UnauthenticatedError("The function must be called while authenticated.")
    if caller.get("role") != ROLE_ADMIN:
        raise PermissionDeniedError("Only admins can set user roles.")

    payload = payload if isinstance(payload, dict) else {}
    uid = payload.get("uid")
    role = payload.get("role")
    if not isinstance(uid, str) or not uid.strip() or not permissions.is_valid_role(role):
        raise ValidationError("The data provided is not valid.")

    try:
        account = db.session.get(Account, uid)
        if account is None:
            raise LookupError(f"no account {uid}")

        # Reassign so the JSON column is flagged dirty
        account.claims = {**(account.claims or {}), "role": role}

        profile = db.session.get(User, uid)
        if profile is None:
            profile = User(
                id=uid,
                name=account.display_name or account.email,
                email=account.email,
                avatar_url=account.photo_url,
            )
            db.session.add(profile)
        profile.role = role

        target_name = profile.name or account.email
        audit.record(
            caller, "role_change", "User", uid, target_name,
            f"Role of {target_name} changed to {role}.",
        )
        db.session.commit()
    except (LookupError, SQLAlchemyError):
        db.session.rollback()
        logger.exception("Error setting role %s for %s", role, uid)
        raise InternalError("An internal error occurred while setting the user role.")

    logger.info("%s set role of %s to %s", caller.get("email"), uid, role)
    return {
        "status": "success",
        "message": f"Successfully set user {uid} to the role of {role}.",
    }


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  IDENTITY TOKENS                                                   ║
# ╚══════════════════════════════════════════════════════════════════════╝


def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_TOKEN_SALT)


def account_claims(account):
    """Claims as they would appear in a freshly issued token for ``account``."""
    claims = {
        "uid": account.id,
        "email": account.email,
        "name": account.display_name,
    }
    if account.claim_role:
        claims["role"] = account.claim_role
    return claims


def issue_id_token(account):
    """Sign the account's current claims into a short-lived token."""
    return _serializer().dumps(account_claims(account))


def verify_id_token(token, max_age=None):
    if max_age is None:
        max_age = current_app.config["ID_TOKEN_MAX_AGE"]
    try:
        return _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise TokenExpiredError("Token expired, please log in again.")
    except BadSignature:
        raise InvalidTokenError("Invalid ID token.")
