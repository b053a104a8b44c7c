"""
Audit recorder: a single append-only log, indexed by actor.

Entries are added to the caller's session so they commit (or roll back)
together with the change they describe. Ordering comes from the
server-assigned primary key, never from the client clock.
"""

import logging
from collections.abc import Mapping

from biblioteca import db
from biblioteca.models import AUDIT_ACTIONS, ENTITY_TYPES, AuditLog

logger = logging.getLogger(__name__)

FALLBACK_ACTOR_NAME = "System"


def actor_display_name(name, email):
    """Display name, falling back to the email, then a placeholder."""
    return name or email or FALLBACK_ACTOR_NAME


def _actor_fields(actor):
    if isinstance(actor, Mapping):
        return actor.get("uid"), actor.get("name"), actor.get("email")
    return (
        getattr(actor, "uid", None),
        getattr(actor, "name", None),
        getattr(actor, "email", None),
    )


def record(actor, action, entity_type, entity_id, entity_name="", details=""):
    """Append one entry for ``actor`` (a session context or claims mapping)."""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type!r}")

    uid, name, email = _actor_fields(actor)
    entry = AuditLog(
        user_id=uid or "",
        user_name=actor_display_name(name, email),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        entity_name=entity_name or "",
        details=details or "",
    )
    db.session.add(entry)
    logger.info(
        "audit %s %s:%s by %s", action, entity_type, entity_id, entry.user_name
    )
    return entry


def global_history(limit=200):
    return AuditLog.query.order_by(AuditLog.id.desc()).limit(limit).all()


def user_history(uid, limit=200):
    return (
        AuditLog.query.filter_by(user_id=uid)
        .order_by(AuditLog.id.desc())
        .limit(limit)
        .all()
    )
