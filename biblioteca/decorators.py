from functools import wraps

from flask import abort
from flask_login import login_required

from biblioteca.identity import get_session_context
from biblioteca.models import ROLE_ADMIN, ROLE_EDITOR


def role_required(*roles):
    """Decorator that requires the current session role to be one of ``roles``.
    Implies @login_required.
    """

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            ctx = get_session_context()
            if ctx is None or ctx.role not in roles:
                abort(403)
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def admin_required(f):
    return role_required(ROLE_ADMIN)(f)


def manager_required(f):
    """Admins and editors."""
    return role_required(ROLE_ADMIN, ROLE_EDITOR)(f)
