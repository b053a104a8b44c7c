"""Authorization predicates.

Pure functions over ``(role, is_owner)``. Templates use them to decide which
actions to offer; every mutating route checks them again on the server.
"""

from biblioteca.models import ROLE_ADMIN, ROLE_EDITOR, ROLES

MANAGER_ROLES = frozenset({ROLE_ADMIN, ROLE_EDITOR})


def is_valid_role(role) -> bool:
    return isinstance(role, str) and role in ROLES


def can_manage_document(role, is_owner=False) -> bool:
    return bool(is_owner) or role in MANAGER_ROLES


def can_manage_folder(role, is_owner=False) -> bool:
    return bool(is_owner) or role in MANAGER_ROLES


def can_manage_category(role, is_owner=False) -> bool:
    return role in MANAGER_ROLES


def can_list_all_users(role, is_owner=False) -> bool:
    return role == ROLE_ADMIN
