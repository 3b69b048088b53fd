"""
Authorization policy for the issue engine.

One table maps each operation to the roles allowed to perform it. Every
mutating engine call goes through authorize() before it touches the store.

Lifecycle state is not checked here: an operation that is allowed for the
caller but illegal for the issue's current status is an InvalidState, which
the lifecycle engine raises.
"""

import logging

from models.models import ROLE_ADMIN, ROLE_CITIZEN, ROLE_SUPERADMIN, ROLES
from services.errors import Forbidden

logger = logging.getLogger(__name__)

CREATE_ISSUE = 'create_issue'
UPVOTE = 'upvote'
ASSIGN = 'assign'
RESOLVE = 'resolve'
VIEW_ANALYTICS = 'view_analytics'
LIST_ADMIN_QUEUE = 'list_admin_queue'
MANAGE_CATEGORIES = 'manage_categories'
LIST_ADMINS = 'list_admins'

_ALLOWED_ROLES = {
    CREATE_ISSUE: {ROLE_CITIZEN},
    UPVOTE: set(ROLES),
    ASSIGN: {ROLE_SUPERADMIN},
    RESOLVE: {ROLE_ADMIN},
    VIEW_ANALYTICS: {ROLE_ADMIN, ROLE_SUPERADMIN},
    LIST_ADMIN_QUEUE: {ROLE_ADMIN},
    MANAGE_CATEGORIES: {ROLE_SUPERADMIN},
    LIST_ADMINS: {ROLE_SUPERADMIN},
}

OPERATIONS = tuple(_ALLOWED_ROLES)


def can_perform(role, operation, *, actor_id=None, assignee_ids=None, enforce_assignee=True):
    """Return True if a caller with ``role`` may perform ``operation``.

    Args:
        role: Caller role (citizen, admin, superadmin)
        operation: One of OPERATIONS
        actor_id: Caller user id, needed for the resolve assignee check
        assignee_ids: Admin ids currently assigned to the issue. When None,
            only the role part of the rule is evaluated.
        enforce_assignee: Require a resolving admin to be among assignee_ids

    Returns:
        True if allowed. Unknown operations are always denied.
    """
    allowed = _ALLOWED_ROLES.get(operation)
    if not allowed or role not in allowed:
        return False

    if operation == RESOLVE and enforce_assignee and assignee_ids is not None:
        return actor_id is not None and actor_id in set(assignee_ids)

    return True


def authorize(identity, operation, **kwargs):
    """Raise Forbidden unless ``identity`` may perform ``operation``."""
    if not can_perform(identity.role, operation, actor_id=identity.user_id, **kwargs):
        logger.warning(
            "Denied %s for user %s (role=%s)", operation, identity.user_id, identity.role
        )
        if identity.role in _ALLOWED_ROLES.get(operation, ()):
            raise Forbidden("Admin is not assigned to this issue")
        raise Forbidden(f"Role '{identity.role}' may not {operation.replace('_', ' ')}")
