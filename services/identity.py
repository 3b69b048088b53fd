from dataclasses import dataclass

from models.models import ROLES
from services.errors import Unauthenticated, ValidationError


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the engine."""

    user_id: int
    role: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValidationError(f"Unknown role '{self.role}'")


def identity_from_user(user):
    """Build an Identity from a Flask-Login user, anonymous users included."""
    if user is None or not getattr(user, 'is_authenticated', False):
        raise Unauthenticated('Authentication required')
    return Identity(user_id=user.id, role=user.role)
