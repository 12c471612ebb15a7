from dataclasses import dataclass

from sqlalchemy.orm import Session

from academic_registry.errors import BadRequestError, NotFoundError
from academic_registry.models import User


@dataclass(frozen=True)
class TenantContext:
    """The acting user and the school every lookup is scoped to."""

    user_id: str
    school_id: str


def resolve_tenant(db: Session, user_id: str) -> TenantContext:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    if not user.school_id:
        raise BadRequestError(
            "User not associated with a school. Only school users can perform this action."
        )
    return TenantContext(user_id=user.id, school_id=user.school_id)
