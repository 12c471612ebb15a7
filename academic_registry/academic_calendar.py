"""Tenant-scoped lookups for academic sessions and terms."""

from typing import Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from academic_registry.errors import NotFoundError
from academic_registry.models import AcademicSession, Term


def get_school_session(
    db: Session, school_id: str, academic_session_id: str
) -> AcademicSession:
    session = (
        db.query(AcademicSession)
        .filter(
            and_(
                AcademicSession.id == academic_session_id,
                AcademicSession.school_id == school_id,
                AcademicSession.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not session:
        raise NotFoundError("Academic session not found")
    return session


def get_school_term(db: Session, school_id: str, term_id: str) -> Term:
    term = (
        db.query(Term)
        .join(AcademicSession, Term.academic_session_id == AcademicSession.id)
        .filter(
            and_(
                Term.id == term_id,
                AcademicSession.school_id == school_id,
                Term.deleted_at.is_(None),
            )
        )
        .first()
    )
    if not term:
        raise NotFoundError("Term not found")
    return term


def resolve_session(
    db: Session,
    school_id: str,
    academic_session_id: Optional[str] = None,
    term_id: Optional[str] = None,
) -> AcademicSession:
    """
    Pick the session a report is about.

    An explicit session wins, then the session of an explicit term, then the
    school's current session, then its most recently created one.
    """
    if academic_session_id:
        return get_school_session(db, school_id, academic_session_id)
    if term_id:
        return get_school_term(db, school_id, term_id).academic_session

    base = db.query(AcademicSession).filter(
        and_(
            AcademicSession.school_id == school_id,
            AcademicSession.deleted_at.is_(None),
        )
    )
    session = base.filter(AcademicSession.is_current.is_(True)).first()
    if not session:
        session = base.order_by(AcademicSession.created_at.desc()).first()
    if not session:
        raise NotFoundError("No academic session found for school")
    return session


def resolve_term(
    db: Session,
    school_id: str,
    session: AcademicSession,
    term_id: Optional[str] = None,
) -> Term:
    if term_id:
        term = get_school_term(db, school_id, term_id)
        if term.academic_session_id != session.id:
            raise NotFoundError("Term not found in the selected academic session")
        return term

    base = db.query(Term).filter(
        and_(Term.academic_session_id == session.id, Term.deleted_at.is_(None))
    )
    term = base.filter(Term.is_current.is_(True)).first()
    if not term:
        term = base.order_by(Term.created_at.desc()).first()
    if not term:
        raise NotFoundError(
            f"No term found for academic session {session.academic_year}"
        )
    return term
