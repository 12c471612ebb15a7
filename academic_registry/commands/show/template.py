import click
from sqlalchemy.orm import Session

from academic_registry.assessment_templates import (
    find_active_for_session,
    find_template_for_session_read_only,
)
from academic_registry.academic_calendar import get_school_session
from academic_registry.tenancy import TenantContext


def show_template(
    db: Session, tenant: TenantContext, academic_session_id: str, read_only: bool = False
) -> None:
    session = get_school_session(db, tenant.school_id, academic_session_id)
    if read_only:
        template = find_template_for_session_read_only(
            db, tenant.school_id, session.id
        )
    else:
        template = find_active_for_session(db, tenant, session.id)

    if not template:
        click.secho(
            f"No assessment template for session {session.academic_year}.", fg="yellow"
        )
        return

    click.secho(f"{template.name} ({session.academic_year})", fg="cyan")
    if template.description:
        click.echo(template.description)
    for component in template.components:
        exam = " [exam]" if component.is_exam else ""
        click.echo(f"  {component.order}. {component.name:<20} {component.max_score:>6}{exam}")
