from typing import Optional

import click
from sqlalchemy.orm import Session

from academic_registry.results import get_student_results
from academic_registry.tenancy import TenantContext


def _format_score(value) -> str:
    if value is None:
        return "-"
    return f"{value:g}"


def show_results(
    db: Session,
    tenant: TenantContext,
    student_id: str,
    academic_session_id: Optional[str] = None,
    term_id: Optional[str] = None,
    subject_id: Optional[str] = None,
) -> None:
    results = get_student_results(
        db, tenant, student_id, academic_session_id, term_id, subject_id
    )

    click.secho(f"{results.full_name} ({results.student_no})", fg="cyan")
    click.echo(
        f"{results.academic_year} - {results.term_name}"
        + (f" - {results.class_arm_name}" if results.class_arm_name else "")
    )

    if not results.subjects:
        click.secho("No results recorded for this term.", fg="yellow")
        return

    for subject in results.subjects:
        click.echo()
        click.secho(
            f"{subject.name} [{subject.code}]  total {_format_score(subject.total_score)}"
            f"  grade {subject.grade}",
            bold=True,
        )
        for line in subject.assessments:
            marker = "" if line.id else "  (not recorded)"
            click.echo(
                f"  {line.name:<20} {_format_score(line.score):>6} / "
                f"{_format_score(line.max_score)}{marker}"
            )

    stats = results.overall_stats
    position = (
        f"{stats.position} of {stats.total_students}" if stats.position else "N/A"
    )
    click.echo()
    click.echo(f"Subjects: {stats.total_subjects}")
    click.echo(f"Total: {_format_score(stats.total_score)}")
    click.echo(f"Average: {_format_score(stats.average_score)}")
    click.echo(f"Grade: {stats.grade}")
    click.echo(f"Position: {position}")
