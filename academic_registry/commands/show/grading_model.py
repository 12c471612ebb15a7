import click
from sqlalchemy.orm import Session

from academic_registry.grade_definitions import DEFAULT_FAIL_GRADE, DEFAULT_GRADE_LADDER
from academic_registry.grading_models import get_grading_model
from academic_registry.tenancy import TenantContext


def show_grading_model(db: Session, tenant: TenantContext) -> None:
    model = get_grading_model(db, tenant)
    if not model:
        click.secho("No grading model set, using the default ladder:", fg="yellow")
        for minimum, grade in DEFAULT_GRADE_LADDER:
            click.echo(f"  {grade}: {minimum} and above")
        click.echo(f"  {DEFAULT_FAIL_GRADE}: below {DEFAULT_GRADE_LADDER[-1][0]}")
        return

    for grade, (minimum, maximum) in sorted(
        model.items(), key=lambda item: item[1][0], reverse=True
    ):
        click.echo(f"  {grade}: {minimum:g} - {maximum:g}")
