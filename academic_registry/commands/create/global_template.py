import click
from sqlalchemy.orm import Session

from academic_registry.assessment_templates import create_global_default


def create_global_template(db: Session) -> None:
    """Seed the global default assessment template used by new schools."""
    template = create_global_default(db)
    click.secho(f"Created global default template {template.id}", fg="green")
    for component in template.components:
        exam = " (exam)" if component.is_exam else ""
        click.echo(f"  {component.order}. {component.name}: {component.max_score}{exam}")
