from typing import Dict, List, Sequence

import click
from sqlalchemy.orm import Session

from academic_registry.activity_log import ActivityLogger
from academic_registry.errors import BadRequestError
from academic_registry.grading_models import upsert_grading_model
from academic_registry.tenancy import TenantContext


def parse_bands(bands: Sequence[str]) -> Dict[str, List[float]]:
    """
    Parse ``GRADE=MIN-MAX`` arguments into a grading model.

    Example: ``A=70-100 B=60-69 C=0-59``
    """
    model: Dict[str, List[float]] = {}
    for band in bands:
        try:
            grade, score_range = band.split("=", 1)
            minimum, maximum = score_range.split("-", 1)
            model[grade.strip()] = [float(minimum), float(maximum)]
        except ValueError:
            raise BadRequestError(
                f"Invalid grade band {band!r}, expected GRADE=MIN-MAX (e.g. A=70-100)"
            )
    return model


def set_grading_model(db: Session, tenant: TenantContext, bands: Sequence[str]) -> None:
    model = parse_bands(bands)
    grading_model = upsert_grading_model(db, tenant, model, ActivityLogger(db))
    click.secho(f"Saved grading model {grading_model.id}", fg="green")
    for grade, (minimum, maximum) in model.items():
        click.echo(f"  {grade}: {minimum:g} - {maximum:g}")
