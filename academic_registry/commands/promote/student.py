from typing import Optional

import click
from sqlalchemy.orm import Session

from academic_registry.activity_log import ActivityLogger
from academic_registry.promotions import PromoteStudentRequest, promote_student
from academic_registry.tenancy import TenantContext


def promote_single_student(
    db: Session,
    tenant: TenantContext,
    student_id: str,
    to_class_arm_id: str,
    promotion_type: str = "PROMOTE",
    notes: Optional[str] = None,
) -> None:
    result = promote_student(
        db,
        tenant,
        PromoteStudentRequest(
            student_id=student_id,
            to_class_arm_id=to_class_arm_id,
            promotion_type=promotion_type,
            notes=notes,
        ),
        ActivityLogger(db),
    )
    click.secho(
        f"{result.student_name}: {result.from_level}-{result.from_class_arm} -> "
        f"{result.to_level}-{result.to_class_arm} ({result.promotion_type})",
        fg="green",
    )
    for warning in result.warnings:
        click.secho(f"Warning: {warning}", fg="yellow")
