from typing import Optional, Sequence

import click
from sqlalchemy.orm import Session

from academic_registry.activity_log import ActivityLogger
from academic_registry.promotions import PromoteClassArmRequest, promote_class_arm_students
from academic_registry.tenancy import TenantContext


def promote_class_arm(
    db: Session,
    tenant: TenantContext,
    from_class_arm_id: str,
    to_academic_session_id: str,
    promotion_type: str = "PROMOTE",
    to_level_id: Optional[str] = None,
    student_ids: Sequence[str] = (),
    repeater_ids: Sequence[str] = (),
    existing_target_class_arm_id: Optional[str] = None,
    target_class_arm_name: Optional[str] = None,
    repeaters_class_arm_id: Optional[str] = None,
    repeaters_class_arm_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> None:
    request = PromoteClassArmRequest(
        from_class_arm_id=from_class_arm_id,
        to_academic_session_id=to_academic_session_id,
        promotion_type=promotion_type.upper(),
        to_level_id=to_level_id,
        student_ids=list(student_ids) or None,
        repeater_student_ids=list(repeater_ids) or None,
        use_existing_class_arm=existing_target_class_arm_id is not None,
        existing_target_class_arm_id=existing_target_class_arm_id,
        target_class_arm_name=target_class_arm_name,
        repeaters_class_arm_id=repeaters_class_arm_id,
        repeaters_class_arm_name=repeaters_class_arm_name,
        notes=notes,
    )
    batch = promote_class_arm_students(db, tenant, request, ActivityLogger(db))

    click.secho(
        f"Batch {batch.batch_id} {batch.status}: {batch.successful_promotions}/"
        f"{batch.total_students} students moved",
        fg="green",
    )
    click.echo(f"- Promoted: {batch.promoted_count}")
    click.echo(f"- Repeated: {batch.repeated_count}")
    for result in batch.results:
        click.echo(
            f"  {result.student_name}: {result.from_level}-{result.from_class_arm} -> "
            f"{result.to_level}-{result.to_class_arm} ({result.promotion_type})"
        )
