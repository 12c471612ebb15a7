from typing import Optional

import click
from sqlalchemy.orm import Session

from academic_registry.level_progressions import (
    create_level_progression,
    delete_level_progression,
    list_level_progressions,
    update_level_progression,
)
from academic_registry.models import LevelProgression
from academic_registry.tenancy import TenantContext


def _describe(progression: LevelProgression) -> str:
    flags = []
    if progression.is_automatic:
        flags.append("automatic")
    if progression.requires_approval:
        flags.append("requires approval")
    return (
        f"{progression.order:>3}. {progression.from_level.name} -> "
        f"{progression.to_level.name}  [{', '.join(flags) or 'manual'}]  {progression.id}"
    )


def add_progression(
    db: Session,
    tenant: TenantContext,
    from_level_id: str,
    to_level_id: str,
    is_automatic: bool = True,
    requires_approval: bool = False,
    order: int = 0,
) -> None:
    progression = create_level_progression(
        db,
        tenant,
        from_level_id,
        to_level_id,
        is_automatic=is_automatic,
        requires_approval=requires_approval,
        order=order,
    )
    click.secho(f"Added progression {_describe(progression)}", fg="green")


def list_progressions(db: Session, tenant: TenantContext) -> None:
    progressions = list_level_progressions(db, tenant)
    if not progressions:
        click.secho(
            "No progression rules configured, the default level ladder applies.",
            fg="yellow",
        )
        return
    for progression in progressions:
        click.echo(_describe(progression))


def change_progression(
    db: Session,
    tenant: TenantContext,
    progression_id: str,
    is_automatic: Optional[bool] = None,
    requires_approval: Optional[bool] = None,
    order: Optional[int] = None,
) -> None:
    progression = update_level_progression(
        db,
        tenant,
        progression_id,
        is_automatic=is_automatic,
        requires_approval=requires_approval,
        order=order,
    )
    click.secho(f"Updated progression {_describe(progression)}", fg="green")


def remove_progression(db: Session, tenant: TenantContext, progression_id: str) -> None:
    delete_level_progression(db, tenant, progression_id)
    click.secho(f"Deleted progression {progression_id}", fg="green")
