import click
from sqlalchemy.orm import Session

from academic_registry.promotions import (
    NOT_AVAILABLE,
    get_promotion_preview,
    get_promotion_statistics,
    get_student_promotion_history,
)
from academic_registry.tenancy import TenantContext


def show_promotion_history(db: Session, tenant: TenantContext, student_id: str) -> None:
    history = get_student_promotion_history(db, tenant, student_id)
    if not history:
        click.secho("No promotion history for this student.", fg="yellow")
        return

    for promotion in history:
        from_class = (
            promotion.from_class_arm.display_name
            if promotion.from_class_arm
            else NOT_AVAILABLE
        )
        from_year = (
            promotion.from_academic_session.academic_year
            if promotion.from_academic_session
            else NOT_AVAILABLE
        )
        click.echo(
            f"{promotion.promotion_date:%Y-%m-%d} {promotion.promotion_type:<10} "
            f"{from_class} ({from_year}) -> {promotion.to_class_arm.display_name} "
            f"({promotion.to_academic_session.academic_year})"
        )
        if promotion.notes:
            click.echo(f"    {promotion.notes}")


def show_promotion_preview(
    db: Session, tenant: TenantContext, from_session_id: str, to_session_id: str
) -> None:
    previews = get_promotion_preview(db, tenant, from_session_id, to_session_id)
    if not previews:
        click.secho("No students eligible for promotion.", fg="yellow")
        return

    for preview in previews:
        approval = " (requires approval)" if preview.requires_approval else ""
        click.echo(
            f"{preview.student_no:<12} {preview.student_name:<30} "
            f"{preview.current_level}-{preview.current_class_arm} -> "
            f"{preview.proposed_level} / {preview.proposed_class_arm}{approval}"
        )
        for warning in preview.warnings:
            click.secho(f"    {warning}", fg="yellow")
    click.echo(f"\nTotal: {len(previews)}")


def show_promotion_statistics(
    db: Session, tenant: TenantContext, academic_session_id: str
) -> None:
    stats = get_promotion_statistics(db, tenant, academic_session_id)
    click.echo(f"Total students: {stats.total_students}")
    click.echo(f"Eligible for promotion: {stats.eligible_for_promotion}")
    click.echo(f"Requires manual review: {stats.requires_manual_review}")
    click.echo(f"Cannot promote: {stats.cannot_promote}")

    if stats.by_level:
        click.echo("\nBy level:")
        for level, count in sorted(stats.by_level.items()):
            click.echo(f"- {level}: {count}")
    if stats.by_class_arm:
        click.echo("\nBy class arm:")
        for class_arm, count in sorted(stats.by_class_arm.items()):
            click.echo(f"- {class_arm}: {count}")
