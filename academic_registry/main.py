import sys
from typing import Callable, Optional

import click
from sqlalchemy.orm import Session

from academic_registry.commands.create.global_template import create_global_template
from academic_registry.commands.export.broadsheet import export_broadsheet
from academic_registry.commands.progression.rules import (
    add_progression,
    change_progression,
    list_progressions,
    remove_progression,
)
from academic_registry.commands.promote.class_arm import promote_class_arm
from academic_registry.commands.promote.student import promote_single_student
from academic_registry.commands.set.grading_model import set_grading_model
from academic_registry.commands.show.grading_model import show_grading_model
from academic_registry.commands.show.promotions import (
    show_promotion_history,
    show_promotion_preview,
    show_promotion_statistics,
)
from academic_registry.commands.show.ranking import show_ranking
from academic_registry.commands.show.results import show_results
from academic_registry.commands.show.template import show_template
from academic_registry.db.config import get_engine, get_session, init_db
from academic_registry.errors import RegistryError
from academic_registry.tenancy import resolve_tenant
from academic_registry.utils.logging_config import configure_from_env

user_option = click.option(
    "--user", "user_id", required=True, help="ID of the user performing the action"
)


def get_db() -> Session:
    return get_session(get_engine())


def run(command: Callable, *args, **kwargs) -> None:
    """Run a command body, reporting registry errors instead of a traceback."""
    try:
        command(*args, **kwargs)
    except RegistryError as e:
        click.secho(f"Error: {e.message}", fg="red")
        sys.exit(1)


def run_as(user_id: str, command: Callable, *args, **kwargs) -> None:
    """Resolve the acting user's school, then run a tenant-scoped command body."""
    db = get_db()
    try:
        run(lambda: command(db, resolve_tenant(db, user_id), *args, **kwargs))
    finally:
        db.close()


@click.group()
def cli() -> None:
    configure_from_env()


@cli.group()
def db() -> None:
    pass


@db.command(name="init")
def db_init() -> None:
    """Create the database schema."""
    init_db(get_engine())
    click.secho("Database initialized", fg="green")


@cli.group()
def create() -> None:
    pass


@create.command(name="global-template")
def global_template() -> None:
    """Create the global default assessment template (Test 1, Test 2, Exam)."""
    session = get_db()
    try:
        run(create_global_template, session)
    finally:
        session.close()


@cli.group()
def show() -> None:
    pass


@show.command(name="template")
@user_option
@click.argument("session_id")
@click.option(
    "--read-only", is_flag=True, help="Do not create a template if none exists"
)
def template_cmd(user_id: str, session_id: str, read_only: bool) -> None:
    """Show the assessment template of an academic session."""
    run_as(user_id, show_template, session_id, read_only=read_only)


@show.command(name="results")
@user_option
@click.argument("student_id")
@click.option("--session", "session_id", help="Academic session ID")
@click.option("--term", "term_id", help="Term ID")
@click.option("--subject", "subject_id", help="Only show this subject")
def results_cmd(
    user_id: str,
    student_id: str,
    session_id: Optional[str],
    term_id: Optional[str],
    subject_id: Optional[str],
) -> None:
    """Show a student's term results."""
    run_as(user_id, show_results, student_id, session_id, term_id, subject_id)


@show.command(name="ranking")
@user_option
@click.argument("class_arm_id")
@click.option("--term", "term_id", required=True, help="Term ID")
def ranking_cmd(user_id: str, class_arm_id: str, term_id: str) -> None:
    """Rank the students of a class arm by their term total."""
    run_as(user_id, show_ranking, class_arm_id, term_id)


@show.command(name="promotion-history")
@user_option
@click.argument("student_id")
def promotion_history_cmd(user_id: str, student_id: str) -> None:
    run_as(user_id, show_promotion_history, student_id)


@show.command(name="promotion-preview")
@user_option
@click.option("--from-session", "from_session_id", required=True)
@click.option("--to-session", "to_session_id", required=True)
def promotion_preview_cmd(user_id: str, from_session_id: str, to_session_id: str) -> None:
    """Preview where each student of a session would be promoted to."""
    run_as(user_id, show_promotion_preview, from_session_id, to_session_id)


@show.command(name="promotion-stats")
@user_option
@click.argument("session_id")
def promotion_stats_cmd(user_id: str, session_id: str) -> None:
    run_as(user_id, show_promotion_statistics, session_id)


@show.command(name="grading-model")
@user_option
def grading_model_cmd(user_id: str) -> None:
    run_as(user_id, show_grading_model)


@cli.group(name="set")
def set_group() -> None:
    pass


@set_group.command(name="grading-model")
@user_option
@click.argument("bands", nargs=-1, required=True)
def set_grading_model_cmd(user_id: str, bands: tuple[str, ...]) -> None:
    """Replace the school's grading model, e.g. A=70-100 B=60-69 ... F=0-39."""
    run_as(user_id, set_grading_model, bands)


@cli.group()
def promote() -> None:
    pass


@promote.command(name="class-arm")
@user_option
@click.argument("from_class_arm_id")
@click.option("--to-session", "to_session_id", required=True, help="Target academic session ID")
@click.option(
    "--type",
    "promotion_type",
    type=click.Choice(["PROMOTE", "REPEAT"], case_sensitive=False),
    default="PROMOTE",
    show_default=True,
)
@click.option("--to-level", "to_level_id", help="Target level ID (defaults to the next level)")
@click.option("--student", "student_ids", multiple=True, help="Only move these students")
@click.option("--repeater", "repeater_ids", multiple=True, help="Students to repeat the level")
@click.option("--target-class-arm", "target_class_arm_id", help="Existing target class arm ID")
@click.option("--target-name", help="Name for the new target class arm")
@click.option("--repeaters-class-arm", "repeaters_class_arm_id", help="Existing repeaters class arm ID")
@click.option("--repeaters-name", help="Name for the new repeaters class arm")
@click.option("--notes")
def promote_class_arm_cmd(
    user_id: str,
    from_class_arm_id: str,
    to_session_id: str,
    promotion_type: str,
    to_level_id: Optional[str],
    student_ids: tuple[str, ...],
    repeater_ids: tuple[str, ...],
    target_class_arm_id: Optional[str],
    target_name: Optional[str],
    repeaters_class_arm_id: Optional[str],
    repeaters_name: Optional[str],
    notes: Optional[str],
) -> None:
    """Promote or repeat the students of a class arm into a new session."""
    run_as(
        user_id,
        promote_class_arm,
        from_class_arm_id,
        to_session_id,
        promotion_type=promotion_type,
        to_level_id=to_level_id,
        student_ids=student_ids,
        repeater_ids=repeater_ids,
        existing_target_class_arm_id=target_class_arm_id,
        target_class_arm_name=target_name,
        repeaters_class_arm_id=repeaters_class_arm_id,
        repeaters_class_arm_name=repeaters_name,
        notes=notes,
    )


@promote.command(name="student")
@user_option
@click.argument("student_id")
@click.option("--to-class-arm", "to_class_arm_id", required=True)
@click.option(
    "--type",
    "promotion_type",
    type=click.Choice(
        ["PROMOTE", "AUTOMATIC", "MANUAL", "REPEAT", "GRADUATION", "TRANSFER"],
        case_sensitive=False,
    ),
    default="PROMOTE",
    show_default=True,
)
@click.option("--notes")
def promote_student_cmd(
    user_id: str,
    student_id: str,
    to_class_arm_id: str,
    promotion_type: str,
    notes: Optional[str],
) -> None:
    """Move a single student into another class arm."""
    run_as(
        user_id,
        promote_single_student,
        student_id,
        to_class_arm_id,
        promotion_type=promotion_type,
        notes=notes,
    )


@cli.group()
def progression() -> None:
    pass


@progression.command(name="add")
@user_option
@click.argument("from_level_id")
@click.argument("to_level_id")
@click.option("--automatic/--manual", default=True, show_default=True)
@click.option("--requires-approval", is_flag=True)
@click.option("--order", type=int, default=0, show_default=True)
def progression_add(
    user_id: str,
    from_level_id: str,
    to_level_id: str,
    automatic: bool,
    requires_approval: bool,
    order: int,
) -> None:
    run_as(
        user_id,
        add_progression,
        from_level_id,
        to_level_id,
        is_automatic=automatic,
        requires_approval=requires_approval,
        order=order,
    )


@progression.command(name="list")
@user_option
def progression_list(user_id: str) -> None:
    run_as(user_id, list_progressions)


@progression.command(name="update")
@user_option
@click.argument("progression_id")
@click.option("--automatic/--manual", default=None)
@click.option("--requires-approval/--no-approval", default=None)
@click.option("--order", type=int)
def progression_update(
    user_id: str,
    progression_id: str,
    automatic: Optional[bool],
    requires_approval: Optional[bool],
    order: Optional[int],
) -> None:
    run_as(
        user_id,
        change_progression,
        progression_id,
        is_automatic=automatic,
        requires_approval=requires_approval,
        order=order,
    )


@progression.command(name="delete")
@user_option
@click.argument("progression_id")
def progression_delete(user_id: str, progression_id: str) -> None:
    run_as(user_id, remove_progression, progression_id)


@cli.group()
def export() -> None:
    pass


@export.command(name="broadsheet")
@user_option
@click.argument("class_arm_id")
@click.option("--term", "term_id", required=True, help="Term ID")
@click.option("--output", "output_path", type=click.Path(dir_okay=False), help="Output .xlsx path")
def broadsheet_cmd(
    user_id: str, class_arm_id: str, term_id: str, output_path: Optional[str]
) -> None:
    """Export a class arm's term broadsheet to Excel."""
    run_as(user_id, export_broadsheet, class_arm_id, term_id, output_path)


if __name__ == "__main__":
    cli()
