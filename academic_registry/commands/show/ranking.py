import click
from sqlalchemy.orm import Session

from academic_registry.models import Student
from academic_registry.ranking import rank_class_arm
from academic_registry.tenancy import TenantContext


def show_ranking(
    db: Session, tenant: TenantContext, class_arm_id: str, term_id: str
) -> None:
    ranking = rank_class_arm(db, tenant, term_id, class_arm_id)
    if not ranking.entries:
        click.secho("No recorded scores for this class arm and term.", fg="yellow")
        return

    students = {
        s.id: s
        for s in db.query(Student)
        .filter(Student.id.in_([e.student_id for e in ranking.entries]))
        .all()
    }
    for entry in ranking.entries:
        student = students.get(entry.student_id)
        name = student.full_name if student else entry.student_id
        click.echo(f"{entry.position:>3}. {name:<30} {entry.total_score:g}")
    click.echo(f"\nTotal students: {ranking.total_students}")
