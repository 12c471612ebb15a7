import os
from collections import defaultdict
from datetime import datetime
from typing import Dict, Optional

import click
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from academic_registry.academic_calendar import get_school_term
from academic_registry.filters import AssessmentRecordFilter
from academic_registry.grade_definitions import calculate_grade
from academic_registry.grading_models import get_school_grading_model
from academic_registry.models import Student
from academic_registry.ranking import get_school_class_arm, rank_class_arm
from academic_registry.tenancy import TenantContext
from academic_registry.utils.logging_config import get_logger

logger = get_logger(__name__)


def export_broadsheet(
    db: Session,
    tenant: TenantContext,
    class_arm_id: str,
    term_id: str,
    output_path: Optional[str] = None,
) -> Optional[str]:
    """
    Export a class-arm's term broadsheet to Excel.

    One row per ranked student with a column per subject total, followed by
    the overall total, average, position and grade.

    Returns:
        The path of the written workbook, or None when the class-arm has no
        recorded scores for the term
    """
    class_arm = get_school_class_arm(db, tenant.school_id, class_arm_id)
    term = get_school_term(db, tenant.school_id, term_id)
    ranking = rank_class_arm(db, tenant, term_id, class_arm_id)

    if not ranking.entries:
        click.secho(
            f"No recorded scores for {class_arm.display_name} in {term.name}.",
            fg="yellow",
        )
        return None

    records = AssessmentRecordFilter(term_id=term_id, class_arm_id=class_arm_id).records(
        db
    )
    subject_totals: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    subject_names: Dict[str, str] = {}
    for record in records:
        subject = record.class_arm_subject.subject
        subject_names[subject.id] = subject.name
        subject_totals[record.student_id][subject.id] += record.score

    subject_ids = sorted(subject_names, key=lambda key: subject_names[key])
    students = {
        s.id: s
        for s in db.query(Student)
        .filter(Student.id.in_([e.student_id for e in ranking.entries]))
        .all()
    }
    grading_model = get_school_grading_model(db, tenant.school_id)

    if output_path is None:
        output_dir = os.getenv("EXPORTS_DIR", "exports")
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        safe_name = class_arm.display_name.replace(" ", "_").replace("/", "-")
        output_path = os.path.join(output_dir, f"broadsheet_{safe_name}_{timestamp}.xlsx")

    wb = Workbook()
    ws = wb.active
    ws.title = class_arm.display_name[:31]

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(
        start_color="366092", end_color="366092", fill_type="solid"
    )

    headers = (
        ["Student No", "Student Name"]
        + [subject_names[key] for key in subject_ids]
        + ["Total", "Average", "Position", "Grade"]
    )
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col)
        cell.value = header
        cell.font = header_font
        cell.fill = header_fill

    for row, entry in enumerate(ranking.entries, 2):
        student = students.get(entry.student_id)
        totals = subject_totals[entry.student_id]
        average = round(entry.total_score / len(totals), 2) if totals else 0

        ws.cell(row=row, column=1, value=student.student_no if student else "")
        ws.cell(row=row, column=2, value=student.full_name if student else entry.student_id)
        for offset, subject_id in enumerate(subject_ids):
            ws.cell(row=row, column=3 + offset, value=totals.get(subject_id))
        col = 3 + len(subject_ids)
        ws.cell(row=row, column=col, value=entry.total_score)
        ws.cell(row=row, column=col + 1, value=average)
        ws.cell(row=row, column=col + 2, value=entry.position)
        ws.cell(row=row, column=col + 3, value=calculate_grade(average, grading_model))

    for col in range(1, len(headers) + 1):
        column_letter = get_column_letter(col)
        max_length = max(
            (len(str(cell.value)) for cell in ws[column_letter] if cell.value is not None),
            default=0,
        )
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

    wb.save(output_path)
    logger.info(f"Broadsheet for {class_arm.display_name} written to {output_path}")

    click.secho(f"Successfully exported broadsheet to: {output_path}", fg="green")
    click.echo(f"- Students: {ranking.total_students}")
    click.echo(f"- Subjects: {len(subject_ids)}")
    return output_path
