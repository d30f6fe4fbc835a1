"""
Statement of Results
Renders a student's marked tests/tasks as a one-document PDF
"""

import io
from datetime import datetime

from flask import current_app
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from assignment_helpers import student_results
from assignment_models import score_value

ROW_HEIGHT = 18
BOTTOM_MARGIN = 80


def _draw_header(p, width, height, portal_name, student):
    p.setFont("Helvetica-Bold", 20)
    p.drawCentredString(width / 2, height - 50, portal_name)
    p.setFont("Helvetica", 12)
    p.drawCentredString(width / 2, height - 70, "Statement of Results")

    y = height - 110
    p.setFont("Helvetica", 11)
    p.drawString(50, y, f"Student Name: {student.full_name}")
    p.drawRightString(width - 50, y, f"Date: {datetime.utcnow().strftime('%d-%b-%Y')}")
    y -= 20
    p.drawString(50, y, f"Student No: {student.admission_number or 'N/A'}")
    group = student.intake_group.title if student.intake_group else 'N/A'
    p.drawString(300, y, f"Intake Group: {group}")
    return y - 40


def _draw_table_heading(p, y):
    p.setFont("Helvetica-Bold", 11)
    p.drawString(50, y, "Assessment")
    p.drawString(300, y, "Type")
    p.drawString(360, y, "Score")
    p.drawString(420, y, "%")
    p.drawString(460, y, "Outcome")
    p.setFont("Helvetica", 10)
    return y - ROW_HEIGHT


def build_statement_of_results(session_db, student) -> io.BytesIO:
    """PDF bytes for every marked or completed result of a student"""
    portal_name = current_app.config.get('PORTAL_NAME', 'College Portal')
    results = student_results(session_db, student.id)

    buffer = io.BytesIO()
    p = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    y = _draw_header(p, width, height, portal_name, student)
    y = _draw_table_heading(p, y)

    if not results:
        p.drawString(50, y, "No marked results yet.")

    for result in results:
        if y < BOTTOM_MARGIN:
            p.showPage()
            y = _draw_table_heading(p, height - 60)

        score = result.test_score if result.test_score is not None else result.task_score
        p.drawString(50, y, result.assignment.title[:45])
        p.drawString(300, y, result.assignment.assignment_type.value)
        p.drawString(360, y, '' if score is None else str(score_value(score)))
        p.drawString(420, y, '' if result.percent is None else str(result.percent))
        p.drawString(460, y, result.overall_outcome or '')
        y -= ROW_HEIGHT

    p.setFont("Helvetica", 9)
    p.drawCentredString(width / 2, 50, "This is a computer-generated statement")

    p.showPage()
    p.save()

    buffer.seek(0)
    return buffer
