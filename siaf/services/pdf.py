from io import BytesIO
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from ..config import settings


def _text(value) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    return str(value)


def _section(rows, styles) -> Table:
    data = [[Paragraph(f"<b>{label}</b>", styles["BodyText"]), Paragraph(escape(_text(value)), styles["BodyText"])] for label, value in rows]
    table = Table(data, colWidths=[2.0 * inch, 4.5 * inch])
    table.setStyle(TableStyle([
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("BACKGROUND", (0, 0), (0, -1), colors.whitesmoke),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    return table


def create_responsive_form_pdf(form: dict, printed_at: Optional[datetime] = None) -> bytes:
    """
    Render a responsibility transfer form.

    Args:
        form: Row from the responsive form detail query (asset and user names joined)
        printed_at: Timestamp printed in the footer, defaults to now

    Returns:
        PDF bytes
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=54,
        leftMargin=54,
        topMargin=54,
        bottomMargin=54,
        title=f"Responsive form {form.get('form_code')}",
    )
    styles = getSampleStyleSheet()
    heading = ParagraphStyle("FormHeading", parent=styles["Title"], fontSize=16, spaceAfter=6)
    small = ParagraphStyle("Small", parent=styles["BodyText"], fontSize=8, textColor=colors.grey)

    story = [
        Paragraph(escape(settings.organization_name), heading),
        Paragraph(escape(settings.organization_address), small),
        Spacer(1, 0.2 * inch),
        Paragraph(f"Responsibility Transfer Form {escape(_text(form.get('form_code')))}", styles["Heading2"]),
        Spacer(1, 0.1 * inch),
        Paragraph("Asset", styles["Heading3"]),
        _section([
            ("Code", form.get("asset_code")),
            ("Name", form.get("asset_name")),
            ("Brand / model", f"{_text(form.get('brand'))} / {_text(form.get('model'))}"),
            ("Serial number", form.get("serial_number")),
        ], styles),
        Spacer(1, 0.15 * inch),
        Paragraph("Transfer", styles["Heading3"]),
        _section([
            ("Previous responsible", form.get("previous_responsible_name")),
            ("Previous department", form.get("previous_department")),
            ("New responsible", form.get("new_responsible_name")),
            ("New department", form.get("new_department")),
            ("Transfer date", form.get("transfer_date")),
            ("Reason", form.get("reason")),
            ("Conditions", form.get("conditions")),
            ("Observations", form.get("observations")),
            ("Status", form.get("status")),
            ("Approved by", form.get("approved_by_name")),
        ], styles),
        Spacer(1, 0.6 * inch),
    ]

    signatures = Table(
        [["______________________________", "______________________________"],
         ["Delivers", "Receives"]],
        colWidths=[3.25 * inch, 3.25 * inch],
    )
    signatures.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "CENTER")]))
    story.append(signatures)
    story.append(Spacer(1, 0.3 * inch))
    story.append(Paragraph(f"Printed {_text(printed_at or datetime.now())}", small))

    doc.build(story)
    return buffer.getvalue()
