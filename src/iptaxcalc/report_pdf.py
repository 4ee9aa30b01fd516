import io
from typing import Any, List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .rules.base import fmt_kzt
from .schemas import TaxCalculation, TaxSystemType

REGIME_TITLES = {
    TaxSystemType.SIMPLIFIED_4: "Simplified declaration (4% of income)",
    TaxSystemType.SELF_EMPLOYED: "Self-employed (0% income tax + 4% social)",
    TaxSystemType.GENERAL: "General regime (10% / 15% progressive)",
}

ESTIMATE_NOTICE = (
    "This report is an estimate for planning purposes only. Quarterly amounts are an even "
    "split of the annual tax and are not a legally authoritative payment schedule."
)


def _esc(txt: Any) -> str:
    # basic HTML escaping so Paragraph does not choke
    s = "" if txt is None else str(txt)
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _make_wrapped_table(data: List[List[Any]], styles, page_width_pts: float, right_align_from: int = 1) -> Table:
    """
    Create a wrapped table that fits the page width.
    - data[0] is the header row.
    - Column widths follow the character length of header + body, within bounds.
    """
    wrap_style = ParagraphStyle(
        "WrapSmall",
        parent=styles["Normal"],
        fontSize=9,
        leading=11,
    )
    wrapped = [[Paragraph(_esc(c), wrap_style) for c in row] for row in data]

    ncols = len(data[0]) if data else 0
    if ncols == 0:
        t = Table(wrapped, hAlign="LEFT")
        t.setStyle(TableStyle([("GRID", (0, 0), (-1, -1), 0.25, colors.black)]))
        return t

    weights = [0] * ncols
    for row in data:
        for i, cell in enumerate(row):
            weights[i] += max(1, min(len(_esc(cell)), 60))  # cap to avoid over-influence

    usable_width = page_width_pts - (0.8 * inch)
    min_w, max_w = 0.8 * inch, 3.5 * inch
    total_w = sum(weights)
    col_widths = [max(min_w, min(max_w, w / total_w * usable_width)) for w in weights]
    scale = usable_width / sum(col_widths)
    col_widths = [cw * scale for cw in col_widths]

    t = Table(wrapped, hAlign="LEFT", colWidths=col_widths, repeatRows=1)
    t.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F0F0F0")),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ALIGN", (right_align_from, 1), (-1, -1), "RIGHT"),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ("TOPPADDING", (0, 0), (-1, -1), 3),
            ]
        )
    )
    return t


def build_tax_report_pdf(calc: TaxCalculation, username: Optional[str] = None) -> bytes:
    """
    Render a tax calculation as a one-page PDF.

    Sections: regime + year, annual totals, quarterly schedule, limit notices
    (if any) and the estimate disclaimer. Returns raw PDF bytes.
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        title=f"Tax estimate {calc.year}",
    )
    page_width = doc.width + doc.leftMargin + doc.rightMargin
    styles = getSampleStyleSheet()
    story = []

    story.append(Paragraph(f"Tax Estimate {calc.year}", styles["Title"]))
    story.append(Paragraph(_esc(REGIME_TITLES.get(calc.tax_system, calc.tax_system.value)), styles["Normal"]))
    if username:
        story.append(Paragraph(f"Taxpayer: {_esc(username)}", styles["Normal"]))
    story.append(Spacer(1, 12))

    story.append(Paragraph("Annual totals", styles["Heading2"]))
    totals = [
        ["Field", "Value"],
        ["Income", fmt_kzt(calc.income)],
        ["Deductible expenses", fmt_kzt(calc.expenses)],
        ["Taxable base", fmt_kzt(calc.tax_base)],
        ["Tax rate", f"{calc.tax_rate}%"],
        ["Tax amount", fmt_kzt(calc.tax_amount)],
    ]
    story.append(_make_wrapped_table(totals, styles, page_width))
    story.append(Spacer(1, 10))

    story.append(Paragraph("Quarterly payments (estimate)", styles["Heading2"]))
    schedule = [["Quarter", "Due date", "Amount", "Status"]]
    for p in calc.quarterly_payments:
        schedule.append([f"Q{p.quarter}", p.due_date.isoformat(), fmt_kzt(p.amount), "paid" if p.is_paid else "open"])
    story.append(_make_wrapped_table(schedule, styles, page_width, right_align_from=2))
    story.append(Spacer(1, 10))

    if calc.warnings:
        story.append(Paragraph("Notices", styles["Heading2"]))
        for w in calc.warnings:
            story.append(Paragraph(_esc(w), styles["Normal"]))
        story.append(Spacer(1, 10))

    story.append(Paragraph(ESTIMATE_NOTICE, styles["Italic"]))

    doc.build(story)
    return buffer.getvalue()
