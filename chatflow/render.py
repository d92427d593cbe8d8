"""PDF rendering for invoices and proposals."""

from __future__ import annotations

import asyncio
import io
from decimal import Decimal, InvalidOperation
from typing import Any, List
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor, black
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .constants import PLATFORM_FEE_RATE
from .contracts import DraftEntity, EntityKind
from .errors import CollaboratorError

NAVY = HexColor("#1B2A4A")
LIGHT_GRAY = HexColor("#D9DDE3")


def _money(value: Any, currency: Any) -> str:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return f"{value} {currency or ''}".strip()
    return f"{amount:,.2f} {currency or ''}".strip()


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle("DocTitle", fontName="Helvetica-Bold", fontSize=22,
                              textColor=NAVY, spaceAfter=4))
    styles.add(ParagraphStyle("DocNumber", fontName="Helvetica", fontSize=11,
                              textColor=NAVY, spaceAfter=18))
    styles.add(ParagraphStyle("SectionTitle", fontName="Helvetica-Bold", fontSize=12,
                              textColor=NAVY, spaceBefore=12, spaceAfter=6))
    styles.add(ParagraphStyle("Body", fontName="Helvetica", fontSize=10,
                              textColor=black, leading=14, spaceAfter=4))
    return styles


def _table(rows: List[List[str]], widths: List[int]) -> Table:
    table = Table(rows, colWidths=widths)
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("TEXTCOLOR", (0, 0), (0, -1), NAVY),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("LINEBELOW", (0, 0), (-1, -2), 0.5, LIGHT_GRAY),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    return table


def _party_rows(fields: dict) -> List[List[str]]:
    return [
        ["From", f"{fields.get('freelancer_name', '')} <{fields.get('freelancer_email', '')}>"],
        ["To", f"{fields.get('client_name', '')} <{fields.get('client_email', '')}>"],
    ]


def _invoice_story(entity: DraftEntity, styles) -> list:
    fields = entity.fields
    currency = fields.get("currency")
    fee_rate = Decimal(PLATFORM_FEE_RATE)
    total = Decimal(str(fields.get("amount") or 0))
    story = [
        Paragraph("INVOICE", styles["DocTitle"]),
        Paragraph(escape(entity.number), styles["DocNumber"]),
        _table(_party_rows(fields) + [["Due", str(fields.get("due_date", ""))]], [90, 370]),
        Paragraph("Items", styles["SectionTitle"]),
    ]
    items = Table(
        [
            ["Description", "Qty", "Rate", "Amount"],
            [
                Paragraph(escape(str(fields.get("project_description", ""))), styles["Body"]),
                str(fields.get("quantity", "")),
                _money(fields.get("rate"), currency),
                _money(total, currency),
            ],
        ],
        colWidths=[220, 50, 95, 95],
    )
    items.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("TEXTCOLOR", (0, 0), (-1, 0), NAVY),
        ("LINEBELOW", (0, 0), (-1, 0), 0.8, NAVY),
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    story.append(items)
    story.append(Spacer(1, 12))
    story.append(_table(
        [
            ["Total", _money(total, currency)],
            ["Platform fee (1%)", _money(total * fee_rate, currency)],
            ["You receive", _money(total - total * fee_rate, currency)],
            ["Network", str(fields.get("network", "")).title()],
        ],
        [120, 340],
    ))
    return story


def _proposal_story(entity: DraftEntity, styles) -> list:
    fields = entity.fields
    deliverables = fields.get("deliverables") or []
    story = [
        Paragraph("PROPOSAL", styles["DocTitle"]),
        Paragraph(escape(f"{entity.number} · {fields.get('project_title', '')}"), styles["DocNumber"]),
        _table(_party_rows(fields), [90, 370]),
        Paragraph("Deliverables", styles["SectionTitle"]),
    ]
    for item in deliverables:
        story.append(Paragraph(f"• {escape(str(item))}", styles["Body"]))
    story.append(Paragraph("Terms", styles["SectionTitle"]))
    story.append(_table(
        [
            ["Complexity", str(fields.get("complexity", "")).title()],
            ["Timeline", str(fields.get("timeline", ""))],
            ["Budget", _money(fields.get("amount"), fields.get("currency"))],
        ],
        [120, 340],
    ))
    return story


class PdfDocumentRenderer:
    """Render invoice and proposal drafts to PDF bytes with reportlab."""

    def _build(self, entity: DraftEntity) -> bytes:
        styles = _styles()
        if entity.kind == EntityKind.INVOICE:
            story = _invoice_story(entity, styles)
        elif entity.kind == EntityKind.PROPOSAL:
            story = _proposal_story(entity, styles)
        else:
            raise CollaboratorError("render", f"cannot render a {entity.kind.value} draft")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            title=entity.number,
            topMargin=0.7 * inch,
            bottomMargin=0.7 * inch,
            leftMargin=0.8 * inch,
            rightMargin=0.8 * inch,
        )
        doc.build(story)
        return buffer.getvalue()

    async def render(self, entity: DraftEntity) -> bytes:
        return await asyncio.to_thread(self._build, entity)
