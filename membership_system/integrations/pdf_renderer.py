"""
PDF rendering for membership certificates and payment receipts.

Produces the PDF bytes only; writing files and recording Document rows is
the document service's job.
"""
import io
from datetime import datetime
from decimal import Decimal
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    HRFlowable,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from membership_system.database.models import Payment, User, utcnow

ASSOCIATION_NAME = "Asosiasi Perpustakaan Perguruan Tinggi Nahdlatul Ulama"
ASSOCIATION_SHORT_NAME = "APPTNU"
BRAND_COLOR = colors.HexColor("#1B5E20")


def format_rupiah(amount: Decimal | float) -> str:
    """Indonesian grouping: Rp 500.000 or Rp 150.000,50."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    whole, _, cents = f"{value:,.2f}".partition(".")
    whole = whole.replace(",", ".")
    return f"Rp {whole}" if cents == "00" else f"Rp {whole},{cents}"


def format_date(value: datetime | None) -> str:
    return value.strftime("%d %B %Y") if value is not None else "N/A"


def _enum_text(value: object) -> str:
    return str(getattr(value, "value", value))


class PDFDocumentRenderer:
    """Renders membership PDFs with reportlab's platypus layout engine."""

    def __init__(self) -> None:
        styles = getSampleStyleSheet()
        self.title_style = ParagraphStyle(
            "MembershipTitle",
            parent=styles["Heading1"],
            fontSize=20,
            spaceAfter=6,
            alignment=TA_CENTER,
            textColor=BRAND_COLOR,
        )
        self.subtitle_style = ParagraphStyle(
            "MembershipSubtitle",
            parent=styles["Heading3"],
            fontSize=12,
            spaceAfter=18,
            alignment=TA_CENTER,
        )
        self.body_style = ParagraphStyle(
            "MembershipBody",
            parent=styles["Normal"],
            fontSize=11,
            spaceAfter=8,
        )
        self.footer_style = ParagraphStyle(
            "MembershipFooter",
            parent=styles["Normal"],
            fontSize=9,
            alignment=TA_CENTER,
            textColor=colors.grey,
        )

    def _details_table(self, rows: list[list[str]]) -> Table:
        table = Table(
            rows,
            colWidths=[2.2 * inch, 4.3 * inch],
        )
        table.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 10),
                    ("TEXTCOLOR", (0, 0), (0, -1), BRAND_COLOR),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#DDDDDD")),
                ]
            )
        )
        return table

    def _build(self, title: str, story: list) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=0.75 * inch,
            leftMargin=0.75 * inch,
            topMargin=1 * inch,
            bottomMargin=1 * inch,
            title=title,
            author=ASSOCIATION_SHORT_NAME,
        )
        doc.build(story)
        return buffer.getvalue()

    def render_certificate(self, user: User) -> bytes:
        """Certificate of membership for one institution."""
        story = [
            Paragraph("CERTIFICATE OF MEMBERSHIP", self.title_style),
            Paragraph(escape(ASSOCIATION_NAME), self.subtitle_style),
            HRFlowable(width="100%", thickness=1, color=BRAND_COLOR),
            Spacer(1, 18),
            Paragraph("This certifies that the following institution is a member:", self.body_style),
            Spacer(1, 6),
            self._details_table(
                [
                    ["Institution", user.institution_name],
                    ["Head Librarian", user.head_librarian_name],
                    ["Province", _enum_text(user.province)],
                    ["Membership Type", _enum_text(user.membership_type)],
                    ["Status", _enum_text(user.membership_status)],
                ]
            ),
            Spacer(1, 30),
            Paragraph(f"Generated on {format_date(utcnow())}", self.footer_style),
        ]
        return self._build("Certificate of Membership", story)

    def render_receipt(self, user: User, payment: Payment) -> bytes:
        """Receipt for one settled membership payment."""
        story = [
            Paragraph(f"{ASSOCIATION_SHORT_NAME} - Receipt", self.title_style),
            Paragraph(escape(ASSOCIATION_NAME), self.subtitle_style),
            HRFlowable(width="100%", thickness=1, color=BRAND_COLOR),
            Spacer(1, 18),
            self._details_table(
                [
                    ["Institution", user.institution_name],
                    ["Contact Person", user.contact_name],
                    ["Email", user.email],
                    ["Province", _enum_text(user.province)],
                ]
            ),
            Spacer(1, 18),
            Paragraph("Payment Details", self.body_style),
            self._details_table(
                [
                    ["Order ID", payment.midtrans_order_id],
                    ["Amount", format_rupiah(payment.amount)],
                    ["Payment Method", payment.payment_type or "N/A"],
                    ["Payment Date", format_date(payment.settlement_time)],
                ]
            ),
            Spacer(1, 30),
            Paragraph("Thank you for your membership!", self.body_style),
            Paragraph(f"Generated on {format_date(utcnow())}", self.footer_style),
        ]
        return self._build("Membership Payment Receipt", story)
