import base64
import binascii
from io import BytesIO
from datetime import datetime
from typing import List, Optional, Sequence

import qrcode
import structlog
from PIL import Image as PILImage, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Image, Table, TableStyle, PageBreak

log = structlog.get_logger(__name__)

BRAND_PRIMARY = colors.HexColor("#1d1e3d")
BRAND_ACCENT = colors.HexColor("#ffcf21")


def generate_qr_code_image(data: str, size: int = 200) -> BytesIO:
    """Generate QR code image as BytesIO"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    img = img.resize((size, size), PILImage.Resampling.LANCZOS)

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)
    return buffer


def _styles():
    styles = getSampleStyleSheet()
    title = ParagraphStyle(
        "SiteTitle",
        parent=styles["Heading1"],
        fontSize=22,
        textColor=BRAND_PRIMARY,
        spaceAfter=12,
        fontName="Helvetica-Bold",
    )
    subtitle = ParagraphStyle(
        "SiteSubtitle",
        parent=styles["Normal"],
        fontSize=11,
        textColor=colors.HexColor("#555555"),
        spaceAfter=12,
    )
    cell = ParagraphStyle("SiteCell", parent=styles["Normal"], fontSize=8, leading=10)
    return title, subtitle, cell


def _table(headers: Sequence[str], rows: List[Sequence], cell_style) -> Table:
    data = [[Paragraph(f"<b>{h}</b>", cell_style) for h in headers]]
    for row in rows:
        data.append([Paragraph("" if v is None else str(v), cell_style) for v in row])
    table = Table(data, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_ACCENT),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#bbbbbb")),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f4f4f4")]),
    ]))
    return table


def create_table_report_pdf(title: str, subtitle: str, headers: Sequence[str], rows: List[Sequence]) -> bytes:
    """Landscape A4 report with a single striped table."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(A4), leftMargin=36, rightMargin=36, topMargin=36, bottomMargin=36)
    title_style, subtitle_style, cell_style = _styles()
    story = [
        Paragraph(title, title_style),
        Paragraph(f"{subtitle}<br/>Generated {datetime.utcnow().strftime('%d/%m/%Y %H:%M')} UTC", subtitle_style),
        _table(headers, rows, cell_style),
    ]
    doc.build(story)
    return buffer.getvalue()


def create_poster_pdf(
    title: str,
    location_name: str,
    poster_type: str,
    qr_data: str,
    documents: List[str],
    project_name: Optional[str] = None,
) -> bytes:
    """
    Printable A4 QR poster for a site location.

    Args:
        title: Poster heading
        location_name: Where the poster is displayed
        poster_type: sign-in|welfare|hoarding|office|plot-specific
        qr_data: URL encoded in the QR code
        documents: Document labels covered by the poster
        project_name: Project shown under the heading
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=54, rightMargin=54, topMargin=54, bottomMargin=54)
    title_style, subtitle_style, cell_style = _styles()
    centered_title = ParagraphStyle("PosterTitle", parent=title_style, alignment=1, fontSize=28)
    centered = ParagraphStyle("PosterText", parent=subtitle_style, alignment=1, fontSize=14)

    story = [Paragraph(title, centered_title)]
    if project_name:
        story.append(Paragraph(project_name, centered))
    story.append(Paragraph(f"{location_name} ({poster_type})", centered))
    story.append(Spacer(1, 0.3 * inch))

    qr_img = Image(generate_qr_code_image(qr_data, size=400), width=4 * inch, height=4 * inch)
    qr_table = Table([[qr_img]], colWidths=[6 * inch])
    qr_table.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "CENTER")]))
    story.append(qr_table)
    story.append(Spacer(1, 0.2 * inch))
    story.append(Paragraph("Scan to confirm you are working from the current version.", centered))

    if documents:
        story.append(Spacer(1, 0.3 * inch))
        story.append(_table(["Documents covered"], [[d] for d in documents], cell_style))
    doc.build(story)
    return buffer.getvalue()


def _decode_signature_image(data_url: Optional[str]) -> Optional[BytesIO]:
    if not data_url or not data_url.startswith("data:image/"):
        return None
    try:
        raw = base64.b64decode(data_url.split(",", 1)[1], validate=True)
        PILImage.open(BytesIO(raw)).verify()
    except (IndexError, binascii.Error, UnidentifiedImageError, OSError) as e:
        log.warning("signature_image_unreadable", error=str(e))
        return None
    return BytesIO(raw)


def create_signature_bundle_pdf(title: str, signatures: List[dict], include_images: bool = True) -> bytes:
    """
    One section per signature: details table plus the drawn signature when present.

    ``signatures`` are dicts as produced by the signature vault serializer.
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=54, rightMargin=54, topMargin=54, bottomMargin=54)
    title_style, subtitle_style, cell_style = _styles()
    story = [Paragraph(title, title_style), Paragraph(f"{len(signatures)} signature record(s)", subtitle_style)]

    for i, sig in enumerate(signatures):
        if i and i % 4 == 0:
            story.append(PageBreak())
        rows = [
            ["Operative", sig.get("operative_name")],
            ["Document", f"{sig.get('document_title')} v{sig.get('document_version') or '-'}"],
            ["Type", sig.get("signature_type")],
            ["Project / Plot", f"{sig.get('project') or '-'} / {sig.get('plot') or '-'}"],
            ["Signed", sig.get("signed_at")],
            ["Method", sig.get("method")],
            ["Status", sig.get("status")],
        ]
        story.append(_table(["Field", "Value"], rows, cell_style))
        image = _decode_signature_image(sig.get("signature_data")) if include_images else None
        if image is not None:
            story.append(Image(image, width=2.5 * inch, height=1 * inch))
        story.append(Spacer(1, 0.25 * inch))
    doc.build(story)
    return buffer.getvalue()
