"""
Word export of a compliance report.

The browser sends the report it rendered as plain text; each non-empty
line becomes one paragraph of a .docx document with 1-inch margins.
"""

from __future__ import annotations

import io
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from docx import Document
from docx.shared import Inches, Pt

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

PARAGRAPH_SPACING = Pt(5)
PAGE_MARGIN = Inches(1)


def report_lines(content: str) -> List[str]:
    return [line.strip() for line in content.split("\n") if line.strip()]


def report_filename(day: Optional[date] = None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f"compliance-report-{day.isoformat()}.docx"


def build_report(content: str) -> bytes:
    """
    Render ``content`` as a .docx document.

    Args:
        content: Report text, one paragraph per line

    Returns:
        The serialized document
    """
    document = Document()
    for section in document.sections:
        section.top_margin = PAGE_MARGIN
        section.bottom_margin = PAGE_MARGIN
        section.left_margin = PAGE_MARGIN
        section.right_margin = PAGE_MARGIN

    lines = report_lines(content)
    for line in lines:
        paragraph = document.add_paragraph(line)
        paragraph.paragraph_format.space_after = PARAGRAPH_SPACING

    buffer = io.BytesIO()
    document.save(buffer)
    logger.info(f"Generated compliance report with {len(lines)} paragraphs")
    return buffer.getvalue()
