"""
PDF text extraction for vendor order attachments (Safilo, Etnia Barcelona).

Uses pdfplumber. Parsers read the text line by line, so page text is kept in
reading order and pages are joined with a newline. Scanned (image-only) PDFs
yield an empty string; no OCR is attempted.
"""

import io
import logging

import pdfplumber

from app.models.inbound_email import InboundAttachment

logger = logging.getLogger(__name__)


def extract_text_from_pdf_bytes(data: bytes) -> str:
    """
    Extract text from an in-memory PDF.

    Raises ValueError if the PDF yields no text at all.
    """
    text_parts = []

    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)

    full_text = "\n".join(text_parts)

    if not full_text.strip():
        raise ValueError(
            "No text extracted from PDF. "
            "The PDF may be scanned/image-based (OCR not supported)."
        )

    return full_text


def extract_attachments_text(attachments: list[InboundAttachment]) -> str:
    """
    Concatenate the text of every PDF attachment.

    Extraction is best-effort: an unreadable attachment is logged and skipped
    so the email body can still be parsed.
    """
    texts = []
    for att in attachments:
        if not att.is_pdf:
            continue
        try:
            texts.append(extract_text_from_pdf_bytes(att.content))
        except Exception as e:
            logger.warning(f"Could not extract text from attachment {att.filename!r}: {e}")
    return "\n".join(texts)
