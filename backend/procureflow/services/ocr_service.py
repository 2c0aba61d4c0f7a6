import logging

import fitz  # PyMuPDF
import tenacity

from procureflow.services import ai_service
from procureflow.services.file_service import fetch_attachment, is_pdf, is_supported_image_type

logger = logging.getLogger(__name__)

PDF_EXTRACTION_FAILED = "PDF text extraction failed. Document may be scanned or malformed."
PDF_EXTRACTION_ATTEMPTS = 3
PDF_RETRY_WAIT_SEC = 1


@tenacity.retry(
    stop=tenacity.stop_after_attempt(PDF_EXTRACTION_ATTEMPTS),
    wait=tenacity.wait_fixed(PDF_RETRY_WAIT_SEC),
    before_sleep=lambda rs: logger.warning("PDF extraction attempt %s failed, retrying", rs.attempt_number),
    reraise=True,
)
def extract_text_from_pdf(data: bytes) -> str:
    """Extract text from all pages of an in-memory PDF, pages joined by newlines."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        parts = [page.get_text() for page in doc]
    finally:
        doc.close()
    return "\n".join(parts).strip()


def _pdf_to_text(data: bytes) -> str:
    try:
        text = extract_text_from_pdf(data)
    except Exception as e:
        logger.error("PDF parsing failed after %s attempts: %s", PDF_EXTRACTION_ATTEMPTS, e)
        return PDF_EXTRACTION_FAILED
    if not text:
        return PDF_EXTRACTION_FAILED
    return ai_service.organize_pdf_text(text)


def perform_ocr(url: str, mime_type: str) -> str:
    """
    Download one attachment and turn it into text.
    Images go through the vision model; PDFs through PyMuPDF and a structuring pass.
    Other types yield an empty string. Download and model errors propagate to the caller.
    """
    data = fetch_attachment(url)
    mime = (mime_type or "").lower()
    if is_supported_image_type(mime):
        return ai_service.read_image(data)
    if is_pdf(mime):
        return _pdf_to_text(data)
    logger.info("Skipping OCR for unsupported type %s", mime_type)
    return ""
