from datetime import datetime
from typing import Optional, List, Any
from pydantic import BaseModel


class AttachmentRef(BaseModel):
    filename: str
    url: Optional[str] = None
    mime_type: str = "application/octet-stream"
    error: Optional[str] = None  # set when the upload failed


class ProposalDetailResponse(BaseModel):
    id: str
    rfp_id: str
    rfp_title: str
    vendor_id: str
    vendor_name: str
    vendor_email: str
    received_at: Optional[datetime] = None
    ai_score: Optional[float] = None
    ai_summary: Optional[str] = None
    raw_email: str
    pricing: Optional[dict[str, Any]] = None
    terms: Optional[dict[str, Any]] = None
    attachments: List[AttachmentRef] = []


class OCRFileResult(BaseModel):
    filename: str
    text_length: int


class ProcessAttachmentsResponse(BaseModel):
    status: str = "ok"
    message: str
    ocr_results: List[OCRFileResult] = []
    structured_data: Optional[dict[str, Any]] = None
