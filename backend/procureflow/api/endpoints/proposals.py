import asyncio
import logging
import math
import mimetypes
from email.utils import parseaddr
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from procureflow.api.endpoints.rfps import upsert_rfp_vendor
from procureflow.database import get_db
from procureflow.models.rfp import RFP, RFPStatus, RFPVendorStatus
from procureflow.models.proposal import Proposal
from procureflow.models.vendor import Vendor
from procureflow.schemas.proposal import (
    AttachmentRef,
    ProposalDetailResponse,
    ProcessAttachmentsResponse,
    OCRFileResult,
)
from procureflow.services import ai_service
from procureflow.services.file_service import save_attachment, StorageError
from procureflow.services.ocr_service import perform_ocr
from procureflow.services.scoring import advance_status, extract_rfp_id, is_uuid_v4, price_confidence

router = APIRouter(tags=["proposals"])
logger = logging.getLogger(__name__)

OCR_MARKER = "\n\n--- OCR EXTRACTED DATA ---\n"


def _mime_type(upload: UploadFile) -> str:
    if upload.content_type and upload.content_type != "application/octet-stream":
        return upload.content_type
    guessed, _ = mimetypes.guess_type(upload.filename or "")
    return guessed or "application/octet-stream"


def _store_attachment(filename: str, content: bytes, mime_type: str) -> dict[str, Any]:
    """Upload one attachment; a failure is recorded in its slot instead of failing the webhook."""
    try:
        url = save_attachment(filename, content, mime_type)
    except StorageError as e:
        logger.warning("Attachment %s not stored: %s", filename, e)
        return {"filename": filename, "url": None, "mime_type": mime_type, "error": str(e)}
    return {"filename": filename, "url": url, "mime_type": mime_type}


@router.post("/inbound/proposal", status_code=201)
async def receive_proposal(
    background_tasks: BackgroundTasks,
    text: Optional[str] = Form(None),
    sender: Optional[str] = Form(None, alias="from"),
    subject: Optional[str] = Form(None),
    attachments: Optional[list[UploadFile]] = File(None),
    db: Session = Depends(get_db),
):
    """
    Email-received webhook. The reply body must carry 'RFP-ID: <uuid>'; the sender address
    identifies the vendor. Attachments are stored, the body is structured by the model, and
    OCR enrichment of the attachments is scheduled after the response.
    """
    raw_email = (text or "").strip()
    from_header = (sender or "").strip()
    if not raw_email or not from_header:
        raise HTTPException(status_code=400, detail="Missing required webhook payload fields (text/from).")

    rfp_id = extract_rfp_id(raw_email)
    if not rfp_id or not is_uuid_v4(rfp_id):
        raise HTTPException(status_code=400, detail="Invalid or missing RFP ID (must be UUID format).")
    vendor_email = (parseaddr(from_header)[1] or from_header).strip().lower()
    logger.info("Inbound proposal: rfp_id=%s from=%s subject=%r", rfp_id, vendor_email, subject)

    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    vendor = db.query(Vendor).filter(func.lower(Vendor.email) == vendor_email).first()
    if not vendor:
        logger.warning("Vendor with email %s not found. Ignoring proposal.", vendor_email)
        raise HTTPException(status_code=404, detail=f"Vendor with email {vendor_email} not found in database.")
    if db.query(Proposal).filter(Proposal.rfp_id == rfp.id, Proposal.vendor_id == vendor.id).first():
        raise HTTPException(status_code=409, detail="A proposal from this vendor already exists for this RFP")

    uploads = [(f.filename or "attachment", await f.read(), _mime_type(f)) for f in (attachments or [])]
    stored = list(await asyncio.gather(*(asyncio.to_thread(_store_attachment, *u) for u in uploads)))

    structured = await asyncio.to_thread(ai_service.structure_proposal, raw_email)
    proposal = Proposal(
        rfp_id=rfp.id,
        vendor_id=vendor.id,
        raw_email=raw_email,
        pricing={
            "total_price": structured.total_price,
            "currency": structured.currency,
            "items": [line.model_dump() for line in structured.pricing_details],
        },
        terms={
            "summary": structured.key_terms_summary,
            "delivery_estimate_days": structured.delivery_estimate_days,
            "warranty_period": structured.warranty_period,
        },
        attachments=stored,
        ai_score=structured.completeness_score,
        ai_summary=structured.key_terms_summary,
    )
    db.add(proposal)
    upsert_rfp_vendor(db, rfp.id, vendor.id, RFPVendorStatus.RESPONDED)
    advance_status(rfp, RFPStatus.RESPONDED)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A proposal from this vendor already exists for this RFP") from None
    db.refresh(proposal)
    logger.info("Proposal %s saved for RFP %s (vendor=%s, attachments=%s)", proposal.id, rfp.id, vendor.id, len(stored))

    if any(a.get("url") for a in stored):
        background_tasks.add_task(run_attachment_processing, proposal.id, db.get_bind())

    return {
        "status": "ok",
        "message": "Proposal successfully processed and saved.",
        "proposal_id": proposal.id,
    }


async def _ocr_attachment(attachment: dict[str, Any]) -> dict[str, str]:
    filename = attachment.get("filename") or "attachment"
    logger.info("Processing attachment: %s", filename)
    try:
        text = await asyncio.to_thread(perform_ocr, attachment["url"], attachment.get("mime_type") or "")
    except Exception as e:
        logger.error("Failed to OCR %s: %s", filename, e, exc_info=True)
        text = f"Error processing file: {e}"
    return {"filename": filename, "extracted_text": text or ""}


async def enrich_proposal(db: Session, proposal: Proposal) -> Optional[dict[str, Any]]:
    """
    OCR every stored attachment concurrently, structure the combined text and merge the
    result into the proposal's pricing/terms. Returns None when there is nothing to process.
    """
    attachments = [a for a in (proposal.attachments or []) if isinstance(a, dict) and a.get("url")]
    if not attachments:
        return None
    results = await asyncio.gather(*(_ocr_attachment(a) for a in attachments))
    combined = "\n\n".join(f"--- File: {r['filename']} ---\n{r['extracted_text']}" for r in results)

    email_body = (proposal.raw_email or "").split(OCR_MARKER, 1)[0]
    extraction = await asyncio.to_thread(
        ai_service.extract_ocr_fields, proposal.rfp.requirements, email_body, combined
    )
    if extraction.total_amount is not None and not math.isfinite(extraction.total_amount):
        logger.warning("Discarding non-finite OCR total for proposal %s", proposal.id)
        extraction.total_amount = None

    pricing = dict(proposal.pricing or {})
    pricing.update({
        "ocr_detected_items": [d.model_dump() for d in extraction.detected_pricing],
        "ocr_total_amount": extraction.total_amount,
        "ocr_confidence_score": price_confidence(pricing.get("total_price"), extraction.total_amount),
    })
    terms = dict(proposal.terms or {})
    terms.update({
        "ocr_delivery_timeline": extraction.delivery_timeline,
        "ocr_warranty_info": extraction.warranty_info,
        "ocr_payment_terms": extraction.payment_terms,
        "ocr_additional_notes": extraction.additional_notes,
    })
    proposal.pricing = pricing
    proposal.terms = terms
    proposal.raw_email = f"{email_body}{OCR_MARKER}{combined}"
    db.commit()
    logger.info(
        "Proposal %s enriched from %s attachment(s), confidence=%s",
        proposal.id, len(results), pricing["ocr_confidence_score"],
    )
    return {
        "ocr_results": [
            OCRFileResult(filename=r["filename"], text_length=len(r["extracted_text"])) for r in results
        ],
        "structured_data": extraction.model_dump(),
    }


async def run_attachment_processing(proposal_id: str, bind) -> None:
    """Detached follow-up of the webhook: own session, failures only logged."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=bind)()
    try:
        proposal = (
            session.query(Proposal).options(joinedload(Proposal.rfp)).filter(Proposal.id == proposal_id).first()
        )
        if proposal is None:
            logger.warning("Attachment processing skipped: proposal %s no longer exists", proposal_id)
            return
        await enrich_proposal(session, proposal)
    except Exception:
        logger.exception("Background attachment processing failed for proposal %s", proposal_id)
    finally:
        session.close()


@router.post("/proposals/{proposal_id}/process-attachments", response_model=ProcessAttachmentsResponse)
async def process_attachments(proposal_id: str, db: Session = Depends(get_db)):
    """Run (or re-run) OCR enrichment for a proposal's attachments."""
    proposal = db.query(Proposal).options(joinedload(Proposal.rfp)).filter(Proposal.id == proposal_id).first()
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    result = await enrich_proposal(db, proposal)
    if result is None:
        return ProcessAttachmentsResponse(message="No attachments to process")
    return ProcessAttachmentsResponse(message="Attachments processed successfully", **result)


@router.get("/proposals/{proposal_id}", response_model=ProposalDetailResponse)
def get_proposal(proposal_id: str, db: Session = Depends(get_db)):
    proposal = (
        db.query(Proposal)
        .options(joinedload(Proposal.rfp), joinedload(Proposal.vendor))
        .filter(Proposal.id == proposal_id)
        .first()
    )
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return ProposalDetailResponse(
        id=proposal.id,
        rfp_id=proposal.rfp_id,
        rfp_title=proposal.rfp.title,
        vendor_id=proposal.vendor_id,
        vendor_name=proposal.vendor.name,
        vendor_email=proposal.vendor.email,
        received_at=proposal.received_at,
        ai_score=proposal.ai_score,
        ai_summary=proposal.ai_summary,
        raw_email=proposal.raw_email,
        pricing=proposal.pricing,
        terms=proposal.terms,
        attachments=[AttachmentRef.model_validate(a) for a in (proposal.attachments or []) if isinstance(a, dict)],
    )
