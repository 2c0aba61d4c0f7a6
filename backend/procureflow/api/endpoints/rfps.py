import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload, selectinload

from procureflow.database import get_db
from procureflow.models.rfp import RFP, RFPStatus, RFPVendor, RFPVendorStatus
from procureflow.models.proposal import Proposal
from procureflow.models.vendor import Vendor
from procureflow.schemas.rfp import (
    RFPCreateRequest,
    RFPCreateResponse,
    RFPResponse,
    RFPSendRequest,
    RFPListRow,
    RFPDetailResponse,
    RFPVendorResponse,
    RFPProposalRow,
    ComparisonRow,
    ComparisonResponse,
)
from procureflow.services import ai_service
from procureflow.services.email_service import EmailDeliveryError, render_rfp_email, rfp_subject, send_email
from procureflow.services.scoring import advance_status, normalize_delivery_to_days, NEUTRAL_CONFIDENCE

router = APIRouter(prefix="/rfps", tags=["rfps"])
logger = logging.getLogger(__name__)


def _parse_deadline(value: Optional[str]) -> Optional[datetime]:
    """ISO date/datetime from the model; 'TBD' or anything unparseable becomes None."""
    if not value or not str(value).strip() or str(value).strip().upper() == "TBD":
        return None
    try:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable RFP deadline %r", value)
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _get_rfp_or_404(db: Session, rfp_id: str, *options) -> RFP:
    rfp = db.query(RFP).options(*options).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    return rfp


@router.post("/create", response_model=RFPCreateResponse, status_code=201)
async def create_rfp(payload: RFPCreateRequest, db: Session = Depends(get_db)):
    """Structure a free-text procurement need into an RFP and store it as a draft."""
    text = (payload.natural_language_input or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Missing natural_language_input")
    structured = await asyncio.to_thread(ai_service.structure_rfp, text)
    data = structured.model_dump()
    rfp = RFP(
        title=structured.title,
        description=structured.description,
        budget=structured.budget,
        deadline=_parse_deadline(structured.deadline),
        requirements=data,
        status=RFPStatus.DRAFT,
    )
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    logger.info("RFP created: id=%s title=%r items=%s", rfp.id, rfp.title, len(structured.required_items))
    return RFPCreateResponse(rfp=RFPResponse.model_validate(rfp), structured_data=data)


@router.get("", response_model=list[RFPListRow])
def list_rfps(db: Session = Depends(get_db)):
    """Dashboard rows, newest first."""
    rfps = (
        db.query(RFP)
        .options(selectinload(RFP.rfp_vendors), selectinload(RFP.proposals))
        .order_by(RFP.created_at.desc())
        .all()
    )
    return [
        RFPListRow(
            id=r.id,
            title=r.title,
            status=r.status,
            budget=r.budget,
            deadline=r.deadline,
            vendor_count=len(r.rfp_vendors),
            proposal_count=len(r.proposals),
        )
        for r in rfps
    ]


@router.get("/{rfp_id}", response_model=RFPDetailResponse)
def get_rfp(rfp_id: str, db: Session = Depends(get_db)):
    rfp = _get_rfp_or_404(
        db,
        rfp_id,
        selectinload(RFP.rfp_vendors).joinedload(RFPVendor.vendor),
        selectinload(RFP.proposals).joinedload(Proposal.vendor),
    )
    base = RFPResponse.model_validate(rfp)
    return RFPDetailResponse(
        **base.model_dump(),
        rfp_vendors=[RFPVendorResponse.model_validate(rv) for rv in rfp.rfp_vendors],
        proposals=[
            RFPProposalRow(
                id=p.id,
                vendor_id=p.vendor_id,
                vendor_name=p.vendor.name,
                ai_score=p.ai_score,
                ai_summary=p.ai_summary,
                pricing=p.pricing,
                attachment_count=len(p.attachments or []),
                received_at=p.received_at,
            )
            for p in sorted(rfp.proposals, key=lambda p: (p.received_at is not None, p.received_at), reverse=True)
        ],
    )


def upsert_rfp_vendor(
    db: Session, rfp_id: str, vendor_id: str, status: str, when: Optional[datetime] = None
) -> RFPVendor:
    when = when or datetime.now(timezone.utc)
    link = db.query(RFPVendor).filter(RFPVendor.rfp_id == rfp_id, RFPVendor.vendor_id == vendor_id).first()
    if link is None:
        link = RFPVendor(rfp_id=rfp_id, vendor_id=vendor_id, status=status, sent_at=when)
        db.add(link)
    else:
        link.status = status
        if status == RFPVendorStatus.SENT:
            link.sent_at = when
    return link


@router.post("/send")
async def send_rfp(payload: RFPSendRequest, db: Session = Depends(get_db)):
    """Email the RFP to each selected vendor concurrently and record per-vendor send state."""
    if not payload.rfp_id or not payload.vendor_ids:
        raise HTTPException(status_code=400, detail="Missing RFP ID or Vendor IDs")
    rfp = _get_rfp_or_404(db, payload.rfp_id)
    vendors = db.query(Vendor).filter(Vendor.id.in_(payload.vendor_ids)).all()
    if not vendors:
        raise HTTPException(status_code=404, detail="No vendors found")

    subject = rfp_subject(rfp)
    outgoing = [(v, render_rfp_email(rfp, v)) for v in vendors]
    results = await asyncio.gather(
        *(asyncio.to_thread(send_email, v.email, subject, html) for v, html in outgoing),
        return_exceptions=True,
    )
    now = datetime.now(timezone.utc)
    failed = []
    for vendor, result in zip(vendors, results):
        if isinstance(result, Exception):
            logger.error("RFP %s not delivered to %s: %s", rfp.id, vendor.email, result)
            failed.append(vendor.email)
            continue
        upsert_rfp_vendor(db, rfp.id, vendor.id, RFPVendorStatus.SENT, now)
    if failed:
        # links for delivered vendors are kept
        db.commit()
        raise EmailDeliveryError(f"Failed to send email to {', '.join(failed)}")
    advance_status(rfp, RFPStatus.SENT)
    db.commit()
    logger.info("RFP %s sent to %s vendor(s)", rfp.id, len(vendors))
    return {
        "status": "ok",
        "message": f"RFP sent successfully to {len(vendors)} vendor(s).",
        "vendor_ids": [v.id for v in vendors],
    }


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def comparison_row(proposal: Proposal) -> ComparisonRow:
    """Reduce a proposal to comparable figures: attachment data first, email data second."""
    pricing = proposal.pricing if isinstance(proposal.pricing, dict) else {}
    terms = proposal.terms if isinstance(proposal.terms, dict) else {}

    final_price = _as_float(pricing.get("ocr_total_amount"))
    if final_price is None:
        final_price = _as_float(pricing.get("total_price"))

    delivery_days = normalize_delivery_to_days(terms.get("ocr_delivery_timeline"))
    if delivery_days is None and terms.get("delivery_estimate_days") is not None:
        delivery_days = int(terms["delivery_estimate_days"])
    if delivery_days is None:
        delivery_days = normalize_delivery_to_days(terms.get("summary"))

    confidence = pricing.get("ocr_confidence_score")
    return ComparisonRow(
        vendor_name=proposal.vendor.name,
        final_price=final_price,
        delivery_days=delivery_days,
        ai_score=proposal.ai_score,
        price_confidence=int(confidence) if confidence is not None else NEUTRAL_CONFIDENCE,
    )


def _days_until(deadline: Optional[datetime]) -> Optional[int]:
    if deadline is None:
        return None
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return math.ceil((deadline - datetime.now(timezone.utc)).total_seconds() / 86400)


@router.get("/{rfp_id}/compare", response_model=ComparisonResponse)
async def compare_proposals(rfp_id: str, db: Session = Depends(get_db)):
    """Rank all proposals of an RFP with the model and mark the RFP completed."""
    rfp = _get_rfp_or_404(db, rfp_id, selectinload(RFP.proposals).joinedload(Proposal.vendor))
    if not rfp.proposals:
        raise HTTPException(status_code=404, detail="No proposals received for this RFP")
    logger.info("Comparing %s proposal(s) for RFP %s", len(rfp.proposals), rfp_id)

    rows = [comparison_row(p) for p in rfp.proposals]
    recommendation = await asyncio.to_thread(
        ai_service.rank_proposals,
        rfp.requirements,
        [r.model_dump() for r in rows],
        rfp.budget,
        _days_until(rfp.deadline),
    )
    advance_status(rfp, RFPStatus.COMPLETED)
    db.commit()
    return ComparisonResponse(rfp_id=rfp.id, proposals=rows, recommendation=recommendation.model_dump())
