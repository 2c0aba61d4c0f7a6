import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procureflow.database import get_db
from procureflow.models.vendor import Vendor
from procureflow.models.proposal import Proposal
from procureflow.schemas.vendor import VendorCreate, VendorResponse
from procureflow.services.file_service import delete_attachment, StorageError

router = APIRouter(prefix="/vendors", tags=["vendors"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[VendorResponse])
def list_vendors(db: Session = Depends(get_db)):
    return db.query(Vendor).order_by(Vendor.name.asc()).all()


@router.post("", response_model=VendorResponse, status_code=201)
def create_vendor(payload: VendorCreate, db: Session = Depends(get_db)):
    name = (payload.name or "").strip()
    email = (payload.email or "").strip().lower()
    if not name or not email:
        raise HTTPException(status_code=400, detail="Name and email are required")
    existing = db.query(Vendor).filter(func.lower(Vendor.email) == email).first()
    if existing:
        raise HTTPException(status_code=409, detail="A vendor with this email already exists")
    vendor = Vendor(
        name=name,
        email=email,
        company=(payload.company or "").strip() or None,
        phone=(payload.phone or "").strip() or None,
    )
    db.add(vendor)
    try:
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent create for the same address
        db.rollback()
        raise HTTPException(status_code=409, detail="A vendor with this email already exists") from None
    db.refresh(vendor)
    logger.info("Vendor created: id=%s email=%s", vendor.id, vendor.email)
    return vendor


@router.delete("/{vendor_id}")
def delete_vendor(vendor_id: str, db: Session = Depends(get_db)):
    """Delete a vendor together with its RFP links, proposals and their stored attachments."""
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    urls = [
        a["url"]
        for p in db.query(Proposal).filter(Proposal.vendor_id == vendor_id).all()
        for a in (p.attachments or [])
        if isinstance(a, dict) and a.get("url")
    ]
    db.delete(vendor)
    db.commit()
    for url in urls:
        try:
            delete_attachment(url)
        except StorageError as e:
            logger.warning("Could not remove attachment %s of deleted vendor %s: %s", url, vendor_id, e)
    return {"status": "ok", "message": "Vendor deleted"}
