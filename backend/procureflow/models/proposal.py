from sqlalchemy import Column, String, Text, DateTime, Float, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procureflow.models.base import Base
from procureflow.models.rfp import _uuid


class Proposal(Base):
    __tablename__ = "proposals"
    __table_args__ = (UniqueConstraint("rfp_id", "vendor_id", name="uq_proposals_rfp_vendor"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    rfp_id = Column(String(36), ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    raw_email = Column(Text, nullable=False)
    pricing = Column(JSON, nullable=True)  # email-parsed totals, later merged with ocr_* keys
    terms = Column(JSON, nullable=True)
    attachments = Column(JSON, nullable=True)  # [{filename, url, mime_type, error?}]
    ai_score = Column(Float, nullable=True)
    ai_summary = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())

    rfp = relationship("RFP", back_populates="proposals")
    vendor = relationship("Vendor", back_populates="proposals")
