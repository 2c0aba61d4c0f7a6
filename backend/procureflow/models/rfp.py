import uuid

from sqlalchemy import Column, String, Text, DateTime, Float, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procureflow.models.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class RFPStatus:
    DRAFT = "draft"
    SENT = "sent"
    RESPONDED = "responded"
    COMPLETED = "completed"

    ORDER = (DRAFT, SENT, RESPONDED, COMPLETED)


class RFPVendorStatus:
    SENT = "sent"
    RESPONDED = "responded"


class RFP(Base):
    __tablename__ = "rfps"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    budget = Column(Float, nullable=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    requirements = Column(JSON, nullable=False, default=dict)  # structured output of RFP creation
    status = Column(String(20), default=RFPStatus.DRAFT, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    rfp_vendors = relationship("RFPVendor", back_populates="rfp", cascade="all, delete-orphan")
    proposals = relationship("Proposal", back_populates="rfp", cascade="all, delete-orphan")


class RFPVendor(Base):
    """Send state of one RFP to one vendor."""
    __tablename__ = "rfp_vendors"
    __table_args__ = (UniqueConstraint("rfp_id", "vendor_id", name="uq_rfp_vendors_rfp_vendor"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    rfp_id = Column(String(36), ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    sent_at = Column(DateTime(timezone=True), server_default=func.now())
    status = Column(String(20), default=RFPVendorStatus.SENT, nullable=False)

    rfp = relationship("RFP", back_populates="rfp_vendors")
    vendor = relationship("Vendor", back_populates="rfp_vendors")
