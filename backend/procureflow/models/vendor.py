from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procureflow.models.base import Base
from procureflow.models.rfp import _uuid


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True)  # stored lowercased
    phone = Column(String(64), nullable=True)
    company = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    rfp_vendors = relationship("RFPVendor", back_populates="vendor", cascade="all, delete-orphan")
    proposals = relationship("Proposal", back_populates="vendor", cascade="all, delete-orphan")
