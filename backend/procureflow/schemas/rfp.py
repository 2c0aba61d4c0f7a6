from datetime import datetime
from typing import Optional, List, Any
from pydantic import BaseModel

from procureflow.schemas.vendor import VendorResponse


class RFPCreateRequest(BaseModel):
    natural_language_input: Optional[str] = None  # required; checked in the handler so a miss is a 400


class RFPSendRequest(BaseModel):
    rfp_id: Optional[str] = None
    vendor_ids: Optional[List[str]] = None


class RFPResponse(BaseModel):
    id: str
    title: str
    description: str = ""
    budget: Optional[float] = None
    deadline: Optional[datetime] = None
    requirements: Optional[dict[str, Any]] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RFPCreateResponse(BaseModel):
    status: str = "ok"
    rfp: RFPResponse
    structured_data: dict[str, Any]


class RFPListRow(BaseModel):
    """One dashboard row."""
    id: str
    title: str
    status: str
    budget: Optional[float] = None
    deadline: Optional[datetime] = None
    vendor_count: int = 0
    proposal_count: int = 0
    ai_score: Optional[float] = None


class RFPVendorResponse(BaseModel):
    id: str
    vendor_id: str
    status: str
    sent_at: Optional[datetime] = None
    vendor: VendorResponse

    class Config:
        from_attributes = True


class RFPProposalRow(BaseModel):
    id: str
    vendor_id: str
    vendor_name: str
    ai_score: Optional[float] = None
    ai_summary: Optional[str] = None
    pricing: Optional[dict[str, Any]] = None
    attachment_count: int = 0
    received_at: Optional[datetime] = None


class RFPDetailResponse(RFPResponse):
    rfp_vendors: List[RFPVendorResponse] = []
    proposals: List[RFPProposalRow] = []


class ComparisonRow(BaseModel):
    """Normalized per-proposal dataset handed to the model for ranking."""
    vendor_name: str
    final_price: Optional[float] = None
    delivery_days: Optional[int] = None
    ai_score: Optional[float] = None
    price_confidence: int = 50


class ComparisonResponse(BaseModel):
    status: str = "ok"
    rfp_id: str
    proposals: List[ComparisonRow]
    recommendation: dict[str, Any]
