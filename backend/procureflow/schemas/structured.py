"""Schemas the language model must fill. Passed to the model as JSON Schema and validated on the way back."""
from typing import Optional, List
from pydantic import BaseModel, Field


class RequiredItem(BaseModel):
    name: str
    quantity: int
    specifications: List[str] = Field(
        default_factory=list,
        description="A list of key required features, e.g. '16GB RAM', '27-inch'.",
    )


class StructuredRFP(BaseModel):
    title: str = Field(description="A concise, descriptive title for the RFP.")
    description: str = Field(description="A full description of the procurement need.")
    budget: Optional[float] = Field(None, description="Total stated budget or null if not specified.")
    deadline: Optional[str] = Field(
        None, description="Target completion/delivery date as ISO 8601 (YYYY-MM-DD) or null if not specified."
    )
    required_items: List[RequiredItem] = Field(
        default_factory=list, description="The list of products or services needed."
    )
    payment_terms: str = Field("Net 30", description="The required payment terms, e.g. 'net 30', 'net 60'.")
    warranty: str = Field("1 year minimum", description="Minimum required warranty or service agreement duration.")


class PricingLine(BaseModel):
    item: str
    unit_price: float
    quantity_offered: int


class StructuredProposal(BaseModel):
    total_price: Optional[float] = Field(None, description="The final total cost quoted by the vendor, or null if complex.")
    currency: str = Field("USD", description="The currency of the quoted price.")
    delivery_estimate_days: Optional[int] = Field(None, description="Estimated delivery time in days.")
    warranty_period: str = Field("", description="The warranty period offered by the vendor.")
    pricing_details: List[PricingLine] = Field(
        default_factory=list, description="Detailed breakdown of items and prices."
    )
    completeness_score: int = Field(
        ge=0, le=100, description="How well the vendor addressed all RFP requirements (0-100)."
    )
    key_terms_summary: str = Field(description="A 2-3 sentence summary of the proposal's terms and conditions.")


class DetectedPricing(BaseModel):
    item: str
    unit_price: Optional[float] = None
    quantity: Optional[int] = None
    total_price: Optional[float] = None


class OCRExtraction(BaseModel):
    detected_pricing: List[DetectedPricing] = Field(
        default_factory=list, description="Line items found in the document"
    )
    total_amount: Optional[float] = Field(None, description="Total quoted amount if found")
    delivery_timeline: Optional[str] = Field(None, description="Delivery or timeline information")
    warranty_info: Optional[str] = Field(None, description="Warranty or guarantee information")
    payment_terms: Optional[str] = Field(None, description="Payment terms if specified")
    additional_notes: str = Field("", description="Any other important information extracted from the document")


class VendorComparison(BaseModel):
    vendor_name: str
    ai_score: int = Field(ge=0, le=100, description="The initial completeness score.")
    total_price: Optional[float] = Field(None, description="The final quoted price used for comparison.")
    delivery_estimate: Optional[int] = Field(None, description="Delivery estimate in days (normalized).")
    price_confidence: int = Field(ge=0, le=100, description="Confidence in the accuracy of the total_price (0-100).")
    key_takeaway: str = Field(description="One sentence on the biggest pro or con of this proposal.")


class Recommendation(BaseModel):
    recommendation: str = Field(description="The name of the recommended vendor.")
    rationale: str = Field(
        description="A 3-5 sentence explanation of why this vendor is recommended, "
        "focusing on normalized score, price/budget, and data confidence."
    )
    comparison_summary: List[VendorComparison] = Field(
        default_factory=list, description="A table summarizing the key metrics of all proposals."
    )
    action_items: List[str] = Field(
        default_factory=list, description="A list of 2-3 negotiation points or next steps for the recommended vendor."
    )
