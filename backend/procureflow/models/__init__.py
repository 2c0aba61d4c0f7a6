from procureflow.models.rfp import RFP, RFPStatus, RFPVendor, RFPVendorStatus
from procureflow.models.vendor import Vendor
from procureflow.models.proposal import Proposal

__all__ = ["RFP", "RFPStatus", "RFPVendor", "RFPVendorStatus", "Vendor", "Proposal"]
