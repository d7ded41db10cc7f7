"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from utility_signup.domain.models import TenantSignupData


class TenantSignupSchema(BaseModel):
    """Tenant details forwarded to the provider"""

    full_name: str = Field(..., min_length=3)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone_number: str = Field(..., min_length=9)
    date_of_birth: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    sort_code: Optional[str] = None
    previous_address: Optional[str] = None
    previous_postcode: Optional[str] = None
    tenancy_duration: Optional[int] = Field(None, gt=0, description="Months")

    def to_domain(self) -> TenantSignupData:
        return TenantSignupData(**self.model_dump())


class RegistrationRequest(BaseModel):
    """Request body for POST /v1/utility/register"""

    property_id: int = Field(..., gt=0)
    tenancy_id: int = Field(..., gt=0)
    utility_type: str = Field(..., description="gas | electricity | dual_fuel | water | broadband | tv_license")
    tenant_signup_data: TenantSignupSchema
    banking_details_id: Optional[int] = Field(None, gt=0)


class RegistrationResponse(BaseModel):
    success: bool
    message: str
    contract_id: Optional[int] = None


class StatusResponse(BaseModel):
    """Registration progress for a contract"""

    contract_id: int
    status: str
    status_message: str
    action_required: bool
    action_message: Optional[str] = None


class UploadAgreementRequest(BaseModel):
    file_name: str = Field(..., min_length=1)
    document_base64: str = Field(..., min_length=1)


class UploadResponse(BaseModel):
    success: bool
    message: str


class CancelRequest(BaseModel):
    reason: str = "Cancelled by administrator"


class ResolveRequest(BaseModel):
    approved: bool
    note: Optional[str] = None


class ContractSummary(BaseModel):
    """Single contract in a property or tenancy listing"""

    contract_id: int
    utility_type: str
    status: str
    provider_id: int
    tariff_id: Optional[int] = None
    monthly_payment_amount: Decimal
    best_deal_available: bool
    last_deal_check: Optional[datetime] = None
    created_at: datetime


class PropertyContractsResponse(BaseModel):
    property_id: int
    contracts: List[ContractSummary]


class TenancyContractsResponse(BaseModel):
    tenancy_id: int
    contracts: List[ContractSummary]


class SweepResponse(BaseModel):
    checked: int
    skipped_fresh: int
    better_deal_found: int
    failed: int
