"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from utility_signup.domain.exceptions import InvalidUtilityType

PENNY = Decimal("0.01")


class UtilityType(str, Enum):
    """Utility services the engine can register"""

    GAS = "gas"
    ELECTRICITY = "electricity"
    DUAL_FUEL = "dual_fuel"
    WATER = "water"
    BROADBAND = "broadband"
    TV_LICENSE = "tv_license"

    @classmethod
    def parse(cls, value: "str | UtilityType") -> "UtilityType":
        try:
            return cls(value)
        except ValueError:
            raise InvalidUtilityType(value) from None


class ContractStatus(str, Enum):
    """Stored status of a utility contract"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"  # provider wants a verification document
    ACTIVE = "active"  # registration completed
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RegistrationStatus(str, Enum):
    """Status reported to callers of get_registration_status"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFICATION_REQUIRED = "verification_required"
    COMPLETED = "completed"
    FAILED = "failed"


class ProviderSignal(str, Enum):
    """Progress signal reported by a provider for a lodged application"""

    SUBMITTED = "submitted"
    VERIFICATION_REQUIRED = "verification_required"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Provider:
    """Utility provider"""

    id: int
    name: str
    utility_type: UtilityType
    api_integration: bool = False
    api_endpoint: Optional[str] = None
    api_key: Optional[str] = None
    website: Optional[str] = None
    customer_service_phone: Optional[str] = None
    customer_service_email: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class TariffOffer:
    """Priced plan published by a provider"""

    id: int
    provider_id: int
    name: str
    utility_type: UtilityType
    estimated_annual_cost: Optional[Decimal]
    fixed_term: bool = False
    term_length: Optional[int] = None  # months
    early_exit_fee: Optional[Decimal] = None
    standing_charge: Optional[Decimal] = None  # pence per day
    unit_rate: Optional[Decimal] = None  # pence per unit
    green_energy: bool = False
    special_offers: tuple = ()
    region: Optional[str] = None
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None

    def is_available(self, now: datetime) -> bool:
        if self.available_from is not None and self.available_from > now:
            return False
        if self.available_until is not None and self.available_until < now:
            return False
        return True


@dataclass
class Property:
    id: int
    address: str
    city: str
    postcode: str
    bills_included: bool = False


@dataclass
class Tenancy:
    id: int
    property_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class BankingDetails:
    id: int
    account_name: str
    bank_name: str
    is_default: bool = False


@dataclass
class TenantApplication:
    id: int
    property_id: int
    tenant_id: int
    status: str


@dataclass
class Tenant:
    id: int
    name: str
    email: str


@dataclass
class TenantSignupData:
    """Tenant details forwarded to the provider; never persisted"""

    full_name: str
    email: str
    phone_number: str
    date_of_birth: str
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    sort_code: Optional[str] = None
    previous_address: Optional[str] = None
    previous_postcode: Optional[str] = None
    tenancy_duration: Optional[int] = None  # months


@dataclass
class NewContract:
    """
    Values for a contract about to be created.

    All-inclusive properties carry no direct cost for the tenant, so the
    monthly payment must be zero and the deposit counts as paid.
    """

    property_id: int
    tenancy_id: int
    utility_type: UtilityType
    provider_id: int
    tariff_id: int
    banking_details_id: int
    bills_included: bool
    monthly_payment_amount: Decimal
    deposit_paid: bool
    payment_method: str
    notes: str = ""
    auto_renewal: bool = True

    def __post_init__(self) -> None:
        is_zero = self.monthly_payment_amount == 0
        if self.bills_included and not (is_zero and self.deposit_paid):
            raise ValueError("All-inclusive contracts must have zero monthly payment and a paid deposit")
        if not self.bills_included and is_zero:
            raise ValueError("Only all-inclusive contracts may have a zero monthly payment")

    @classmethod
    def for_tariff(
        cls,
        prop: Property,
        tenancy_id: int,
        tariff: TariffOffer,
        banking: BankingDetails,
    ) -> "NewContract":
        """Price a new contract from the selected tariff and the property's billing mode"""
        if prop.bills_included:
            monthly = Decimal("0.00")
            notes = "All-inclusive tenancy - utility costs covered by landlord"
        else:
            monthly = (Decimal(tariff.estimated_annual_cost) / 12).quantize(PENNY, rounding=ROUND_HALF_UP)
            notes = ""
        return cls(
            property_id=prop.id,
            tenancy_id=tenancy_id,
            utility_type=tariff.utility_type,
            provider_id=tariff.provider_id,
            tariff_id=tariff.id,
            banking_details_id=banking.id,
            bills_included=prop.bills_included,
            monthly_payment_amount=monthly,
            deposit_paid=prop.bills_included,
            payment_method="Included in Rent" if prop.bills_included else "Direct Debit",
            notes=notes,
        )


@dataclass
class UtilityContract:
    """One utility service being registered or active for a tenancy"""

    id: int
    property_id: int
    tenancy_id: int
    utility_type: UtilityType
    provider_id: int
    tariff_id: Optional[int]
    banking_details_id: Optional[int]
    status: str
    monthly_payment_amount: Decimal
    created_at: datetime
    updated_at: datetime
    deposit_paid: bool = False
    payment_method: Optional[str] = None
    auto_renewal: bool = False
    tenancy_agreement_uploaded: bool = False
    tenancy_agreement_file_name: Optional[str] = None
    best_deal_available: bool = True
    notes: str = ""
    last_deal_check: Optional[datetime] = None
    provider_reference: Optional[str] = None
    submitted_at: Optional[datetime] = None
    manual_completion: bool = False
    status_message: Optional[str] = None
    action_required: bool = False
    action_message: Optional[str] = None
    failure_reason: Optional[str] = None
    next_check_at: Optional[datetime] = None
    poll_failures: int = 0
    completion_notified_at: Optional[datetime] = None


@dataclass
class SignupReceipt:
    """Provider's answer to an application"""

    reference_number: str
    status: str  # "accepted" | "rejected"
    estimated_completion_date: Optional[date] = None
    message: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"


@dataclass
class ProviderStatus:
    """Result of polling a provider for an application's progress"""

    signal: ProviderSignal
    message: str


@dataclass
class SignupProgressUpdate:
    """Caller-facing view of a registration"""

    contract_id: int
    status: RegistrationStatus
    status_message: str
    action_required: bool = False
    action_message: Optional[str] = None


@dataclass
class UploadResult:
    success: bool
    message: str


@dataclass
class ComparisonResult:
    """One ranked row of a price comparison"""

    provider_id: int
    tariff_id: int
    provider_name: str
    tariff_name: str
    annual_cost: Decimal
    monthly_cost: Decimal
    term_length: int
    fixed_term: bool
    standing_charge: Decimal
    unit_rate: Decimal
    special_offers: List[str] = field(default_factory=list)
    savings: Decimal = Decimal("0")


@dataclass
class SweepReport:
    """Outcome counts for one deal re-evaluation pass"""

    checked: int = 0
    skipped_fresh: int = 0
    better_deal_found: int = 0
    failed: int = 0
