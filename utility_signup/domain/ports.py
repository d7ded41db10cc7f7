"""Interfaces of the engine's collaborators (data access, provider gateway, e-mail)"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from utility_signup.domain.models import (
    BankingDetails,
    ComparisonResult,
    ContractStatus,
    NewContract,
    Property,
    Provider,
    ProviderStatus,
    SignupReceipt,
    TariffOffer,
    Tenancy,
    Tenant,
    TenantApplication,
    TenantSignupData,
    UtilityContract,
    UtilityType,
)


class TariffCatalog(Protocol):
    def get_tariffs_by_type(self, utility_type: UtilityType) -> List[TariffOffer]: ...

    def get_providers_by_type(self, utility_type: UtilityType) -> List[Provider]: ...

    def get_tariff_by_id(self, tariff_id: int) -> Optional[TariffOffer]: ...

    def get_provider_by_id(self, provider_id: int) -> Optional[Provider]: ...


class ReferenceData(Protocol):
    def get_property_by_id(self, property_id: int) -> Optional[Property]: ...

    def get_tenancy_by_id(self, tenancy_id: int) -> Optional[Tenancy]: ...

    def get_banking_details_by_id(self, banking_details_id: int) -> Optional[BankingDetails]: ...

    def get_default_banking_details(self) -> Optional[BankingDetails]: ...

    def get_approved_application_for_property(self, property_id: int) -> Optional[TenantApplication]: ...

    def get_tenant_by_id(self, tenant_id: int) -> Optional[Tenant]: ...


class ContractStore(Protocol):
    def get_contract(self, contract_id: int) -> Optional[UtilityContract]: ...

    def create_contract(self, new_contract: NewContract) -> UtilityContract: ...

    def update_contract(self, contract_id: int, **fields: Any) -> UtilityContract: ...

    def transition_status(self, contract_id: int, target: ContractStatus, **fields: Any) -> UtilityContract: ...

    def list_active_contracts(self) -> List[UtilityContract]: ...

    def list_monitored_contracts(self) -> List[UtilityContract]: ...

    def list_contracts_for_property(self, property_id: int) -> List[UtilityContract]: ...

    def list_contracts_for_tenancy(self, tenancy_id: int) -> List[UtilityContract]: ...

    def claim_completion_notification(self, contract_id: int, at: datetime) -> bool: ...

    def release_completion_notification(self, contract_id: int) -> None: ...

    def save_price_comparison(
        self, property_id: int, utility_type: UtilityType, results: List[ComparisonResult]
    ) -> None: ...


class UtilityDataStore(TariffCatalog, ReferenceData, ContractStore, Protocol):
    """Everything the engine reads and writes, as one injected dependency"""


class ProviderGateway(Protocol):
    async def initiate_signup(
        self, provider: Provider, tenant_id: int, signup_data: TenantSignupData
    ) -> SignupReceipt: ...

    async def poll_status(self, provider: Provider, reference_number: str) -> ProviderStatus: ...

    async def submit_document(
        self, provider: Provider, reference_number: str, file_name: str, document: bytes
    ) -> None: ...


class EmailSender(Protocol):
    async def send_completion_email(self, tenant_email: str, summary: Dict[str, Any]) -> None: ...
