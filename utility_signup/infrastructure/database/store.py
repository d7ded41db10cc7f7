"""SQLAlchemy-backed implementation of the engine's data-access interface"""

from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from utility_signup.domain.models import (
    BankingDetails,
    ComparisonResult,
    ContractStatus,
    NewContract,
    Property,
    Provider,
    TariffOffer,
    Tenancy,
    Tenant,
    TenantApplication,
    UtilityContract,
    UtilityType,
)
from utility_signup.infrastructure.database.repositories import (
    CatalogRepository,
    ContractRepository,
    ReferenceRepository,
)
from utility_signup.infrastructure.database.session import session_scope
from utility_signup.utils.date_utils import utcnow

MONITORED_STATUSES = (ContractStatus.PENDING, ContractStatus.IN_PROGRESS)


class DatabaseStore:
    """
    One short transaction per call.

    The engine never holds a session between awaits; every read or write
    opens its own scope so monitor ticks, uploads and sweeps can interleave
    freely and the row in the database stays the single source of truth.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    # Tariff catalog

    def get_tariffs_by_type(self, utility_type: UtilityType) -> List[TariffOffer]:
        with session_scope(self.session_factory) as db:
            return CatalogRepository(db).get_tariffs_by_type(utility_type)

    def get_providers_by_type(self, utility_type: UtilityType) -> List[Provider]:
        with session_scope(self.session_factory) as db:
            return CatalogRepository(db).get_providers_by_type(utility_type)

    def get_tariff_by_id(self, tariff_id: int) -> Optional[TariffOffer]:
        with session_scope(self.session_factory) as db:
            return CatalogRepository(db).get_tariff_by_id(tariff_id)

    def get_provider_by_id(self, provider_id: int) -> Optional[Provider]:
        with session_scope(self.session_factory) as db:
            return CatalogRepository(db).get_provider_by_id(provider_id)

    # Reference data

    def get_property_by_id(self, property_id: int) -> Optional[Property]:
        with session_scope(self.session_factory) as db:
            return ReferenceRepository(db).get_property_by_id(property_id)

    def get_tenancy_by_id(self, tenancy_id: int) -> Optional[Tenancy]:
        with session_scope(self.session_factory) as db:
            return ReferenceRepository(db).get_tenancy_by_id(tenancy_id)

    def get_banking_details_by_id(self, banking_details_id: int) -> Optional[BankingDetails]:
        with session_scope(self.session_factory) as db:
            return ReferenceRepository(db).get_banking_details_by_id(banking_details_id)

    def get_default_banking_details(self) -> Optional[BankingDetails]:
        with session_scope(self.session_factory) as db:
            return ReferenceRepository(db).get_default_banking_details()

    def get_approved_application_for_property(self, property_id: int) -> Optional[TenantApplication]:
        with session_scope(self.session_factory) as db:
            return ReferenceRepository(db).get_approved_application_for_property(property_id)

    def get_tenant_by_id(self, tenant_id: int) -> Optional[Tenant]:
        with session_scope(self.session_factory) as db:
            return ReferenceRepository(db).get_tenant_by_id(tenant_id)

    # Contracts

    def get_contract(self, contract_id: int) -> Optional[UtilityContract]:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).get(contract_id)

    def create_contract(self, new_contract: NewContract) -> UtilityContract:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).create(new_contract, self.clock())

    def update_contract(self, contract_id: int, **fields: Any) -> UtilityContract:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).update(contract_id, fields, self.clock())

    def transition_status(self, contract_id: int, target: ContractStatus, **fields: Any) -> UtilityContract:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).transition(contract_id, target, fields, self.clock())

    def list_active_contracts(self) -> List[UtilityContract]:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).list_by_status([ContractStatus.ACTIVE])

    def list_monitored_contracts(self) -> List[UtilityContract]:
        """
        Contracts a monitor timer should exist for.

        Active contracts stay on the list until their completion e-mail is
        sent; blocked ones wait for an upload instead.
        """
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).list_monitored(MONITORED_STATUSES)

    def list_contracts_for_property(self, property_id: int) -> List[UtilityContract]:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).list_for_property(property_id)

    def list_contracts_for_tenancy(self, tenancy_id: int) -> List[UtilityContract]:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).list_for_tenancy(tenancy_id)

    def claim_completion_notification(self, contract_id: int, at: datetime) -> bool:
        with session_scope(self.session_factory) as db:
            return ContractRepository(db).claim_completion_notification(contract_id, at)

    def release_completion_notification(self, contract_id: int) -> None:
        with session_scope(self.session_factory) as db:
            ContractRepository(db).release_completion_notification(contract_id)

    def save_price_comparison(
        self, property_id: int, utility_type: UtilityType, results: List[ComparisonResult]
    ) -> None:
        with session_scope(self.session_factory) as db:
            ContractRepository(db).save_price_comparison(property_id, utility_type, results, self.clock())
