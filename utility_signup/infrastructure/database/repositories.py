"""Data access layer for utility sign-up entities"""

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from utility_signup.domain.exceptions import ContractNotFound, InvalidTransition
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
from utility_signup.domain.state_machine import sources_for
from utility_signup.infrastructure.database.models import (
    AdminBankingDetails,
    ApplicationRecord,
    PropertyRecord,
    PropertyUtilityContract,
    TenancyRecord,
    UserRecord,
    UtilityPriceComparison,
    UtilityProvider,
    UtilityTariff,
)
from utility_signup.utils.date_utils import as_utc


def _to_provider(row: UtilityProvider) -> Provider:
    return Provider(
        id=row.id,
        name=row.name,
        utility_type=UtilityType(row.utility_type),
        api_integration=bool(row.api_integration),
        api_endpoint=row.api_endpoint,
        api_key=row.api_key,
        website=row.website,
        customer_service_phone=row.customer_service_phone,
        customer_service_email=row.customer_service_email,
        active=bool(row.active),
    )


def _to_tariff(row: UtilityTariff) -> TariffOffer:
    return TariffOffer(
        id=row.id,
        provider_id=row.provider_id,
        name=row.name,
        utility_type=UtilityType(row.utility_type),
        estimated_annual_cost=row.estimated_annual_cost,
        fixed_term=bool(row.fixed_term),
        term_length=row.term_length,
        early_exit_fee=row.early_exit_fee,
        standing_charge=row.standing_charge,
        unit_rate=row.unit_rate,
        green_energy=bool(row.green_energy),
        special_offers=tuple(row.special_offers or ()),
        region=row.region,
        available_from=as_utc(row.available_from),
        available_until=as_utc(row.available_until),
    )


def _to_contract(row: PropertyUtilityContract) -> UtilityContract:
    return UtilityContract(
        id=row.id,
        property_id=row.property_id,
        tenancy_id=row.tenancy_id,
        utility_type=UtilityType(row.utility_type),
        provider_id=row.provider_id,
        tariff_id=row.tariff_id,
        banking_details_id=row.banking_details_id,
        status=row.status,
        monthly_payment_amount=Decimal(row.monthly_payment_amount if row.monthly_payment_amount is not None else 0),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        deposit_paid=bool(row.deposit_paid),
        payment_method=row.payment_method,
        auto_renewal=bool(row.auto_renewal),
        tenancy_agreement_uploaded=bool(row.tenancy_agreement_uploaded),
        tenancy_agreement_file_name=row.tenancy_agreement_file_name,
        best_deal_available=bool(row.best_deal_available),
        notes=row.notes or "",
        last_deal_check=as_utc(row.last_deal_check),
        provider_reference=row.provider_reference,
        submitted_at=as_utc(row.submitted_at),
        manual_completion=bool(row.manual_completion),
        status_message=row.status_message,
        action_required=bool(row.action_required),
        action_message=row.action_message,
        failure_reason=row.failure_reason,
        next_check_at=as_utc(row.next_check_at),
        poll_failures=row.poll_failures or 0,
        completion_notified_at=as_utc(row.completion_notified_at),
    )


def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap enums so values can be bound as plain column values"""
    return {key: (value.value if isinstance(value, Enum) else value) for key, value in fields.items()}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


class CatalogRepository:
    """Repository for providers and tariffs"""

    def __init__(self, db: Session):
        self.db = db

    def get_tariffs_by_type(self, utility_type: UtilityType) -> List[TariffOffer]:
        rows = (
            self.db.query(UtilityTariff)
            .filter(UtilityTariff.utility_type == utility_type.value)
            .order_by(UtilityTariff.estimated_annual_cost.asc(), UtilityTariff.id.asc())
            .all()
        )
        return [_to_tariff(row) for row in rows]

    def get_providers_by_type(self, utility_type: UtilityType) -> List[Provider]:
        rows = (
            self.db.query(UtilityProvider)
            .filter(UtilityProvider.utility_type == utility_type.value)
            .order_by(UtilityProvider.id.asc())
            .all()
        )
        return [_to_provider(row) for row in rows]

    def get_tariff_by_id(self, tariff_id: int) -> Optional[TariffOffer]:
        row = self.db.get(UtilityTariff, tariff_id)
        return _to_tariff(row) if row else None

    def get_provider_by_id(self, provider_id: int) -> Optional[Provider]:
        row = self.db.get(UtilityProvider, provider_id)
        return _to_provider(row) if row else None


class ReferenceRepository:
    """Repository for properties, tenancies, tenants and banking records"""

    def __init__(self, db: Session):
        self.db = db

    def get_property_by_id(self, property_id: int) -> Optional[Property]:
        row = self.db.get(PropertyRecord, property_id)
        if not row:
            return None
        return Property(
            id=row.id,
            address=row.address,
            city=row.city,
            postcode=row.postcode,
            bills_included=bool(row.bills_included),
        )

    def get_tenancy_by_id(self, tenancy_id: int) -> Optional[Tenancy]:
        row = self.db.get(TenancyRecord, tenancy_id)
        if not row:
            return None
        return Tenancy(id=row.id, property_id=row.property_id, start_date=row.start_date, end_date=row.end_date)

    def get_banking_details_by_id(self, banking_details_id: int) -> Optional[BankingDetails]:
        row = self.db.get(AdminBankingDetails, banking_details_id)
        return self._to_banking(row) if row else None

    def get_default_banking_details(self) -> Optional[BankingDetails]:
        row = (
            self.db.query(AdminBankingDetails)
            .filter(AdminBankingDetails.is_default.is_(True))
            .order_by(AdminBankingDetails.id.asc())
            .first()
        )
        return self._to_banking(row) if row else None

    def get_approved_application_for_property(self, property_id: int) -> Optional[TenantApplication]:
        row = (
            self.db.query(ApplicationRecord)
            .filter(ApplicationRecord.property_id == property_id, ApplicationRecord.status == "approved")
            .order_by(ApplicationRecord.id.asc())
            .first()
        )
        if not row:
            return None
        return TenantApplication(id=row.id, property_id=row.property_id, tenant_id=row.tenant_id, status=row.status)

    def get_tenant_by_id(self, tenant_id: int) -> Optional[Tenant]:
        row = self.db.get(UserRecord, tenant_id)
        return Tenant(id=row.id, name=row.name, email=row.email) if row else None

    @staticmethod
    def _to_banking(row: AdminBankingDetails) -> BankingDetails:
        return BankingDetails(
            id=row.id,
            account_name=row.account_name,
            bank_name=row.bank_name,
            is_default=bool(row.is_default),
        )


class ContractRepository:
    """Repository for utility contracts"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, contract_id: int) -> Optional[UtilityContract]:
        row = self.db.get(PropertyUtilityContract, contract_id)
        return _to_contract(row) if row else None

    def create(self, new_contract: NewContract, now: datetime) -> UtilityContract:
        """Persist a new contract in pending status"""
        row = PropertyUtilityContract(
            property_id=new_contract.property_id,
            tenancy_id=new_contract.tenancy_id,
            utility_type=new_contract.utility_type.value,
            provider_id=new_contract.provider_id,
            tariff_id=new_contract.tariff_id,
            banking_details_id=new_contract.banking_details_id,
            status=ContractStatus.PENDING.value,
            monthly_payment_amount=new_contract.monthly_payment_amount,
            deposit_paid=new_contract.deposit_paid,
            payment_method=new_contract.payment_method,
            auto_renewal=new_contract.auto_renewal,
            tenancy_agreement_uploaded=False,
            ai_processed=True,
            best_deal_available=True,
            notes=new_contract.notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        self.db.flush()  # Get ID without committing
        return _to_contract(row)

    def update(self, contract_id: int, fields: Dict[str, Any], now: datetime) -> UtilityContract:
        """Single-row update of non-status fields"""
        if "status" in fields:
            raise ValueError("Status changes must go through transition()")
        values = _column_values(fields)
        values["updated_at"] = now
        count = (
            self.db.query(PropertyUtilityContract)
            .filter(PropertyUtilityContract.id == contract_id)
            .update(values, synchronize_session=False)
        )
        if count == 0:
            raise ContractNotFound(contract_id)
        return self._reload(contract_id)

    def transition(
        self, contract_id: int, target: ContractStatus, fields: Dict[str, Any], now: datetime
    ) -> UtilityContract:
        """
        Compare-and-set status change.

        The UPDATE only matches when the stored status is one of the allowed
        sources for `target`, so two concurrent writers cannot both win.

        Raises:
            ContractNotFound: no such contract
            InvalidTransition: stored status does not allow moving to `target`
        """
        values = _column_values(fields)
        values.update(status=target.value, updated_at=now)
        sources = [status.value for status in sources_for(target)]
        count = (
            self.db.query(PropertyUtilityContract)
            .filter(PropertyUtilityContract.id == contract_id, PropertyUtilityContract.status.in_(sources))
            .update(values, synchronize_session=False)
        )
        if count == 0:
            current = self.db.get(PropertyUtilityContract, contract_id)
            if current is None:
                raise ContractNotFound(contract_id)
            raise InvalidTransition(contract_id, current.status, target.value)
        return self._reload(contract_id)

    def list_by_status(self, statuses: Iterable[ContractStatus]) -> List[UtilityContract]:
        rows = (
            self.db.query(PropertyUtilityContract)
            .filter(PropertyUtilityContract.status.in_([s.value for s in statuses]))
            .order_by(PropertyUtilityContract.id.asc())
            .all()
        )
        return [_to_contract(row) for row in rows]

    def list_monitored(self, statuses: Iterable[ContractStatus]) -> List[UtilityContract]:
        """Contracts in `statuses`, plus active ones whose completion e-mail has not gone out"""
        rows = (
            self.db.query(PropertyUtilityContract)
            .filter(
                or_(
                    PropertyUtilityContract.status.in_([s.value for s in statuses]),
                    and_(
                        PropertyUtilityContract.status == ContractStatus.ACTIVE.value,
                        PropertyUtilityContract.completion_notified_at.is_(None),
                    ),
                )
            )
            .order_by(PropertyUtilityContract.id.asc())
            .all()
        )
        return [_to_contract(row) for row in rows]

    def list_for_property(self, property_id: int) -> List[UtilityContract]:
        rows = (
            self.db.query(PropertyUtilityContract)
            .filter(PropertyUtilityContract.property_id == property_id)
            .order_by(PropertyUtilityContract.created_at.desc())
            .all()
        )
        return [_to_contract(row) for row in rows]

    def list_for_tenancy(self, tenancy_id: int) -> List[UtilityContract]:
        rows = (
            self.db.query(PropertyUtilityContract)
            .filter(PropertyUtilityContract.tenancy_id == tenancy_id)
            .order_by(PropertyUtilityContract.created_at.desc())
            .all()
        )
        return [_to_contract(row) for row in rows]

    def claim_completion_notification(self, contract_id: int, at: datetime) -> bool:
        """Mark the completion e-mail as owned by the caller; False if already claimed"""
        count = (
            self.db.query(PropertyUtilityContract)
            .filter(
                PropertyUtilityContract.id == contract_id,
                PropertyUtilityContract.status == ContractStatus.ACTIVE.value,
                PropertyUtilityContract.completion_notified_at.is_(None),
            )
            .update({"completion_notified_at": at}, synchronize_session=False)
        )
        return count == 1

    def release_completion_notification(self, contract_id: int) -> None:
        (
            self.db.query(PropertyUtilityContract)
            .filter(PropertyUtilityContract.id == contract_id)
            .update({"completion_notified_at": None}, synchronize_session=False)
        )

    def save_price_comparison(
        self, property_id: int, utility_type: UtilityType, results: List[ComparisonResult], now: datetime
    ) -> None:
        self.db.add(
            UtilityPriceComparison(
                property_id=property_id,
                utility_type=utility_type.value,
                search_date=now,
                results=[{k: _jsonable(v) for k, v in asdict(r).items()} for r in results],
            )
        )

    def _reload(self, contract_id: int) -> UtilityContract:
        self.db.expire_all()
        return _to_contract(self.db.get(PropertyUtilityContract, contract_id))
