"""Automated utility registration - tariff selection, contract creation and workflow hand-off"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from utility_signup.config import settings
from utility_signup.domain.exceptions import (
    ContractNotFound,
    InvalidTransition,
    InvalidUtilityType,
    NoBankingDetails,
    NoEligibleTariff,
    NotAwaitingVerification,
    PropertyNotFound,
    ProviderGatewayFailure,
)
from utility_signup.domain.models import (
    ContractStatus,
    NewContract,
    Provider,
    SignupProgressUpdate,
    TenantSignupData,
    UploadResult,
    UtilityContract,
    UtilityType,
)
from utility_signup.domain.ports import ProviderGateway, UtilityDataStore
from utility_signup.domain.selection import select_cheapest_tariff
from utility_signup.domain.state_machine import CONTACT_SUPPORT_MESSAGE, to_progress_update
from utility_signup.infrastructure.observability.metrics import provider_gateway_failures_counter, record_registration
from utility_signup.services.monitoring import MonitoringScheduler
from utility_signup.services.transitions import append_note, transition
from utility_signup.utils.date_utils import utcnow

SUBMITTED_MESSAGE = "Application submitted to provider. Initial processing in progress."
MANUAL_MESSAGE = "Provider does not accept automated sign-up. Our team will complete the registration manually."
RESUMED_MESSAGE = "Tenancy agreement received. Registration process will resume."


class RegistrationOrchestrator:
    """Entry point for starting registrations and acting on them afterwards"""

    def __init__(
        self,
        store: UtilityDataStore,
        gateway: ProviderGateway,
        scheduler: MonitoringScheduler,
        upload_recheck_delay_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.scheduler = scheduler
        self.upload_recheck_delay_seconds = (
            upload_recheck_delay_seconds
            if upload_recheck_delay_seconds is not None
            else settings.upload_recheck_delay_seconds
        )
        self.clock = clock

    async def start(
        self,
        property_id: int,
        tenancy_id: int,
        utility_type: "str | UtilityType",
        signup_data: TenantSignupData,
        banking_details_id: Optional[int] = None,
    ) -> int:
        """
        Sign the tenancy up to the cheapest eligible tariff.

        Flow:
        1. Validate the utility type
        2. Resolve the property and whether bills are included in rent
        3. Select the cheapest eligible tariff for the property's region
        4. Resolve banking details (explicit id, else the default record)
        5. Create the contract in pending status
        6. Lodge the application with the provider and arm monitoring

        Returns as soon as the application is lodged; the rest of the
        workflow runs on the monitor's timers.

        Raises:
            InvalidUtilityType, PropertyNotFound, NoEligibleTariff, NoBankingDetails
        """
        try:
            utility = UtilityType.parse(utility_type)
        except InvalidUtilityType:
            record_registration(str(utility_type), "invalid")
            raise

        prop = self.store.get_property_by_id(property_id)
        if prop is None:
            record_registration(utility.value, "no_property")
            raise PropertyNotFound(property_id)

        providers = self.store.get_providers_by_type(utility)
        try:
            tariff = select_cheapest_tariff(
                utility,
                self.store.get_tariffs_by_type(utility),
                providers,
                now=self.clock(),
                postcode=prop.postcode,
            )
        except NoEligibleTariff:
            record_registration(utility.value, "no_tariff")
            raise

        if banking_details_id is not None:
            banking = self.store.get_banking_details_by_id(banking_details_id)
        else:
            banking = self.store.get_default_banking_details()
        if banking is None:
            record_registration(utility.value, "no_banking")
            raise NoBankingDetails("Banking details not found. Please set up banking details first.")

        contract = self.store.create_contract(NewContract.for_tariff(prop, tenancy_id, tariff, banking))
        record_registration(utility.value, "started")
        logging.info(
            "Automated registration started",
            extra={
                "contract_id": contract.id,
                "step": "registration_started",
                "utility_type": utility.value,
                "tariff_id": tariff.id,
                "all_inclusive": prop.bills_included,
            },
        )

        provider = next(p for p in providers if p.id == tariff.provider_id)
        await self._initiate(contract, provider, signup_data)
        return contract.id

    async def _initiate(self, contract: UtilityContract, provider: Provider, signup_data: TenantSignupData) -> None:
        """Lodge the application: pending -> in_progress (automated or manual), or failed"""
        if self.store.get_tenancy_by_id(contract.tenancy_id) is None:
            self._fail(contract, "Tenancy not found")
            return
        application = self.store.get_approved_application_for_property(contract.property_id)
        if application is None:
            self._fail(contract, "No approved tenant application found")
            return

        try:
            receipt = await self.gateway.initiate_signup(provider, application.tenant_id, signup_data)
        except ProviderGatewayFailure as e:
            provider_gateway_failures_counter.labels(operation="initiate").inc()
            self._fail(contract, f"Provider sign-up failed: {e}")
            return

        now = self.clock()
        if receipt.accepted:
            transition(
                self.store,
                contract,
                ContractStatus.IN_PROGRESS,
                provider_reference=receipt.reference_number,
                submitted_at=now,
                status_message=SUBMITTED_MESSAGE,
            )
        else:
            transition(
                self.store,
                contract,
                ContractStatus.IN_PROGRESS,
                reason="automated sign-up rejected",
                provider_reference=receipt.reference_number or None,
                submitted_at=now,
                manual_completion=True,
                status_message=MANUAL_MESSAGE,
                notes=append_note(
                    contract.notes,
                    f"Automated sign-up rejected ({receipt.message or 'no reason given'}); manual completion required",
                    now,
                ),
            )
        self.scheduler.arm(contract.id)

    async def upload_verification_document(self, contract_id: int, document: bytes, file_name: str) -> UploadResult:
        """
        Accept the tenancy agreement the provider asked for and resume the workflow.

        Raises:
            ContractNotFound: no such contract
            NotAwaitingVerification: the contract is not blocked on verification
        """
        contract = self._get(contract_id)
        if contract.status != ContractStatus.BLOCKED:
            raise NotAwaitingVerification(contract_id, contract.status)

        provider = self.store.get_provider_by_id(contract.provider_id)
        if provider is not None and contract.provider_reference and not contract.manual_completion:
            try:
                await self.gateway.submit_document(provider, contract.provider_reference, file_name, document)
            except ProviderGatewayFailure as e:
                provider_gateway_failures_counter.labels(operation="document").inc()
                logging.warning(
                    f"Verification document not forwarded: {e}",
                    extra={"contract_id": contract_id, "step": "document_upload"},
                )
                return UploadResult(
                    success=False,
                    message="The document could not be forwarded to the provider. Please try again shortly.",
                )

        try:
            transition(
                self.store,
                contract,
                ContractStatus.IN_PROGRESS,
                reason="verification document uploaded",
                tenancy_agreement_uploaded=True,
                tenancy_agreement_file_name=file_name,
                action_required=False,
                action_message=None,
                status_message=RESUMED_MESSAGE,
            )
        except InvalidTransition as e:
            raise NotAwaitingVerification(contract_id, e.current) from e

        logging.info(
            "Tenancy agreement uploaded",
            extra={"contract_id": contract_id, "step": "document_upload", "file_name": file_name},
        )
        self.scheduler.arm(contract_id, self.upload_recheck_delay_seconds)
        return UploadResult(
            success=True,
            message="Tenancy agreement uploaded successfully. Registration process will resume.",
        )

    def get_registration_status(self, contract_id: int) -> SignupProgressUpdate:
        """Caller-facing status; raises ContractNotFound only"""
        return to_progress_update(self._get(contract_id))

    async def trigger_manual_status_check(self, contract_id: int) -> SignupProgressUpdate:
        """Admin re-poll: run one monitor check now"""
        return await self.scheduler.check(contract_id)

    async def cancel(self, contract_id: int, reason: str = "Cancelled by administrator") -> SignupProgressUpdate:
        """
        Cancel a registration that has not finished.

        Raises:
            ContractNotFound, InvalidTransition (already terminal)
        """
        contract = self._get(contract_id)
        updated = transition(
            self.store,
            contract,
            ContractStatus.CANCELLED,
            reason=reason,
            next_check_at=None,
            action_required=False,
            action_message=None,
            notes=append_note(contract.notes, reason, self.clock()),
        )
        self.scheduler.disarm(contract_id)
        return to_progress_update(updated)

    async def resolve_manually(
        self, contract_id: int, approved: bool, note: Optional[str] = None
    ) -> SignupProgressUpdate:
        """
        Operator outcome for a registration completed outside the provider API.

        Raises:
            ContractNotFound, InvalidTransition (not in progress)
        """
        contract = self._get(contract_id)
        if contract.status != ContractStatus.IN_PROGRESS:
            raise InvalidTransition(
                contract_id, contract.status, (ContractStatus.ACTIVE if approved else ContractStatus.FAILED).value
            )

        now = self.clock()
        self.scheduler.disarm(contract_id)
        if approved:
            updated = transition(
                self.store,
                contract,
                ContractStatus.ACTIVE,
                reason="completed manually",
                next_check_at=None,
                status_message="Registration completed manually by operator.",
                notes=append_note(contract.notes, note or "Completed manually by operator", now),
            )
            await self.scheduler.deliver_completion(contract_id)
            return to_progress_update(updated)

        reason = note or "Provider declined the application"
        return to_progress_update(self._fail(contract, reason))

    def list_contracts_for_property(self, property_id: int) -> List[UtilityContract]:
        return self.store.list_contracts_for_property(property_id)

    def list_contracts_for_tenancy(self, tenancy_id: int) -> List[UtilityContract]:
        return self.store.list_contracts_for_tenancy(tenancy_id)

    def _get(self, contract_id: int) -> UtilityContract:
        contract = self.store.get_contract(contract_id)
        if contract is None:
            raise ContractNotFound(contract_id)
        return contract

    def _fail(self, contract: UtilityContract, reason: str) -> UtilityContract:
        return transition(
            self.store,
            contract,
            ContractStatus.FAILED,
            reason=reason,
            failure_reason=reason,
            status_message=reason,
            action_required=True,
            action_message=CONTACT_SUPPORT_MESSAGE,
            next_check_at=None,
            notes=append_note(contract.notes, f"Registration failed: {reason}", self.clock()),
        )
