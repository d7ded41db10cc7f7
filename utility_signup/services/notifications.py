"""Completion notification - sends the registration-complete e-mail exactly once per contract"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from utility_signup.domain.exceptions import NotificationFailure
from utility_signup.domain.models import Property, Provider, TariffOffer, Tenancy, Tenant, UtilityContract
from utility_signup.domain.ports import EmailSender, UtilityDataStore
from utility_signup.utils.date_utils import utcnow

UTILITY_LABELS = {
    "gas": "gas",
    "electricity": "electricity",
    "dual_fuel": "dual fuel",
    "water": "water",
    "broadband": "broadband",
    "tv_license": "TV licence",
}


def build_completion_summary(
    contract: UtilityContract,
    tenant: Tenant,
    prop: Property,
    tenancy: Optional[Tenancy],
    provider: Optional[Provider],
    tariff: Optional[TariffOffer],
) -> Dict[str, Any]:
    """Subject, HTML body and the JSON-safe facts behind them"""
    utility = UTILITY_LABELS.get(contract.utility_type.value, contract.utility_type.value)
    provider_name = provider.name if provider else "your selected provider"
    tariff_name = tariff.name if tariff else "Standard tariff"
    start_date = tenancy.start_date.isoformat() if tenancy and tenancy.start_date else "to be confirmed"

    if prop.bills_included:
        payment_line = "<li><strong>Payment:</strong> Included in your rent as per all-inclusive agreement</li>"
        closing = (
            "<p>Your utility service is now active under your all-inclusive agreement. "
            "Remember that reasonable usage limits apply as outlined in your tenancy agreement.</p>"
        )
    else:
        payment_line = f"<li><strong>Monthly Payment:</strong> £{contract.monthly_payment_amount:.2f}</li>"
        closing = "<p>Your account is now active and ready to use. You do not need to take any further action regarding setup.</p>"

    phone = provider.customer_service_phone if provider and provider.customer_service_phone else "the number listed on their website"
    email = provider.customer_service_email if provider and provider.customer_service_email else "support@provider.com"

    body = f"""
      <h1>Utility Registration Complete</h1>
      <p>Dear {tenant.name},</p>
      <p>We're pleased to inform you that your {utility} utility service has been successfully registered with {provider_name}.</p>
      <h2>Details:</h2>
      <ul>
        <li><strong>Property:</strong> {prop.address}, {prop.city}, {prop.postcode}</li>
        <li><strong>Utility Type:</strong> {utility}</li>
        <li><strong>Provider:</strong> {provider_name}</li>
        <li><strong>Tariff:</strong> {tariff_name}</li>
        {payment_line}
        <li><strong>Start Date:</strong> {start_date}</li>
      </ul>
      {closing}
      <p>If you have any questions, please contact your property manager or {provider_name} customer service at {phone} or {email}.</p>
      <p>Thank you for using our automated utility setup service!</p>
    """

    return {
        "subject": f"Your {utility} utility setup is complete - {prop.address}",
        "body": body,
        "contract_id": contract.id,
        "utility_type": contract.utility_type.value,
        "provider_name": provider_name,
        "tariff_name": tariff_name,
        "all_inclusive": prop.bills_included,
        "monthly_payment_amount": str(contract.monthly_payment_amount),
        "start_date": start_date,
    }


class NotificationDispatcher:
    """Sends the completion e-mail once a contract is active"""

    def __init__(
        self,
        store: UtilityDataStore,
        email_sender: EmailSender,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.email_sender = email_sender
        self.clock = clock

    async def notify_completion(self, contract_id: int) -> bool:
        """
        Send the completion e-mail unless it was already sent.

        The claim on `completion_notified_at` is a conditional update, so a
        monitor tick that double-fires after a restart cannot send twice. A
        failed send releases the claim so a later check can retry; unexpected
        errors release it too and propagate.

        Returns:
            True when this call delivered the e-mail
        """
        if not self.store.claim_completion_notification(contract_id, self.clock()):
            return False

        try:
            tenant_email, summary = self._compose(contract_id)
            await self.email_sender.send_completion_email(tenant_email, summary)
        except (NotificationFailure, LookupError) as e:
            self.store.release_completion_notification(contract_id)
            logging.error(
                f"Completion e-mail not sent: {e}",
                extra={"contract_id": contract_id, "step": "completion_email"},
            )
            return False
        except Exception:
            self.store.release_completion_notification(contract_id)
            raise

        logging.info(
            "Completion e-mail sent",
            extra={"contract_id": contract_id, "step": "completion_email", "recipient": tenant_email},
        )
        return True

    def _compose(self, contract_id: int):
        contract = self.store.get_contract(contract_id)
        if contract is None:
            raise LookupError(f"Contract {contract_id} not found")
        prop = self.store.get_property_by_id(contract.property_id)
        if prop is None:
            raise LookupError(f"Property {contract.property_id} not found")
        application = self.store.get_approved_application_for_property(contract.property_id)
        if application is None:
            raise LookupError("No approved tenant application found")
        tenant = self.store.get_tenant_by_id(application.tenant_id)
        if tenant is None:
            raise LookupError("Tenant information not found")

        tenancy = self.store.get_tenancy_by_id(contract.tenancy_id)
        provider = self.store.get_provider_by_id(contract.provider_id)
        tariff = self.store.get_tariff_by_id(contract.tariff_id) if contract.tariff_id else None
        return tenant.email, build_completion_summary(contract, tenant, prop, tenancy, provider, tariff)
