"""Provider sign-up gateways: HTTP client for provider APIs and an in-process simulator"""

import base64
import logging
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Set

import httpx

from utility_signup.config import settings
from utility_signup.domain.exceptions import ProviderGatewayFailure
from utility_signup.domain.models import Provider, ProviderSignal, ProviderStatus, SignupReceipt, TenantSignupData
from utility_signup.utils.date_utils import minutes_between, utcnow

REJECTION_CODES = {400, 403, 409, 422}


class HttpProviderGateway:
    """Client for provider sign-up APIs"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.provider_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _client(self, provider: Provider) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {provider.api_key}"} if provider.api_key else {}
        return httpx.AsyncClient(
            base_url=provider.api_endpoint or self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    async def initiate_signup(
        self, provider: Provider, tenant_id: int, signup_data: TenantSignupData
    ) -> SignupReceipt:
        """
        Lodge a sign-up application with the provider.

        A 4xx refusal is a rejection (the contract falls back to manual
        completion); timeouts and 5xx responses are gateway failures.

        Raises:
            ProviderGatewayFailure: On timeout, HTTP errors, or invalid response
        """
        async with self._client(provider) as client:
            try:
                response = await client.post(
                    "/signups",
                    json={"provider_id": provider.id, "tenant_id": tenant_id, "signup": asdict(signup_data)},
                )
                if response.status_code in REJECTION_CODES:
                    return SignupReceipt(
                        reference_number="",
                        status="rejected",
                        message=response.json().get("detail", "Rejected by provider"),
                    )
                response.raise_for_status()
                data = response.json()
                completion = data.get("estimated_completion_date")
                return SignupReceipt(
                    reference_number=data["reference_number"],
                    status=data["status"],
                    estimated_completion_date=date.fromisoformat(completion) if completion else None,
                )

            except httpx.TimeoutException as e:
                raise ProviderGatewayFailure(f"Provider API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ProviderGatewayFailure(f"Provider API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ProviderGatewayFailure(f"Provider API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise ProviderGatewayFailure(f"Invalid sign-up response from provider: {e}") from e

    async def poll_status(self, provider: Provider, reference_number: str) -> ProviderStatus:
        """
        Fetch the current progress of a lodged application.

        Raises:
            ProviderGatewayFailure: On timeout, HTTP errors, or invalid response
        """
        async with self._client(provider) as client:
            try:
                response = await client.get(f"/signups/{reference_number}")
                response.raise_for_status()
                data = response.json()
                return ProviderStatus(signal=ProviderSignal(data["signal"]), message=data["message"])

            except httpx.TimeoutException as e:
                raise ProviderGatewayFailure(f"Provider API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ProviderGatewayFailure(f"Provider API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ProviderGatewayFailure(f"Provider API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise ProviderGatewayFailure(f"Invalid status response from provider: {e}") from e

    async def submit_document(
        self, provider: Provider, reference_number: str, file_name: str, document: bytes
    ) -> None:
        async with self._client(provider) as client:
            try:
                response = await client.post(
                    f"/signups/{reference_number}/documents",
                    json={"file_name": file_name, "content_base64": base64.b64encode(document).decode("ascii")},
                )
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise ProviderGatewayFailure(f"Provider API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ProviderGatewayFailure(f"Provider API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ProviderGatewayFailure(f"Provider API unreachable: {e}") from e


def simulated_milestone(elapsed_minutes: float, document_received: bool) -> ProviderStatus:
    """
    Deterministic provider progress as a function of time since submission.

    submitted (<5 min) -> identity check (<10) -> verification gate, held
    until a document arrives -> documents received (<20) -> approved
    """
    if elapsed_minutes < 5:
        return ProviderStatus(ProviderSignal.SUBMITTED, "Application submitted to provider. Initial processing in progress.")
    if elapsed_minutes < 10:
        return ProviderStatus(ProviderSignal.SUBMITTED, "Identity verification in progress with provider.")
    if not document_received:
        return ProviderStatus(ProviderSignal.VERIFICATION_REQUIRED, "Additional verification required by provider.")
    if elapsed_minutes < 20:
        return ProviderStatus(ProviderSignal.SUBMITTED, "Verification documents received. Processing final approval.")
    return ProviderStatus(ProviderSignal.APPROVED, "Registration complete. Service will be active starting next billing cycle.")


class SimulatedProviderGateway:
    """
    Stand-in for provider APIs.

    References embed the submission time (REF-<epoch ms>-<provider>-<tenant>)
    so progress can be recomputed after a restart.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.documents: Dict[str, str] = {}
        self.rejected: Set[str] = set()

    async def initiate_signup(
        self, provider: Provider, tenant_id: int, signup_data: TenantSignupData
    ) -> SignupReceipt:
        now = self.clock()
        reference = f"REF-{int(now.timestamp() * 1000)}-{provider.id}-{tenant_id}"
        logging.info(
            "Simulated provider sign-up",
            extra={"provider_id": provider.id, "tenant_id": tenant_id, "reference_number": reference},
        )
        if not provider.api_integration:
            return SignupReceipt(
                reference_number=reference,
                status="rejected",
                message=f"{provider.name} does not accept automated sign-ups",
            )
        return SignupReceipt(
            reference_number=reference,
            status="accepted",
            estimated_completion_date=(now + timedelta(days=7)).date(),
        )

    async def poll_status(self, provider: Provider, reference_number: str) -> ProviderStatus:
        if reference_number in self.rejected:
            return ProviderStatus(ProviderSignal.REJECTED, "Application declined by provider.")
        submitted_at = self.submitted_at(reference_number)
        elapsed = minutes_between(submitted_at, self.clock())
        return simulated_milestone(elapsed, reference_number in self.documents)

    async def submit_document(
        self, provider: Provider, reference_number: str, file_name: str, document: bytes
    ) -> None:
        self.submitted_at(reference_number)
        self.documents[reference_number] = file_name

    def reject(self, reference_number: str) -> None:
        """Make subsequent polls for this application report a rejection"""
        self.rejected.add(reference_number)

    @staticmethod
    def submitted_at(reference_number: str) -> datetime:
        try:
            epoch_ms = int(reference_number.split("-")[1])
        except (IndexError, ValueError) as e:
            raise ProviderGatewayFailure(f"Unknown application reference: {reference_number}") from e
        return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


def build_provider_gateway(mode: Optional[str] = None):
    """Gateway selected by settings.provider_gateway_mode"""
    mode = mode or settings.provider_gateway_mode
    if mode == "http":
        return HttpProviderGateway()
    if mode == "simulated":
        return SimulatedProviderGateway()
    raise ValueError(f"Unknown provider gateway mode: {mode}")
