"""Registration monitor - polls providers and advances contracts one tick at a time"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set

from utility_signup.config import settings
from utility_signup.domain.exceptions import ContractNotFound, InvalidTransition, ProviderGatewayFailure
from utility_signup.domain.models import ContractStatus, ProviderSignal, SignupProgressUpdate, UtilityContract
from utility_signup.domain.ports import ProviderGateway, UtilityDataStore
from utility_signup.domain.state_machine import (
    CONTACT_SUPPORT_MESSAGE,
    UPLOAD_AGREEMENT_MESSAGE,
    is_terminal,
    to_progress_update,
)
from utility_signup.infrastructure.observability.metrics import monitor_check_counter, provider_gateway_failures_counter
from utility_signup.services.notifications import NotificationDispatcher
from utility_signup.services.transitions import append_note, transition
from utility_signup.utils.date_utils import utcnow

DOCUMENTS_RECEIVED_MESSAGE = "Verification documents received. Processing final approval."
INTERRUPTED_REASON = "Registration was interrupted before the application reached the provider. Please restart registration."


class MonitoringScheduler:
    """
    Self-rescheduling monitor for registrations in flight.

    Each contract has at most one armed timer. A check reads the stored
    contract, applies at most one transition, and arms the next check only
    if the contract is still waiting on the provider. The next check time is
    persisted on the contract so `recover()` can re-arm after a restart.
    """

    def __init__(
        self,
        store: UtilityDataStore,
        gateway: ProviderGateway,
        notifier: NotificationDispatcher,
        interval_seconds: float | None = None,
        max_poll_failures: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.monitor_interval_seconds
        self.max_poll_failures = max_poll_failures or settings.max_poll_failures
        self.clock = clock
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    # Scheduling

    def arm(self, contract_id: int, delay_seconds: float | None = None) -> datetime:
        """Persist the next check time and set the in-process timer for it"""
        delay = self.interval_seconds if delay_seconds is None else delay_seconds
        next_check_at = self.clock() + timedelta(seconds=delay)
        self.store.update_contract(contract_id, next_check_at=next_check_at)
        self._set_timer(contract_id, delay)
        return next_check_at

    def disarm(self, contract_id: int) -> None:
        handle = self._timers.pop(contract_id, None)
        if handle is not None:
            handle.cancel()

    def is_armed(self, contract_id: int) -> bool:
        return contract_id in self._timers

    async def recover(self) -> int:
        """
        Re-arm monitoring for every contract still waiting on the provider,
        and for active ones whose completion e-mail never went out.

        Overdue checks run immediately; future ones keep their persisted time.
        Returns the number of contracts armed.
        """
        now = self.clock()
        armed = 0
        for contract in self.store.list_monitored_contracts():
            if contract.next_check_at is None:
                self.arm(contract.id, 0)
            else:
                self._set_timer(contract.id, max((contract.next_check_at - now).total_seconds(), 0))
            armed += 1
        logging.info("Monitoring recovered", extra={"step": "monitor_recovery", "armed": armed})
        return armed

    async def shutdown(self) -> None:
        for contract_id in list(self._timers):
            self.disarm(contract_id)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _set_timer(self, contract_id: int, delay: float) -> None:
        self.disarm(contract_id)
        loop = asyncio.get_running_loop()
        self._timers[contract_id] = loop.call_later(delay, self._fire, contract_id)

    def _fire(self, contract_id: int) -> None:
        self._timers.pop(contract_id, None)
        task = asyncio.ensure_future(self._run_check(contract_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_check(self, contract_id: int) -> None:
        # Nobody awaits a timer-driven check, so failures end here in the log
        try:
            await self.check(contract_id)
        except ContractNotFound:
            logging.warning("Monitored contract disappeared", extra={"contract_id": contract_id, "step": "monitor_check"})
        except Exception as e:
            logging.error(
                f"Monitor check failed: {e}",
                exc_info=True,
                extra={"contract_id": contract_id, "step": "monitor_check"},
            )

    async def deliver_completion(self, contract_id: int) -> bool:
        """
        Send the completion e-mail; if it is still unsent afterwards, check again later.

        A False from the dispatcher also covers a claim held by a concurrent
        sender, so the stored contract decides whether a retry is needed.
        """
        if await self.notifier.notify_completion(contract_id):
            return True
        contract = self.store.get_contract(contract_id)
        if contract is not None and contract.status == ContractStatus.ACTIVE and contract.completion_notified_at is None:
            monitor_check_counter.labels(outcome="notify_retry").inc()
            self.arm(contract_id)
        return False

    # Checking

    async def check(self, contract_id: int) -> SignupProgressUpdate:
        """
        Run one monitoring step for a contract.

        Raises:
            ContractNotFound: the contract does not exist
        """
        contract = self.store.get_contract(contract_id)
        if contract is None:
            monitor_check_counter.labels(outcome="missing").inc()
            raise ContractNotFound(contract_id)

        # Whatever branch runs re-arms if the contract still needs watching
        self.disarm(contract_id)
        if is_terminal(contract.status):
            contract = await self._settle_terminal(contract)
        elif contract.status == ContractStatus.PENDING:
            contract = self._fail(contract, INTERRUPTED_REASON)
        elif contract.status == ContractStatus.BLOCKED:
            # Waiting on the tenant; upload_verification_document re-arms
            monitor_check_counter.labels(outcome="blocked").inc()
            if contract.next_check_at is not None:
                contract = self.store.update_contract(contract.id, next_check_at=None)
        elif contract.manual_completion:
            monitor_check_counter.labels(outcome="manual").inc()
            self.arm(contract.id)
        else:
            contract = await self._poll_provider(contract)

        return to_progress_update(contract)

    async def _settle_terminal(self, contract: UtilityContract) -> UtilityContract:
        monitor_check_counter.labels(outcome="terminal").inc()
        if contract.next_check_at is not None:
            contract = self.store.update_contract(contract.id, next_check_at=None)
        if contract.status == ContractStatus.ACTIVE and contract.completion_notified_at is None:
            await self.deliver_completion(contract.id)
        return contract

    async def _poll_provider(self, contract: UtilityContract) -> UtilityContract:
        provider = self.store.get_provider_by_id(contract.provider_id)
        if provider is None:
            return self._fail(contract, f"Provider {contract.provider_id} not found")

        try:
            result = await self.gateway.poll_status(provider, contract.provider_reference or "")
        except ProviderGatewayFailure as e:
            return self._record_poll_failure(contract, str(e))

        if result.signal == ProviderSignal.APPROVED:
            updated = self._transition(
                contract,
                ContractStatus.ACTIVE,
                status_message=result.message,
                action_required=False,
                action_message=None,
                next_check_at=None,
                poll_failures=0,
            )
            if updated.status == ContractStatus.ACTIVE:
                monitor_check_counter.labels(outcome="completed").inc()
                await self.deliver_completion(contract.id)
            return updated

        if result.signal == ProviderSignal.REJECTED:
            return self._fail(contract, result.message)

        if result.signal == ProviderSignal.VERIFICATION_REQUIRED and not contract.tenancy_agreement_uploaded:
            monitor_check_counter.labels(outcome="blocked").inc()
            return self._transition(
                contract,
                ContractStatus.BLOCKED,
                status_message=result.message,
                action_required=True,
                action_message=UPLOAD_AGREEMENT_MESSAGE,
                next_check_at=None,
                poll_failures=0,
            )

        message = result.message
        if result.signal == ProviderSignal.VERIFICATION_REQUIRED:
            # The provider has not caught up with the document we already sent
            message = DOCUMENTS_RECEIVED_MESSAGE
        monitor_check_counter.labels(outcome="rescheduled").inc()
        updated = self.store.update_contract(contract.id, status_message=message, poll_failures=0)
        self.arm(contract.id)
        return updated

    def _record_poll_failure(self, contract: UtilityContract, error: str) -> UtilityContract:
        provider_gateway_failures_counter.labels(operation="poll").inc()
        failures = contract.poll_failures + 1
        if failures >= self.max_poll_failures:
            return self._fail(contract, f"Provider status check failed {failures} times in a row: {error}")

        logging.warning(
            f"Provider status check failed: {error}",
            extra={"contract_id": contract.id, "step": "monitor_check", "poll_failures": failures},
        )
        monitor_check_counter.labels(outcome="rescheduled").inc()
        updated = self.store.update_contract(
            contract.id,
            poll_failures=failures,
            notes=append_note(contract.notes, f"Status check failed: {error}", self.clock()),
        )
        self.arm(contract.id)
        return updated

    def _fail(self, contract: UtilityContract, reason: str) -> UtilityContract:
        monitor_check_counter.labels(outcome="failed").inc()
        return self._transition(
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

    def _transition(
        self, contract: UtilityContract, target: ContractStatus, reason: Optional[str] = None, **fields
    ) -> UtilityContract:
        """Apply a transition; if another writer got there first, keep what they wrote"""
        try:
            return transition(self.store, contract, target, reason=reason, **fields)
        except InvalidTransition as e:
            logging.info(
                f"Transition skipped: {e}",
                extra={"contract_id": contract.id, "step": "monitor_check", "to_status": target.value},
            )
            current = self.store.get_contract(contract.id)
            if current is None:
                raise ContractNotFound(contract.id) from e
            return current
