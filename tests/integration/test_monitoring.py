"""Integration tests for the registration monitor"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from utility_signup.domain.exceptions import ContractNotFound, NotificationFailure, ProviderGatewayFailure
from utility_signup.domain.models import ContractStatus, NewContract, RegistrationStatus, SignupReceipt
from utility_signup.services.monitoring import DOCUMENTS_RECEIVED_MESSAGE, INTERRUPTED_REASON

pytestmark = pytest.mark.integration


async def test_check_keeps_polling_while_submitted(engine, clock, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    clock.advance(minutes=6)

    update = await engine.scheduler.check(contract_id)

    assert update.status == RegistrationStatus.IN_PROGRESS
    assert update.status_message == "Identity verification in progress with provider."
    assert engine.scheduler.is_armed(contract_id)
    assert engine.store.get_contract(contract_id).next_check_at > clock()


async def test_verification_required_blocks_and_stops_polling(engine, clock, signup_data):
    """Test the verification gate moves the contract to blocked with an upload action"""
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    clock.advance(minutes=11)

    update = await engine.scheduler.check(contract_id)

    assert update.status == RegistrationStatus.VERIFICATION_REQUIRED
    assert update.action_required is True
    contract = engine.store.get_contract(contract_id)
    assert contract.status == ContractStatus.BLOCKED
    assert contract.next_check_at is None
    assert not engine.scheduler.is_armed(contract_id)


async def test_blocked_contract_is_not_polled(engine, gateway, clock, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    clock.advance(minutes=11)
    await engine.scheduler.check(contract_id)
    gateway.poll_status = AsyncMock()

    await engine.scheduler.check(contract_id)

    gateway.poll_status.assert_not_awaited()
    assert engine.store.get_contract(contract_id).status == ContractStatus.BLOCKED


async def test_approval_completes_and_notifies_once(engine, clock, email_sender, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    clock.advance(minutes=11)
    await engine.scheduler.check(contract_id)
    await engine.orchestrator.upload_verification_document(contract_id, b"%PDF-1.4", "agreement.pdf")

    update = await engine.scheduler.check(contract_id)
    assert update.status == RegistrationStatus.IN_PROGRESS
    assert update.status_message == DOCUMENTS_RECEIVED_MESSAGE

    clock.advance(minutes=10)
    update = await engine.scheduler.check(contract_id)
    assert update.status == RegistrationStatus.COMPLETED
    assert not engine.scheduler.is_armed(contract_id)

    # A late duplicate check must not send a second e-mail
    await engine.scheduler.check(contract_id)
    email_sender.send_completion_email.assert_awaited_once()
    recipient, summary = email_sender.send_completion_email.await_args.args
    assert recipient == "alex@example.com"
    assert summary["provider_name"] == "Volt Energy"
    assert engine.store.get_contract(contract_id).completion_notified_at is not None


async def test_concurrent_checks_send_one_email(engine, clock, email_sender, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    engine.gateway.documents[engine.store.get_contract(contract_id).provider_reference] = "agreement.pdf"
    clock.advance(minutes=25)

    await asyncio.gather(engine.scheduler.check(contract_id), engine.scheduler.check(contract_id))

    assert engine.store.get_contract(contract_id).status == ContractStatus.ACTIVE
    email_sender.send_completion_email.assert_awaited_once()


async def test_provider_rejection_fails_contract(engine, gateway, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    gateway.reject(engine.store.get_contract(contract_id).provider_reference)

    update = await engine.scheduler.check(contract_id)

    assert update.status == RegistrationStatus.FAILED
    assert engine.store.get_contract(contract_id).failure_reason == "Application declined by provider."
    assert not engine.scheduler.is_armed(contract_id)


async def test_poll_failures_retry_then_fail(engine, gateway, signup_data):
    """Test transient poll errors are retried until max_poll_failures is reached"""
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    gateway.poll_status = AsyncMock(side_effect=ProviderGatewayFailure("Provider API error: 502"))

    await engine.scheduler.check(contract_id)
    await engine.scheduler.check(contract_id)
    contract = engine.store.get_contract(contract_id)
    assert contract.status == ContractStatus.IN_PROGRESS
    assert contract.poll_failures == 2
    assert engine.scheduler.is_armed(contract_id)

    update = await engine.scheduler.check(contract_id)
    assert update.status == RegistrationStatus.FAILED
    assert "failed 3 times" in engine.store.get_contract(contract_id).failure_reason


async def test_successful_poll_resets_failure_count(engine, gateway, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    real_poll = gateway.poll_status
    gateway.poll_status = AsyncMock(side_effect=ProviderGatewayFailure("timeout"))
    await engine.scheduler.check(contract_id)

    gateway.poll_status = real_poll
    await engine.scheduler.check(contract_id)

    assert engine.store.get_contract(contract_id).poll_failures == 0


async def test_interrupted_pending_contract_is_failed(engine, store):
    """Test a contract left pending (e.g. crash before the provider call) is failed"""
    prop = store.get_property_by_id(1)
    contract = store.create_contract(
        NewContract.for_tariff(prop, 1, store.get_tariff_by_id(1), store.get_default_banking_details())
    )

    update = await engine.scheduler.check(contract.id)

    assert update.status == RegistrationStatus.FAILED
    assert engine.store.get_contract(contract.id).failure_reason == INTERRUPTED_REASON


async def test_manual_contract_is_not_polled(engine, gateway, signup_data):
    gateway.initiate_signup = AsyncMock(return_value=SignupReceipt(reference_number="", status="rejected"))
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    gateway.poll_status = AsyncMock()

    update = await engine.scheduler.check(contract_id)

    gateway.poll_status.assert_not_awaited()
    assert update.status == RegistrationStatus.IN_PROGRESS
    assert engine.scheduler.is_armed(contract_id)


async def test_cancelled_contract_ignores_late_approval(engine, clock, email_sender, signup_data):
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    engine.gateway.documents[engine.store.get_contract(contract_id).provider_reference] = "agreement.pdf"
    await engine.orchestrator.cancel(contract_id)
    clock.advance(minutes=25)

    update = await engine.scheduler.check(contract_id)

    assert update.status == RegistrationStatus.FAILED
    assert engine.store.get_contract(contract_id).status == ContractStatus.CANCELLED
    email_sender.send_completion_email.assert_not_awaited()


async def test_check_unknown_contract(engine):
    with pytest.raises(ContractNotFound):
        await engine.scheduler.check(404)


async def test_timer_fires_check(engine, gateway, signup_data):
    """Test an armed timer runs the check on the event loop"""
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    gateway.reject(engine.store.get_contract(contract_id).provider_reference)

    engine.scheduler.arm(contract_id, 0)
    for _ in range(20):
        await asyncio.sleep(0.01)
        if engine.store.get_contract(contract_id).status == ContractStatus.FAILED:
            break

    assert engine.store.get_contract(contract_id).status == ContractStatus.FAILED
    assert not engine.scheduler.is_armed(contract_id)


async def test_recover_rearms_in_flight_contracts(engine, engine_factory, clock, signup_data):
    """Test a fresh scheduler picks up contracts a previous process was watching"""
    first = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    second = await engine.orchestrator.start(2, 2, "electricity", signup_data)
    clock.advance(minutes=11)
    await engine.scheduler.check(second)  # now blocked
    await engine.scheduler.shutdown()

    restarted = engine_factory()
    try:
        armed = await restarted.scheduler.recover()

        assert armed == 1
        assert restarted.scheduler.is_armed(first)
        assert not restarted.scheduler.is_armed(second)
    finally:
        await restarted.scheduler.shutdown()


async def test_failed_completion_email_survives_restart(engine, engine_factory, clock, email_sender, signup_data):
    """Test an unsent completion e-mail keeps the contract watched until it goes out"""
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    engine.gateway.documents[engine.store.get_contract(contract_id).provider_reference] = "agreement.pdf"
    clock.advance(minutes=25)
    email_sender.send_completion_email.side_effect = NotificationFailure("webhook down")

    update = await engine.scheduler.check(contract_id)

    assert update.status == RegistrationStatus.COMPLETED
    assert engine.store.get_contract(contract_id).completion_notified_at is None
    assert engine.scheduler.is_armed(contract_id)
    await engine.scheduler.shutdown()

    email_sender.send_completion_email.side_effect = None
    restarted = engine_factory()
    try:
        assert await restarted.scheduler.recover() == 1
        assert restarted.scheduler.is_armed(contract_id)

        await restarted.scheduler.check(contract_id)

        assert not restarted.scheduler.is_armed(contract_id)
    finally:
        await restarted.scheduler.shutdown()
    assert email_sender.send_completion_email.await_count == 2
    assert engine.store.get_contract(contract_id).completion_notified_at is not None


async def test_recover_sends_email_missed_by_crash(engine, email_sender, force_contract_state, signup_data):
    """Test an active contract whose e-mail was never claimed is picked up on recovery"""
    contract_id = await engine.orchestrator.start(1, 1, "electricity", signup_data)
    engine.scheduler.disarm(contract_id)
    force_contract_state(contract_id, status="active", next_check_at=None)

    assert await engine.scheduler.recover() == 1
    for _ in range(20):
        await asyncio.sleep(0.01)
        if engine.store.get_contract(contract_id).completion_notified_at is not None:
            break

    email_sender.send_completion_email.assert_awaited_once()
    assert not engine.scheduler.is_armed(contract_id)
