"""Pytest fixtures for testing"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from utility_signup.api.main import create_app
from utility_signup.config import Settings
from utility_signup.domain.models import TenantSignupData
from utility_signup.infrastructure.clients.provider import SimulatedProviderGateway
from utility_signup.infrastructure.database.models import (
    AdminBankingDetails,
    ApplicationRecord,
    Base,
    PropertyRecord,
    PropertyUtilityContract,
    TenancyRecord,
    UserRecord,
    UtilityProvider,
    UtilityTariff,
)
from utility_signup.infrastructure.database.session import build_engine, session_scope
from utility_signup.infrastructure.database.store import DatabaseStore
from utility_signup.services.engine import SignupEngine, build_engine as build_signup_engine


START = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)

# Timers never fire on their own in tests; checks are driven explicitly
TEST_SETTINGS = Settings(
    monitor_interval_seconds=3600,
    upload_recheck_delay_seconds=3600,
    max_poll_failures=3,
    deal_freshness_days=30,
    better_deal_threshold=0.10,
    sweep_concurrency=2,
)


class FakeClock:
    """Controllable clock shared by the store, gateway and services"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def seed_reference_data(factory: sessionmaker) -> None:
    """
    Properties, tenants and an electricity/water catalog.

    Property 1 (SW1A) is billed directly, property 2 (M1) is all-inclusive,
    property 3 has a tenancy but no approved application.
    """
    with session_scope(factory) as db:
        db.add_all([
            PropertyRecord(id=1, address="12 Acacia Avenue", city="London", postcode="SW1A 1AA", bills_included=False),
            PropertyRecord(id=2, address="Flat 3, 40 Mill Lane", city="Manchester", postcode="M1 2AB", bills_included=True),
            PropertyRecord(id=3, address="7 Harbour Road", city="Bristol", postcode="BS1 4DJ", bills_included=False),
        ])
        db.flush()
        db.add_all([
            TenancyRecord(id=1, property_id=1, start_date=date(2026, 11, 1)),
            TenancyRecord(id=2, property_id=2, start_date=date(2026, 11, 15)),
            TenancyRecord(id=3, property_id=3),
            UserRecord(id=10, name="Alex Morgan", email="alex@example.com"),
            UserRecord(id=11, name="Sam Patel", email="sam@example.com"),
            AdminBankingDetails(
                id=1,
                account_name="Lettings Ltd",
                account_number="12345678",
                sort_code="12-34-56",
                bank_name="Northern Bank",
                is_default=True,
            ),
            UtilityProvider(id=1, name="Volt Energy", utility_type="electricity", api_integration=True,
                            customer_service_phone="0800 123 456", customer_service_email="help@volt.example"),
            UtilityProvider(id=2, name="Spark Power", utility_type="electricity", api_integration=True),
            UtilityProvider(id=3, name="Paper Electric", utility_type="electricity", api_integration=False),
            UtilityProvider(id=4, name="Aqua Water", utility_type="water", api_integration=False),
        ])
        db.flush()
        db.add_all([
            ApplicationRecord(id=1, property_id=1, tenant_id=10, status="approved"),
            ApplicationRecord(id=2, property_id=2, tenant_id=11, status="approved"),
            ApplicationRecord(id=3, property_id=3, tenant_id=10, status="rejected"),
            UtilityTariff(id=1, provider_id=1, name="Volt Fixed 12", utility_type="electricity",
                          estimated_annual_cost=Decimal("1000.00"), fixed_term=True, term_length=12,
                          standing_charge=Decimal("45.0000"), unit_rate=Decimal("24.5000")),
            UtilityTariff(id=2, provider_id=2, name="Spark Flex", utility_type="electricity",
                          estimated_annual_cost=Decimal("1100.00")),
            UtilityTariff(id=3, provider_id=3, name="Paper Saver", utility_type="electricity",
                          estimated_annual_cost=Decimal("600.00")),
            UtilityTariff(id=4, provider_id=4, name="Aqua Standard", utility_type="water",
                          estimated_annual_cost=Decimal("300.00")),
            UtilityTariff(id=5, provider_id=2, name="Spark North West", utility_type="electricity",
                          estimated_annual_cost=Decimal("900.00"), region="M1 M2 M3"),
        ])


def _add_tariff(factory: sessionmaker, **values) -> None:
    with session_scope(factory) as db:
        db.add(UtilityTariff(**values))


def _force_contract_state(factory: sessionmaker, contract_id: int, **values) -> None:
    """Write contract columns directly, bypassing the state machine"""
    with session_scope(factory) as db:
        db.query(PropertyUtilityContract).filter(PropertyUtilityContract.id == contract_id).update(
            values, synchronize_session=False
        )


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """In-memory SQLite database seeded with reference data"""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    seed_reference_data(factory)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory: sessionmaker, clock: FakeClock) -> DatabaseStore:
    return DatabaseStore(session_factory, clock=clock)


@pytest.fixture
def gateway(clock: FakeClock) -> SimulatedProviderGateway:
    return SimulatedProviderGateway(clock=clock)


@pytest.fixture
def email_sender() -> AsyncMock:
    sender = AsyncMock()
    sender.send_completion_email = AsyncMock(return_value=None)
    return sender


def _build_engine(session_factory, gateway, email_sender, clock) -> SignupEngine:
    return build_signup_engine(
        config=TEST_SETTINGS,
        session_factory=session_factory,
        gateway=gateway,
        email_sender=email_sender,
        clock=clock,
    )


@pytest.fixture
async def engine(session_factory, gateway, email_sender, clock):
    """Fully wired engine; pending timers are cancelled on teardown"""
    engine = _build_engine(session_factory, gateway, email_sender, clock)
    try:
        yield engine
    finally:
        await engine.sweep.stop()
        await engine.scheduler.shutdown()


@pytest.fixture
def client(session_factory, gateway, email_sender, clock) -> TestClient:
    """FastAPI test client over the in-memory engine (lifespan not started)"""
    app = create_app(_build_engine(session_factory, gateway, email_sender, clock))
    return TestClient(app)


@pytest.fixture
def signup_data() -> TenantSignupData:
    return TenantSignupData(
        full_name="Alex Morgan",
        email="alex@example.com",
        phone_number="07700900123",
        date_of_birth="1994-03-18",
        previous_address="3 Old Street",
        previous_postcode="E1 6AN",
        tenancy_duration=12,
    )


@pytest.fixture
def signup_payload() -> dict:
    """Request body for POST /v1/utility/register"""
    return {
        "property_id": 1,
        "tenancy_id": 1,
        "utility_type": "electricity",
        "tenant_signup_data": {
            "full_name": "Alex Morgan",
            "email": "alex@example.com",
            "phone_number": "07700900123",
            "date_of_birth": "1994-03-18",
        },
    }


@pytest.fixture
def engine_factory(session_factory, gateway, email_sender, clock):
    """Build another engine over the same database, e.g. to simulate a restart"""
    return lambda: _build_engine(session_factory, gateway, email_sender, clock)


@pytest.fixture
def add_tariff(session_factory):
    """Publish an extra tariff: add_tariff(id=..., provider_id=..., ...)"""
    return lambda **values: _add_tariff(session_factory, **values)


@pytest.fixture
def force_contract_state(session_factory):
    """Overwrite contract columns: force_contract_state(contract_id, status=...)"""
    return lambda contract_id, **values: _force_contract_state(session_factory, contract_id, **values)
