"""SQLAlchemy ORM models for the utility sign-up tables"""

from sqlalchemy import Column, String, Boolean, DateTime, Date, Integer, ForeignKey, Text, JSON, Numeric
from sqlalchemy.orm import declarative_base, relationship

from utility_signup.utils.date_utils import utcnow

Base = declarative_base()


class PropertyRecord(Base):
    """Rental property (read-only for the engine)"""

    __tablename__ = "properties"

    id = Column(Integer, primary_key=True)
    address = Column(Text, nullable=False)
    city = Column(Text, nullable=False)
    postcode = Column(String(16), nullable=False)
    bills_included = Column(Boolean, nullable=False, default=False)


class TenancyRecord(Base):
    __tablename__ = "tenancies"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False)


class ApplicationRecord(Base):
    """Tenant application for a property; the approved one names the tenant"""

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(Text, nullable=False, default="pending")


class AdminBankingDetails(Base):
    """Banking record used to pay providers"""

    __tablename__ = "admin_banking_details"

    id = Column(Integer, primary_key=True)
    account_name = Column(Text, nullable=False)
    account_number = Column(Text, nullable=False)
    sort_code = Column(Text, nullable=False)
    bank_name = Column(Text, nullable=False)
    reference = Column(Text, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UtilityProvider(Base):
    __tablename__ = "utility_providers"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    utility_type = Column(String(16), nullable=False, index=True)
    website = Column(Text, nullable=True)
    customer_service_phone = Column(Text, nullable=True)
    customer_service_email = Column(Text, nullable=True)
    api_integration = Column(Boolean, nullable=False, default=False)
    api_endpoint = Column(Text, nullable=True)
    api_key = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    tariffs = relationship("UtilityTariff", back_populates="provider")


class UtilityTariff(Base):
    """Published tariff; rows are never updated, superseded tariffs just expire"""

    __tablename__ = "utility_tariffs"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("utility_providers.id"), nullable=False)
    name = Column(Text, nullable=False)
    utility_type = Column(String(16), nullable=False, index=True)
    fixed_term = Column(Boolean, nullable=False, default=False)
    term_length = Column(Integer, nullable=True)  # months
    early_exit_fee = Column(Numeric(10, 2), nullable=True)
    standing_charge = Column(Numeric(10, 4), nullable=True)  # pence per day
    unit_rate = Column(Numeric(10, 4), nullable=True)  # pence per kWh/unit
    estimated_annual_cost = Column(Numeric(10, 2), nullable=True)
    green_energy = Column(Boolean, nullable=False, default=False)
    special_offers = Column(JSON, nullable=False, default=list)
    region = Column(Text, nullable=True)
    available_from = Column(DateTime(timezone=True), nullable=True)
    available_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    provider = relationship("UtilityProvider", back_populates="tariffs")


class PropertyUtilityContract(Base):
    """Utility service registration for a tenancy"""

    __tablename__ = "property_utility_contracts"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    tenancy_id = Column(Integer, ForeignKey("tenancies.id"), nullable=False)
    utility_type = Column(String(16), nullable=False)
    provider_id = Column(Integer, ForeignKey("utility_providers.id"), nullable=False)
    tariff_id = Column(Integer, ForeignKey("utility_tariffs.id"), nullable=True)
    banking_details_id = Column(Integer, ForeignKey("admin_banking_details.id"), nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    monthly_payment_amount = Column(Numeric(10, 2), nullable=False, default=0)
    deposit_paid = Column(Boolean, nullable=False, default=False)
    payment_method = Column(Text, nullable=True)
    auto_renewal = Column(Boolean, nullable=False, default=False)
    tenancy_agreement_uploaded = Column(Boolean, nullable=False, default=False)
    tenancy_agreement_file_name = Column(Text, nullable=True)
    ai_processed = Column(Boolean, nullable=False, default=True)
    best_deal_available = Column(Boolean, nullable=False, default=True)
    last_deal_check = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=False, default="")

    # Registration workflow
    provider_reference = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    manual_completion = Column(Boolean, nullable=False, default=False)
    status_message = Column(Text, nullable=True)
    action_required = Column(Boolean, nullable=False, default=False)
    action_message = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    next_check_at = Column(DateTime(timezone=True), nullable=True, index=True)
    poll_failures = Column(Integer, nullable=False, default=0)
    completion_notified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UtilityPriceComparison(Base):
    """Snapshot of ranked tariffs saved when a cheaper deal is found"""

    __tablename__ = "utility_price_comparisons"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    utility_type = Column(String(16), nullable=False)
    search_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    results = Column(JSON, nullable=False, default=list)
    implementation_status = Column(Text, nullable=False, default="pending")
