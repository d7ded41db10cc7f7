"""/v1/utility - registration, monitoring and deal sweep endpoints"""

import base64
import binascii
import logging
import time
from fastapi import APIRouter, Depends, HTTPException, Request

from utility_signup.api.v1.schemas import (
    CancelRequest,
    ContractSummary,
    PropertyContractsResponse,
    RegistrationRequest,
    RegistrationResponse,
    ResolveRequest,
    StatusResponse,
    SweepResponse,
    TenancyContractsResponse,
    UploadAgreementRequest,
    UploadResponse,
)
from utility_signup.api.dependencies import get_engine, get_orchestrator, get_request_id
from utility_signup.domain.exceptions import (
    ContractNotFound,
    DomainException,
    InvalidTransition,
    InvalidUtilityType,
    NoBankingDetails,
    NoEligibleTariff,
    NotAwaitingVerification,
    PropertyNotFound,
)
from utility_signup.domain.models import SignupProgressUpdate, UtilityContract
from utility_signup.services.engine import SignupEngine
from utility_signup.services.registration import RegistrationOrchestrator

router = APIRouter(prefix="/utility")

STATUS_CODES = {
    InvalidUtilityType: 400,
    PropertyNotFound: 404,
    ContractNotFound: 404,
    NotAwaitingVerification: 409,
    InvalidTransition: 409,
    NoEligibleTariff: 422,
    NoBankingDetails: 422,
}


def _http_error(e: DomainException, request_id: str) -> HTTPException:
    status_code = next((code for exc_type, code in STATUS_CODES.items() if isinstance(e, exc_type)), 500)
    if status_code == 500:
        logging.error(f"Unexpected domain error: {e}", extra={"request_id": request_id})
        return HTTPException(status_code=500, detail="Internal server error")
    logging.warning(f"Request rejected: {e}", extra={"request_id": request_id, "status_code": status_code})
    return HTTPException(status_code=status_code, detail=str(e))


def _status_response(update: SignupProgressUpdate) -> StatusResponse:
    return StatusResponse(
        contract_id=update.contract_id,
        status=update.status.value,
        status_message=update.status_message,
        action_required=update.action_required,
        action_message=update.action_message,
    )


def _contract_summary(c: UtilityContract) -> ContractSummary:
    return ContractSummary(
        contract_id=c.id,
        utility_type=getattr(c.utility_type, "value", c.utility_type),
        status=getattr(c.status, "value", c.status),
        provider_id=c.provider_id,
        tariff_id=c.tariff_id,
        monthly_payment_amount=c.monthly_payment_amount,
        best_deal_available=c.best_deal_available,
        last_deal_check=c.last_deal_check,
        created_at=c.created_at,
    )


@router.post("/register", response_model=RegistrationResponse, status_code=201)
async def register(
    request_body: RegistrationRequest,
    request: Request,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    """
    Start automated registration for a tenancy.

    Flow:
    1. Pick the cheapest eligible tariff for the property
    2. Create the contract and lodge the application with the provider
    3. Return the contract id; progress is reported by GET /status/{id}
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        contract_id = await orchestrator.start(
            property_id=request_body.property_id,
            tenancy_id=request_body.tenancy_id,
            utility_type=request_body.utility_type,
            signup_data=request_body.tenant_signup_data.to_domain(),
            banking_details_id=request_body.banking_details_id,
        )
    except DomainException as e:
        raise _http_error(e, request_id)

    logging.info(
        "Registration request handled",
        extra={
            "request_id": request_id,
            "contract_id": contract_id,
            "duration_ms": (time.time() - start_time) * 1000,
        },
    )
    return RegistrationResponse(
        success=True,
        message="Utility registration initiated successfully",
        contract_id=contract_id,
    )


@router.get("/status/{contract_id}", response_model=StatusResponse)
def get_status(
    contract_id: int,
    request: Request,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    try:
        return _status_response(orchestrator.get_registration_status(contract_id))
    except DomainException as e:
        raise _http_error(e, get_request_id(request))


@router.post("/upload-agreement/{contract_id}", response_model=UploadResponse)
async def upload_agreement(
    contract_id: int,
    request_body: UploadAgreementRequest,
    request: Request,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    """Accept a base64-encoded tenancy agreement for a contract blocked on verification"""
    request_id = get_request_id(request)
    try:
        document = base64.b64decode(request_body.document_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="document_base64 is not valid base64")

    try:
        result = await orchestrator.upload_verification_document(contract_id, document, request_body.file_name)
    except DomainException as e:
        raise _http_error(e, request_id)

    if not result.success:
        raise HTTPException(status_code=503, detail=result.message)
    return UploadResponse(success=result.success, message=result.message)


@router.post("/check-status/{contract_id}", response_model=StatusResponse)
async def check_status(
    contract_id: int,
    request: Request,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    """Poll the provider now instead of waiting for the next scheduled check"""
    try:
        return _status_response(await orchestrator.trigger_manual_status_check(contract_id))
    except DomainException as e:
        raise _http_error(e, get_request_id(request))


@router.post("/cancel/{contract_id}", response_model=StatusResponse)
async def cancel(
    contract_id: int,
    request: Request,
    request_body: CancelRequest = CancelRequest(),
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    try:
        return _status_response(await orchestrator.cancel(contract_id, request_body.reason))
    except DomainException as e:
        raise _http_error(e, get_request_id(request))


@router.post("/resolve/{contract_id}", response_model=StatusResponse)
async def resolve(
    contract_id: int,
    request_body: ResolveRequest,
    request: Request,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    """Record the outcome of a registration completed outside the provider API"""
    try:
        update = await orchestrator.resolve_manually(contract_id, request_body.approved, request_body.note)
    except DomainException as e:
        raise _http_error(e, get_request_id(request))
    return _status_response(update)


@router.get("/contracts/property/{property_id}", response_model=PropertyContractsResponse)
def list_property_contracts(
    property_id: int,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    contracts = orchestrator.list_contracts_for_property(property_id)
    return PropertyContractsResponse(property_id=property_id, contracts=[_contract_summary(c) for c in contracts])


@router.get("/contracts/tenancy/{tenancy_id}", response_model=TenancyContractsResponse)
def list_tenancy_contracts(
    tenancy_id: int,
    orchestrator: RegistrationOrchestrator = Depends(get_orchestrator),
):
    contracts = orchestrator.list_contracts_for_tenancy(tenancy_id)
    return TenancyContractsResponse(tenancy_id=tenancy_id, contracts=[_contract_summary(c) for c in contracts])


@router.post("/deal-sweep", response_model=SweepResponse)
async def run_deal_sweep(engine: SignupEngine = Depends(get_engine)):
    """Run one deal re-evaluation pass now"""
    report = await engine.sweep.run_once()
    return SweepResponse(
        checked=report.checked,
        skipped_fresh=report.skipped_fresh,
        better_deal_found=report.better_deal_found,
        failed=report.failed,
    )
