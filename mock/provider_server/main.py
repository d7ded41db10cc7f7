import base64
import binascii
import os

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from utility_signup.domain.exceptions import ProviderGatewayFailure
from utility_signup.domain.models import Provider, TenantSignupData, UtilityType
from utility_signup.infrastructure.clients.provider import SimulatedProviderGateway

app = FastAPI(title="Mock Utility Provider", version="1.0.0")
gateway = SimulatedProviderGateway()
# Providers that refuse automated sign-ups, e.g. MOCK_MANUAL_PROVIDERS="3,7"
MANUAL_PROVIDERS = {int(p) for p in os.environ.get("MOCK_MANUAL_PROVIDERS", "").split(",") if p.strip()}


class SignupBody(BaseModel):
    provider_id: int
    tenant_id: int
    signup: dict


class DocumentBody(BaseModel):
    file_name: str
    content_base64: str


def _provider(provider_id: int) -> Provider:
    return Provider(
        id=provider_id,
        name=f"Provider {provider_id}",
        utility_type=UtilityType.ELECTRICITY,
        api_integration=provider_id not in MANUAL_PROVIDERS,
    )


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/signups")
async def create_signup(body: SignupBody):
    try:
        signup = TenantSignupData(**body.signup)
    except TypeError as e:
        raise HTTPException(status_code=422, detail=f"invalid signup data: {e}")
    receipt = await gateway.initiate_signup(_provider(body.provider_id), body.tenant_id, signup)
    if not receipt.accepted:
        raise HTTPException(status_code=422, detail=receipt.message)
    return {
        "reference_number": receipt.reference_number,
        "status": receipt.status,
        "estimated_completion_date": receipt.estimated_completion_date.isoformat(),
    }

@app.get("/signups/{reference_number}")
async def get_signup(reference_number: str):
    try:
        status = await gateway.poll_status(_provider(0), reference_number)
    except ProviderGatewayFailure:
        raise HTTPException(status_code=404, detail="application not found")
    return {"signal": status.signal.value, "message": status.message}

@app.post("/signups/{reference_number}/documents")
async def upload_document(reference_number: str, body: DocumentBody):
    try:
        document = base64.b64decode(body.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="content_base64 is not valid base64")
    try:
        await gateway.submit_document(_provider(0), reference_number, body.file_name, document)
    except ProviderGatewayFailure:
        raise HTTPException(status_code=404, detail="application not found")
    return {"status": "received", "size": len(document)}

@app.post("/signups/{reference_number}/reject")
def reject_signup(reference_number: str):
    gateway.reject(reference_number)
    return {"status": "rejected"}
