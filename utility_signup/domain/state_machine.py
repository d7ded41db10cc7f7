"""Registration state machine - allowed status transitions and the caller-facing status view"""

from typing import Dict, FrozenSet

from utility_signup.domain.models import ContractStatus, RegistrationStatus, SignupProgressUpdate, UtilityContract

TERMINAL_STATUSES: FrozenSet[ContractStatus] = frozenset(
    {ContractStatus.ACTIVE, ContractStatus.FAILED, ContractStatus.CANCELLED, ContractStatus.EXPIRED}
)

_ABANDON = {ContractStatus.FAILED, ContractStatus.CANCELLED, ContractStatus.EXPIRED}

TRANSITIONS: Dict[ContractStatus, FrozenSet[ContractStatus]] = {
    ContractStatus.PENDING: frozenset({ContractStatus.IN_PROGRESS} | _ABANDON),
    ContractStatus.IN_PROGRESS: frozenset({ContractStatus.BLOCKED, ContractStatus.ACTIVE} | _ABANDON),
    ContractStatus.BLOCKED: frozenset({ContractStatus.IN_PROGRESS} | _ABANDON),
    ContractStatus.ACTIVE: frozenset(),
    ContractStatus.FAILED: frozenset(),
    ContractStatus.CANCELLED: frozenset(),
    ContractStatus.EXPIRED: frozenset(),
}

UPLOAD_AGREEMENT_MESSAGE = "Please upload a copy of the tenancy agreement to proceed."
CONTACT_SUPPORT_MESSAGE = "Please contact support to restart the registration process."


def can_transition(current: str, target: ContractStatus) -> bool:
    try:
        return target in TRANSITIONS[ContractStatus(current)]
    except ValueError:
        return False


def sources_for(target: ContractStatus) -> FrozenSet[ContractStatus]:
    """Statuses from which `target` may be entered"""
    return frozenset(source for source, targets in TRANSITIONS.items() if target in targets)


def is_terminal(status: str) -> bool:
    try:
        return ContractStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


def to_progress_update(contract: UtilityContract) -> SignupProgressUpdate:
    """
    Map the stored contract status onto the caller-facing registration status.

    Never raises for an existing contract: unknown stored values degrade to a
    "status unknown" message that asks the caller to contact support.
    """
    status = getattr(contract.status, "value", contract.status)
    if status == ContractStatus.PENDING:
        return SignupProgressUpdate(
            contract.id,
            RegistrationStatus.PENDING,
            "Registration pending. Waiting to initiate with provider.",
        )
    if status == ContractStatus.IN_PROGRESS:
        message = contract.status_message or "Registration in progress with utility provider."
        if contract.manual_completion:
            message = "Registration in progress. Our team is completing this sign-up with the provider manually."
        return SignupProgressUpdate(contract.id, RegistrationStatus.IN_PROGRESS, message)
    if status == ContractStatus.BLOCKED:
        return SignupProgressUpdate(
            contract.id,
            RegistrationStatus.VERIFICATION_REQUIRED,
            "Registration blocked. Verification document required.",
            action_required=True,
            action_message=contract.action_message or UPLOAD_AGREEMENT_MESSAGE,
        )
    if status == ContractStatus.ACTIVE:
        return SignupProgressUpdate(
            contract.id,
            RegistrationStatus.COMPLETED,
            "Registration complete. Service is active.",
        )
    if status == ContractStatus.FAILED:
        reason = contract.failure_reason or "unknown error"
        return SignupProgressUpdate(
            contract.id,
            RegistrationStatus.FAILED,
            f"Registration failed: {reason}",
            action_required=True,
            action_message=CONTACT_SUPPORT_MESSAGE,
        )
    if status in (ContractStatus.CANCELLED, ContractStatus.EXPIRED):
        return SignupProgressUpdate(
            contract.id,
            RegistrationStatus.FAILED,
            f"Registration {status}. Please contact support.",
            action_required=True,
            action_message=CONTACT_SUPPORT_MESSAGE,
        )
    return SignupProgressUpdate(
        contract.id,
        RegistrationStatus.PENDING,
        "Registration status unknown. Please contact support.",
        action_required=True,
        action_message="Please contact support to check registration status.",
    )
