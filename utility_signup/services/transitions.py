"""Status changes with the bookkeeping every caller needs"""

from datetime import datetime
from typing import Any, Optional

from utility_signup.domain.models import ContractStatus, UtilityContract
from utility_signup.domain.ports import ContractStore
from utility_signup.infrastructure.observability.logging import log_transition
from utility_signup.infrastructure.observability.metrics import record_transition


def append_note(existing: str, text: str, at: datetime) -> str:
    line = f"[{at.strftime('%Y-%m-%d %H:%M')}] {text}"
    return f"{existing}\n{line}" if existing else line


def transition(
    store: ContractStore,
    contract: UtilityContract,
    target: ContractStatus,
    reason: Optional[str] = None,
    **fields: Any,
) -> UtilityContract:
    """
    Move `contract` to `target` through the store's compare-and-set.

    Raises:
        InvalidTransition: the stored status changed underneath us or never allowed `target`
    """
    from_status = getattr(contract.status, "value", contract.status)
    updated = store.transition_status(contract.id, target, **fields)
    record_transition(from_status, target.value)
    log_transition(contract.id, from_status, target.value, reason)
    return updated
