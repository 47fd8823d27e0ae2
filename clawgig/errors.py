"""
Error taxonomy. Every error carries a machine-checkable kind plus a human remediation.

ValidationError / AuthorizationError never reach the ledger. PreconditionError is retryable
after re-fetching the job. Ledger errors distinguish "the ledger said no" (LedgerRejection)
from "we do not know what the ledger did" (LedgerIndeterminate).
"""

from enum import Enum
from typing import Any, Dict, Optional


class ClawGigError(Exception):
    kind = "error"
    default_remediation = ""

    def __init__(self, message: str, remediation: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.remediation = remediation if remediation is not None else self.default_remediation
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "remediation": self.remediation, **self.details}


class ValidationError(ClawGigError):
    kind = "validation"
    default_remediation = "Fix the request input and resend."


class AuthorizationError(ClawGigError):
    kind = "authorization"
    default_remediation = "Sign the canonical message from the expected wallet and send the signature."


class PreconditionError(ClawGigError):
    kind = "precondition"
    default_remediation = "Re-fetch the job to see its current status, then retry if still applicable."


class NotFoundError(PreconditionError):
    kind = "not_found"
    default_remediation = "Check the identifier."


class JobNotFoundError(NotFoundError):
    default_remediation = "Check the job id."


class LedgerConfigurationError(ClawGigError):
    """Deployment mismatch detected before a release; never retried automatically."""

    kind = "ledger_configuration"
    default_remediation = (
        "Redeploy JobFactory and Escrow with the same deploy script (or call Escrow.setJobFactory "
        "with the coordinator's JobFactory if you own that Escrow), then set JOB_FACTORY_ADDRESS from that deploy."
    )

    def __init__(
        self,
        message: str,
        expected_address: Optional[str] = None,
        actual_address: Optional[str] = None,
        remediation: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(
            message,
            remediation=remediation,
            expected_address=expected_address,
            actual_address=actual_address,
            **details,
        )
        self.expected_address = expected_address
        self.actual_address = actual_address


class RevertReason(str, Enum):
    NO_DEPOSIT = "no_deposit"
    UNAUTHORIZED_CALLER = "unauthorized_caller"
    TRANSFER_REJECTED = "transfer_rejected"
    OTHER_REVERT = "other_revert"


REMEDIATION_HINTS = {
    RevertReason.NO_DEPOSIT: (
        "No bounty is escrowed for this job on the custody contract the JobFactory uses. "
        "Run the escrow transition first (operator wallet must hold the bounty)."
    ),
    RevertReason.UNAUTHORIZED_CALLER: (
        "The custody contract expects a different JobFactory (Unauthorized). "
        "Do not mix contracts from different deploys; run `clawgig check-escrow-link`."
    ),
    RevertReason.TRANSFER_REJECTED: (
        "The recipient rejected the transfer. Use an externally owned account, or a contract "
        "with a receive()/fallback() that accepts the native token."
    ),
    RevertReason.OTHER_REVERT: (
        "The ledger reverted the call. Check the job's on-chain status and the operator wallet balance, "
        "then re-fetch the job before retrying."
    ),
}


class LedgerError(ClawGigError):
    kind = "ledger"

    def __init__(self, message: str, tx_hash: Optional[str] = None, remediation: Optional[str] = None, **details: Any):
        super().__init__(message, remediation=remediation, tx_hash=tx_hash, **details)
        self.tx_hash = tx_hash


class LedgerRejection(LedgerError):
    """The ledger finalized the call as failed."""

    kind = "ledger_rejection"

    def __init__(
        self,
        message: str,
        reason: RevertReason = RevertReason.OTHER_REVERT,
        tx_hash: Optional[str] = None,
        remediation: Optional[str] = None,
        **details: Any,
    ):
        reason = RevertReason(reason)
        super().__init__(
            message,
            tx_hash=tx_hash,
            remediation=remediation if remediation is not None else REMEDIATION_HINTS[reason],
            reason=reason.value,
            **details,
        )
        self.reason = reason


class LedgerIndeterminate(LedgerError):
    """Network failure or timeout before finality was observed. Never treat as success."""

    kind = "ledger_indeterminate"
    default_remediation = (
        "The ledger outcome is unknown and the transaction may still land. "
        "Re-fetch the job (the read path reconciles against the ledger) before resubmitting."
    )


ERROR_CLASSES = {
    cls.kind: cls
    for cls in (
        ValidationError,
        AuthorizationError,
        PreconditionError,
        NotFoundError,
        LedgerConfigurationError,
        LedgerRejection,
        LedgerIndeterminate,
    )
}


def error_from_payload(payload: Dict[str, Any]) -> ClawGigError:
    """Rebuild an error from its to_dict() form (used by the HTTP client)."""
    data = dict(payload or {})
    kind = data.pop("error", "error")
    message = data.pop("message", "") or kind
    remediation = data.pop("remediation", None)
    cls = ERROR_CLASSES.get(kind, ClawGigError)
    if cls is LedgerRejection:
        reason = data.pop("reason", RevertReason.OTHER_REVERT.value)
        return LedgerRejection(message, reason=reason, remediation=remediation, **data)
    return cls(message, remediation=remediation, **data)
