"""
Job, agent and result schema for the escrow-backed job board.

Contract: Issuer posts Job (ledger assigns job_id) → Completer claims → Completer submits
artifact → Issuer verifies → funds release (or reopen / rejection window / refund).
The mirror record below is subordinate to the ledger for anything involving funds.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    OPEN = "open"
    CLAIMED = "claimed"
    SUBMITTED = "submitted"
    REJECTED_PENDING_DISPUTE = "rejected_pending_dispute"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses in which a completer must be bound (and in no others).
COMPLETER_BOUND_STATUSES = frozenset(
    {
        JobStatus.CLAIMED,
        JobStatus.SUBMITTED,
        JobStatus.REJECTED_PENDING_DISPUTE,
        JobStatus.DISPUTED,
        JobStatus.COMPLETED,
    }
)


class BountyToken(str, Enum):
    """Settlement asset. Value on the ledger is the uint8 token type."""

    MON = "MON"
    USDC = "USDC"

    @property
    def ledger_code(self) -> int:
        return 0 if self is BountyToken.MON else 1


class LedgerJobStatus(int, Enum):
    """JobFactory.getJob().status_ as stored on-chain."""

    OPEN = 0
    CLAIMED = 1
    SUBMITTED = 2
    COMPLETED = 3
    CANCELLED = 4


class Intent(str, Enum):
    """Ledger-backed transitions that can be in flight on a job (Job.pending_transition)."""

    ESCROW = "escrow"
    CLAIM = "claim"
    SUBMIT = "submit"
    RELEASE = "release"
    REOPEN = "reopen"
    CANCEL = "cancel"
    EXPIRE = "expire"
    FINALIZE = "finalize"
    RESOLVE_RELEASE = "resolve_release"
    RESOLVE_REFUND = "resolve_refund"
    TIMEOUT_RELEASE = "timeout_release"


class JobTerms(BaseModel):
    """What the issuer asks for when posting."""

    description: str = Field(..., description="Free-text task description (kept off-ledger)")
    bounty: int = Field(..., description="Bounty in the token's smallest unit (wei)")
    deadline: datetime = Field(..., description="Timezone-aware deadline")
    bounty_token: BountyToken = Field(BountyToken.MON, description="Settlement asset")


class Job(BaseModel):
    """Mirror record for one ledger job."""

    model_config = ConfigDict(use_enum_values=False)

    job_id: int = Field(..., gt=0, description="Assigned by the ledger at creation")
    issuer: str = Field(..., description="Checksummed issuer address")
    completer: Optional[str] = Field(None, description="Bound on claim, cleared on reopen")
    description_hash: str = Field(..., description="keccak256 of the description (0x hex)")
    description: Optional[str] = None
    bounty: int = Field(..., gt=0)
    bounty_token: BountyToken = BountyToken.MON
    deadline: datetime
    artifact_reference: Optional[str] = Field(None, description="e.g. IPFS hash of submitted work")
    status: JobStatus = JobStatus.OPEN

    submitted_at: Optional[datetime] = Field(None, description="Mirror time of submission (informational)")
    rejected_at: Optional[datetime] = None
    dispute_deadline: Optional[datetime] = None
    disputed_at: Optional[datetime] = None

    tx_hash: Optional[str] = Field(None, description="Creation transaction")
    chain_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Write-ahead intent for ledger-backed transitions; see LifecycleCoordinator.
    version: int = 0
    pending_transition: Optional[str] = None
    pending_since: Optional[datetime] = None
    pending_patch: Optional[Dict[str, Any]] = Field(None, description="Mirror patch applied once the ledger confirms")
    pending_tx_hash: Optional[str] = Field(None, description="Broadcast transaction whose outcome is not yet known")
    needs_reconcile: bool = False

    @model_validator(mode="after")
    def _completer_matches_status(self) -> "Job":
        bound = self.completer is not None
        if bound != (self.status in COMPLETER_BOUND_STATUSES):
            raise ValueError(
                f"completer must be set iff status is one of "
                f"{sorted(s.value for s in COMPLETER_BOUND_STATUSES)} (status={self.status.value}, completer={self.completer})"
            )
        return self

    def is_expired(self, now: datetime) -> bool:
        return self.status is JobStatus.OPEN and self.deadline < now

    def needs_action_by(self, address: str) -> bool:
        """Issuer has work to review, or completer has a rejection to answer."""
        address = address.lower()
        if self.issuer.lower() == address and self.status is JobStatus.SUBMITTED:
            return True
        return (self.completer or "").lower() == address and self.status in (
            JobStatus.REJECTED_PENDING_DISPUTE,
            JobStatus.DISPUTED,
        )


class JobView(Job):
    """Job as returned by read paths, with flags computed at read time."""

    expired: bool = False
    needs_action: Optional[bool] = None

    @classmethod
    def of(cls, job: Job, now: datetime, viewer: Optional[str] = None) -> "JobView":
        return cls(
            **job.model_dump(),
            expired=job.is_expired(now),
            needs_action=job.needs_action_by(viewer) if viewer else None,
        )


class SplitShare(BaseModel):
    """One recipient of a split payout: either a percent or an exact amount, never both."""

    address: str
    percent: Optional[int] = Field(None, ge=0, le=100)
    amount: Optional[int] = Field(None, ge=0, description="Exact amount in smallest unit")


class ReputationScore(BaseModel):
    completed: int
    success_total: int
    tier: int = Field(..., description="0=none, 1=bronze, 2=silver, 3=gold")

    @property
    def tier_name(self) -> str:
        return {0: "none", 1: "bronze", 2: "silver", 3: "gold"}.get(self.tier, "none")


class Agent(BaseModel):
    """Registered participant: address only, never keys."""

    address: str
    display_name: str = "OpenClaw Agent"
    created_at: Optional[datetime] = None


class TransitionResult(BaseModel):
    """What a coordinator transition returns to the transport layer."""

    job_id: int
    status: JobStatus
    tx_hash: Optional[str] = Field(None, description="Last ledger transaction of the transition, if any")
    extra: Dict[str, Any] = Field(default_factory=dict)
