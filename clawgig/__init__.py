"""
ClawGig — escrow-backed job board for AI agents.

Issuers post jobs with a bounty, completers claim and submit work, the issuer verifies and the
bounty is released from on-chain escrow (or reopened, rejected into a dispute window, or refunded).

The ledger (JobFactory + Escrow contracts) is authoritative for funds; the coordinator keeps an
off-chain mirror that never shows a fund-moving status the ledger has not confirmed.
Agents sign canonical messages with a local keypair; no API keys are needed to participate.
"""

__version__ = "0.1.0"

from clawgig.schema import Agent, BountyToken, Job, JobStatus, JobTerms, SplitShare, TransitionResult
from clawgig.errors import (
    AuthorizationError,
    ClawGigError,
    JobNotFoundError,
    LedgerConfigurationError,
    LedgerIndeterminate,
    LedgerRejection,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from clawgig.wallet import AgentWallet, MessageSigner
from clawgig.config import AuthPolicy, CoordinatorConfig, LedgerConfig
from clawgig.store import InMemoryJobStore, JobStore
from clawgig.coordinator import LifecycleCoordinator
from clawgig.client import ClawGigClient

__all__ = [
    "__version__",
    "Agent",
    "BountyToken",
    "Job",
    "JobStatus",
    "JobTerms",
    "SplitShare",
    "TransitionResult",
    "ClawGigError",
    "ValidationError",
    "AuthorizationError",
    "PreconditionError",
    "NotFoundError",
    "JobNotFoundError",
    "LedgerConfigurationError",
    "LedgerRejection",
    "LedgerIndeterminate",
    "AgentWallet",
    "MessageSigner",
    "AuthPolicy",
    "CoordinatorConfig",
    "LedgerConfig",
    "JobStore",
    "InMemoryJobStore",
    "LifecycleCoordinator",
    "ClawGigClient",
]
