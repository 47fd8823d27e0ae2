"""
Ledger gateway protocol: the narrow transition + query surface the coordinator consumes.

Every mutating call either returns a TxResult (finalized success), raises LedgerRejection
(finalized failure) or raises LedgerIndeterminate (outcome not observed).
"""

from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel

from clawgig.schema import BountyToken, LedgerJobStatus, ReputationScore


class TxResult(BaseModel):
    tx_hash: str
    block_number: Optional[int] = None


class PostedJob(BaseModel):
    job_id: int
    tx_hash: str
    # From the JobPosted event, when read back from a receipt.
    description_hash: Optional[str] = None
    bounty: Optional[int] = None
    deadline_seconds: Optional[int] = None


class TxStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"  # never seen, or dropped from the mempool


class LedgerJobState(BaseModel):
    job_id: int
    status: LedgerJobStatus
    completer: Optional[str] = None


class LedgerGateway(Protocol):
    @property
    def identity(self) -> str:
        """Address a custody contract must be linked to (the JobFactory)."""
        ...

    # --- writes ---
    def post_job(
        self, description_hash: str, bounty: int, deadline_seconds: int, token: BountyToken = BountyToken.MON
    ) -> PostedJob:
        ...

    def deposit(self, job_id: int, amount: int, token: BountyToken = BountyToken.MON) -> TxResult:
        ...

    def set_claimed(self, job_id: int, completer: str) -> TxResult:
        ...

    def set_submitted(self, job_id: int) -> TxResult:
        ...

    def complete_and_release(self, job_id: int, completer: str) -> TxResult:
        ...

    def complete_and_release_split(self, job_id: int, recipients: List[str], amounts: List[int]) -> TxResult:
        ...

    def cancel_as_owner(self, job_id: int) -> TxResult:
        ...

    def mark_failed(self, job_id: int) -> TxResult:
        ...

    def refund_to_issuer(self, job_id: int) -> TxResult:
        ...

    def reject_and_reopen(self, job_id: int) -> TxResult:
        ...

    def release_after_timeout(self, job_id: int) -> TxResult:
        ...

    def record_completion(self, address: str, success: bool) -> TxResult:
        ...

    # --- reads ---
    def get_escrow_address(self, token: BountyToken = BountyToken.MON) -> Optional[str]:
        ...

    def get_deposit_amount(self, job_id: int, escrow_address: str) -> int:
        ...

    def get_linked_owner(self, escrow_address: str) -> Optional[str]:
        ...

    def get_submitted_at(self, job_id: int) -> int:
        """Ledger-recorded submission time (unix seconds); 0 if never submitted."""
        ...

    def get_ledger_time(self) -> int:
        """Timestamp of the latest block (unix seconds)."""
        ...

    def get_job_state(self, job_id: int) -> LedgerJobState:
        ...

    def get_reputation_score(self, address: str) -> Optional[ReputationScore]:
        ...

    def get_transaction_status(self, tx_hash: str) -> TxStatus:
        ...

    def find_posted_job(self, tx_hash: str) -> Optional[PostedJob]:
        """The job a confirmed postJob transaction created; None while the receipt is not available."""
        ...
