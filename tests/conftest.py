"""
Pytest fixtures for ClawGig tests: in-memory ledger, mirror, event sink, keys and clock.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from web3 import Web3

from clawgig.config import CoordinatorConfig
from clawgig.coordinator import LifecycleCoordinator
from clawgig.errors import LedgerConfigurationError, LedgerIndeterminate, LedgerRejection, RevertReason
from clawgig.ledger.gateway import LedgerJobState, PostedJob, TxResult, TxStatus
from clawgig.messages import claim_message, escrow_message, post_message, submit_message, verify_message
from clawgig.notifier import JobEvent
from clawgig.schema import BountyToken, JobTerms, LedgerJobStatus, ReputationScore
from clawgig.store import InMemoryJobStore
from clawgig.wallet import AgentWallet

FACTORY_ADDRESS = Web3.to_checksum_address("0x" + "fa" * 20)
ESCROW_ADDRESS = Web3.to_checksum_address("0x" + "e5" * 20)
OTHER_FACTORY_ADDRESS = Web3.to_checksum_address("0x" + "0f" * 20)

ARBITER_KEY = "arbiter-secret"
REVIEW_PERIOD = timedelta(days=7)
DISPUTE_WINDOW = timedelta(hours=72)
START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _Failure:
    def __init__(self, exc: Exception, landed: bool):
        self.exc = exc
        self.landed = landed


class FakeLedger:
    """
    In-memory JobFactory + Escrow + Reputation.

    fail(name, exc) makes the next call to `name` raise exc; with landed=True the effect is
    applied first (a transaction that confirmed after the caller stopped waiting). An injected
    LedgerIndeterminate gets the transaction's hash; unless it landed, that transaction stays
    pending until drop(tx_hash).
    """

    def __init__(self, review_seconds: int = int(REVIEW_PERIOD.total_seconds())):
        self.identity = FACTORY_ADDRESS
        self.escrows: Dict[BountyToken, Optional[str]] = {BountyToken.MON: ESCROW_ADDRESS, BountyToken.USDC: None}
        self.linked_owner: Optional[str] = FACTORY_ADDRESS
        self.review_seconds = review_seconds
        self.ledger_time = int(START.timestamp())
        self.reputation_configured = True

        self.jobs: Dict[int, Dict[str, Any]] = {}
        self.deposits: Dict[int, int] = {}
        self.submitted_at: Dict[int, int] = {}
        self.payouts: List[Tuple[int, str, int]] = []
        self.refunds: List[Tuple[int, int]] = []
        self.reputation: List[Tuple[str, bool]] = []
        self.calls: List[Tuple[Any, ...]] = []
        self.transactions: Dict[str, TxStatus] = {}
        self.posted: Dict[str, PostedJob] = {}
        self.last_tx_hash: Optional[str] = None

        self._ids = itertools.count(1)
        self._tx = itertools.count(1)
        self._failures: Dict[str, List[_Failure]] = {}

    # --- test controls ---

    def fail(self, name: str, exc: Exception, landed: bool = False, times: int = 1) -> None:
        self._failures.setdefault(name, []).extend(_Failure(exc, landed) for _ in range(times))

    def advance(self, seconds: int) -> None:
        self.ledger_time += seconds

    def called(self, name: str) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    def drop(self, tx_hash: str) -> None:
        self.transactions.pop(tx_hash, None)

    def _next_failure(self, name: str) -> Optional[_Failure]:
        queued = self._failures.get(name)
        return queued.pop(0) if queued else None

    def _write(self, name: str, effect: Callable[[], Any], *args: Any) -> TxResult:
        self.calls.append((name,) + args)
        tx_hash = self.last_tx_hash = "0x%064x" % next(self._tx)
        failure = self._next_failure(name)
        if failure and not failure.landed:
            if isinstance(failure.exc, LedgerIndeterminate):
                self.transactions[tx_hash] = TxStatus.PENDING
            raise self._with_hash(failure.exc, tx_hash)
        effect()
        self.transactions[tx_hash] = TxStatus.CONFIRMED
        if failure:
            raise self._with_hash(failure.exc, tx_hash)
        return TxResult(tx_hash=tx_hash, block_number=len(self.calls))

    @staticmethod
    def _with_hash(exc: Exception, tx_hash: str) -> Exception:
        if isinstance(exc, LedgerIndeterminate) and exc.tx_hash is None:
            return LedgerIndeterminate(exc.message, tx_hash=tx_hash)
        return exc

    def _read(self, name: str) -> None:
        failure = self._next_failure(name)
        if failure:
            raise failure.exc

    def _require(self, job_id: int, *statuses: LedgerJobStatus) -> Dict[str, Any]:
        job = self.jobs.get(job_id)
        if job is None or job["status"] not in statuses:
            raise LedgerRejection(f"job {job_id} not in {[s.name for s in statuses]}")
        return job

    def _pay_out(self, job_id: int, recipients: List[str], amounts: List[int]) -> None:
        if self.linked_owner != self.identity:
            raise LedgerRejection("Unauthorized()", reason=RevertReason.UNAUTHORIZED_CALLER)
        if self.deposits.get(job_id, 0) <= 0:
            raise LedgerRejection("NoDeposit()", reason=RevertReason.NO_DEPOSIT)
        for recipient, amount in zip(recipients, amounts):
            self.payouts.append((job_id, recipient, amount))
        self.deposits[job_id] = 0
        self.jobs[job_id]["status"] = LedgerJobStatus.COMPLETED

    # --- writes ---

    def post_job(self, description_hash: str, bounty: int, deadline_seconds: int, token: BountyToken = BountyToken.MON):
        job_id = next(self._ids)

        def effect():
            self.jobs[job_id] = {"status": LedgerJobStatus.OPEN, "completer": None, "bounty": bounty, "token": token}
            self.posted[self.last_tx_hash] = PostedJob(
                job_id=job_id,
                tx_hash=self.last_tx_hash,
                description_hash=description_hash,
                bounty=bounty,
                deadline_seconds=deadline_seconds,
            )

        tx = self._write("post_job", effect, description_hash, bounty, deadline_seconds, token)
        return PostedJob(job_id=job_id, tx_hash=tx.tx_hash)

    def deposit(self, job_id: int, amount: int, token: BountyToken = BountyToken.MON) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.OPEN)
            self.deposits[job_id] = self.deposits.get(job_id, 0) + amount

        return self._write("deposit", effect, job_id, amount, token)

    def set_claimed(self, job_id: int, completer: str) -> TxResult:
        def effect():
            job = self._require(job_id, LedgerJobStatus.OPEN)
            job.update(status=LedgerJobStatus.CLAIMED, completer=completer)

        return self._write("set_claimed", effect, job_id, completer)

    def set_submitted(self, job_id: int) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.CLAIMED)["status"] = LedgerJobStatus.SUBMITTED
            self.submitted_at[job_id] = self.ledger_time

        return self._write("set_submitted", effect, job_id)

    def complete_and_release(self, job_id: int, completer: str) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.SUBMITTED)
            self._pay_out(job_id, [completer], [self.deposits.get(job_id, 0)])

        return self._write("complete_and_release", effect, job_id, completer)

    def complete_and_release_split(self, job_id: int, recipients: List[str], amounts: List[int]) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.SUBMITTED)
            if sum(amounts) != self.deposits.get(job_id, 0):
                raise LedgerRejection("split does not match deposit")
            self._pay_out(job_id, list(recipients), list(amounts))

        return self._write("complete_and_release_split", effect, job_id, list(recipients), list(amounts))

    def cancel_as_owner(self, job_id: int) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.OPEN, LedgerJobStatus.CLAIMED).update(
                status=LedgerJobStatus.CANCELLED, completer=None
            )

        return self._write("cancel_as_owner", effect, job_id)

    def mark_failed(self, job_id: int) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.SUBMITTED)["status"] = LedgerJobStatus.CANCELLED

        return self._write("mark_failed", effect, job_id)

    def refund_to_issuer(self, job_id: int) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.CANCELLED)
            amount = self.deposits.get(job_id, 0)
            if amount <= 0:
                raise LedgerRejection("NoDeposit()", reason=RevertReason.NO_DEPOSIT)
            self.refunds.append((job_id, amount))
            self.deposits[job_id] = 0

        return self._write("refund_to_issuer", effect, job_id)

    def reject_and_reopen(self, job_id: int) -> TxResult:
        def effect():
            self._require(job_id, LedgerJobStatus.SUBMITTED).update(status=LedgerJobStatus.OPEN, completer=None)
            self.submitted_at.pop(job_id, None)

        return self._write("reject_and_reopen", effect, job_id)

    def release_after_timeout(self, job_id: int) -> TxResult:
        def effect():
            job = self._require(job_id, LedgerJobStatus.SUBMITTED)
            if self.ledger_time < self.submitted_at.get(job_id, 0) + self.review_seconds:
                raise LedgerRejection("review period not elapsed")
            self._pay_out(job_id, [job["completer"]], [self.deposits.get(job_id, 0)])

        return self._write("release_after_timeout", effect, job_id)

    def record_completion(self, address: str, success: bool) -> TxResult:
        def effect():
            if not self.reputation_configured:
                raise LedgerConfigurationError("Reputation contract not configured")
            self.reputation.append((address, success))

        return self._write("record_completion", effect, address, success)

    # --- reads ---

    def get_escrow_address(self, token: BountyToken = BountyToken.MON) -> Optional[str]:
        self._read("get_escrow_address")
        return self.escrows.get(token)

    def get_deposit_amount(self, job_id: int, escrow_address: str) -> int:
        self._read("get_deposit_amount")
        return self.deposits.get(job_id, 0)

    def get_linked_owner(self, escrow_address: str) -> Optional[str]:
        self._read("get_linked_owner")
        return self.linked_owner

    def get_submitted_at(self, job_id: int) -> int:
        self._read("get_submitted_at")
        return self.submitted_at.get(job_id, 0)

    def get_ledger_time(self) -> int:
        self._read("get_ledger_time")
        return self.ledger_time

    def get_job_state(self, job_id: int) -> LedgerJobState:
        self._read("get_job_state")
        job = self.jobs[job_id]
        return LedgerJobState(job_id=job_id, status=job["status"], completer=job["completer"])

    def get_reputation_score(self, address: str) -> Optional[ReputationScore]:
        if not self.reputation_configured:
            return None
        completed = sum(1 for a, ok in self.reputation if a.lower() == address.lower() and ok)
        return ReputationScore(completed=completed, success_total=completed, tier=1 if completed else 0)

    def get_transaction_status(self, tx_hash: str) -> TxStatus:
        self._read("get_transaction_status")
        return self.transactions.get(tx_hash, TxStatus.UNKNOWN)

    def find_posted_job(self, tx_hash: str) -> Optional[PostedJob]:
        self._read("find_posted_job")
        if self.transactions.get(tx_hash) is not TxStatus.CONFIRMED:
            return None
        return self.posted.get(tx_hash)


class RecordingSink:
    def __init__(self):
        self.events: List[JobEvent] = []

    def publish(self, event: JobEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.type.value for e in self.events]


class Clock:
    """Controllable server clock; call it to read the time."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class JobFlow:
    """Drives a job through the happy path with correctly signed messages."""

    def __init__(self, coordinator: LifecycleCoordinator, clock: Clock, issuer: AgentWallet, completer: AgentWallet):
        self.coordinator = coordinator
        self.clock = clock
        self.issuer = issuer
        self.completer = completer

    def post(self, bounty: int = 100, deadline: timedelta = timedelta(days=1), description: str = "Summarize this paper"):
        terms = JobTerms(description=description, bounty=bounty, deadline=self.clock() + deadline)
        result = self.coordinator.post(terms, self.issuer.address, self.issuer.sign(post_message(self.issuer.address)))
        return result.job_id

    def escrow(self, job_id: int, amount: Optional[int] = None):
        return self.coordinator.escrow(job_id, amount, self.issuer.sign(escrow_message(job_id)))

    def claim(self, job_id: int, completer: Optional[AgentWallet] = None):
        completer = completer or self.completer
        signature = completer.sign(claim_message(job_id, completer.address))
        return self.coordinator.claim(job_id, completer.address, signature)

    def submit(self, job_id: int, reference: str = "X"):
        signature = self.completer.sign(submit_message(job_id, self.completer.address, reference))
        return self.coordinator.submit(job_id, reference, self.completer.address, signature)

    def verify(self, job_id: int, approved: bool, reopen: bool = False, split=None, signer: Optional[AgentWallet] = None):
        signature = (signer or self.issuer).sign(verify_message(job_id, approved, reopen))
        return self.coordinator.verify(job_id, approved, split=split, reopen=reopen, signature=signature)

    def submitted(self, bounty: int = 100) -> int:
        job_id = self.post(bounty=bounty)
        self.escrow(job_id)
        self.claim(job_id)
        self.submit(job_id)
        return job_id

    def rejected(self, bounty: int = 100) -> int:
        job_id = self.submitted(bounty)
        self.verify(job_id, approved=False)
        return job_id


@pytest.fixture
def issuer():
    return AgentWallet.from_key("0x" + "11" * 32)


@pytest.fixture
def completer():
    return AgentWallet.from_key("0x" + "22" * 32)


@pytest.fixture
def stranger():
    return AgentWallet.from_key("0x" + "33" * 32)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def config():
    return CoordinatorConfig(arbiter_api_key=ARBITER_KEY, dispute_window=DISPUTE_WINDOW, review_period=REVIEW_PERIOD)


@pytest.fixture
def coordinator(ledger, store, config, sink, clock):
    return LifecycleCoordinator(ledger, store, config, sink=sink, clock=clock, chain_id=10143)


@pytest.fixture
def flow(coordinator, clock, issuer, completer):
    return JobFlow(coordinator, clock, issuer, completer)
