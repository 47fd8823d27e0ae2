"""
Lifecycle coordinator: the job state machine.

Every transition runs in the same order: load (reconciling any stale intent), check the
precondition status, check the signature, record intent with a compare-and-swap on
(status, version), call the ledger, then commit the new status with a second compare-and-swap.
The mirror never shows a fund-moving status before the ledger has confirmed it.

Intent outcomes:
  ledger success        -> commit the pending patch, clear the intent
  ledger said no        -> clear the intent, status unchanged
  outcome unknown       -> keep the intent, needs_reconcile=True; the next read settles it
  closed, refund failed -> intent becomes "<kind>:refund_pending"; re-running the same
                           transition skips the close and only refunds
"""

import logging
from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from web3 import Web3

from clawgig.config import CoordinatorConfig
from clawgig.disputes import DisputeMixin
from clawgig.errors import (
    AuthorizationError,
    ClawGigError,
    JobNotFoundError,
    LedgerConfigurationError,
    LedgerIndeterminate,
    LedgerRejection,
    PreconditionError,
    RevertReason,
    ValidationError,
)
from clawgig.ledger.gateway import LedgerGateway, PostedJob, TxResult, TxStatus
from clawgig.messages import (
    TransitionKind,
    cancel_message,
    claim_message,
    escrow_message,
    expire_message,
    post_message,
    submit_message,
    verify_message,
)
from clawgig.notifier import EventSink, EventType, JobEvent, NullEventSink, publish_safely
from clawgig.payouts import compute_split
from clawgig.schema import (
    BountyToken,
    Intent,
    Job,
    JobStatus,
    JobTerms,
    JobView,
    LedgerJobStatus,
    SplitShare,
    TransitionResult,
)
from clawgig.signatures import verify_signature
from clawgig.store import ROLES, JobStore
from clawgig.validation import (
    normalize_address,
    short_address,
    validate_artifact_reference,
    validate_bounty,
    validate_deadline,
    validate_description,
    validate_token,
    validate_tx_hash,
)

logger = logging.getLogger(__name__)

REFUND_PENDING = ":refund_pending"
PAGE_LIMIT_MAX = 100


# Two-write transitions: close on the ledger, then refund any deposit.
CLOSE_INTENTS = frozenset({Intent.CANCEL, Intent.EXPIRE, Intent.FINALIZE, Intent.RESOLVE_REFUND})
RELEASE_INTENTS = frozenset({Intent.RELEASE, Intent.RESOLVE_RELEASE, Intent.TIMEOUT_RELEASE})

# Ledger status that proves a single-write intent landed.
_LANDED = {
    Intent.CLAIM: LedgerJobStatus.CLAIMED,
    Intent.SUBMIT: LedgerJobStatus.SUBMITTED,
    Intent.REOPEN: LedgerJobStatus.OPEN,
    Intent.RELEASE: LedgerJobStatus.COMPLETED,
    Intent.RESOLVE_RELEASE: LedgerJobStatus.COMPLETED,
    Intent.TIMEOUT_RELEASE: LedgerJobStatus.COMPLETED,
}

_EVENTS = {
    Intent.CLAIM: EventType.JOB_CLAIMED,
    Intent.SUBMIT: EventType.WORK_SUBMITTED,
    Intent.REOPEN: EventType.JOB_REOPENED,
    Intent.RELEASE: EventType.JOB_COMPLETED,
    Intent.RESOLVE_RELEASE: EventType.JOB_COMPLETED,
    Intent.TIMEOUT_RELEASE: EventType.JOB_COMPLETED,
    Intent.CANCEL: EventType.JOB_CANCELLED,
    Intent.EXPIRE: EventType.JOB_CANCELLED,
    Intent.FINALIZE: EventType.JOB_CANCELLED,
    Intent.RESOLVE_REFUND: EventType.JOB_CANCELLED,
}

_CLOSED_PATCH = {"status": JobStatus.CANCELLED, "completer": None, "artifact_reference": None}
_COMPLETED_PATCH = {"status": JobStatus.COMPLETED}

_CLEAR_INTENT = {
    "pending_transition": None,
    "pending_since": None,
    "pending_patch": None,
    "pending_tx_hash": None,
    "needs_reconcile": False,
}


def _parse_intent(pending: str) -> Tuple[Intent, bool]:
    if pending.endswith(REFUND_PENDING):
        return Intent(pending[: -len(REFUND_PENDING)]), True
    return Intent(pending), False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleCoordinator(DisputeMixin):
    """
    Drives every job transition. Receives its collaborators at construction:

        coordinator = LifecycleCoordinator(ledger, store, CoordinatorConfig.from_env())
    """

    def __init__(
        self,
        ledger: LedgerGateway,
        store: JobStore,
        config: Optional[CoordinatorConfig] = None,
        sink: Optional[EventSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
        chain_id: Optional[int] = None,
        effects: Optional[Executor] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.config = config or CoordinatorConfig()
        self.sink = sink or NullEventSink()
        self._clock = clock or _utc_now
        self.chain_id = chain_id
        # Reputation writes and event delivery run here after commit; inline when None.
        self._effects = effects

    def _now(self) -> datetime:
        return self._clock()

    # --- guards ---

    def _authorize(self, kind: TransitionKind, message: str, signature: Optional[str], expected: str, job_id=None) -> None:
        if not self.config.auth.requires(kind):
            return
        role = "Completer" if kind in (TransitionKind.CLAIM, TransitionKind.SUBMIT) else "Issuer"
        if not signature:
            logger.warning("[SIGNATURE] %s: missing signature job=%s signer=%s", kind.value, job_id, short_address(expected))
            raise AuthorizationError(
                f"{role} signature required for {kind.value}. Sign the message from the {role.lower()} "
                "wallet and send { signature }.",
                expected_message=message,
            )
        check = verify_signature(message, signature, expected)
        if not check:
            logger.warning(
                "[SIGNATURE] %s: %s job=%s expected=%s recovered=%s",
                kind.value,
                check.failure.value,
                job_id,
                short_address(expected),
                short_address(check.recovered),
            )
            raise AuthorizationError(check.detail, failure=check.failure.value, expected_message=message)

    def _require_status(self, job: Job, action: str, *statuses: JobStatus) -> None:
        if job.status in statuses:
            return
        wanted = " or ".join(s.value for s in statuses)
        logger.warning("[PRECONDITION] %s: job=%s status=%s wanted=%s", action, job.job_id, job.status.value, wanted)
        raise PreconditionError(
            f"Job {job.job_id} is {job.status.value}; {action} requires {wanted}.",
            job_id=job.job_id,
            status=job.status.value,
        )

    def _load(self, job_id: int) -> Job:
        job = self.store.find_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found.", job_id=job_id)
        return self._maybe_reconcile(job)

    # --- intent protocol ---

    def _require_idle(self, job: Job, action: str, resumable: Optional[str] = None) -> None:
        if not job.pending_transition or job.pending_transition == resumable:
            return
        logger.warning(
            "[PRECONDITION] %s: job=%s has %s in flight since %s", action, job.job_id, job.pending_transition, job.pending_since
        )
        raise PreconditionError(
            f"Job {job.job_id} has a {job.pending_transition} transition in flight.",
            remediation="Wait for the ledger outcome, re-fetch the job, then retry if still applicable.",
            job_id=job.job_id,
            pending_transition=job.pending_transition,
        )

    def _begin(self, job: Job, intent: Intent, patch: Dict[str, Any]) -> Job:
        """Record intent with CAS on (status, version). Returns the job at its new version."""
        self._require_idle(job, intent.value, resumable=intent.value + REFUND_PENDING)
        began = self.store.conditional_update(
            job.job_id,
            job.status,
            {
                "pending_transition": job.pending_transition or intent.value,
                "pending_since": self._now(),
                "pending_patch": patch,
                "pending_tx_hash": None,
                "needs_reconcile": False,
            },
            expected_version=job.version,
        )
        if began is None:
            logger.warning("[PRECONDITION] %s: job=%s lost race at version=%s", intent.value, job.job_id, job.version)
            raise PreconditionError(
                f"Job {job.job_id} changed while {intent.value} was being processed.", job_id=job.job_id
            )
        return began

    def _commit(self, job: Job, intent: Intent, patch: Dict[str, Any]) -> Job:
        committed = self.store.conditional_update(
            job.job_id, job.status, {**patch, **_CLEAR_INTENT}, expected_version=job.version
        )
        if committed is not None:
            return committed
        # The ledger moved but someone else touched the record; settle against the ledger.
        logger.warning("[LEDGER] %s: commit lost CAS job=%s; reconciling", intent.value, job.job_id)
        current = self.store.find_by_id(job.job_id)
        if current is None:
            raise JobNotFoundError(f"Job {job.job_id} not found.", job_id=job.job_id)
        return self._reconcile(current, force=True) if current.pending_transition else current

    def _abandon(self, job: Job, intent: Intent) -> None:
        if self.store.conditional_update(job.job_id, job.status, dict(_CLEAR_INTENT), expected_version=job.version):
            logger.info("[LEDGER] %s: intent cleared job=%s", intent.value, job.job_id)

    def _flag(self, job: Job, intent: Intent, tx_hash: Optional[str] = None) -> None:
        patch = {"needs_reconcile": True, "pending_tx_hash": tx_hash}
        if self.store.conditional_update(job.job_id, job.status, patch, expected_version=job.version):
            logger.warning(
                "[LEDGER] %s: outcome unknown, flagged for reconcile job=%s tx=%s", intent.value, job.job_id, tx_hash
            )

    def _mark_refund_pending(self, job: Job, intent: Intent, tx_hash: Optional[str] = None) -> None:
        patch = {"pending_transition": intent.value + REFUND_PENDING, "needs_reconcile": True, "pending_tx_hash": tx_hash}
        if self.store.conditional_update(job.job_id, job.status, patch, expected_version=job.version):
            logger.warning("[LEDGER] %s: closed on ledger, refund pending job=%s", intent.value, job.job_id)

    def _settle_failure(self, job: Job, intent: Intent, indeterminate: bool, tx_hash: Optional[str] = None) -> None:
        if indeterminate:
            self._flag(job, intent, tx_hash)
        else:
            self._abandon(job, intent)

    def _attempt(self, job: Job, intent: Intent, step: Callable[[], Any], on_failure=None) -> Any:
        """Run ledger work under an intent; settle the intent if it raises."""
        on_failure = on_failure or self._settle_failure
        try:
            return step()
        except LedgerIndeterminate as e:
            on_failure(job, intent, True, e.tx_hash)
            raise
        except ClawGigError:
            on_failure(job, intent, False, None)
            raise
        except Exception:
            logger.error("[LEDGER] %s: unexpected failure job=%s", intent.value, job.job_id, exc_info=True)
            on_failure(job, intent, True, None)
            raise

    # --- reconciliation ---

    def _maybe_reconcile(self, job: Job) -> Job:
        if not job.pending_transition:
            return job
        if job.needs_reconcile or self._is_stale(job):
            return self._reconcile(job)
        return job

    def _is_stale(self, job: Job) -> bool:
        return job.pending_since is None or self._now() - job.pending_since >= self.config.reconcile_after

    def _reconcile(self, job: Job, force: bool = False) -> Job:
        """Settle a recorded intent against what the ledger shows. Returns the current record."""
        intent, refund_pending = _parse_intent(job.pending_transition)
        try:
            if intent is Intent.ESCROW:
                landed = self._deposit_of(job) > 0
                if landed or self._may_give_up(job, intent, force):
                    return self._settle(job, intent, {}, landed)
                return job

            state = self.ledger.get_job_state(job.job_id)
            if intent in CLOSE_INTENTS:
                if state.status is LedgerJobStatus.CANCELLED:
                    if self._deposit_of(job) == 0:
                        return self._settle(job, intent, dict(job.pending_patch or _CLOSED_PATCH), True)
                    if not refund_pending or not job.needs_reconcile:
                        self._mark_refund_pending(job, intent)
                        return self.store.find_by_id(job.job_id) or job
                    return job
                if refund_pending:
                    # Closed once already; the ledger cannot un-close, so keep waiting on the refund.
                    return job
            elif state.status is _LANDED[intent]:
                patch = dict(job.pending_patch or {})
                if intent is Intent.CLAIM and state.completer:
                    patch["completer"] = state.completer
                return self._settle(job, intent, patch, True)

            if self._may_give_up(job, intent, force):
                return self._settle(job, intent, {}, False)
            return job
        except LedgerIndeterminate:
            logger.warning("[LEDGER] reconcile: ledger unreachable job=%s intent=%s", job.job_id, job.pending_transition)
            return job

    def _may_give_up(self, job: Job, intent: Intent, force: bool) -> bool:
        """A stale intent is dropped only once its transaction, if any, can no longer land."""
        if force:
            return True
        if not self._is_stale(job):
            return False
        if not job.pending_tx_hash:
            return True
        status = self.ledger.get_transaction_status(job.pending_tx_hash)
        if status is TxStatus.PENDING:
            logger.warning(
                "[LEDGER] reconcile: %s tx=%s still pending job=%s", intent.value, job.pending_tx_hash, job.job_id
            )
            return False
        logger.info("[LEDGER] reconcile: %s tx=%s is %s job=%s", intent.value, job.pending_tx_hash, status.value, job.job_id)
        return True

    def _settle(self, job: Job, intent: Intent, patch: Dict[str, Any], landed: bool) -> Job:
        settled = self.store.conditional_update(
            job.job_id, job.status, {**patch, **_CLEAR_INTENT}, expected_version=job.version
        )
        if settled is None:
            return self.store.find_by_id(job.job_id) or job
        if landed:
            logger.info("[LEDGER] reconcile: %s confirmed job=%s status=%s", intent.value, job.job_id, settled.status.value)
            if intent in RELEASE_INTENTS and job.completer:
                self._record_reputation(job.completer, job.job_id)
            if intent in _EVENTS:
                self._publish(_EVENTS[intent], job.job_id, reconciled=True)
        else:
            logger.info("[LEDGER] reconcile: %s did not land, intent cleared job=%s", intent.value, job.job_id)
        return settled

    def reconcile(self, job_id: int) -> JobView:
        """Check any recorded intent against the ledger now. Fresh unconfirmed intents are kept."""
        job = self.store.find_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found.", job_id=job_id)
        if job.pending_transition:
            job = self._reconcile(job)
        return JobView.of(job, self._now())

    # --- ledger helpers ---

    def _deposit_of(self, job: Job) -> int:
        escrow = self.ledger.get_escrow_address(job.bounty_token)
        if escrow is None:
            return 0
        return self.ledger.get_deposit_amount(job.job_id, escrow)

    def _check_escrow_link(self, token: BountyToken) -> str:
        """Return the custody contract address, or fail closed if it is not linked to our JobFactory."""
        expected = self.ledger.identity
        escrow = self.ledger.get_escrow_address(token)
        if escrow is None:
            logger.error("[LEDGER] no %s custody contract set on factory=%s", token.value, expected)
            raise LedgerConfigurationError(
                f"No {token.value} custody contract is set on JobFactory {expected}.",
                expected_address=expected,
                actual_address=None,
            )
        linked = self.ledger.get_linked_owner(escrow)
        if linked is None or linked.lower() != expected.lower():
            logger.error("[LEDGER] escrow link mismatch escrow=%s linked=%s expected=%s", escrow, linked, expected)
            raise LedgerConfigurationError(
                f"Escrow {escrow} is linked to JobFactory {linked}, not {expected}; release would revert with Unauthorized.",
                expected_address=expected,
                actual_address=linked,
                escrow_address=escrow,
            )
        return escrow

    def _record_reputation(self, completer: str, job_id: int) -> Optional[bool]:
        """Whether the increment landed, or None when it was handed to the effects executor."""
        if self._effects is not None:
            self._effects.submit(self._increment_reputation, completer, job_id)
            return None
        return self._increment_reputation(completer, job_id)

    def _increment_reputation(self, completer: str, job_id: int) -> bool:
        try:
            self.ledger.record_completion(completer, True)
        except LedgerConfigurationError:
            logger.debug("[BEST-EFFORT] reputation contract not configured job=%s", job_id)
            return False
        except Exception:
            logger.warning(
                "[BEST-EFFORT] reputation increment failed job=%s completer=%s", job_id, short_address(completer), exc_info=True
            )
            return False
        return True

    def _publish(self, event_type: EventType, job_id: int, **data: Any) -> None:
        event = JobEvent(type=event_type, job_id=job_id, data=data)
        if self._effects is not None:
            self._effects.submit(publish_safely, self.sink, event)
        else:
            publish_safely(self.sink, event)

    # --- transitions ---

    def post(self, terms: JobTerms, issuer: str, signature: Optional[str] = None) -> TransitionResult:
        now = self._now()
        issuer = normalize_address(issuer, field="issuer")
        description = validate_description(terms.description)
        bounty = validate_bounty(terms.bounty, self.config.bounty_max)
        deadline = validate_deadline(terms.deadline, now, self.config.deadline_max_days)
        token = validate_token(terms.bounty_token, self.config.allowed_tokens)
        self._authorize(TransitionKind.POST, post_message(issuer), signature, issuer)

        if token is BountyToken.USDC and self.ledger.get_escrow_address(BountyToken.USDC) is None:
            raise LedgerConfigurationError(
                "USDC custody contract is not configured on the JobFactory.",
                expected_address=self.ledger.identity,
                remediation="Set EscrowUSDC on the JobFactory (setEscrowUSDC) before posting USDC bounties.",
            )

        description_hash = Web3.to_hex(Web3.keccak(text=description))
        try:
            posted = self.ledger.post_job(description_hash, bounty, int(deadline.timestamp()), token)
        except LedgerIndeterminate as e:
            # No job id yet, so there is nothing to mirror; the tx hash is the only handle on it.
            logger.warning("[LEDGER] post: outcome unknown issuer=%s tx=%s", short_address(issuer), e.tx_hash)
            if not e.tx_hash:
                raise
            raise LedgerIndeterminate(
                e.message,
                tx_hash=e.tx_hash,
                remediation="Do not post again yet. Once the transaction is mined, call recover-post with this "
                "tx_hash and the same terms to add the job to the mirror.",
            ) from e
        return self._mirror_posted(posted, issuer, description, description_hash, bounty, token, deadline)

    def recover_post(
        self, tx_hash: str, terms: JobTerms, issuer: str, signature: Optional[str] = None
    ) -> TransitionResult:
        """Mirror the job created by a postJob transaction whose outcome the original post never saw."""
        tx_hash = validate_tx_hash(tx_hash)
        issuer = normalize_address(issuer, field="issuer")
        description = validate_description(terms.description)
        bounty = validate_bounty(terms.bounty, self.config.bounty_max)
        token = validate_token(terms.bounty_token, self.config.allowed_tokens)
        self._authorize(TransitionKind.POST, post_message(issuer), signature, issuer)

        posted = self.ledger.find_posted_job(tx_hash)
        if posted is None:
            logger.warning("[LEDGER] recover-post: no receipt yet tx=%s", tx_hash)
            raise LedgerIndeterminate(
                f"postJob transaction {tx_hash} has no receipt yet.",
                tx_hash=tx_hash,
                remediation="Retry once the transaction is mined. If the ledger dropped it, post the job again.",
            )

        description_hash = Web3.to_hex(Web3.keccak(text=description))
        if (posted.description_hash and posted.description_hash.lower() != description_hash.lower()) or (
            posted.bounty is not None and posted.bounty != bounty
        ):
            logger.warning("[VALIDATION] recover-post: terms do not match job=%s tx=%s", posted.job_id, tx_hash)
            raise ValidationError(
                "Description or bounty does not match the job this transaction created.",
                job_id=posted.job_id,
                tx_hash=tx_hash,
            )

        existing = self.store.find_by_id(posted.job_id)
        if existing is not None and (existing.tx_hash or "").lower() == tx_hash:
            return TransitionResult(
                job_id=existing.job_id,
                status=existing.status,
                tx_hash=existing.tx_hash,
                extra={"description_hash": existing.description_hash, "recovered": False},
            )

        if posted.deadline_seconds:
            deadline = datetime.fromtimestamp(posted.deadline_seconds, timezone.utc)
        else:
            deadline = terms.deadline
        result = self._mirror_posted(posted, issuer, description, description_hash, bounty, token, deadline)
        result.extra["recovered"] = True
        return result

    def _mirror_posted(
        self,
        posted: PostedJob,
        issuer: str,
        description: str,
        description_hash: str,
        bounty: int,
        token: BountyToken,
        deadline: datetime,
    ) -> TransitionResult:
        job = Job(
            job_id=posted.job_id,
            issuer=issuer,
            description_hash=description_hash,
            description=description,
            bounty=bounty,
            bounty_token=token,
            deadline=deadline,
            status=JobStatus.OPEN,
            tx_hash=posted.tx_hash,
            chain_id=self.chain_id,
            created_at=self._now(),
        )
        if not self.store.insert_if_absent(job):
            logger.error("[LEDGER] post: ledger assigned job=%s but the mirror already has it tx=%s", job.job_id, posted.tx_hash)
            raise PreconditionError(
                f"Ledger assigned job id {job.job_id}, which the mirror already holds.",
                remediation="The mirror is out of sync with the ledger; inspect the existing record before retrying.",
                job_id=job.job_id,
                tx_hash=posted.tx_hash,
            )
        logger.info("[LEDGER] post committed job=%s issuer=%s tx=%s", job.job_id, short_address(issuer), posted.tx_hash)
        self._publish(EventType.JOB_POSTED, job.job_id, issuer=issuer, bounty=str(bounty), bountyToken=token.value)
        return TransitionResult(
            job_id=job.job_id,
            status=JobStatus.OPEN,
            tx_hash=posted.tx_hash,
            extra={"description_hash": description_hash, "bounty_token": token.value},
        )

    def escrow(self, job_id: int, amount: Optional[Any] = None, signature: Optional[str] = None) -> TransitionResult:
        job = self._load(job_id)
        self._require_status(job, "escrow", JobStatus.OPEN)
        self._authorize(TransitionKind.ESCROW, escrow_message(job_id), signature, job.issuer, job_id)
        target = job.bounty if amount is None else validate_bounty(amount, self.config.bounty_max)

        job = self._begin(job, Intent.ESCROW, {})

        def step() -> Tuple[str, int, Optional[TxResult]]:
            escrow_address = self.ledger.get_escrow_address(job.bounty_token)
            if escrow_address is None:
                raise LedgerConfigurationError(
                    f"No {job.bounty_token.value} custody contract is set on JobFactory {self.ledger.identity}.",
                    expected_address=self.ledger.identity,
                )
            held = self.ledger.get_deposit_amount(job_id, escrow_address)
            if held >= target:
                return escrow_address, held, None
            tx = self.ledger.deposit(job_id, target - held, job.bounty_token)
            return escrow_address, target, tx

        escrow_address, deposited, tx = self._attempt(job, Intent.ESCROW, step)
        self._commit(job, Intent.ESCROW, {})
        if tx is None:
            logger.info("[LEDGER] escrow: job=%s already holds %s", job_id, deposited)
        else:
            logger.info("[LEDGER] escrow committed job=%s amount=%s tx=%s", job_id, deposited, tx.tx_hash)
            self._publish(EventType.JOB_ESCROWED, job_id, amount=str(deposited))
        return TransitionResult(
            job_id=job_id,
            status=JobStatus.OPEN,
            tx_hash=tx.tx_hash if tx else None,
            extra={
                "escrow_address": escrow_address,
                "deposited": str(deposited),
                "bounty_token": job.bounty_token.value,
                "already_funded": tx is None,
            },
        )

    def claim(self, job_id: int, completer: str, signature: Optional[str] = None) -> TransitionResult:
        completer = normalize_address(completer, field="completer")
        job = self._load(job_id)
        self._require_status(job, "claim", JobStatus.OPEN)
        self._authorize(TransitionKind.CLAIM, claim_message(job_id, completer), signature, completer, job_id)

        patch = {"status": JobStatus.CLAIMED, "completer": completer}
        job = self._begin(job, Intent.CLAIM, patch)
        tx = self._attempt(job, Intent.CLAIM, lambda: self.ledger.set_claimed(job_id, completer))
        committed = self._commit(job, Intent.CLAIM, patch)
        logger.info("[LEDGER] claim committed job=%s completer=%s tx=%s", job_id, short_address(completer), tx.tx_hash)
        self._publish(EventType.JOB_CLAIMED, job_id, completer=completer)
        return TransitionResult(job_id=job_id, status=committed.status, tx_hash=tx.tx_hash, extra={"completer": completer})

    def submit(
        self, job_id: int, artifact_reference: str, completer: str, signature: Optional[str] = None
    ) -> TransitionResult:
        completer = normalize_address(completer, field="completer")
        artifact_reference = validate_artifact_reference(artifact_reference)
        job = self._load(job_id)
        self._require_status(job, "submit", JobStatus.CLAIMED)
        if job.completer.lower() != completer.lower():
            logger.warning("[SIGNATURE] submit: job=%s caller=%s is not the completer", job_id, short_address(completer))
            raise AuthorizationError(
                "Completer address must match the job's claimed completer.",
                job_id=job_id,
            )
        self._authorize(
            TransitionKind.SUBMIT, submit_message(job_id, completer, artifact_reference), signature, completer, job_id
        )

        patch = {"status": JobStatus.SUBMITTED, "artifact_reference": artifact_reference, "submitted_at": self._now()}
        job = self._begin(job, Intent.SUBMIT, patch)
        tx = self._attempt(job, Intent.SUBMIT, lambda: self.ledger.set_submitted(job_id))
        committed = self._commit(job, Intent.SUBMIT, patch)
        logger.info("[LEDGER] submit committed job=%s tx=%s", job_id, tx.tx_hash)
        self._publish(EventType.WORK_SUBMITTED, job_id, completer=completer, artifactReference=artifact_reference)
        return TransitionResult(job_id=job_id, status=committed.status, tx_hash=tx.tx_hash)

    def verify(
        self,
        job_id: int,
        approved: bool,
        split: Optional[Sequence[SplitShare]] = None,
        reopen: bool = False,
        signature: Optional[str] = None,
    ) -> TransitionResult:
        job = self._load(job_id)
        self._require_status(job, "verify", JobStatus.SUBMITTED)
        self._authorize(TransitionKind.VERIFY, verify_message(job_id, approved, reopen), signature, job.issuer, job_id)

        if approved:
            return self._release(job, Intent.RELEASE, split)
        if reopen:
            return self._reopen(job)
        return self._reject_into_window(job)

    def _release(self, job: Job, intent: Intent, split: Optional[Sequence[SplitShare]] = None) -> TransitionResult:
        job = self._begin(job, intent, dict(_COMPLETED_PATCH))
        job_id = job.job_id

        def step() -> Tuple[TxResult, Dict[str, Any]]:
            escrow_address = self._check_escrow_link(job.bounty_token)
            deposit = self.ledger.get_deposit_amount(job_id, escrow_address)
            if deposit <= 0:
                raise LedgerRejection(
                    f"No bounty escrowed for job {job_id} on {escrow_address}.",
                    reason=RevertReason.NO_DEPOSIT,
                    job_id=job_id,
                    escrow_address=escrow_address,
                )
            if split:
                recipients, amounts = compute_split(split, deposit)
                tx = self.ledger.complete_and_release_split(job_id, recipients, amounts)
                return tx, {"split": True, "recipients": recipients, "amounts": [str(a) for a in amounts]}
            tx = self.ledger.complete_and_release(job_id, job.completer)
            return tx, {"amount": str(deposit)}

        tx, extra = self._attempt(job, intent, step)
        committed = self._commit(job, intent, dict(_COMPLETED_PATCH))
        logger.info("[LEDGER] %s committed job=%s completer=%s tx=%s", intent.value, job_id, short_address(job.completer), tx.tx_hash)
        extra["reputation_recorded"] = self._record_reputation(job.completer, job_id)
        self._publish(EventType.JOB_COMPLETED, job_id, completer=job.completer)
        return TransitionResult(job_id=job_id, status=committed.status, tx_hash=tx.tx_hash, extra=extra)

    def _reopen(self, job: Job) -> TransitionResult:
        patch = {"status": JobStatus.OPEN, "completer": None, "artifact_reference": None, "submitted_at": None}
        job = self._begin(job, Intent.REOPEN, patch)
        tx = self._attempt(job, Intent.REOPEN, lambda: self.ledger.reject_and_reopen(job.job_id))
        committed = self._commit(job, Intent.REOPEN, patch)
        logger.info("[LEDGER] reopen committed job=%s tx=%s", job.job_id, tx.tx_hash)
        self._publish(EventType.JOB_REOPENED, job.job_id)
        return TransitionResult(job_id=job.job_id, status=committed.status, tx_hash=tx.tx_hash, extra={"reopened": True})

    def _reject_into_window(self, job: Job) -> TransitionResult:
        """Mirror-only: no ledger call until the window is finalized or a dispute is resolved."""
        self._require_idle(job, "verify")
        now = self._now()
        deadline = now + self.config.dispute_window
        rejected = self.store.conditional_update(
            job.job_id,
            JobStatus.SUBMITTED,
            {"status": JobStatus.REJECTED_PENDING_DISPUTE, "rejected_at": now, "dispute_deadline": deadline},
            expected_version=job.version,
        )
        if rejected is None:
            raise PreconditionError(f"Job {job.job_id} changed while verify was being processed.", job_id=job.job_id)
        logger.info("[PRECONDITION] verify: job=%s rejected, dispute window until %s", job.job_id, deadline.isoformat())
        self._publish(EventType.JOB_REJECTED, job.job_id, disputeDeadline=deadline.isoformat())
        return TransitionResult(
            job_id=job.job_id,
            status=rejected.status,
            extra={
                "dispute_deadline": deadline.isoformat(),
                "message": "Rejection recorded. The completer may open a dispute until the deadline; "
                "after it passes the refund can be finalized.",
            },
        )

    def _close_and_refund(self, job: Job, intent: Intent, close: Callable[[int], TxResult], reason: str) -> TransitionResult:
        """Close the job on the ledger (unless already closed), then refund any deposit to the issuer."""
        job = self._begin(job, intent, dict(_CLOSED_PATCH))
        job_id = job.job_id
        tx_hashes: List[str] = []

        def close_step() -> None:
            if self.ledger.get_job_state(job_id).status is not LedgerJobStatus.CANCELLED:
                tx_hashes.append(close(job_id).tx_hash)

        def refund_step() -> bool:
            if self._deposit_of(job) <= 0:
                return False
            tx_hashes.append(self.ledger.refund_to_issuer(job_id).tx_hash)
            return True

        self._attempt(job, intent, close_step)
        refunded = self._attempt(
            job,
            intent,
            refund_step,
            on_failure=lambda j, i, _indeterminate, tx_hash: self._mark_refund_pending(j, i, tx_hash),
        )
        committed = self._commit(job, intent, dict(_CLOSED_PATCH))
        logger.info("[LEDGER] %s committed job=%s refunded=%s txs=%s", intent.value, job_id, refunded, tx_hashes)
        self._publish(EventType.JOB_CANCELLED, job_id, reason=reason)
        return TransitionResult(
            job_id=job_id,
            status=committed.status,
            tx_hash=tx_hashes[-1] if tx_hashes else None,
            extra={"refunded": refunded, "tx_hashes": tx_hashes, "reason": reason},
        )

    def cancel(self, job_id: int, signature: Optional[str] = None) -> TransitionResult:
        job = self._load(job_id)
        self._require_status(job, "cancel", JobStatus.OPEN)
        self._authorize(TransitionKind.CANCEL, cancel_message(job_id), signature, job.issuer, job_id)
        return self._close_and_refund(job, Intent.CANCEL, self.ledger.cancel_as_owner, "cancel")

    def expire(self, job_id: int, signature: Optional[str] = None) -> TransitionResult:
        job = self._load(job_id)
        self._require_status(job, "expire", JobStatus.OPEN)
        if not job.is_expired(self._now()):
            logger.warning("[PRECONDITION] expire: job=%s deadline %s not passed", job_id, job.deadline.isoformat())
            raise PreconditionError(
                f"Job {job_id} deadline has not passed yet.", job_id=job_id, deadline=job.deadline.isoformat()
            )
        self._authorize(TransitionKind.EXPIRE, expire_message(job_id), signature, job.issuer, job_id)
        return self._close_and_refund(job, Intent.EXPIRE, self.ledger.cancel_as_owner, "expire")

    # --- read paths ---

    def get_job(self, job_id: int) -> JobView:
        return JobView.of(self._load(job_id), self._now())

    def browse(self, status: Optional[Any] = JobStatus.OPEN, limit: int = 20, offset: int = 0) -> List[JobView]:
        status = self._parse_status(status) or JobStatus.OPEN
        limit, offset = self._page(limit, offset)
        now = self._now()
        jobs = self.store.find_by_status(status)
        return [JobView.of(j, now) for j in jobs[offset : offset + limit]]

    def participated_jobs(
        self, address: str, role: str = "both", status: Optional[Any] = None, limit: int = 20, offset: int = 0
    ) -> Dict[str, Any]:
        address = normalize_address(address)
        role = (role or "both").lower()
        if role not in ROLES:
            raise ValidationError("role must be issuer, completer, or both.")
        status = self._parse_status(status)
        limit, offset = self._page(limit, offset)
        jobs = self.store.find_by_participant(address, role, status)
        now = self._now()
        page = [JobView.of(j, now, viewer=address) for j in jobs[offset : offset + limit]]
        return {
            "jobs": page,
            "total": len(jobs),
            "offset": offset,
            "limit": limit,
            "has_more": offset + limit < len(jobs),
        }

    def stats(self) -> Dict[str, int]:
        return {
            "open_jobs": self.store.count_by_status(JobStatus.OPEN),
            "completed_jobs": self.store.count_by_status(JobStatus.COMPLETED),
        }

    def issuer_reputation(self, address: str) -> Dict[str, Any]:
        """Issuer track record from the mirror: completed, rejected (any outcome) and disputed counts."""
        address = normalize_address(address)
        jobs = self.store.find_by_participant(address, "issuer")
        rejected_states = (JobStatus.CANCELLED, JobStatus.REJECTED_PENDING_DISPUTE, JobStatus.DISPUTED)
        return {
            "address": address,
            "completed_count": sum(1 for j in jobs if j.status is JobStatus.COMPLETED),
            "rejected_count": sum(1 for j in jobs if j.status in rejected_states and j.rejected_at is not None),
            "disputed_count": sum(1 for j in jobs if j.status is JobStatus.DISPUTED),
        }

    def reputation(self, address: str) -> Dict[str, Any]:
        address = normalize_address(address)
        score = self.ledger.get_reputation_score(address)
        if score is None:
            raise LedgerConfigurationError(
                "Reputation contract not configured.",
                remediation="Set REPUTATION_ADDRESS to enable on-chain reputation.",
            )
        return {"address": address, **score.model_dump(), "tier_name": score.tier_name}

    @staticmethod
    def _parse_status(status: Optional[Any]) -> Optional[JobStatus]:
        if status is None or status == "":
            return None
        try:
            return JobStatus(status.strip() if isinstance(status, str) else status)
        except ValueError:
            raise ValidationError(f"Unknown job status {status!r}.") from None

    @staticmethod
    def _page(limit: Any, offset: Any) -> Tuple[int, int]:
        try:
            limit, offset = int(limit), int(offset)
        except (TypeError, ValueError):
            raise ValidationError("limit and offset must be integers.") from None
        return min(PAGE_LIMIT_MAX, max(1, limit)), max(0, offset)
