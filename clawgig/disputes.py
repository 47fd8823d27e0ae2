"""
Dispute and timeout sub-protocol, mixed into LifecycleCoordinator.

Two timers on the same job:
- dispute window, from rejection, measured on the server clock (only the mirror enforces it);
- review period, from the ledger-recorded submission time, measured on ledger time
  (the ledger enforces the same window for releaseToCompleterAfterTimeout).
"""

import hmac
import logging
from datetime import timedelta
from typing import Optional

from clawgig.errors import AuthorizationError, PreconditionError
from clawgig.notifier import EventType
from clawgig.schema import Intent, JobStatus, TransitionResult
from clawgig.validation import normalize_address, short_address

logger = logging.getLogger(__name__)


class DisputeMixin:
    def dispute(self, job_id: int, completer: str) -> TransitionResult:
        """Completer escalates a rejection while the window is open. Mirror-only."""
        completer = normalize_address(completer, field="completer")
        job = self._load(job_id)
        self._require_status(job, "dispute", JobStatus.REJECTED_PENDING_DISPUTE)
        if job.completer.lower() != completer.lower():
            logger.warning("[SIGNATURE] dispute: job=%s caller=%s is not the completer", job_id, short_address(completer))
            raise AuthorizationError("Only the job completer can open a dispute.", job_id=job_id)
        now = self._now()
        if now >= job.dispute_deadline:
            logger.warning("[PRECONDITION] dispute: job=%s window closed at %s", job_id, job.dispute_deadline.isoformat())
            raise PreconditionError(
                "Dispute window has passed.",
                remediation="The rejection can only be finalized now (finalize-reject).",
                job_id=job_id,
                dispute_deadline=job.dispute_deadline.isoformat(),
            )
        self._require_idle(job, "dispute")
        disputed = self.store.conditional_update(
            job_id,
            JobStatus.REJECTED_PENDING_DISPUTE,
            {"status": JobStatus.DISPUTED, "disputed_at": now},
            expected_version=job.version,
        )
        if disputed is None:
            raise PreconditionError(f"Job {job_id} changed while dispute was being processed.", job_id=job_id)
        logger.info("[PRECONDITION] dispute opened job=%s completer=%s", job_id, short_address(completer))
        self._publish(EventType.JOB_DISPUTED, job_id, completer=completer)
        return TransitionResult(job_id=job_id, status=disputed.status, extra={"disputed_at": now.isoformat()})

    def _check_arbiter(self, credential: Optional[str]) -> None:
        expected = self.config.arbiter_api_key
        if not expected or not credential or not hmac.compare_digest(credential.encode(), expected.encode()):
            logger.warning("[SIGNATURE] resolve-dispute: arbiter credential missing or invalid")
            raise AuthorizationError(
                "Arbiter API key required (X-Arbiter-Api-Key) or invalid.",
                remediation="Send the arbiter key configured as DISPUTE_RESOLVER_API_KEY.",
            )

    def resolve_dispute(self, job_id: int, release_to_completer: bool, arbiter_credential: Optional[str]) -> TransitionResult:
        self._check_arbiter(arbiter_credential)
        job = self._load(job_id)
        self._require_status(job, "resolve-dispute", JobStatus.DISPUTED)
        if release_to_completer:
            return self._release(job, Intent.RESOLVE_RELEASE)
        return self._close_and_refund(job, Intent.RESOLVE_REFUND, self.ledger.mark_failed, "resolve_refund")

    def finalize_reject(self, job_id: int) -> TransitionResult:
        """Anyone may call once the window has passed. A second call finds the job cancelled."""
        job = self._load(job_id)
        self._require_status(job, "finalize-reject", JobStatus.REJECTED_PENDING_DISPUTE)
        if self._now() < job.dispute_deadline:
            logger.warning("[PRECONDITION] finalize-reject: job=%s window open until %s", job_id, job.dispute_deadline.isoformat())
            raise PreconditionError(
                "Dispute deadline has not passed yet.",
                job_id=job_id,
                dispute_deadline=job.dispute_deadline.isoformat(),
            )
        return self._close_and_refund(job, Intent.FINALIZE, self.ledger.mark_failed, "finalize_refund")

    def claim_timeout_release(self, job_id: int) -> TransitionResult:
        """Release to the completer once the review period has elapsed on ledger time."""
        job = self._load(job_id)
        self._require_status(job, "claim-timeout-release", JobStatus.SUBMITTED)
        review_seconds = int(self.config.review_period / timedelta(seconds=1))
        patch = {"status": JobStatus.COMPLETED}
        job = self._begin(job, Intent.TIMEOUT_RELEASE, patch)

        def step():
            submitted_at = self.ledger.get_submitted_at(job_id)
            if not submitted_at:
                raise PreconditionError("No submission time recorded on the ledger for this job.", job_id=job_id)
            ledger_now = self.ledger.get_ledger_time()
            if ledger_now < submitted_at + review_seconds:
                logger.warning(
                    "[PRECONDITION] claim-timeout-release: job=%s %ss of review period left",
                    job_id,
                    submitted_at + review_seconds - ledger_now,
                )
                raise PreconditionError(
                    "Review period has not elapsed yet.",
                    job_id=job_id,
                    submitted_at=submitted_at,
                    review_period_seconds=review_seconds,
                    ledger_time=ledger_now,
                )
            return self.ledger.release_after_timeout(job_id)

        tx = self._attempt(job, Intent.TIMEOUT_RELEASE, step)
        committed = self._commit(job, Intent.TIMEOUT_RELEASE, patch)
        logger.info("[LEDGER] timeout release committed job=%s tx=%s", job_id, tx.tx_hash)
        recorded = self._record_reputation(job.completer, job_id)
        self._publish(EventType.JOB_COMPLETED, job_id, completer=job.completer, timeoutRelease=True)
        return TransitionResult(
            job_id=job_id,
            status=committed.status,
            tx_hash=tx.tx_hash,
            extra={"timeout_release": True, "reputation_recorded": recorded},
        )
