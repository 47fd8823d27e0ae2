"""
Job store: the off-chain mirror, one record per ledger job id.

Writes are compare-and-swap on the job's current status (and optionally its version), so two
requests racing from the same precondition produce exactly one success.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from clawgig.schema import Job, JobStatus

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"job_id", "issuer", "bounty", "bounty_token", "description_hash", "created_at"})

ROLES = ("issuer", "completer", "both")


class JobStore(Protocol):
    """Protocol for mirror persistence backends."""

    def find_by_id(self, job_id: int) -> Optional[Job]:
        ...

    def find_by_participant(
        self, address: str, role: str = "both", status: Optional[JobStatus] = None, limit: Optional[int] = None
    ) -> List[Job]:
        """Jobs where `address` (case-insensitive) is issuer and/or completer, newest first."""
        ...

    def find_by_status(self, status: JobStatus, limit: Optional[int] = None) -> List[Job]:
        ...

    def insert_if_absent(self, job: Job) -> bool:
        """Insert a new record. Returns False (and leaves the store unchanged) if the id exists."""
        ...

    def conditional_update(
        self,
        job_id: int,
        expected_status: JobStatus,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Job]:
        """Apply `patch` only if the record is still in `expected_status` (and version). Returns the new record or None."""
        ...

    def count_by_status(self, status: JobStatus, issuer: Optional[str] = None) -> int:
        ...


class InMemoryJobStore:
    """Thread-safe in-memory mirror for tests and single-process deployments."""

    def __init__(self):
        self._jobs: Dict[int, Job] = {}
        self._lock = threading.Lock()

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    def find_by_id(self, job_id: int) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def find_by_participant(
        self, address: str, role: str = "both", status: Optional[JobStatus] = None, limit: Optional[int] = None
    ) -> List[Job]:
        if role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}")
        needle = address.strip().lower()

        def matches(job: Job) -> bool:
            as_issuer = job.issuer.lower() == needle
            as_completer = (job.completer or "").lower() == needle
            if role == "issuer":
                return as_issuer
            if role == "completer":
                return as_completer
            return as_issuer or as_completer

        with self._lock:
            jobs = [j for j in self._jobs.values() if matches(j) and (status is None or j.status == status)]
            jobs.sort(key=lambda j: j.created_at or self._utc_now(), reverse=True)
            return [j.model_copy(deep=True) for j in jobs[:limit]]

    def find_by_status(self, status: JobStatus, limit: Optional[int] = None) -> List[Job]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.status == status]
            jobs.sort(key=lambda j: j.created_at or self._utc_now(), reverse=True)
            return [j.model_copy(deep=True) for j in jobs[:limit]]

    def insert_if_absent(self, job: Job) -> bool:
        with self._lock:
            if job.job_id in self._jobs:
                return False
            now = self._utc_now()
            self._jobs[job.job_id] = job.model_copy(
                update={"created_at": job.created_at or now, "updated_at": now, "version": 0}, deep=True
            )
            return True

    def conditional_update(
        self,
        job_id: int,
        expected_status: JobStatus,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Job]:
        touched = IMMUTABLE_FIELDS.intersection(patch)
        if touched:
            raise ValueError(f"Immutable job fields cannot be patched: {sorted(touched)}")
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or current.status != expected_status:
                return None
            if expected_version is not None and current.version != expected_version:
                logger.debug("[PRECONDITION] version moved job=%s expected=%s actual=%s", job_id, expected_version, current.version)
                return None
            merged = {**current.model_dump(), **patch, "version": current.version + 1, "updated_at": self._utc_now()}
            # Re-validation enforces the completer/status invariant on every write.
            updated = Job.model_validate(merged)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    def count_by_status(self, status: JobStatus, issuer: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1
                for j in self._jobs.values()
                if j.status == status and (issuer is None or j.issuer.lower() == issuer.lower())
            )
