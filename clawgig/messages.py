"""
Canonical signing messages (EIP-191 personal_sign).

These strings are a versioned wire contract shared with every client that signs:
the exact wording, spacing and the literal booleans `true` / `false` must not change.
There is no nonce; replay is bounded by the job id and action words in the text.
"""

from enum import Enum

PREFIX = "ClawGig"


class TransitionKind(str, Enum):
    """Transitions that can be gated by a wallet signature."""

    POST = "post"
    ESCROW = "escrow"
    CLAIM = "claim"
    SUBMIT = "submit"
    CANCEL = "cancel"
    EXPIRE = "expire"
    VERIFY = "verify"


def _flag(value: bool) -> str:
    return "true" if value else "false"


def post_message(issuer: str) -> str:
    return f"{PREFIX} post job as {issuer}"


def escrow_message(job_id: int) -> str:
    return f"{PREFIX} escrow job {job_id}"


def cancel_message(job_id: int) -> str:
    return f"{PREFIX} cancel job {job_id}"


def expire_message(job_id: int) -> str:
    return f"{PREFIX} expire job {job_id}"


def claim_message(job_id: int, completer: str) -> str:
    return f"{PREFIX} claim job {job_id} as {completer}"


def submit_message(job_id: int, completer: str, artifact_reference: str) -> str:
    return f"{PREFIX} submit job {job_id} as {completer} ipfs {artifact_reference}"


def verify_message(job_id: int, approved: bool, reopen: bool) -> str:
    return f"{PREFIX} verify job {job_id} approved {_flag(approved)} reopen {_flag(reopen)}"
