"""
Signature verifier: recover the personal_sign signer and compare to an expected address.

Pure function, no state. Address comparison is case-insensitive; the message is not.
"""

from enum import Enum
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from pydantic import BaseModel


class SignatureFailure(str, Enum):
    MISSING_INPUT = "missing_input"
    MALFORMED_SIGNATURE = "malformed_signature"
    SIGNER_MISMATCH = "signer_mismatch"


class SignatureCheck(BaseModel):
    ok: bool
    failure: Optional[SignatureFailure] = None
    recovered: Optional[str] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok


def recover_signer(message: str, signature: str) -> str:
    """Recover the checksummed address that signed `message`. Raises on malformed input."""
    signable = encode_defunct(text=message)
    return Account.recover_message(signable, signature=signature)


def verify_signature(message: Optional[str], signature: Optional[str], expected_address: Optional[str]) -> SignatureCheck:
    if not message or not signature or not expected_address:
        return SignatureCheck(
            ok=False,
            failure=SignatureFailure.MISSING_INPUT,
            detail="Missing message, signature, or expected signer",
        )
    try:
        recovered = recover_signer(message, signature)
    except Exception as e:  # eth_account raises ValueError, TypeError or eth_keys BadSignature
        return SignatureCheck(
            ok=False,
            failure=SignatureFailure.MALFORMED_SIGNATURE,
            detail=f"Invalid signature: {e}",
        )
    if recovered.lower() != expected_address.strip().lower():
        return SignatureCheck(
            ok=False,
            failure=SignatureFailure.SIGNER_MISMATCH,
            recovered=recovered,
            detail="Signer does not match expected address",
        )
    return SignatureCheck(ok=True, recovered=recovered)
