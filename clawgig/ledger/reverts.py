"""
Classify ledger reverts into the small fixed set the coordinator reports.

Custom errors are matched on their 4-byte selector; Error(string) payloads are ABI-decoded;
anything else falls back to keyword matching on the node's message.
"""

from typing import Optional, Tuple, Union

from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector
from hexbytes import HexBytes

from clawgig.errors import RevertReason

NO_DEPOSIT_SELECTOR = function_signature_to_4byte_selector("NoDeposit()")
UNAUTHORIZED_SELECTOR = function_signature_to_4byte_selector("Unauthorized()")
TRANSFER_FAILED_SELECTOR = function_signature_to_4byte_selector("TransferFailed()")
ERROR_STRING_SELECTOR = function_signature_to_4byte_selector("Error(string)")

_SELECTORS = {
    NO_DEPOSIT_SELECTOR: RevertReason.NO_DEPOSIT,
    UNAUTHORIZED_SELECTOR: RevertReason.UNAUTHORIZED_CALLER,
    TRANSFER_FAILED_SELECTOR: RevertReason.TRANSFER_REJECTED,
}

_KEYWORDS = (
    ("nodeposit", RevertReason.NO_DEPOSIT),
    ("no deposit", RevertReason.NO_DEPOSIT),
    ("unauthorized", RevertReason.UNAUTHORIZED_CALLER),
    ("transferfailed", RevertReason.TRANSFER_REJECTED),
    ("transfer failed", RevertReason.TRANSFER_REJECTED),
)


def _as_bytes(data: Union[str, bytes, None]) -> bytes:
    if not data:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    text = str(data).strip()
    if not text.startswith("0x"):
        return b""
    try:
        return bytes(HexBytes(text))
    except ValueError:
        return b""


def decode_error_string(data: bytes) -> Optional[str]:
    """Decode a Solidity Error(string) revert payload, if that is what `data` is."""
    if len(data) < 4 or data[:4] != ERROR_STRING_SELECTOR:
        return None
    try:
        (reason,) = decode(["string"], data[4:])
    except Exception:  # eth_abi raises several decoding error types
        return None
    return reason


def classify_revert(message: str = "", data: Union[str, bytes, None] = None) -> Tuple[RevertReason, str]:
    """Return (reason, human detail) for a revert message and optional revert data."""
    raw = _as_bytes(data)
    if len(raw) >= 4 and raw[:4] in _SELECTORS:
        reason = _SELECTORS[raw[:4]]
        return reason, f"custom error 0x{raw[:4].hex()} ({reason.value})"
    decoded = decode_error_string(raw)
    text = " ".join(t for t in (message or "", decoded or "") if t)
    lowered = text.lower()
    for keyword, reason in _KEYWORDS:
        if keyword in lowered:
            return reason, text
    return RevertReason.OTHER_REVERT, text or "execution reverted"


def classify_exception(exc: BaseException) -> Tuple[RevertReason, str]:
    """Classify a web3 ContractLogicError / ContractCustomError (uses .message and .data)."""
    message = getattr(exc, "message", None) or str(exc)
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        data = data.get("data")
    return classify_revert(message, data)
