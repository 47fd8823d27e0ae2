"""
Boundary validation: reject malformed input before anything touches the store or the ledger.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Union

from eth_utils import is_hex
from web3 import Web3

from clawgig.errors import ValidationError
from clawgig.schema import BountyToken

DESCRIPTION_MAX_LENGTH = 50_000
AGENT_NAME_MAX_LENGTH = 100


def short_address(address: Optional[str]) -> str:
    """0x1234...abcd form for log lines."""
    if not address:
        return "-"
    return f"{address[:6]}...{address[-4:]}" if len(address) > 12 else address


def normalize_address(value: Any, field: str = "address") -> str:
    """Checksummed address, or ValidationError."""
    if not value or not isinstance(value, str):
        raise ValidationError(f"Missing {field}.", field=field)
    value = value.strip()
    if not Web3.is_address(value):
        raise ValidationError(f"Invalid {field}: not an EVM address.", field=field)
    return Web3.to_checksum_address(value)


def parse_job_id(raw: Any) -> int:
    if raw is None or raw == "":
        raise ValidationError("Missing job ID.")
    if isinstance(raw, bool):
        raise ValidationError("Invalid job ID: must be a positive integer.")
    try:
        job_id = int(str(raw).strip())
    except ValueError:
        raise ValidationError("Invalid job ID: must be a positive integer.") from None
    if job_id < 1:
        raise ValidationError("Invalid job ID: must be a positive integer.")
    return job_id


def validate_description(description: Any, max_length: int = DESCRIPTION_MAX_LENGTH) -> str:
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Description must be a non-empty string.")
    if len(description) > max_length:
        raise ValidationError(f"Description must be at most {max_length} characters.")
    return description


def validate_bounty(bounty: Any, maximum: int) -> int:
    """Bounty in smallest units; accepts int or a decimal string (wei values overflow JSON numbers)."""
    if bounty is None or bounty == "" or isinstance(bounty, bool):
        raise ValidationError("Missing bounty.")
    try:
        value = int(str(bounty).strip())
    except ValueError:
        raise ValidationError("Invalid bounty: must be an integer or numeric string.") from None
    if value <= 0:
        raise ValidationError("Bounty must be positive.")
    if value > maximum:
        raise ValidationError(f"Bounty must be at most {maximum} wei.")
    return value


def parse_deadline(deadline: Union[datetime, str, int, float, None]) -> datetime:
    """Accept a datetime, ISO-8601 string or unix seconds. Naive values are taken as UTC."""
    if deadline is None or isinstance(deadline, bool):
        raise ValidationError("Missing deadline.")
    if isinstance(deadline, datetime):
        parsed = deadline
    elif isinstance(deadline, (int, float)):
        parsed = datetime.fromtimestamp(deadline, tz=timezone.utc)
    elif isinstance(deadline, str):
        try:
            parsed = datetime.fromisoformat(deadline.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("Invalid deadline date.") from None
    else:
        raise ValidationError("Invalid deadline format.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_deadline(deadline: Any, now: datetime, max_days: int) -> datetime:
    parsed = parse_deadline(deadline)
    if parsed <= now:
        raise ValidationError("Deadline must be in the future.")
    if parsed > now + timedelta(days=max_days):
        raise ValidationError(f"Deadline must be within {max_days} days.")
    return parsed


def validate_token(raw: Any, allowed: Iterable[BountyToken]) -> BountyToken:
    if isinstance(raw, BountyToken):
        token = raw
    elif raw is None or raw == "":
        token = BountyToken.MON
    else:
        try:
            token = BountyToken(str(raw).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown bounty token {raw!r}; use MON or USDC.") from None
    if token not in set(allowed):
        raise ValidationError(
            f"{token.value} bounties are not available on this network.",
            remediation="USDC bounties are mainnet-only. Use MON on testnet.",
        )
    return token


def validate_artifact_reference(reference: Any) -> str:
    if not isinstance(reference, str) or not reference.strip():
        raise ValidationError("Missing artifact reference (e.g. IPFS hash).")
    return reference.strip()


def validate_agent_name(name: Any) -> Optional[str]:
    if name is None:
        return None
    if not isinstance(name, str):
        raise ValidationError("Agent name must be a string.")
    if len(name) > AGENT_NAME_MAX_LENGTH:
        raise ValidationError(f"Agent name must be at most {AGENT_NAME_MAX_LENGTH} characters.")
    return name


def validate_tx_hash(tx_hash: Any) -> str:
    value = tx_hash.strip().lower() if isinstance(tx_hash, str) else ""
    if not value.startswith("0x") or len(value) != 66 or not is_hex(value):
        raise ValidationError("Invalid transaction hash: expected 0x followed by 64 hex characters.")
    return value
