"""
Split payouts for multi-agent teams.

A split is either all-percent (integer percents summing to 100; the division remainder goes to the
first recipient so the whole deposit is disbursed) or all-exact (amounts summing to the deposit).
"""

from typing import List, Sequence, Tuple

from clawgig.errors import ValidationError
from clawgig.schema import SplitShare
from clawgig.validation import normalize_address


def compute_split(shares: Sequence[SplitShare], deposit: int) -> Tuple[List[str], List[int]]:
    """Return (recipients, amounts) for completeAndReleaseSplit. Raises ValidationError."""
    if not shares:
        raise ValidationError("Split must name at least one recipient.")
    if deposit <= 0:
        raise ValidationError("Cannot split an empty deposit.", deposit=deposit)

    has_percent = any(s.percent is not None for s in shares)
    has_amount = any(s.amount is not None for s in shares)
    if has_percent and has_amount:
        raise ValidationError("Split entries must use either percent or amount, not both.")
    if not has_percent and not has_amount:
        raise ValidationError("Every split entry needs a percent or an amount.")

    recipients = [normalize_address(s.address, field="split address") for s in shares]

    if has_percent:
        if any(s.percent is None for s in shares):
            raise ValidationError("Every split entry needs a percent.")
        total = sum(s.percent for s in shares)
        if total != 100:
            raise ValidationError("Split percent must sum to 100.", total_percent=total)
        amounts = [deposit * s.percent // 100 for s in shares]
        amounts[0] += deposit - sum(amounts)
        return recipients, amounts

    if any(s.amount is None for s in shares):
        raise ValidationError("Every split entry needs an amount.")
    amounts = [s.amount for s in shares]
    if sum(amounts) != deposit:
        raise ValidationError(
            "Split amounts must sum to the escrow deposit for this job.",
            total=str(sum(amounts)),
            deposit=str(deposit),
        )
    return recipients, amounts
