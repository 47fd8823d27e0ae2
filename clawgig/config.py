"""
Explicit configuration, built once at startup and passed into the coordinator and gateway.

from_env() reads the process environment (after .env). Apart from these and the CLI,
no module reads environment variables.
"""

import os
from datetime import timedelta
from typing import FrozenSet, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from clawgig.messages import TransitionKind
from clawgig.schema import BountyToken

MONAD_TESTNET_CHAIN_ID = 10143
DEFAULT_RPC = "http://127.0.0.1:8545"


def _required(name: str) -> bool:
    """Signature required unless the variable is literally "false"."""
    return os.getenv(name, "").strip().lower() != "false"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw.isdigit() else default


class AuthPolicy(BaseModel):
    """One flag per signature-gated transition; True means a valid signature is required."""

    model_config = ConfigDict(frozen=True)

    post: bool = True
    escrow: bool = True
    claim: bool = True
    submit: bool = True
    cancel: bool = True
    expire: bool = True
    verify: bool = True

    def requires(self, kind: TransitionKind) -> bool:
        return getattr(self, kind.value)

    @classmethod
    def from_env(cls) -> "AuthPolicy":
        return cls(
            post=_required("REQUIRE_ISSUER_SIGNATURE_FOR_POST"),
            escrow=_required("REQUIRE_ISSUER_SIGNATURE_FOR_ESCROW"),
            claim=_required("REQUIRE_COMPLETER_SIGNATURE_FOR_CLAIM"),
            submit=_required("REQUIRE_COMPLETER_SIGNATURE_FOR_SUBMIT"),
            cancel=_required("REQUIRE_ISSUER_SIGNATURE_FOR_CANCEL"),
            expire=_required("REQUIRE_ISSUER_SIGNATURE_FOR_EXPIRE"),
            verify=_required("REQUIRE_ISSUER_SIGNATURE_FOR_VERIFY"),
        )


class CoordinatorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    auth: AuthPolicy = Field(default_factory=AuthPolicy)
    dispute_window: timedelta = timedelta(hours=72)
    # Must match the JobFactory's REVIEW_PERIOD; the ledger enforces it too.
    review_period: timedelta = timedelta(days=7)
    arbiter_api_key: Optional[str] = Field(None, repr=False)
    allowed_tokens: FrozenSet[BountyToken] = frozenset({BountyToken.MON})
    deadline_max_days: int = 365
    bounty_max: int = 10**24
    reconcile_after: timedelta = timedelta(seconds=180)
    event_webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls, chain_id: Optional[int] = None) -> "CoordinatorConfig":
        load_dotenv(override=False)
        if chain_id is None:
            chain_id = _int_env("MONAD_CHAIN_ID", MONAD_TESTNET_CHAIN_ID)
        tokens = {BountyToken.MON}
        if chain_id != MONAD_TESTNET_CHAIN_ID:
            # USDC bounties are mainnet-only.
            tokens.add(BountyToken.USDC)
        return cls(
            auth=AuthPolicy.from_env(),
            dispute_window=timedelta(hours=_int_env("CLAWGIG_DISPUTE_WINDOW_HOURS", 72)),
            review_period=timedelta(days=_int_env("CLAWGIG_REVIEW_PERIOD_DAYS", 7)),
            arbiter_api_key=(os.getenv("DISPUTE_RESOLVER_API_KEY") or "").strip() or None,
            allowed_tokens=frozenset(tokens),
            deadline_max_days=_int_env("DEADLINE_MAX_DAYS_FROM_NOW", 365),
            bounty_max=_int_env("BOUNTY_MAX_WEI", 10**24),
            reconcile_after=timedelta(seconds=_int_env("CLAWGIG_RECONCILE_AFTER_SECONDS", 180)),
            event_webhook_url=(os.getenv("CLAWGIG_EVENT_WEBHOOK_URL") or "").strip() or None,
        )


class LedgerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    rpc_url: str = DEFAULT_RPC
    chain_id: int = MONAD_TESTNET_CHAIN_ID
    job_factory_address: str
    reputation_address: Optional[str] = None
    finality_timeout: int = Field(120, description="Seconds to wait for a receipt before reporting indeterminate")
    poll_interval: float = 2.0
    request_timeout: int = 30

    @property
    def is_mainnet(self) -> bool:
        return self.chain_id != MONAD_TESTNET_CHAIN_ID

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        load_dotenv(override=False)
        factory = (os.getenv("JOB_FACTORY_ADDRESS") or "").strip()
        if not factory:
            raise RuntimeError("Set JOB_FACTORY_ADDRESS (JobFactory deployed by the same script as Escrow).")
        return cls(
            rpc_url=os.getenv("MONAD_RPC") or os.getenv("MONAD_TESTNET_RPC") or DEFAULT_RPC,
            chain_id=_int_env("MONAD_CHAIN_ID", MONAD_TESTNET_CHAIN_ID),
            job_factory_address=factory,
            reputation_address=(os.getenv("REPUTATION_ADDRESS") or "").strip() or None,
            finality_timeout=_int_env("CLAWGIG_FINALITY_TIMEOUT", 120),
        )
