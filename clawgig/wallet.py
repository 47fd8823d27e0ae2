"""
Agent wallet: local keypair, no API keys.

Key is loaded from CLIENT_PRIVATE_KEY (env) or .env file; PRIVATE_KEY is accepted as fallback
(the coordinator's operator key uses the same loader). Never read/write a key file.
"""

import os
from typing import Optional, Protocol, runtime_checkable

from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

ENV_PRIVATE_KEY = "CLIENT_PRIVATE_KEY"
ENV_PRIVATE_KEY_FALLBACK = "PRIVATE_KEY"


@runtime_checkable
class MessageSigner(Protocol):
    """Anything that can personal_sign a message and say which address it signs as."""

    @property
    def address(self) -> str:
        ...

    def sign(self, message: str) -> str:
        """Return the 0x-prefixed 65-byte signature of `message`."""
        ...


def generate_keypair() -> LocalAccount:
    """Generate a new random keypair. Caller must persist via env (never to file)."""
    return Account.create()


def load_key(env_name: Optional[str] = None) -> LocalAccount:
    """
    Load key from CLIENT_PRIVATE_KEY (or PRIVATE_KEY) env or .env file.
    Raises RuntimeError if neither is set.
    """
    load_dotenv(override=False)
    names = [env_name] if env_name else [ENV_PRIVATE_KEY, ENV_PRIVATE_KEY_FALLBACK]
    pk_env = next((os.getenv(n) for n in names if (os.getenv(n) or "").strip()), None)
    if not pk_env:
        raise RuntimeError(
            f"Set {' or '.join(names)} in the environment (never commit it). "
            "Generate one: python -c \"from eth_account import Account; a = Account.create(); print(a.key.hex())\""
        )
    pk = pk_env.strip()
    if pk.startswith("0x"):
        pk = pk[2:]
    return Account.from_key(pk)


class AgentWallet:
    """
    Wallet for an agent (issuer, completer) or for the coordinator's operator account.
    Implements MessageSigner; also signs raw transactions for the web3 ledger gateway.
    """

    def __init__(self, account: Optional[LocalAccount] = None, env_name: Optional[str] = None):
        if account is None:
            account = load_key(env_name)
        self._account = account

    @property
    def address(self) -> str:
        """Checksummed address (0x...)."""
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        return self._account

    def sign(self, message: str) -> str:
        """personal_sign (EIP-191) a text message. Returns 0x-hex signature."""
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    def sign_transaction(self, tx: dict) -> bytes:
        """Sign a transaction dict. Returns raw bytes ready for send_raw_transaction."""
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)

    @classmethod
    def from_key(cls, private_key: str) -> "AgentWallet":
        """Create wallet from raw private key (hex string)."""
        if private_key.startswith("0x"):
            private_key = private_key[2:]
        return cls(account=Account.from_key(private_key))

    @classmethod
    def create(cls) -> "AgentWallet":
        return cls(account=generate_keypair())
