"""
ClawGig CLI.

Commands:
  clawgig serve [port]                         — Run the coordinator API (uvicorn)
  clawgig check-escrow-link [factory] [rpc]    — Verify JobFactory.escrow().jobFactory() points back
  clawgig sign <action> <args...>              — Print a canonical message and its signature
"""
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from clawgig import messages
from clawgig.schema import BountyToken

SIGN_USAGE = """Usage: clawgig sign <action> <args...>
  post
  escrow <jobId>
  claim <jobId>
  submit <jobId> <artifactReference>
  cancel <jobId>
  expire <jobId>
  verify <jobId> <approved true|false> <reopen true|false>
Signs with CLIENT_PRIVATE_KEY (or PRIVATE_KEY)."""


def _load_dotenv():
    """Load .env from cwd so serve/sign pick up keys and addresses without manual exports."""
    load_dotenv(Path.cwd() / ".env", override=False)


def _flag(value: str) -> bool:
    if value.lower() not in ("true", "false"):
        raise SystemExit(f"Expected true or false, got {value!r}")
    return value.lower() == "true"


def serve_command(args: List[str]) -> None:
    import uvicorn

    from clawgig.server import create_app_from_env

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(), format="%(asctime)s [ClawGig] %(name)s %(message)s")
    port = int(args[0]) if args else int(os.getenv("PORT", "3001"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run(create_app_from_env(), host=host, port=port)


def check_escrow_link(factory_address: str, rpc_url: str, token: BountyToken = BountyToken.MON) -> bool:
    """Print the JobFactory → Escrow → jobFactory() chain. Returns True when linked."""
    from clawgig.config import LedgerConfig
    from clawgig.ledger.onchain import Web3LedgerGateway
    from clawgig.wallet import AgentWallet

    config = LedgerConfig(rpc_url=rpc_url, job_factory_address=factory_address)
    # Reads only: a throwaway key is enough.
    gateway = Web3LedgerGateway.from_config(config, operator=AgentWallet.create())
    escrow = gateway.get_escrow_address(token)
    print("JobFactory:", gateway.identity)
    print(f"JobFactory.{'escrowUSDC' if token is BountyToken.USDC else 'escrow'}():", escrow)
    if escrow is None:
        print("\n[FAIL] JobFactory has no custody contract set. Run the deploy script's setEscrow step.")
        return False
    linked = gateway.get_linked_owner(escrow)
    print("Escrow.jobFactory():", linked)
    if linked and linked.lower() == gateway.identity.lower():
        print("\n[OK] Escrow.jobFactory() matches JOB_FACTORY_ADDRESS. Verify/release should work.")
        return True
    print("\n[FAIL] Escrow.jobFactory() does not equal JOB_FACTORY_ADDRESS; release will revert with Unauthorized.")
    print(f"   Fix: redeploy with the same deploy script, or call Escrow.setJobFactory({gateway.identity}) if you own the Escrow.")
    return False


def check_escrow_link_command(args: List[str]) -> None:
    token = BountyToken.USDC if "--usdc" in args else BountyToken.MON
    args = [a for a in args if a != "--usdc"]
    factory = (args[0] if args else os.getenv("JOB_FACTORY_ADDRESS", "")).strip()
    rpc = args[1] if len(args) > 1 else (os.getenv("MONAD_TESTNET_RPC") or os.getenv("MONAD_RPC") or "https://testnet-rpc.monad.xyz")
    if not factory:
        print("Usage: clawgig check-escrow-link <JOB_FACTORY_ADDRESS> [RPC_URL]")
        print("Or set JOB_FACTORY_ADDRESS in .env")
        sys.exit(1)
    sys.exit(0 if check_escrow_link(factory, rpc, token) else 1)


def build_message(action: str, args: List[str], address: str) -> Optional[str]:
    """Canonical message for `action`, or None if the arguments don't fit."""
    try:
        if action == "post" and not args:
            return messages.post_message(address)
        job_id = int(args[0])
        rest = args[1:]
    except (IndexError, ValueError):
        return None
    if action == "escrow" and not rest:
        return messages.escrow_message(job_id)
    if action == "claim" and not rest:
        return messages.claim_message(job_id, address)
    if action == "submit" and len(rest) == 1:
        return messages.submit_message(job_id, address, rest[0].strip())
    if action == "cancel" and not rest:
        return messages.cancel_message(job_id)
    if action == "expire" and not rest:
        return messages.expire_message(job_id)
    if action == "verify" and len(rest) == 2:
        return messages.verify_message(job_id, _flag(rest[0]), _flag(rest[1]))
    return None


def sign_command(args: List[str]) -> None:
    from clawgig.wallet import AgentWallet

    if not args:
        print(SIGN_USAGE)
        sys.exit(1)
    wallet = AgentWallet()
    message = build_message(args[0], args[1:], wallet.address)
    if message is None:
        print(SIGN_USAGE)
        sys.exit(1)
    print("address:  ", wallet.address)
    print("message:  ", message)
    print("signature:", wallet.sign(message))


def main():
    """CLI entry point."""
    _load_dotenv()
    if len(sys.argv) < 2:
        print("ClawGig CLI")
        print("\nCommands:")
        print("  clawgig serve [port]                       — Run the coordinator API")
        print("  clawgig check-escrow-link [factory] [rpc]  — Check the JobFactory/Escrow link (--usdc for EscrowUSDC)")
        print("  clawgig sign <action> <args...>            — Sign a canonical ClawGig message")
        sys.exit(1)

    command, args = sys.argv[1], sys.argv[2:]

    if command == "serve":
        serve_command(args)
    elif command == "check-escrow-link":
        check_escrow_link_command(args)
    elif command == "sign":
        sign_command(args)
    else:
        print(f"Unknown command: {command}")
        print("Use 'clawgig serve', 'clawgig check-escrow-link', 'clawgig sign'")
        sys.exit(1)


if __name__ == "__main__":
    main()
