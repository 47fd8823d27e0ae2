"""
On-chain ledger gateway: JobFactory / Escrow / Reputation over web3.py.

The operator wallet (JobFactory owner) signs every transaction locally and broadcasts it raw.
Writes are two-phase: dry-run call to surface reverts, then send and wait for the receipt.
"""

import logging
import threading
from typing import Any, Callable, List, Optional

import requests
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)
from web3.logs import DISCARD

from clawgig.config import LedgerConfig
from clawgig.errors import LedgerConfigurationError, LedgerIndeterminate, LedgerRejection, RevertReason
from clawgig.ledger.abi import ESCROW_ABI, ESCROW_USDC_ABI, JOB_FACTORY_ABI, REPUTATION_ABI, ZERO_ADDRESS
from clawgig.ledger.gateway import LedgerJobState, PostedJob, TxResult, TxStatus
from clawgig.ledger.reverts import classify_exception
from clawgig.schema import BountyToken, LedgerJobStatus, ReputationScore
from clawgig.wallet import AgentWallet

logger = logging.getLogger(__name__)

# Connection drops, timeouts and HTTP 429/5xx from the RPC (HTTPProvider raises HTTPError).
_NETWORK_ERRORS = (requests.exceptions.RequestException,)

# completeAndRelease + Escrow.release + transfer needs more than the 150k estimate some nodes return.
RELEASE_GAS = 300_000
DEPOSIT_GAS = 150_000


def connect(rpc_url: str, request_timeout: int = 30) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
    if not w3.is_connected():
        raise ConnectionError(f"Cannot connect to RPC: {rpc_url}")
    return w3


def _present(address: Optional[str]) -> Optional[str]:
    if not address or address.lower() == ZERO_ADDRESS:
        return None
    return Web3.to_checksum_address(address)


class Web3LedgerGateway:
    """LedgerGateway backed by the deployed contracts."""

    def __init__(self, w3: Web3, config: LedgerConfig, operator: AgentWallet):
        self._w3 = w3
        self._config = config
        self._operator = operator
        self._factory = w3.eth.contract(address=Web3.to_checksum_address(config.job_factory_address), abi=JOB_FACTORY_ABI)
        self._reputation = None
        if config.reputation_address:
            self._reputation = w3.eth.contract(
                address=Web3.to_checksum_address(config.reputation_address), abi=REPUTATION_ABI
            )
        # Nonce selection and broadcast must not interleave across threads.
        self._send_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: LedgerConfig, operator: Optional[AgentWallet] = None) -> "Web3LedgerGateway":
        w3 = connect(config.rpc_url, config.request_timeout)
        return cls(w3, config, operator or AgentWallet(env_name="PRIVATE_KEY"))

    @property
    def identity(self) -> str:
        return self._factory.address

    @property
    def operator_address(self) -> str:
        return self._operator.address

    # --- plumbing ---

    def _read(self, description: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except _NETWORK_ERRORS as e:
            raise LedgerIndeterminate(
                f"{description}: ledger read failed ({type(e).__name__})",
                remediation="The ledger node is unreachable; retry once the RPC is healthy.",
            ) from e

    def _transact(self, fn, description: str, value: int = 0, gas: Optional[int] = None) -> Any:
        """Dry-run, sign, broadcast and wait for finality. Returns the receipt."""
        params = {"from": self._operator.address}
        if value:
            params["value"] = value
        try:
            fn.call(params)
        except ContractLogicError as e:
            reason, detail = classify_exception(e)
            logger.warning("[LEDGER] %s would revert: %s", description, detail)
            raise LedgerRejection(f"{description} rejected by ledger: {detail}", reason=reason) from e
        except _NETWORK_ERRORS as e:
            # Nothing was broadcast yet; the dry-run itself failed.
            raise LedgerIndeterminate(f"{description}: ledger unreachable before broadcast") from e

        raw = None
        try:
            with self._send_lock:
                tx_params = {
                    **params,
                    "chainId": self._config.chain_id,
                    "nonce": self._w3.eth.get_transaction_count(self._operator.address, "pending"),
                }
                if gas is not None:
                    tx_params["gas"] = gas
                tx = fn.build_transaction(tx_params)
                raw = self._operator.sign_transaction(tx)
                tx_hash = self._w3.eth.send_raw_transaction(raw)
        except ContractLogicError as e:
            reason, detail = classify_exception(e)
            raise LedgerRejection(f"{description} rejected by ledger: {detail}", reason=reason) from e
        except _NETWORK_ERRORS as e:
            # The node may or may not have accepted the raw transaction; its hash is known locally once signed.
            raise LedgerIndeterminate(
                f"{description}: broadcast outcome unknown ({type(e).__name__})",
                tx_hash=Web3.to_hex(Web3.keccak(raw)) if raw is not None else None,
            ) from e
        except (ValueError, Web3Exception) as e:
            # Node refused the transaction outright (nonce, funds, gas); nothing is pending.
            raise LedgerRejection(f"{description} refused by node: {e}", reason=RevertReason.OTHER_REVERT) from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("[LEDGER] %s sent tx=%s", description, tx_hex)
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._config.finality_timeout, poll_latency=self._config.poll_interval
            )
        except TimeExhausted as e:
            raise LedgerIndeterminate(
                f"{description}: not confirmed within {self._config.finality_timeout}s", tx_hash=tx_hex
            ) from e
        except _NETWORK_ERRORS as e:
            raise LedgerIndeterminate(f"{description}: lost contact waiting for receipt", tx_hash=tx_hex) from e

        if receipt.get("status") != 1:
            reason, detail = self._replay_revert(fn, params, receipt.get("blockNumber"))
            logger.warning("[LEDGER] %s reverted tx=%s: %s", description, tx_hex, detail)
            raise LedgerRejection(f"{description} reverted on-chain: {detail}", reason=reason, tx_hash=tx_hex)
        return receipt

    def _replay_revert(self, fn, params: dict, block_number: Optional[int]):
        """Re-run a reverted call at its block to recover the revert reason."""
        try:
            fn.call(params, block_identifier=block_number)
        except ContractLogicError as e:
            return classify_exception(e)
        except _NETWORK_ERRORS:
            pass
        return RevertReason.OTHER_REVERT, "transaction status 0"

    def _tx(self, fn, description: str, **kwargs: Any) -> TxResult:
        receipt = self._transact(fn, description, **kwargs)
        return TxResult(tx_hash=Web3.to_hex(receipt["transactionHash"]), block_number=receipt.get("blockNumber"))

    def _escrow_contract(self, token: BountyToken):
        address = self.get_escrow_address(token)
        if address is None:
            raise LedgerConfigurationError(
                f"No {token.value} custody contract is set on JobFactory {self.identity}",
                expected_address=None,
                actual_address=None,
                remediation="Run the deploy script's setEscrow / setEscrowUSDC step for this JobFactory.",
                job_factory=self.identity,
            )
        abi = ESCROW_USDC_ABI if token is BountyToken.USDC else ESCROW_ABI
        return self._w3.eth.contract(address=address, abi=abi)

    # --- writes ---

    def post_job(
        self, description_hash: str, bounty: int, deadline_seconds: int, token: BountyToken = BountyToken.MON
    ) -> PostedJob:
        desc = bytes(Web3.to_bytes(hexstr=description_hash))
        if token is BountyToken.MON:
            fn = self._factory.functions.postJob(desc, bounty, deadline_seconds)
        else:
            fn = self._factory.functions.postJobWithToken(desc, bounty, deadline_seconds, token.ledger_code)
        return self._posted_from_receipt(self._transact(fn, "postJob"))

    def _posted_from_receipt(self, receipt) -> PostedJob:
        events = self._factory.events.JobPosted().process_receipt(receipt, errors=DISCARD)
        tx_hex = Web3.to_hex(receipt["transactionHash"])
        if not events:
            raise LedgerRejection("postJob confirmed but emitted no JobPosted event", tx_hash=tx_hex)
        args = events[0]["args"]
        return PostedJob(
            job_id=int(args["jobId"]),
            tx_hash=tx_hex,
            description_hash=Web3.to_hex(args["descriptionHash"]),
            bounty=int(args["bounty"]),
            deadline_seconds=int(args["deadline"]),
        )

    def deposit(self, job_id: int, amount: int, token: BountyToken = BountyToken.MON) -> TxResult:
        escrow = self._escrow_contract(token)
        if token is BountyToken.USDC:
            # Operator must hold USDC and have approved the EscrowUSDC contract.
            return self._tx(escrow.functions.deposit(job_id, amount), "EscrowUSDC.deposit", gas=DEPOSIT_GAS)
        return self._tx(escrow.functions.deposit(job_id), "Escrow.deposit", value=amount, gas=DEPOSIT_GAS)

    def set_claimed(self, job_id: int, completer: str) -> TxResult:
        return self._tx(self._factory.functions.setClaimed(job_id, Web3.to_checksum_address(completer)), "setClaimed")

    def set_submitted(self, job_id: int) -> TxResult:
        return self._tx(self._factory.functions.setSubmitted(job_id), "setSubmitted")

    def complete_and_release(self, job_id: int, completer: str) -> TxResult:
        fn = self._factory.functions.completeAndRelease(job_id, Web3.to_checksum_address(completer))
        return self._tx(fn, "completeAndRelease", gas=RELEASE_GAS)

    def complete_and_release_split(self, job_id: int, recipients: List[str], amounts: List[int]) -> TxResult:
        fn = self._factory.functions.completeAndReleaseSplit(
            job_id, [Web3.to_checksum_address(r) for r in recipients], list(amounts)
        )
        return self._tx(fn, "completeAndReleaseSplit", gas=RELEASE_GAS)

    def cancel_as_owner(self, job_id: int) -> TxResult:
        return self._tx(self._factory.functions.cancelJobAsOwner(job_id), "cancelJobAsOwner")

    def mark_failed(self, job_id: int) -> TxResult:
        return self._tx(self._factory.functions.setCompleted(job_id, False), "setCompleted(false)")

    def refund_to_issuer(self, job_id: int) -> TxResult:
        return self._tx(self._factory.functions.refundToIssuer(job_id), "refundToIssuer")

    def reject_and_reopen(self, job_id: int) -> TxResult:
        return self._tx(self._factory.functions.rejectAndReopen(job_id), "rejectAndReopen")

    def release_after_timeout(self, job_id: int) -> TxResult:
        fn = self._factory.functions.releaseToCompleterAfterTimeout(job_id)
        return self._tx(fn, "releaseToCompleterAfterTimeout", gas=RELEASE_GAS)

    def record_completion(self, address: str, success: bool) -> TxResult:
        if self._reputation is None:
            raise LedgerConfigurationError(
                "Reputation contract not configured",
                remediation="Set REPUTATION_ADDRESS to enable on-chain reputation.",
            )
        fn = self._reputation.functions.recordCompletion(Web3.to_checksum_address(address), success)
        return self._tx(fn, "Reputation.recordCompletion")

    # --- reads ---

    def get_escrow_address(self, token: BountyToken = BountyToken.MON) -> Optional[str]:
        if token is BountyToken.USDC:
            try:
                return _present(self._read("escrowUSDC", self._factory.functions.escrowUSDC().call))
            except (ContractLogicError, BadFunctionCallOutput):
                # Older factories have no escrowUSDC(); USDC is simply unavailable.
                return None
        return _present(self._read("escrow", self._factory.functions.escrow().call))

    def get_deposit_amount(self, job_id: int, escrow_address: str) -> int:
        escrow = self._w3.eth.contract(address=Web3.to_checksum_address(escrow_address), abi=ESCROW_ABI)
        return int(self._read("deposits", escrow.functions.deposits(job_id).call))

    def get_linked_owner(self, escrow_address: str) -> Optional[str]:
        escrow = self._w3.eth.contract(address=Web3.to_checksum_address(escrow_address), abi=ESCROW_ABI)
        return _present(self._read("jobFactory", escrow.functions.jobFactory().call))

    def get_submitted_at(self, job_id: int) -> int:
        return int(self._read("submittedAt", self._factory.functions.submittedAt(job_id).call))

    def get_ledger_time(self) -> int:
        block = self._read("latest block", lambda: self._w3.eth.get_block("latest"))
        return int(block["timestamp"])

    def get_job_state(self, job_id: int) -> LedgerJobState:
        _, completer, _, _, _, status = self._read("getJob", self._factory.functions.getJob(job_id).call)
        return LedgerJobState(job_id=job_id, status=LedgerJobStatus(int(status)), completer=_present(completer))

    def _receipt(self, tx_hash: str):
        try:
            return self._read("receipt", lambda: self._w3.eth.get_transaction_receipt(tx_hash))
        except TransactionNotFound:
            return None

    def get_transaction_status(self, tx_hash: str) -> TxStatus:
        receipt = self._receipt(tx_hash)
        if receipt is not None:
            return TxStatus.CONFIRMED if receipt.get("status") == 1 else TxStatus.FAILED
        try:
            self._read("transaction", lambda: self._w3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            return TxStatus.UNKNOWN
        return TxStatus.PENDING

    def find_posted_job(self, tx_hash: str) -> Optional[PostedJob]:
        receipt = self._receipt(tx_hash)
        if receipt is None:
            return None
        if receipt.get("status") != 1:
            raise LedgerRejection(f"postJob transaction {tx_hash} reverted on-chain", tx_hash=tx_hash)
        return self._posted_from_receipt(receipt)

    def get_reputation_score(self, address: str) -> Optional[ReputationScore]:
        if self._reputation is None:
            return None
        completed, success_total, tier = self._read(
            "getScore", self._reputation.functions.getScore(Web3.to_checksum_address(address)).call
        )
        return ReputationScore(completed=int(completed), success_total=int(success_total), tier=int(tier))
