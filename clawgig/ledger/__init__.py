"""
Ledger backends: the gateway protocol and the on-chain (web3) implementation.
"""

from clawgig.ledger.gateway import LedgerGateway, LedgerJobState, PostedJob, TxResult, TxStatus
from clawgig.ledger.onchain import Web3LedgerGateway, connect
from clawgig.ledger.reverts import classify_exception, classify_revert

__all__ = [
    "LedgerGateway",
    "LedgerJobState",
    "PostedJob",
    "TxResult",
    "TxStatus",
    "Web3LedgerGateway",
    "connect",
    "classify_exception",
    "classify_revert",
]
