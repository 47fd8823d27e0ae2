"""
Minimal ABIs for the JobFactory, Escrow (native), EscrowUSDC and Reputation contracts.
"""


def _fn(name, inputs, outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
    }


JOB_FACTORY_ABI = [
    _fn("postJob", [("descriptionHash", "bytes32"), ("bounty", "uint256"), ("deadline", "uint256")], [("jobId", "uint256")]),
    _fn(
        "postJobWithToken",
        [("descriptionHash", "bytes32"), ("bounty", "uint256"), ("deadline", "uint256"), ("tokenType", "uint8")],
        [("jobId", "uint256")],
    ),
    _fn("escrow", [], [("", "address")], "view"),
    _fn("escrowUSDC", [], [("", "address")], "view"),
    _fn(
        "getJob",
        [("jobId", "uint256")],
        [
            ("issuer_", "address"),
            ("completer_", "address"),
            ("descriptionHash_", "bytes32"),
            ("bounty_", "uint256"),
            ("deadline_", "uint256"),
            ("status_", "uint8"),
        ],
        "view",
    ),
    _fn("setClaimed", [("jobId", "uint256"), ("completer", "address")]),
    _fn("setSubmitted", [("jobId", "uint256")]),
    _fn("setCompleted", [("jobId", "uint256"), ("success", "bool")]),
    _fn("completeAndRelease", [("jobId", "uint256"), ("completer", "address")]),
    _fn("completeAndReleaseSplit", [("jobId", "uint256"), ("recipients", "address[]"), ("amounts", "uint256[]")]),
    _fn("cancelJobAsOwner", [("jobId", "uint256")]),
    _fn("refundToIssuer", [("jobId", "uint256")]),
    _fn("rejectAndReopen", [("jobId", "uint256")]),
    _fn("submittedAt", [("jobId", "uint256")], [("", "uint256")], "view"),
    _fn("releaseToCompleterAfterTimeout", [("jobId", "uint256")]),
    {
        "type": "event",
        "name": "JobPosted",
        "anonymous": False,
        "inputs": [
            {"name": "jobId", "type": "uint256", "indexed": True},
            {"name": "issuer", "type": "address", "indexed": True},
            {"name": "descriptionHash", "type": "bytes32", "indexed": False},
            {"name": "bounty", "type": "uint256", "indexed": False},
            {"name": "deadline", "type": "uint256", "indexed": False},
        ],
    },
]

ESCROW_ABI = [
    _fn("deposit", [("jobId", "uint256")], mutability="payable"),
    _fn("deposits", [("jobId", "uint256")], [("", "uint256")], "view"),
    _fn("jobFactory", [], [("", "address")], "view"),
]

ESCROW_USDC_ABI = [
    _fn("deposit", [("jobId", "uint256"), ("amount", "uint256")]),
    _fn("deposits", [("jobId", "uint256")], [("", "uint256")], "view"),
    _fn("jobFactory", [], [("", "address")], "view"),
]

REPUTATION_ABI = [
    _fn("recordCompletion", [("agent", "address"), ("success", "bool")]),
    _fn("getScore", [("agent", "address")], [("completed", "uint32"), ("successTotal", "uint32"), ("tier", "uint8")], "view"),
]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
