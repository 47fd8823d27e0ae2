"""
Client for the ClawGig HTTP API.

Builds the canonical message for each transition, signs it with a MessageSigner and posts it.
Non-2xx responses are raised as the same ClawGigError subclasses the coordinator raises.
"""

from typing import Any, Dict, List, Optional, Union

import requests

from clawgig.errors import ClawGigError, error_from_payload
from clawgig.messages import (
    cancel_message,
    claim_message,
    escrow_message,
    expire_message,
    post_message,
    submit_message,
    verify_message,
)
from clawgig.wallet import MessageSigner

DEFAULT_TIMEOUT = 180  # ledger writes wait for finality server-side


class ClawGigClient:
    """
    client = ClawGigClient("http://localhost:3001", AgentWallet())
    job = client.post_job("Summarize this paper", bounty=10**17, deadline=1767225600)
    """

    def __init__(
        self,
        base_url: str,
        signer: Optional[MessageSigner] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.signer = signer
        self.session = session or requests.Session()
        self.timeout = timeout

    def _signer(self) -> MessageSigner:
        if self.signer is None:
            raise ValueError("This call needs a signer; construct the client with a MessageSigner.")
        return self.signer

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        r = self.session.request(method, self.base_url + path, timeout=self.timeout, **kwargs)
        try:
            data = r.json()
        except ValueError:
            data = None
        if r.status_code >= 400:
            if isinstance(data, dict) and "error" in data:
                raise error_from_payload(data)
            raise ClawGigError(f"HTTP {r.status_code}: {r.text[:200]}")
        return data

    # --- transitions (signed) ---

    def post_job(
        self, description: str, bounty: Union[int, str], deadline: Union[int, str], bounty_token: str = "MON"
    ) -> Dict[str, Any]:
        return self._request("POST", "/jobs/post", json=self._post_body(description, bounty, deadline, bounty_token))

    def recover_post(
        self,
        tx_hash: str,
        description: str,
        bounty: Union[int, str],
        deadline: Union[int, str],
        bounty_token: str = "MON",
    ) -> Dict[str, Any]:
        """After post_job raised LedgerIndeterminate: mirror the job its transaction created."""
        body = {**self._post_body(description, bounty, deadline, bounty_token), "txHash": tx_hash}
        return self._request("POST", "/jobs/recover-post", json=body)

    def _post_body(self, description, bounty, deadline, bounty_token) -> Dict[str, Any]:
        signer = self._signer()
        return {
            "description": description,
            "bounty": str(bounty),
            "deadline": deadline,
            "issuer": signer.address,
            "bountyToken": bounty_token,
            "signature": signer.sign(post_message(signer.address)),
        }

    def escrow(self, job_id: int, amount: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"signature": self._signer().sign(escrow_message(job_id))}
        if amount is not None:
            body["bountyWei"] = str(amount)
        return self._request("POST", f"/jobs/{job_id}/escrow", json=body)

    def claim(self, job_id: int) -> Dict[str, Any]:
        signer = self._signer()
        body = {"completer": signer.address, "signature": signer.sign(claim_message(job_id, signer.address))}
        return self._request("POST", f"/jobs/{job_id}/claim", json=body)

    def submit(self, job_id: int, artifact_reference: str) -> Dict[str, Any]:
        signer = self._signer()
        artifact_reference = artifact_reference.strip()
        body = {
            "ipfsHash": artifact_reference,
            "completer": signer.address,
            "signature": signer.sign(submit_message(job_id, signer.address, artifact_reference)),
        }
        return self._request("POST", f"/jobs/{job_id}/submit", json=body)

    def verify(
        self, job_id: int, approved: bool, reopen: bool = False, split: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """split: [{"address", "percent"}] or [{"address", "shareWei"}]"""
        body: Dict[str, Any] = {
            "approved": approved,
            "reopen": reopen,
            "signature": self._signer().sign(verify_message(job_id, approved, reopen)),
        }
        if split:
            body["split"] = split
        return self._request("POST", f"/jobs/{job_id}/verify", json=body)

    def cancel(self, job_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/jobs/{job_id}/cancel", json={"signature": self._signer().sign(cancel_message(job_id))})

    def expire(self, job_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/jobs/{job_id}/expire", json={"signature": self._signer().sign(expire_message(job_id))})

    def dispute(self, job_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/jobs/{job_id}/dispute", json={"completer": self._signer().address})

    # --- unsigned ---

    def resolve_dispute(self, job_id: int, release_to_completer: bool, arbiter_api_key: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/jobs/{job_id}/resolve-dispute",
            json={"releaseToCompleter": release_to_completer},
            headers={"X-Arbiter-Api-Key": arbiter_api_key},
        )

    def finalize_reject(self, job_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/jobs/{job_id}/finalize-reject")

    def claim_timeout_release(self, job_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/jobs/{job_id}/claim-timeout-release")

    def get_job(self, job_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/jobs/{job_id}")

    def participated(self, address: Optional[str] = None, role: str = "both", status: Optional[str] = None) -> Dict[str, Any]:
        params = {"address": address or self._signer().address, "role": role}
        if status:
            params["status"] = status
        return self._request("GET", "/jobs/participated", params=params)

    def reputation(self, address: str) -> Dict[str, Any]:
        return self._request("GET", f"/reputation/{address}")

    def signup(self, display_name: Optional[str] = None) -> Dict[str, Any]:
        body = {"address": self._signer().address}
        if display_name is not None:
            body["agentName"] = display_name
        return self._request("POST", "/agents/signup", json=body)
