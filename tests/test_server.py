"""
FastAPI transport: routes, camelCase bodies and error-kind → HTTP status mapping.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from clawgig import __version__
from clawgig.errors import LedgerIndeterminate
from clawgig.messages import (
    claim_message,
    escrow_message,
    post_message,
    submit_message,
    verify_message,
)
from clawgig.server import create_app
from conftest import ARBITER_KEY, OTHER_FACTORY_ADDRESS


@pytest.fixture
def api(coordinator):
    return TestClient(create_app(coordinator))


def post_job(api, issuer, clock, bounty="100"):
    body = {
        "description": "Label 200 images",
        "bounty": bounty,
        "deadline": (clock() + timedelta(days=1)).isoformat(),
        "issuer": issuer.address,
        "bountyToken": "MON",
        "signature": issuer.sign(post_message(issuer.address)),
    }
    return api.post("/jobs/post", json=body)


def submitted_job(api, issuer, completer, clock):
    job_id = post_job(api, issuer, clock).json()["job_id"]
    api.post(f"/jobs/{job_id}/escrow", json={"signature": issuer.sign(escrow_message(job_id))})
    api.post(
        f"/jobs/{job_id}/claim",
        json={"completer": completer.address, "signature": completer.sign(claim_message(job_id, completer.address))},
    )
    r = api.post(
        f"/jobs/{job_id}/submit",
        json={
            "ipfsHash": "QmWork",
            "completer": completer.address,
            "signature": completer.sign(submit_message(job_id, completer.address, "QmWork")),
        },
    )
    assert r.status_code == 200, r.text
    return job_id


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "clawgig-api", "version": __version__}


def test_full_lifecycle_over_http(api, issuer, completer, clock):
    r = post_job(api, issuer, clock)
    assert r.status_code == 200
    job_id = r.json()["job_id"]
    assert r.json()["status"] == "open"

    job_id = submitted_job(api, issuer, completer, clock)
    r = api.post(
        f"/jobs/{job_id}/verify",
        json={"approved": True, "reopen": False, "signature": issuer.sign(verify_message(job_id, True, False))},
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "completed"

    job = api.get(f"/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert job["artifact_reference"] == "QmWork"
    assert job["expired"] is False
    assert "pending_patch" not in job

    assert api.get("/jobs/stats").json() == {"open_jobs": 1, "completed_jobs": 1}


def test_verify_with_split_in_wei(api, issuer, completer, stranger, clock, ledger):
    job_id = submitted_job(api, issuer, completer, clock)
    r = api.post(
        f"/jobs/{job_id}/verify",
        json={
            "approved": True,
            "split": [{"address": completer.address, "shareWei": "70"}, {"address": stranger.address, "shareWei": "30"}],
            "signature": issuer.sign(verify_message(job_id, True, False)),
        },
    )
    assert r.status_code == 200, r.text
    assert r.json()["extra"]["amounts"] == ["70", "30"]


def test_browse_and_participated(api, issuer, completer, clock):
    submitted = submitted_job(api, issuer, completer, clock)
    post_job(api, issuer, clock)
    assert len(api.get("/jobs/browse").json()["jobs"]) == 1

    page = api.get("/jobs/participated", params={"address": issuer.address, "role": "issuer"}).json()
    assert page["total"] == 2
    flagged = [j["job_id"] for j in page["jobs"] if j["needs_action"]]
    assert flagged == [submitted]


def test_status_mapping(api, issuer, completer, stranger, clock, ledger):
    assert api.get("/jobs/999").status_code == 404
    assert api.get("/jobs/abc").status_code == 400
    assert post_job(api, issuer, clock, bounty="lots").status_code == 400

    r = api.post("/jobs/post", json={"description": "missing fields"})
    assert r.status_code == 400
    assert r.json()["error"] == "validation"

    job_id = post_job(api, issuer, clock).json()["job_id"]
    r = api.post(f"/jobs/{job_id}/escrow", json={"signature": stranger.sign(escrow_message(job_id))})
    assert r.status_code == 403
    assert r.json()["error"] == "authorization"

    r = api.post(
        f"/jobs/{job_id}/submit",
        json={"ipfsHash": "Qm", "completer": completer.address, "signature": "0x00"},
    )
    assert r.status_code == 409
    assert r.json()["error"] == "precondition"

    submitted = submitted_job(api, issuer, completer, clock)
    ledger.linked_owner = OTHER_FACTORY_ADDRESS
    r = api.post(
        f"/jobs/{submitted}/verify",
        json={"approved": True, "signature": issuer.sign(verify_message(submitted, True, False))},
    )
    assert r.status_code == 503
    body = r.json()
    assert body["error"] == "ledger_configuration"
    assert body["actual_address"] == OTHER_FACTORY_ADDRESS
    assert body["remediation"]


def test_no_deposit_is_422(api, issuer, completer, clock):
    job_id = post_job(api, issuer, clock).json()["job_id"]
    api.post(
        f"/jobs/{job_id}/claim",
        json={"completer": completer.address, "signature": completer.sign(claim_message(job_id, completer.address))},
    )
    api.post(
        f"/jobs/{job_id}/submit",
        json={
            "ipfsHash": "Qm",
            "completer": completer.address,
            "signature": completer.sign(submit_message(job_id, completer.address, "Qm")),
        },
    )
    r = api.post(
        f"/jobs/{job_id}/verify",
        json={"approved": True, "signature": issuer.sign(verify_message(job_id, True, False))},
    )
    assert r.status_code == 422
    assert r.json()["reason"] == "no_deposit"


def test_indeterminate_is_504_and_reconcile_route(api, issuer, completer, clock, ledger):
    job_id = post_job(api, issuer, clock).json()["job_id"]
    ledger.fail("set_claimed", LedgerIndeterminate("timeout"), landed=True)
    r = api.post(
        f"/jobs/{job_id}/claim",
        json={"completer": completer.address, "signature": completer.sign(claim_message(job_id, completer.address))},
    )
    assert r.status_code == 504
    assert r.json()["error"] == "ledger_indeterminate"

    r = api.post(f"/jobs/{job_id}/reconcile")
    assert r.status_code == 200
    assert r.json()["status"] == "claimed"


def test_dispute_routes(api, issuer, completer, clock):
    job_id = submitted_job(api, issuer, completer, clock)
    r = api.post(
        f"/jobs/{job_id}/verify",
        json={"approved": False, "reopen": False, "signature": issuer.sign(verify_message(job_id, False, False))},
    )
    assert r.json()["status"] == "rejected_pending_dispute"

    assert api.post(f"/jobs/{job_id}/finalize-reject").status_code == 409
    assert api.post(f"/jobs/{job_id}/dispute", json={"completer": completer.address}).status_code == 200

    r = api.post(f"/jobs/{job_id}/resolve-dispute", json={"releaseToCompleter": False})
    assert r.status_code == 403
    r = api.post(
        f"/jobs/{job_id}/resolve-dispute",
        json={"releaseToCompleter": False},
        headers={"X-Arbiter-Api-Key": ARBITER_KEY},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    issuer_record = api.get(f"/reputation/issuer/{issuer.address}").json()
    assert issuer_record["rejected_count"] == 1


def test_claim_timeout_release_route(api, issuer, completer, clock, ledger):
    job_id = submitted_job(api, issuer, completer, clock)
    assert api.post(f"/jobs/{job_id}/claim-timeout-release").status_code == 409
    ledger.advance(7 * 24 * 3600)
    r = api.post(f"/jobs/{job_id}/claim-timeout-release")
    assert r.status_code == 200
    assert r.json()["status"] == "completed"

    score = api.get(f"/reputation/{completer.address}").json()
    assert score["tier_name"] == "bronze"


def test_agent_routes(api, completer):
    r = api.post("/agents/signup", json={"address": completer.address, "agentName": "Scout"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert api.post("/agents/signup", json={"address": completer.address}).status_code == 409
    assert api.patch(f"/agents/{completer.address}", json={"agentName": "Ranger"}).json()["display_name"] == "Ranger"
    assert api.get(f"/agents/{completer.address}").json()["display_name"] == "Ranger"
    assert api.get("/agents/0x" + "cd" * 20).status_code == 404


def test_unexpected_failure_still_returns_an_error_body(coordinator, issuer, completer, clock, ledger):
    api = TestClient(create_app(coordinator), raise_server_exceptions=False)
    job_id = post_job(api, issuer, clock).json()["job_id"]
    ledger.fail("set_claimed", RuntimeError("boom"))
    r = api.post(
        f"/jobs/{job_id}/claim",
        json={"completer": completer.address, "signature": completer.sign(claim_message(job_id, completer.address))},
    )
    assert r.status_code == 500
    assert r.json()["error"] == "internal"
    assert "RuntimeError" in r.json()["message"]


def test_recover_post_route(api, issuer, clock, ledger):
    ledger.fail("post_job", LedgerIndeterminate("timeout"), landed=True)
    r = post_job(api, issuer, clock)
    assert r.status_code == 504
    tx_hash = r.json()["tx_hash"]

    body = {
        "txHash": tx_hash,
        "description": "Label 200 images",
        "bounty": "100",
        "deadline": (clock() + timedelta(days=1)).isoformat(),
        "issuer": issuer.address,
        "signature": issuer.sign(post_message(issuer.address)),
    }
    r = api.post("/jobs/recover-post", json=body)
    assert r.status_code == 200, r.text
    assert r.json()["extra"]["recovered"] is True
    assert api.get(f"/jobs/{r.json()['job_id']}").json()["tx_hash"] == tx_hash

    r = api.post("/jobs/recover-post", json={**body, "bounty": "7"})
    assert r.status_code == 400
