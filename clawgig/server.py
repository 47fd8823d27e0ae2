"""
HTTP transport: a thin FastAPI layer over LifecycleCoordinator.

Request bodies use the field names existing clients already send (camelCase), snake_case
is accepted too. Errors are returned as {"error": kind, "message", "remediation", ...details}.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from clawgig import __version__
from clawgig.agents import AgentRegistry
from clawgig.config import CoordinatorConfig, LedgerConfig
from clawgig.coordinator import LifecycleCoordinator
from clawgig.errors import ClawGigError, NotFoundError, ValidationError
from clawgig.ledger.onchain import Web3LedgerGateway
from clawgig.notifier import sink_from_urls
from clawgig.schema import BountyToken, JobTerms, SplitShare
from clawgig.store import InMemoryJobStore
from clawgig.validation import parse_deadline, parse_job_id, validate_token

logger = logging.getLogger(__name__)

# Reputation writes and webhook deliveries run off the request thread.
EFFECT_WORKERS = 4

STATUS_BY_KIND = {
    "validation": 400,
    "authorization": 403,
    "not_found": 404,
    "precondition": 409,
    "ledger_rejection": 422,
    "ledger_configuration": 503,
    "ledger_indeterminate": 504,
}

_LOG_TAG = {
    "validation": "VALIDATION",
    "authorization": "SIGNATURE",
    "not_found": "PRECONDITION",
    "precondition": "PRECONDITION",
}


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PostJobBody(_Body):
    description: str
    bounty: Union[int, str]
    deadline: Union[int, float, str]
    issuer: str
    bounty_token: Optional[str] = Field(None, alias="bountyToken")
    signature: Optional[str] = None


class RecoverPostBody(PostJobBody):
    tx_hash: str = Field(..., alias="txHash")


class EscrowBody(_Body):
    amount: Optional[Union[int, str]] = Field(None, alias="bountyWei")
    signature: Optional[str] = None


class ClaimBody(_Body):
    completer: str
    signature: Optional[str] = None


class SubmitBody(_Body):
    artifact_reference: str = Field(..., alias="ipfsHash")
    completer: str
    signature: Optional[str] = None


class SplitEntry(_Body):
    address: str
    percent: Optional[int] = None
    amount: Optional[Union[int, str]] = Field(None, alias="shareWei")


class VerifyBody(_Body):
    approved: bool
    reopen: bool = False
    split: Optional[List[SplitEntry]] = None
    signature: Optional[str] = None


class SignatureBody(_Body):
    signature: Optional[str] = None


class DisputeBody(_Body):
    completer: str


class ResolveBody(_Body):
    release_to_completer: bool = Field(..., alias="releaseToCompleter")


class SignupBody(_Body):
    address: str
    display_name: Optional[str] = Field(None, alias="agentName")


class RenameBody(_Body):
    display_name: str = Field(..., alias="agentName")


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude={"pending_patch"})


def _split_shares(entries: Optional[List[SplitEntry]]) -> Optional[List[SplitShare]]:
    if not entries:
        return None
    shares = []
    for entry in entries:
        try:
            amount = None if entry.amount is None else int(str(entry.amount))
        except ValueError:
            raise ValidationError("Split shareWei must be an integer.") from None
        shares.append(SplitShare(address=entry.address, percent=entry.percent, amount=amount))
    return shares


def create_app(coordinator: LifecycleCoordinator, agents: Optional[AgentRegistry] = None) -> FastAPI:
    app = FastAPI(title="ClawGig", version=__version__)
    agents = agents or AgentRegistry()
    app.state.coordinator = coordinator
    app.state.agents = agents

    @app.exception_handler(ClawGigError)
    def _clawgig_error(request: Request, exc: ClawGigError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        tag = _LOG_TAG.get(exc.kind)
        if tag:
            logger.warning("[%s] %s %s: %s", tag, request.method, request.url.path, exc.message)
        else:
            logger.error("[LEDGER] %s %s: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}" for e in exc.errors()
        )
        logger.warning("[VALIDATION] %s %s: %s", request.method, request.url.path, problems)
        return JSONResponse(status_code=400, content=ValidationError(f"Invalid request: {problems}").to_dict())

    @app.exception_handler(Exception)
    def _unexpected_error(request: Request, exc: Exception):
        logger.error("unhandled error %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal",
                "message": f"Unexpected server error ({type(exc).__name__}).",
                "remediation": "Re-fetch the job before retrying; the outcome of this request is unknown.",
            },
        )

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "clawgig-api", "version": __version__}

    # --- reads ---

    @app.get("/jobs/browse")
    def browse(status: Optional[str] = None, limit: int = 20, offset: int = 0):
        return {"jobs": [_dump(j) for j in coordinator.browse(status, limit, offset)]}

    @app.get("/jobs/stats")
    def stats():
        return coordinator.stats()

    @app.get("/jobs/participated")
    def participated(address: str = "", role: str = "both", status: Optional[str] = None, limit: int = 20, offset: int = 0):
        page = coordinator.participated_jobs(address, role, status, limit, offset)
        return {**page, "jobs": [_dump(j) for j in page["jobs"]]}

    @app.get("/jobs/{job_id}")
    def get_job(job_id: str):
        return _dump(coordinator.get_job(parse_job_id(job_id)))

    @app.post("/jobs/{job_id}/reconcile")
    def reconcile(job_id: str):
        return _dump(coordinator.reconcile(parse_job_id(job_id)))

    @app.get("/reputation/issuer/{address}")
    def issuer_reputation(address: str):
        return coordinator.issuer_reputation(address)

    @app.get("/reputation/{address}")
    def reputation(address: str):
        return coordinator.reputation(address)

    # --- transitions ---

    @app.post("/jobs/post")
    def post_job(body: PostJobBody):
        terms = JobTerms(
            description=body.description,
            bounty=_as_int(body.bounty, "bounty"),
            deadline=parse_deadline(body.deadline),
            bounty_token=validate_token(body.bounty_token, BountyToken),
        )
        return _dump(coordinator.post(terms, body.issuer, body.signature))

    @app.post("/jobs/recover-post")
    def recover_post(body: RecoverPostBody):
        terms = JobTerms(
            description=body.description,
            bounty=_as_int(body.bounty, "bounty"),
            deadline=parse_deadline(body.deadline),
            bounty_token=validate_token(body.bounty_token, BountyToken),
        )
        return _dump(coordinator.recover_post(body.tx_hash, terms, body.issuer, body.signature))

    @app.post("/jobs/{job_id}/escrow")
    def escrow(job_id: str, body: Optional[EscrowBody] = None):
        body = body or EscrowBody()
        return _dump(coordinator.escrow(parse_job_id(job_id), body.amount, body.signature))

    @app.post("/jobs/{job_id}/claim")
    def claim(job_id: str, body: ClaimBody):
        return _dump(coordinator.claim(parse_job_id(job_id), body.completer, body.signature))

    @app.post("/jobs/{job_id}/submit")
    def submit(job_id: str, body: SubmitBody):
        return _dump(coordinator.submit(parse_job_id(job_id), body.artifact_reference, body.completer, body.signature))

    @app.post("/jobs/{job_id}/verify")
    def verify(job_id: str, body: VerifyBody):
        result = coordinator.verify(
            parse_job_id(job_id), body.approved, split=_split_shares(body.split), reopen=body.reopen, signature=body.signature
        )
        return _dump(result)

    @app.post("/jobs/{job_id}/cancel")
    def cancel(job_id: str, body: Optional[SignatureBody] = None):
        return _dump(coordinator.cancel(parse_job_id(job_id), body.signature if body else None))

    @app.post("/jobs/{job_id}/expire")
    def expire(job_id: str, body: Optional[SignatureBody] = None):
        return _dump(coordinator.expire(parse_job_id(job_id), body.signature if body else None))

    @app.post("/jobs/{job_id}/dispute")
    def dispute(job_id: str, body: DisputeBody):
        return _dump(coordinator.dispute(parse_job_id(job_id), body.completer))

    @app.post("/jobs/{job_id}/resolve-dispute")
    def resolve_dispute(job_id: str, body: ResolveBody, x_arbiter_api_key: Optional[str] = Header(None)):
        return _dump(coordinator.resolve_dispute(parse_job_id(job_id), body.release_to_completer, x_arbiter_api_key))

    @app.post("/jobs/{job_id}/finalize-reject")
    def finalize_reject(job_id: str):
        return _dump(coordinator.finalize_reject(parse_job_id(job_id)))

    @app.post("/jobs/{job_id}/claim-timeout-release")
    def claim_timeout_release(job_id: str):
        return _dump(coordinator.claim_timeout_release(parse_job_id(job_id)))

    # --- agents ---

    @app.post("/agents/signup")
    def signup(body: SignupBody):
        agent = agents.signup(body.address, body.display_name)
        return {"success": True, **_dump(agent)}

    @app.get("/agents/{address}")
    def get_agent(address: str):
        agent = agents.get(address)
        if agent is None:
            raise NotFoundError(f"Agent {address} is not registered.", remediation="Sign up first.")
        return _dump(agent)

    @app.patch("/agents/{address}")
    def rename_agent(address: str, body: RenameBody):
        return _dump(agents.rename(address, body.display_name))

    return app


def _as_int(value: Union[int, str], field: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {field}: must be an integer or numeric string.") from None


def create_app_from_env() -> FastAPI:
    """Wire the web3 gateway, in-memory mirror and configured event sink from the environment."""
    ledger_config = LedgerConfig.from_env()
    config = CoordinatorConfig.from_env(chain_id=ledger_config.chain_id)
    gateway = Web3LedgerGateway.from_config(ledger_config)
    sink = sink_from_urls(config.event_webhook_url)
    effects = ThreadPoolExecutor(max_workers=EFFECT_WORKERS, thread_name_prefix="clawgig-effects")
    coordinator = LifecycleCoordinator(
        gateway, InMemoryJobStore(), config, sink=sink, chain_id=ledger_config.chain_id, effects=effects
    )
    logger.info(
        "coordinator ready chain=%s factory=%s operator=%s", ledger_config.chain_id, gateway.identity, gateway.operator_address
    )
    return create_app(coordinator)
