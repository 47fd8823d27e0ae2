"""
Agent registry: public addresses only, no keys. Address is immutable; display name is not.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from clawgig.errors import NotFoundError, PreconditionError
from clawgig.schema import Agent
from clawgig.validation import normalize_address, short_address, validate_agent_name

logger = logging.getLogger(__name__)

DEFAULT_AGENT_NAME = "OpenClaw Agent"


class AgentRegistry:
    def __init__(self):
        self._agents: Dict[str, Agent] = {}
        self._lock = threading.Lock()

    def signup(self, address: str, display_name: Optional[str] = None) -> Agent:
        address = normalize_address(address)
        name = validate_agent_name(display_name) or DEFAULT_AGENT_NAME
        with self._lock:
            if address in self._agents:
                raise PreconditionError("Address already registered.", address=address)
            agent = Agent(address=address, display_name=name, created_at=datetime.now(timezone.utc))
            self._agents[address] = agent
        logger.info("agent signup address=%s name=%s", short_address(address), name)
        return agent.model_copy()

    def rename(self, address: str, display_name: str) -> Agent:
        address = normalize_address(address)
        name = validate_agent_name(display_name) or DEFAULT_AGENT_NAME
        with self._lock:
            agent = self._agents.get(address)
            if agent is None:
                raise NotFoundError(f"Agent {address} is not registered.", remediation="Sign up first.", address=address)
            agent = agent.model_copy(update={"display_name": name})
            self._agents[address] = agent
        return agent.model_copy()

    def get(self, address: str) -> Optional[Agent]:
        address = normalize_address(address)
        with self._lock:
            agent = self._agents.get(address)
            return agent.model_copy() if agent else None
