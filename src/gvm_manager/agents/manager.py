"""
Agent Operations

Synchronises the local agent table with a scanner's agent controller and
forwards authorisation, configuration and deletion requests to it. Every
operation checks the caller's access first and reports its outcome as an
AgentResponse code, one distinct code per failing stage.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..acl.context import Credentials
from ..acl.engine import AccessControl
from ..config.schema import AgentControllerConfig
from ..data.models import Agent, Credential, Scanner
from ..data.repos import ResourceRepository
from ..db.backend import DatabaseBackend
from ..errors import AgentControllerError, DatabaseError
from .client import AgentControllerClient

logger = logging.getLogger(__name__)


class AgentResponse(int, Enum):
    SUCCESS = 0
    NO_AGENTS_PROVIDED = -1
    SCANNER_LOOKUP_FAILED = -2
    AGENT_SCANNER_MISMATCH = -3
    CONNECTOR_CREATION_FAILED = -4
    CONTROLLER_UPDATE_FAILED = -5
    CONTROLLER_DELETE_FAILED = -6
    SYNC_FAILED = -7
    INVALID_ARGUMENT = -8
    INVALID_AGENT_OWNER = -9
    AGENT_NOT_FOUND = -10
    INTERNAL_ERROR = -11
    IN_USE_ERROR = -12
    CONTROLLER_UPDATE_REJECTED = -13


ClientFactory = Callable[[Scanner, Optional[Credential]], AgentControllerClient]


class AgentManager:
    """Agent operations on behalf of one caller."""

    def __init__(
        self,
        db: DatabaseBackend,
        credentials: Credentials,
        config: Optional[AgentControllerConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.db = db
        self.acl = AccessControl(db, credentials)
        self.config = config or AgentControllerConfig()
        self.client_factory = client_factory or self._default_client
        self.agents = ResourceRepository(db, "agent", Agent)
        self.scanners = ResourceRepository(db, "scanner", Scanner)
        self.credentials = ResourceRepository(db, "credential", Credential)
        # Per-agent errors reported by the controller for the last rejected update
        self.last_errors: List[Dict[str, Any]] = []

    def _default_client(self, scanner: Scanner, credential: Optional[Credential]) -> AgentControllerClient:
        return AgentControllerClient.from_scanner(scanner, credential, self.config)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def scanner_of_agent(self, agent_uuid: str) -> tuple[AgentResponse, Optional[int]]:
        """Scanner row id of an agent."""
        if not agent_uuid:
            return AgentResponse.INVALID_ARGUMENT, None
        try:
            row = self.db.fetch_one("SELECT scanner FROM agents WHERE uuid = ?;", (agent_uuid,))
        except DatabaseError as e:
            logger.warning(f"Failed to look up agent {agent_uuid}: {e}")
            return AgentResponse.INTERNAL_ERROR, None
        if row is None:
            logger.warning(f"Agent {agent_uuid} not found")
            return AgentResponse.AGENT_NOT_FOUND, None
        if not row[0] or row[0] <= 0:
            logger.warning(f"Failed to find scanner for agent {agent_uuid}")
            return AgentResponse.SCANNER_LOOKUP_FAILED, None
        return AgentResponse.SUCCESS, row[0]

    def agents_by_scanner(self, scanner: int, agent_uuids: Sequence[str]) -> tuple[AgentResponse, List[Agent]]:
        """The agents named by `agent_uuids`, all of which must belong to `scanner`."""
        found = []
        for uuid in agent_uuids:
            agent = self.agents.get_by_uuid(uuid)
            if agent is None:
                return AgentResponse.AGENT_NOT_FOUND, []
            if agent.scanner != scanner:
                return AgentResponse.AGENT_SCANNER_MISMATCH, []
            found.append(agent)
        return AgentResponse.SUCCESS, found

    def agents_in_use(self, agent_uuids: Sequence[str]) -> bool:
        """Whether any of the agents is a member of an agent group."""
        marks = ", ".join("?" for _ in agent_uuids)
        return self.db.scalar_int(
            "SELECT count(*) FROM agent_group_agents"
            f" WHERE agent IN (SELECT id FROM agents WHERE uuid IN ({marks}));",
            list(agent_uuids),
        ) > 0

    def _connect(self, scanner_id: int) -> Optional[AgentControllerClient]:
        scanner = self.scanners.get(scanner_id)
        if scanner is None:
            logger.warning(f"Scanner {scanner_id} not found")
            return None
        credential = self.credentials.get(scanner.credential) if scanner.credential else None
        try:
            return self.client_factory(scanner, credential)
        except AgentControllerError as e:
            logger.warning(f"Failed to create agent connector for scanner {scanner.uuid}: {e}")
            return None

    def _check_access(self, agent_uuids: Sequence[str], permission: str) -> bool:
        for uuid in agent_uuids:
            if not self.acl.user_has_access_uuid("agent", uuid, permission):
                logger.warning(f"Caller may not {permission} agent {uuid}")
                return False
        return True

    def _prepare(self, agent_uuids: Sequence[str], permission: str) -> tuple[AgentResponse, Optional[int], List[Agent]]:
        if not agent_uuids:
            return AgentResponse.NO_AGENTS_PROVIDED, None, []

        response, scanner = self.scanner_of_agent(agent_uuids[0])
        if response is not AgentResponse.SUCCESS:
            return response, None, []

        response, agents = self.agents_by_scanner(scanner, agent_uuids)
        if response is not AgentResponse.SUCCESS:
            return response, None, []

        if not self._check_access(agent_uuids, permission):
            return AgentResponse.INVALID_AGENT_OWNER, None, []

        return AgentResponse.SUCCESS, scanner, agents

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def store_agents(self, scanner: Scanner, reported: Sequence[Dict[str, Any]]) -> int:
        """Upsert agents reported by a controller. Returns the number stored."""
        with self.db.atomic():
            for data in reported:
                agent = Agent.from_controller(data, scanner.id, scanner.owner)
                existing = self.db.scalar_int64(
                    "SELECT id FROM agents WHERE agent_id = ? AND scanner = ?;",
                    (agent.agent_id, scanner.id),
                )
                if existing is None:
                    self.agents.create(agent)
                else:
                    self.agents.update(
                        existing,
                        hostname=agent.hostname,
                        authorized=agent.authorized,
                        connection_status=agent.connection_status,
                        last_update=agent.last_update,
                        config=agent.config,
                    )
        return len(reported)

    def _sync(self, scanner_id: int, client: AgentControllerClient) -> AgentResponse:
        scanner = self.scanners.get(scanner_id)
        try:
            reported = client.get_agents()
        except AgentControllerError as e:
            logger.warning(f"Failed to get agents from controller: {e}")
            return AgentResponse.SYNC_FAILED
        if not reported:
            return AgentResponse.SUCCESS
        try:
            count = self.store_agents(scanner, reported)
        except (DatabaseError, ValueError) as e:
            logger.warning(f"Failed to store agents of scanner {scanner.uuid}: {e}")
            return AgentResponse.SYNC_FAILED
        logger.info(f"Synced {count} agents from scanner {scanner.uuid}")
        return AgentResponse.SUCCESS

    def sync_agents(self, scanner_uuid: str) -> AgentResponse:
        """Refresh the local agents of a scanner from its controller."""
        if not scanner_uuid:
            return AgentResponse.INVALID_ARGUMENT
        if not self.acl.user_may("modify_agent"):
            return AgentResponse.INVALID_AGENT_OWNER
        scanner = self.scanners.get_by_uuid(scanner_uuid)
        if scanner is None or not self.acl.user_has_access_uuid("scanner", scanner_uuid, "get_scanners"):
            return AgentResponse.SCANNER_LOOKUP_FAILED

        client = self._connect(scanner.id)
        if client is None:
            return AgentResponse.CONNECTOR_CREATION_FAILED
        with client:
            return self._sync(scanner.id, client)

    def modify_agents(
        self,
        agent_uuids: Sequence[str],
        authorized: Optional[bool] = None,
        config: Optional[Dict[str, Any]] = None,
        comment: Optional[str] = None,
    ) -> AgentResponse:
        """
        Authorise, revoke or reconfigure agents on their controller, then resync.

        Revoking agents that belong to an agent group is refused.
        """
        self.last_errors = []
        response, scanner, agents = self._prepare(agent_uuids, "modify_agent")
        if response is not AgentResponse.SUCCESS:
            return response

        if authorized is False and self.agents_in_use(agent_uuids):
            logger.warning("Agent is in use by an agent group")
            return AgentResponse.IN_USE_ERROR

        update: Dict[str, Any] = {}
        if authorized is not None:
            update["authorized"] = authorized
        if config is not None:
            update["config"] = config

        client = self._connect(scanner)
        if client is None:
            return AgentResponse.CONNECTOR_CREATION_FAILED

        with client:
            if update:
                try:
                    errors = client.update_agents({agent.agent_id: dict(update) for agent in agents})
                except AgentControllerError as e:
                    logger.warning(f"Agent controller update failed: {e}")
                    return AgentResponse.CONTROLLER_UPDATE_FAILED
                if errors:
                    self.last_errors = errors
                    return AgentResponse.CONTROLLER_UPDATE_REJECTED

            if comment is not None:
                with self.db.atomic():
                    for agent in agents:
                        self.agents.update(agent.id, comment=comment)

            return self._sync(scanner, client)

    def delete_agents(self, agent_uuids: Sequence[str]) -> AgentResponse:
        """Delete agents on their controller and locally, then resync."""
        response, scanner, agents = self._prepare(agent_uuids, "delete_agent")
        if response is not AgentResponse.SUCCESS:
            return response

        if self.agents_in_use(agent_uuids):
            return AgentResponse.IN_USE_ERROR

        client = self._connect(scanner)
        if client is None:
            return AgentResponse.CONNECTOR_CREATION_FAILED

        with client:
            try:
                client.delete_agents([agent.agent_id for agent in agents])
            except AgentControllerError as e:
                logger.warning(f"Agent controller delete failed: {e}")
                return AgentResponse.CONTROLLER_DELETE_FAILED

            with self.db.atomic():
                for agent in agents:
                    self.agents.delete_ultimate(agent.uuid)

            return self._sync(scanner, client)
