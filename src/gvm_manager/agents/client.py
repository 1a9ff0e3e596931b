"""
Agent Controller Client

Talks to a remote agent controller over its admin REST API:

    GET   /api/v1/admin/agents          list agents
    PATCH /api/v1/admin/agents          update agents, {agent_id: {...}}
    POST  /api/v1/admin/agents/delete   delete agents, {"agent_ids": [...]}

Requests authenticate with the X-API-KEY header. The connection is built
from a scanner row: host and port, the scanner's CA certificate (which also
switches the connection to HTTPS) and its credential's client certificate,
private key and API key.
"""

from __future__ import annotations

import logging
import os
import ssl
import tempfile
from typing import Any, Dict, List, Optional

import httpx

from ..config.schema import AgentControllerConfig
from ..data.models import Credential, Scanner
from ..errors import AgentControllerError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/admin"


def build_ssl_context(ca_pub: str, certificate: Optional[str] = None,
                      private_key: Optional[str] = None) -> ssl.SSLContext:
    """SSL context trusting `ca_pub`, optionally presenting a client certificate."""
    context = ssl.create_default_context(cadata=ca_pub)
    if certificate and private_key:
        # load_cert_chain only reads from files
        with tempfile.TemporaryDirectory() as tmp:
            cert_path = os.path.join(tmp, "cert.pem")
            key_path = os.path.join(tmp, "key.pem")
            with open(cert_path, "w") as f:
                f.write(certificate)
            with open(key_path, "w") as f:
                f.write(private_key)
            context.load_cert_chain(cert_path, key_path)
    return context


class AgentControllerClient:
    """
    Synchronous client for one agent controller.

    Usage:
        with AgentControllerClient.from_scanner(scanner, credential) as client:
            agents = client.get_agents()
            client.update_agents({"agent-1": {"authorized": True}})
            client.delete_agents(["agent-2"])
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        verify: Any = True,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-KEY"] = api_key
        self.client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_scanner(
        cls,
        scanner: Scanner,
        credential: Optional[Credential] = None,
        config: Optional[AgentControllerConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "AgentControllerClient":
        """Build a client from a scanner row and its credential."""
        config = config or AgentControllerConfig()
        if not scanner.host:
            raise AgentControllerError(f"Scanner {scanner.uuid} has no host")

        if scanner.ca_pub:
            scheme = "https"
            verify: Any = config.verify
            if config.verify:
                try:
                    verify = build_ssl_context(
                        scanner.ca_pub,
                        credential.certificate if credential else None,
                        credential.private_key if credential else None,
                    )
                except (ssl.SSLError, ValueError) as e:
                    raise AgentControllerError(f"Invalid TLS material for scanner {scanner.uuid}: {e}") from e
        else:
            scheme = "http"
            verify = False

        port = f":{scanner.port}" if scanner.port else ""
        return cls(
            f"{scheme}://{scanner.host}{port}",
            api_key=credential.secret if credential else None,
            verify=verify,
            timeout=config.timeout,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{API_PREFIX}{path}"
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Agent controller request {method} {url} failed: {e}")
            raise AgentControllerError(f"Agent controller unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Agent controller {method} {url}: {response.status_code} - {response.text}")
            raise AgentControllerError(
                f"Agent controller returned {response.status_code}",
                status_code=response.status_code,
                details={"body": response.text},
            )
        return response

    def get_agents(self) -> List[Dict[str, Any]]:
        response = self._request("GET", "/agents")
        try:
            agents = response.json()
        except ValueError as e:
            raise AgentControllerError(f"Invalid agent list: {e}") from e
        if not isinstance(agents, list):
            raise AgentControllerError("Invalid agent list: expected an array")
        logger.debug(f"Agent controller returned {len(agents)} agents")
        return agents

    def update_agents(self, updates: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Apply per-agent updates.

        Returns the per-agent errors of a partial failure (HTTP 207), or an
        empty list when every update was applied.
        """
        response = self._request("PATCH", "/agents", json=updates)
        if response.status_code == 207:
            errors = response.json().get("errors") or []
            logger.warning(f"Agent controller rejected {len(errors)} agent updates")
            return errors
        return []

    def delete_agents(self, agent_ids: List[str]) -> int:
        """Delete agents on the controller. Returns the number deleted."""
        response = self._request("POST", "/agents/delete", json={"agent_ids": agent_ids})
        data = response.json()
        return int(data.get("deleted", len(agent_ids)))

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "AgentControllerClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
