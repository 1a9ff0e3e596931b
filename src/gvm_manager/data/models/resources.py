"""
Resource Models

Scan resources (tasks, reports, results, configs, targets, scanners) and
the agents reported by remote agent controllers.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, Field

from .identity import Resource, new_uuid, now


class Target(Resource):
    hosts: str = ""
    exclude_hosts: str = ""


class Credential(Resource):
    type: str = "up"
    login: Optional[str] = None
    certificate: Optional[str] = None
    private_key: Optional[str] = None
    secret: Optional[str] = None


class Scanner(Resource):
    host: str = ""
    port: int = 0
    type: int = 0
    ca_pub: Optional[str] = None
    credential: Optional[int] = None


class Config(Resource):
    nvt_selector: Optional[str] = None
    family_count: int = 0
    nvt_count: int = 0
    families_growing: int = 0
    nvts_growing: int = 0
    predefined: int = 0
    scanner: Optional[int] = None
    usage_type: str = "scan"


class Alert(Resource):
    event: int = 0
    condition: int = 0
    method: int = 0
    filter: Optional[int] = None
    active: int = 1


class Filter(Resource):
    type: Optional[str] = None
    term: str = ""


class Schedule(Resource):
    icalendar: str = ""
    timezone: Optional[str] = None


class Tag(Resource):
    resource_type: Optional[str] = None
    active: int = 1
    value: str = ""


class Task(Resource):
    hidden: int = 0  # 0 live, 1 hidden, 2 trash
    config: Optional[int] = None
    target: Optional[int] = None
    scanner: Optional[int] = None
    run_status: int = 0
    alterable: int = 0
    usage_type: str = "scan"


class Report(BaseModel):
    id: Optional[int] = None
    uuid: str = Field(default_factory=new_uuid)
    owner: Optional[int] = None
    task: Optional[int] = None
    date: int = Field(default_factory=now)
    scan_run_status: int = 0
    comment: str = ""
    creation_time: int = Field(default_factory=now)
    modification_time: int = Field(default_factory=now)


class Result(BaseModel):
    """A scan result. Owned through its report."""
    id: Optional[int] = None
    uuid: str = Field(default_factory=new_uuid)
    task: Optional[int] = None
    report: Optional[int] = None
    host: str = ""
    port: str = ""
    nvt: str = ""
    type: str = "Alarm"
    severity: float = 0.0
    description: str = ""
    date: int = Field(default_factory=now)


class Nvt(BaseModel):
    """A feed NVT. Feed data has no owner."""
    id: Optional[int] = None
    uuid: str = Field(default_factory=new_uuid)
    oid: str = ""
    name: str = ""
    family: str = ""
    creation_time: int = Field(default_factory=now)
    modification_time: int = Field(default_factory=now)


class AgentGroup(Resource):
    scanner: Optional[int] = None


class Agent(Resource):
    """An agent as recorded after syncing with its controller."""
    agent_id: str = ""
    hostname: str = ""
    scanner: Optional[int] = None
    authorized: int = 0
    connection_status: Optional[str] = None
    last_update: Optional[int] = None
    config: Optional[str] = None  # JSON scan-agent configuration

    @classmethod
    def from_controller(cls, data: dict[str, Any], scanner: int, owner: Optional[int]) -> "Agent":
        """Build from an agent entry of the controller's GET /agents response."""
        config = data.get("config")
        agent_id = data.get("agentid") or data.get("agent_id") or ""
        return cls(
            uuid=agent_id or new_uuid(),
            agent_id=agent_id,
            name=data.get("hostname") or agent_id,
            hostname=data.get("hostname", ""),
            scanner=scanner,
            owner=owner,
            authorized=1 if data.get("authorized") else 0,
            connection_status=data.get("connection_status"),
            last_update=data.get("last_update"),
            config=json.dumps(config) if config is not None else None,
        )
