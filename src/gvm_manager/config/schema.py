"""
gvm-manager Configuration Schema

Defines the configuration structure of the manager.
All configuration can be specified via gvmd.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path


@dataclass
class DatabaseConfig:
    """Configuration for the manager database"""
    type: str = "sqlite"  # "sqlite" or "postgresql"
    path: str = "./data/gvmd.db"
    # PostgreSQL connection settings
    host: Optional[str] = None
    port: int = 5432
    name: str = "gvmd"
    user: Optional[str] = None
    password: Optional[str] = None
    # Busy handling for the embedded engine
    retries: int = 10
    busy_sleep: float = 0.001
    busy_sleep_max: float = 0.5
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_postgresql(self) -> bool:
        return self.type in ("postgresql", "postgres", "pg")

    @property
    def dsn(self) -> str:
        """libpq connection string for the PostgreSQL backend"""
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
            parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)


@dataclass
class FeedConfig:
    """Configuration for one auxiliary feed database (SCAP or CERT)"""
    supported_version: int = 0
    sync_command: List[str] = field(default_factory=list)
    timeout: int = 3600


@dataclass
class LoggingConfig:
    """Configuration for logging"""
    level: str = "INFO"
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    file: Optional[str] = None


@dataclass
class AgentControllerConfig:
    """Configuration for connections to remote agent controllers"""
    timeout: float = 30.0
    verify: bool = True


@dataclass
class ManagerConfig:
    """
    Central configuration for the manager.

    This configuration can be loaded from:
    - gvmd.yaml (primary)
    - Environment variables (interpolated into the YAML)
    - Programmatic defaults

    Example gvmd.yaml:
    ```yaml
    database:
      type: postgresql
      name: gvmd
      host: "${PGHOST:-localhost}"

    feeds:
      scap:
        supported_version: 22
        sync_command: ["greenbone-feed-sync", "--type", "scap", "--migrate"]
      cert:
        supported_version: 8
        sync_command: ["greenbone-feed-sync", "--type", "cert", "--migrate"]

    logging:
      level: DEBUG
    ```
    """
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    feeds: Dict[str, FeedConfig] = field(default_factory=lambda: {
        "scap": FeedConfig(),
        "cert": FeedConfig(),
    })

    logging: LoggingConfig = field(default_factory=LoggingConfig)

    agent_controller: AgentControllerConfig = field(default_factory=AgentControllerConfig)

    # Working directory (defaults to current directory)
    working_dir: Path = field(default_factory=Path.cwd)

    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_feed(self, feed: str) -> FeedConfig:
        """Get configuration for a feed, defaulting to an unconfigured one"""
        return self.feeds.get(feed) or FeedConfig()

    def database_path(self) -> Path:
        """Resolve the SQLite database path against the working directory"""
        path = Path(self.database.path)
        if path.is_absolute() or self.database.path == ":memory:":
            return path
        return self.working_dir / path

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManagerConfig":
        """Create ManagerConfig from dictionary (e.g., parsed YAML)"""
        database_keys = ("type", "path", "host", "port", "name", "user",
                         "password", "retries", "busy_sleep", "busy_sleep_max")

        # Parse database config
        db_data = data.get("database", {})
        database = DatabaseConfig(
            type=db_data.get("type", "sqlite"),
            path=db_data.get("path", "./data/gvmd.db"),
            host=db_data.get("host"),
            port=int(db_data.get("port", 5432)),
            name=db_data.get("name", "gvmd"),
            user=db_data.get("user"),
            password=db_data.get("password"),
            retries=int(db_data.get("retries", 10)),
            busy_sleep=float(db_data.get("busy_sleep", 0.001)),
            busy_sleep_max=float(db_data.get("busy_sleep_max", 0.5)),
            metadata={k: v for k, v in db_data.items() if k not in database_keys}
        )

        # Parse feeds
        feeds = {"scap": FeedConfig(), "cert": FeedConfig()}
        for feed_id, feed_data in data.get("feeds", {}).items():
            if not isinstance(feed_data, dict):
                continue
            command = feed_data.get("sync_command", [])
            if isinstance(command, str):
                command = command.split()
            feeds[feed_id] = FeedConfig(
                supported_version=int(feed_data.get("supported_version", 0)),
                sync_command=list(command),
                timeout=int(feed_data.get("timeout", 3600)),
            )

        # Parse logging config
        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=str(logging_data.get("level", "INFO")).upper(),
            format=logging_data.get("format", LoggingConfig.format),
            file=logging_data.get("file"),
        )

        controller_data = data.get("agent_controller", {})
        controller = AgentControllerConfig(
            timeout=float(controller_data.get("timeout", 30.0)),
            verify=bool(controller_data.get("verify", True)),
        )

        return cls(
            database=database,
            feeds=feeds,
            logging=logging_config,
            agent_controller=controller,
            working_dir=Path(data.get("working_dir", ".")),
            metadata=data.get("metadata", {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "database": {
                "type": self.database.type,
                "path": self.database.path,
                "host": self.database.host,
                "port": self.database.port,
                "name": self.database.name,
                "user": self.database.user,
                "password": self.database.password,
                "retries": self.database.retries,
                "busy_sleep": self.database.busy_sleep,
                "busy_sleep_max": self.database.busy_sleep_max,
                **self.database.metadata,
            },
            "feeds": {
                fid: {
                    "supported_version": cfg.supported_version,
                    "sync_command": list(cfg.sync_command),
                    "timeout": cfg.timeout,
                }
                for fid, cfg in self.feeds.items()
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "file": self.logging.file,
            },
            "agent_controller": {
                "timeout": self.agent_controller.timeout,
                "verify": self.agent_controller.verify,
            },
            "working_dir": str(self.working_dir),
            "metadata": self.metadata,
        }
