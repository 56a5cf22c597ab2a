"""Configuration models for tool servers, protocol budgets, pooling and orchestration."""

import hashlib
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ConfigurationError
from .logger import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "TOOLBRIDGE_"

# suffix -> (settings section, field)
_ENV_FIELDS = {
    "INITIALIZE_TIMEOUT": ("protocol", "initialize"),
    "LIST_TOOLS_TIMEOUT": ("protocol", "list_tools"),
    "CALL_TOOL_TIMEOUT": ("protocol", "call_tool"),
    "SHUTDOWN_GRACE": ("protocol", "shutdown_grace"),
    "MAX_CONNECTIONS": ("pool", "max_connections"),
    "MAX_ATTEMPTS": ("pool", "max_attempts"),
    "BASE_BACKOFF": ("pool", "base_backoff"),
    "MAX_BACKOFF": ("pool", "max_backoff"),
    "AUTO_COMPLETE": ("orchestrator", "auto_complete"),
    "SETTLE_DELAY": ("orchestrator", "settle_delay"),
    "HISTORY_LIMIT": ("orchestrator", "history_limit"),
}


class ServerConfig(BaseModel):
    """Launch description of one external tool server.

    Attributes:
        id: Stable identifier of the server, used to namespace its tools.
        name: Human readable display name.
        command: Executable to launch.
        args: Argument list passed to the executable.
        env: Environment overrides merged over the parent environment at launch.
        enabled: Disabled servers are never connected.
        timeout: Budget in seconds for a single tool invocation on this server.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    command: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    enabled: bool = True
    timeout: float = Field(default=30.0, gt=0)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def fingerprint(self) -> str:
        """Deterministic key derived from the launch command and its arguments."""
        payload = json.dumps([self.command, list(self.args)], separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class ProtocolTimeouts(BaseModel):
    """Time budgets (seconds) of the protocol client operations."""

    initialize: float = Field(default=10.0, gt=0)
    list_tools: float = Field(default=5.0, gt=0)
    call_tool: float = Field(default=30.0, gt=0)
    settle: float = Field(default=0.5, ge=0)
    shutdown_grace: float = Field(default=2.0, ge=0)


class PoolSettings(BaseModel):
    """Capacity and retry policy of the connection pool."""

    max_connections: int = Field(default=10, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    base_backoff: float = Field(default=1.0, ge=0)
    max_backoff: float = Field(default=5.0, ge=0)
    error_threshold: int = Field(default=3, ge=1)

    def backoff_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        return min(self.base_backoff * (2 ** (attempt - 1)), self.max_backoff)


class OrchestratorSettings(BaseModel):
    """Behaviour of the tool execution orchestrator."""

    auto_complete: bool = True
    settle_delay: float = Field(default=1.0, ge=0)
    history_limit: int = Field(default=1000, ge=0)
    tool_timeouts: Dict[str, float] = Field(default_factory=dict)


class Settings(BaseModel):
    """Aggregated runtime settings."""

    protocol: ProtocolTimeouts = Field(default_factory=ProtocolTimeouts)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    config_path: Optional[Path] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from ``TOOLBRIDGE_*`` environment variables.

        A ``.env`` file is loaded first (without overriding variables that are already set)
        unless an explicit mapping is passed.

        Args:
            env: Optional mapping to read instead of ``os.environ``.
            dotenv_path: Optional path of the ``.env`` file to load.

        Returns:
            The parsed settings.

        Raises:
            ConfigurationError: If a variable holds a value of the wrong type.
        """
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        sections: Dict[str, Dict[str, Any]] = {"protocol": {}, "pool": {}, "orchestrator": {}}
        for suffix, (section, field) in _ENV_FIELDS.items():
            value = env.get(f"{ENV_PREFIX}{suffix}")
            if value is not None and value != "":
                sections[section][field] = value

        data: Dict[str, Any] = dict(sections)
        config_path = env.get(f"{ENV_PREFIX}CONFIG_PATH")
        if config_path:
            data["config_path"] = config_path

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid toolbridge environment settings: {exc}") from exc


class _ServerEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    command: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    disabled: bool = False
    timeout: float = Field(default=30.0, gt=0)


class _ServersDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mcpServers: Dict[str, _ServerEntry]


def parse_server_configs(document: Any) -> List[ServerConfig]:
    """Convert a ``{"mcpServers": {...}}`` document into server configurations.

    Args:
        document: The decoded JSON document.

    Returns:
        One ServerConfig per entry, in document order.

    Raises:
        ConfigurationError: If the document does not match the expected shape.
    """
    try:
        parsed = _ServersDocument.model_validate(document)
    except ValidationError as exc:
        msg = f"Invalid MCP server configuration: {exc}"
        logger.error(msg)
        raise ConfigurationError(msg) from exc

    return [
        ServerConfig(
            id=server_id,
            name=entry.name or server_id,
            command=entry.command,
            args=entry.args,
            env=entry.env,
            enabled=not entry.disabled,
            timeout=entry.timeout,
        )
        for server_id, entry in parsed.mcpServers.items()
    ]


def load_server_configs(path: str | Path) -> List[ServerConfig]:
    """Read server configurations from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, is not JSON or has an invalid shape.
    """
    config_file = Path(path)
    try:
        document = json.loads(config_file.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        msg = f"MCP configuration file not found: {config_file}"
        logger.error(msg)
        raise ConfigurationError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"MCP configuration file is not valid JSON: {config_file}: {exc}"
        logger.error(msg)
        raise ConfigurationError(msg) from exc

    servers = parse_server_configs(document)
    logger.info("Loaded %d MCP server configuration(s) from '%s'.", len(servers), config_file)
    return servers


def enabled_servers(servers: List[ServerConfig]) -> List[ServerConfig]:
    return [server for server in servers if server.enabled]
