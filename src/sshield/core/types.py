"""Type definitions for sshield."""

import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from sshield.core.constant import (
    APP_VERSION,
    DEFAULT_AGENT_TIMEOUT,
    DEFAULT_PROJECT,
    PROJECT_ID_PATTERN,
)


def utc_now() -> str:
    """Get the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class KeyType(str, Enum):
    """Supported SSH key algorithms."""

    ED25519 = "ed25519"
    ECDSA = "ecdsa"
    RSA = "rsa"
    UNKNOWN = "unknown"

    @classmethod
    def from_public_key_prefix(cls, prefix: str) -> "KeyType":
        """Map an OpenSSH public key algorithm name to a key type.

        Args:
            prefix: Algorithm field of a public key (e.g. ``ssh-ed25519``).

        Returns:
            Matching KeyType, ``UNKNOWN`` for anything unrecognized.
        """
        if prefix == "ssh-ed25519":
            return cls.ED25519
        if prefix == "ssh-rsa":
            return cls.RSA
        if re.match(r"^ecdsa-sha2-nistp\d+$", prefix):
            return cls.ECDSA
        return cls.UNKNOWN


class _Model(BaseModel):
    """Base model using camelCase names on disk."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SSHKey(_Model):
    """SSH key metadata owned by a project."""

    id: str
    name: str
    type: KeyType = KeyType.UNKNOWN
    path: str
    public_key_path: str = Field(alias="publicKeyPath")
    fingerprint: str = ""
    created: str = Field(default_factory=utc_now)
    last_used: str | None = Field(default=None, alias="lastUsed")
    comment: str | None = None
    bits: int | None = None
    kdf_rounds: int | None = Field(default=None, alias="kdfRounds")


class ServerConfig(_Model):
    """Server definition owned by a project."""

    id: str
    name: str
    hostname: str
    port: int = 22
    username: str
    key_id: str = Field(default="", alias="keyId")
    options: dict[str, str] = Field(default_factory=dict)
    last_used: str | None = Field(default=None, alias="lastUsed")


class Project(_Model):
    """A named group of SSH keys and servers."""

    id: str = Field(pattern=PROJECT_ID_PATTERN)
    name: str
    description: str | None = None
    created: str = Field(default_factory=utc_now)
    last_used: str | None = Field(default=None, alias="lastUsed")
    imported: str | None = None
    keys: list[SSHKey] = Field(default_factory=list)
    servers: list[ServerConfig] = Field(default_factory=list)

    def find_key(self, key_id: str) -> SSHKey | None:
        """Find a key by ID."""
        for key in self.keys:
            if key.id == key_id:
                return key
        return None

    def find_server(self, server_id_or_name: str) -> ServerConfig | None:
        """Find a server by ID or name."""
        for server in self.servers:
            if server.id == server_id_or_name or server.name == server_id_or_name:
                return server
        return None

    def key_for_server(self, server: ServerConfig) -> SSHKey | None:
        """Resolve the key a server refers to, if any."""
        if not server.key_id:
            return None
        return self.find_key(server.key_id)


class ProjectExport(Project):
    """Project transfer document."""

    exported: str = Field(default_factory=utc_now)


class AgentSettings(_Model):
    """SSH agent preferences."""

    autostart: bool = True
    timeout: int = DEFAULT_AGENT_TIMEOUT


class UiSettings(_Model):
    """Presentation preferences."""

    color_theme: str = Field(default="default", alias="colorTheme")
    log_level: str = Field(default="info", alias="logLevel")


class AppConfig(_Model):
    """Global application configuration."""

    version: str = APP_VERSION
    default_project: str = Field(default=DEFAULT_PROJECT, alias="defaultProject")
    active_project: str | None = Field(default=None, alias="activeProject")
    projects: list[str] = Field(default_factory=lambda: [DEFAULT_PROJECT])
    agent_settings: AgentSettings = Field(
        default_factory=AgentSettings, alias="agentSettings"
    )
    ui_settings: UiSettings = Field(default_factory=UiSettings, alias="uiSettings")


class AgentKey(_Model):
    """A key currently loaded in the SSH agent."""

    type: str
    fingerprint: str
    comment: str | None = None
    added: str | None = None
    bits: int | None = None


class AgentStatus(_Model):
    """Snapshot of the SSH agent state."""

    running: bool
    pid: int | None = None
    socket: str | None = None
    keys: list[AgentKey] = Field(default_factory=list)


class AgentEnvironment(_Model):
    """Socket and PID of a running agent."""

    socket: str
    pid: int | None = None

    def export_lines(self) -> list[str]:
        """Render shell statements exporting the agent environment."""
        lines = [f"SSH_AUTH_SOCK={self.socket}; export SSH_AUTH_SOCK;"]
        if self.pid is not None:
            lines.append(f"SSH_AGENT_PID={self.pid}; export SSH_AGENT_PID;")
        return lines


class BatchResult(_Model):
    """Outcome of loading several keys into the agent."""

    added: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def added_count(self) -> int:
        """Number of keys loaded successfully."""
        return len(self.added)
