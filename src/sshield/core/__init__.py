"""Core layer for sshield."""

from sshield.core.config import ConfigManager
from sshield.core.manager import ProjectManager
from sshield.core.paths import AppPaths
from sshield.core.types import (
    AppConfig,
    KeyType,
    Project,
    ServerConfig,
    SSHKey,
)

__all__ = [
    "AppConfig",
    "AppPaths",
    "ConfigManager",
    "KeyType",
    "Project",
    "ProjectManager",
    "ServerConfig",
    "SSHKey",
]
