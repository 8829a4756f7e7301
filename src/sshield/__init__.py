"""sshield - SSH key, agent and server management per project.

This package keeps SSH keys and server definitions grouped in projects,
loads project keys into the SSH agent and writes project servers into the
SSH client configuration.
"""

from sshield.core.config import ConfigManager
from sshield.core.errors import (
    AuthRequiredError,
    ConflictError,
    ExternalToolError,
    InvalidOperationError,
    IOFailureError,
    NotFoundError,
    SSHieldError,
)
from sshield.core.manager import ProjectManager
from sshield.core.paths import AppPaths
from sshield.core.types import (
    AgentStatus,
    AppConfig,
    BatchResult,
    KeyType,
    Project,
    ServerConfig,
    SSHKey,
)
from sshield.functions import (
    add_key_to_agent,
    add_project_keys_to_agent,
    add_server,
    agent_status,
    connect,
    create_project,
    delete_key,
    delete_project,
    delete_server,
    export_agent_environment,
    export_project,
    generate_key,
    get_active_project,
    get_key,
    get_project,
    get_status,
    import_key,
    import_project,
    initialize,
    list_keys,
    list_projects,
    list_servers,
    open_tunnel,
    remove_all_keys_from_agent,
    set_active_project,
    show_public_key,
    ssh_command,
    start_agent,
    stop_agent,
    test_server_connection,
    update_project,
    update_server,
    update_ssh_config_with_project,
    write_agent_startup_script,
)
from sshield.ssh.agent import AgentController

__version__ = "1.0.0"

__all__ = [
    # Core types
    "AgentStatus",
    "AppConfig",
    "AppPaths",
    "BatchResult",
    "KeyType",
    "Project",
    "ServerConfig",
    "SSHKey",
    # Managers
    "AgentController",
    "ConfigManager",
    "ProjectManager",
    # Errors
    "AuthRequiredError",
    "ConflictError",
    "ExternalToolError",
    "InvalidOperationError",
    "IOFailureError",
    "NotFoundError",
    "SSHieldError",
    # Setup
    "initialize",
    "get_status",
    # Projects
    "create_project",
    "delete_project",
    "export_project",
    "get_active_project",
    "get_project",
    "import_project",
    "list_projects",
    "set_active_project",
    "update_project",
    # Keys
    "add_key_to_agent",
    "delete_key",
    "generate_key",
    "get_key",
    "import_key",
    "list_keys",
    "show_public_key",
    # Agent
    "add_project_keys_to_agent",
    "agent_status",
    "export_agent_environment",
    "remove_all_keys_from_agent",
    "start_agent",
    "stop_agent",
    "write_agent_startup_script",
    # Servers
    "add_server",
    "connect",
    "delete_server",
    "list_servers",
    "open_tunnel",
    "ssh_command",
    "test_server_connection",
    "update_server",
    "update_ssh_config_with_project",
]


def main() -> None:
    """CLI entry point."""
    import sys

    from sshield.cli import main as cli_main

    sys.exit(cli_main())
