"""Python API for sshield.

This module provides high-level functions that combine the project store,
the SSH agent controller and the SSH config synchronizer. Every function
accepts optional ``paths`` (defaults to :meth:`AppPaths.default`) and, where
the agent is involved, an optional ``agent`` controller. A ``project_id`` of
None means the active project.
"""

import logging
import os
import subprocess
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from sshield.core.constant import (
    DEFAULT_KDF_ROUNDS,
    DEFAULT_KEY_BITS,
    REDACTED,
    SSH_KEY_PERMISSIONS,
    SSH_PUB_KEY_PERMISSIONS,
)
from sshield.core.errors import (
    ConflictError,
    InvalidOperationError,
    IOFailureError,
    NotFoundError,
    SSHieldError,
)
from sshield.core.fs import copy_file, ensure_directory, read_json, write_file, write_json
from sshield.core.manager import ProjectManager
from sshield.core.paths import AppPaths
from sshield.core.types import (
    AgentEnvironment,
    AgentStatus,
    BatchResult,
    KeyType,
    Project,
    ProjectExport,
    ServerConfig,
    SSHKey,
    utc_now,
)
from sshield.ssh.agent import AgentController
from sshield.ssh.client import SSHClient
from sshield.ssh.keys import SSHKeyManager, generate_key_name, parse_public_key
from sshield.ssh.sshconfig import DEFAULT_OPTIONS, SSHConfigSynchronizer
from sshield.templates.agent import AgentScriptTemplate

logger = logging.getLogger(__name__)


def _manager(paths: AppPaths | None) -> ProjectManager:
    return ProjectManager(paths or AppPaths.default())


# Initialization


def initialize(
    force: bool = False,
    project_name: str | None = None,
    paths: AppPaths | None = None,
) -> str:
    """Set up the data directories, default configuration and project.

    Args:
        force: Rewrite the configuration even if it exists.
        project_name: Optional first project, created and activated.
        paths: Application paths.

    Returns:
        The active project ID.
    """
    manager = _manager(paths)
    manager.config.initialize(force=force)

    if project_name and project_name != manager.config.load_config().default_project:
        project = manager.create_project(project_name)
        manager.config.set_active_project(project.id)

    return manager.config.get_active_project()


def get_status(paths: AppPaths | None = None) -> dict[str, Any]:
    """Summarize the application state without bootstrapping it.

    Returns:
        Dictionary with ``initialized`` and, when initialized, the base
        directory, default and active project and project count.
    """
    manager = _manager(paths)
    if not manager.config.is_initialized():
        return {"initialized": False, "base_dir": str(manager.paths.base_dir)}

    config = manager.config.load_config()
    return {
        "initialized": True,
        "version": config.version,
        "base_dir": str(manager.paths.base_dir),
        "default_project": config.default_project,
        "active_project": manager.config.get_active_project(),
        "projects": len(config.projects),
    }


# Projects


def create_project(
    name: str,
    description: str | None = None,
    activate: bool = False,
    paths: AppPaths | None = None,
) -> Project:
    """Create a project and optionally make it active.

    Raises:
        ConflictError: If the derived ID is already taken.
    """
    manager = _manager(paths)
    project = manager.create_project(name, description)
    if activate:
        manager.config.set_active_project(project.id)
    return project


def list_projects(paths: AppPaths | None = None) -> list[Project]:
    """List registered projects."""
    return _manager(paths).list_projects()


def get_project(project_id: str | None = None, paths: AppPaths | None = None) -> Project:
    """Load a project."""
    manager = _manager(paths)
    return manager.load_project(manager.resolve_project_id(project_id))


def get_active_project(paths: AppPaths | None = None) -> str:
    """Get the active project ID."""
    return _manager(paths).config.get_active_project()


def set_active_project(project_id: str, paths: AppPaths | None = None) -> Project:
    """Make a project active and mark it used.

    Raises:
        NotFoundError: If the project does not exist.
    """
    manager = _manager(paths)
    manager.load_project(project_id)
    manager.config.set_active_project(project_id)
    return manager.touch_project(project_id)


def update_project(
    project_id: str,
    name: str | None = None,
    description: str | None = None,
    paths: AppPaths | None = None,
) -> Project:
    """Rename a project or change its description."""
    return _manager(paths).update_project(project_id, name, description)


def delete_project(project_id: str, paths: AppPaths | None = None) -> None:
    """Unregister a project, keeping its files.

    The project's managed block is dropped from the SSH config file.

    Raises:
        InvalidOperationError: For the default or the active project.
    """
    manager = _manager(paths)
    if project_id == manager.config.get_active_project():
        raise InvalidOperationError(
            f"Cannot delete the active project {project_id}. "
            "Set another project as active first."
        )
    manager.delete_project(project_id)

    synchronizer = SSHConfigSynchronizer(manager.paths.ssh_config_path)
    if synchronizer.remove_project(project_id) is not None:
        logger.info(f"Removed project {project_id} from SSH config")


def export_project(
    project_id: str | None = None,
    output_path: Path | None = None,
    include_keys: bool = False,
    paths: AppPaths | None = None,
) -> Path:
    """Write a project's metadata to a transfer file.

    Private key files are never bundled. Unless ``include_keys`` is set,
    each key's private key path is replaced with a redaction marker.

    Args:
        project_id: Project to export.
        output_path: Destination. Defaults to ``<id>-export.json`` in the
            current directory.
        include_keys: Keep private key paths.
        paths: Application paths.

    Returns:
        Path of the export file.
    """
    manager = _manager(paths)
    project = manager.load_project(manager.resolve_project_id(project_id))

    export = ProjectExport(**project.model_dump())
    if not include_keys:
        export.keys = [key.model_copy(update={"path": REDACTED}) for key in export.keys]

    output_path = Path(output_path or f"{project.id}-export.json")
    write_json(output_path, export.to_json_dict())

    if include_keys:
        logger.warning("The export file contains private key paths. Keep it secure.")
    logger.info(f"Project {project.id} exported to {output_path}")
    return output_path


def import_project(
    import_path: Path,
    overwrite: bool = False,
    paths: AppPaths | None = None,
) -> Project:
    """Register a project from an export file.

    Raises:
        ConflictError: If the project exists and ``overwrite`` is False.
        IOFailureError: If the file is not a project document.
    """
    manager = _manager(paths)
    import_path = Path(import_path)
    if not import_path.exists():
        raise NotFoundError(f"Import file {import_path} does not exist")

    data = read_json(import_path)
    try:
        project = Project.model_validate(data)
    except ValidationError as e:
        raise IOFailureError(f"Invalid project export {import_path}: {e}", import_path) from e

    registered = project.id in manager.config.load_config().projects
    if registered and not overwrite:
        raise ConflictError(
            f"Project with ID {project.id} already exists. Use overwrite to replace it."
        )

    project.imported = utc_now()
    manager.save_project(project)
    logger.info(f"Project {project.id} imported from {import_path}")
    return project


# Keys


def generate_key(
    name: str | None = None,
    project_id: str | None = None,
    key_type: KeyType = KeyType.ED25519,
    bits: int = DEFAULT_KEY_BITS,
    kdf_rounds: int = DEFAULT_KDF_ROUNDS,
    comment: str | None = None,
    passphrase: str = "",
    force: bool = False,
    paths: AppPaths | None = None,
    keys: SSHKeyManager | None = None,
) -> SSHKey:
    """Generate a key pair in the project's key directory and record it.

    Args:
        name: Human readable key name.
        project_id: Owning project.
        key_type: Algorithm.
        bits: Key size for RSA/ECDSA.
        kdf_rounds: KDF rounds.
        comment: Key comment. Defaults to ``<name> (<project>)``.
        passphrase: Passphrase, empty for none.
        force: Overwrite an existing key file.
        paths: Application paths.
        keys: Key helper.

    Returns:
        The recorded key.
    """
    manager = _manager(paths)
    keys = keys or SSHKeyManager()
    project_id = manager.resolve_project_id(project_id)
    manager.load_project(project_id)

    key_name = name or f"{project_id}-key"
    comment = comment or f"{key_name} ({project_id}) created by sshield"

    key_dir = ensure_directory(manager.paths.project_keys_dir(project_id))
    key_path = key_dir / generate_key_name(key_name)

    pair = keys.generate_key(
        key_path,
        key_type=key_type,
        bits=bits,
        kdf_rounds=kdf_rounds,
        passphrase=passphrase,
        comment=comment,
        force=force,
    )
    fingerprint = keys.get_fingerprint(pair.private_key_path)

    key = SSHKey(
        id=str(uuid.uuid4()),
        name=key_name,
        type=key_type,
        path=str(pair.private_key_path),
        public_key_path=str(pair.public_key_path),
        fingerprint=fingerprint,
        comment=comment,
        bits=bits if key_type in (KeyType.RSA, KeyType.ECDSA) else None,
        kdf_rounds=kdf_rounds,
    )
    manager.add_key(project_id, key)
    return key


def import_key(
    key_path: Path,
    name: str | None = None,
    copy: bool = False,
    project_id: str | None = None,
    paths: AppPaths | None = None,
    keys: SSHKeyManager | None = None,
) -> SSHKey:
    """Record an existing key pair in a project.

    Args:
        key_path: Private key; ``<key_path>.pub`` must exist too.
        name: Key name. Defaults to the file name.
        copy: Copy both files into the project's key directory.
        project_id: Owning project.
        paths: Application paths.
        keys: Key helper.

    Returns:
        The recorded key.

    Raises:
        NotFoundError: If either key file is missing.
    """
    manager = _manager(paths)
    keys = keys or SSHKeyManager()
    project_id = manager.resolve_project_id(project_id)
    manager.load_project(project_id)

    key_path = Path(key_path)
    public_key_path = Path(f"{key_path}.pub")
    if not key_path.exists():
        raise NotFoundError(f"Key file {key_path} does not exist")
    if not public_key_path.exists():
        raise NotFoundError(f"Public key file {public_key_path} does not exist")

    key_name = name or key_path.name
    fingerprint = keys.get_fingerprint(key_path)
    info = parse_public_key(public_key_path.read_text(encoding="utf-8"))

    if copy:
        key_dir = ensure_directory(manager.paths.project_keys_dir(project_id))
        dest_key_path = key_dir / generate_key_name(key_name)
        dest_public_key_path = Path(f"{dest_key_path}.pub")
        copy_file(key_path, dest_key_path)
        copy_file(public_key_path, dest_public_key_path)
        os.chmod(dest_key_path, SSH_KEY_PERMISSIONS)
        os.chmod(dest_public_key_path, SSH_PUB_KEY_PERMISSIONS)
        logger.info(f"Key files copied to {dest_key_path}")
        key_path, public_key_path = dest_key_path, dest_public_key_path

    key = SSHKey(
        id=str(uuid.uuid4()),
        name=key_name,
        type=info.key_type,
        path=str(key_path),
        public_key_path=str(public_key_path),
        fingerprint=fingerprint,
        comment=info.comment,
        bits=info.bits,
    )
    manager.add_key(project_id, key)
    return key


def list_keys(project_id: str | None = None, paths: AppPaths | None = None) -> list[SSHKey]:
    """List a project's keys."""
    manager = _manager(paths)
    return manager.list_keys(manager.resolve_project_id(project_id))


def get_key(
    key_id: str, project_id: str | None = None, paths: AppPaths | None = None
) -> SSHKey:
    """Get a key record."""
    manager = _manager(paths)
    return manager.get_key(manager.resolve_project_id(project_id), key_id)


def show_public_key(
    key_id: str,
    project_id: str | None = None,
    paths: AppPaths | None = None,
    keys: SSHKeyManager | None = None,
) -> str:
    """Read a key's public key text."""
    key = get_key(key_id, project_id, paths)
    return (keys or SSHKeyManager()).read_public_key(key)


def delete_key(
    key_id: str,
    project_id: str | None = None,
    remove_files: bool = False,
    paths: AppPaths | None = None,
    agent: AgentController | None = None,
    keys: SSHKeyManager | None = None,
) -> SSHKey:
    """Remove a key from a project.

    The key is unloaded from the agent first; failing to do so is not
    fatal. Servers referring to the key lose their reference. Key files are
    only deleted with ``remove_files``.

    Returns:
        The removed key record.
    """
    manager = _manager(paths)
    keys = keys or SSHKeyManager()
    agent = agent or AgentController(key_manager=keys)
    project_id = manager.resolve_project_id(project_id)
    key = manager.get_key(project_id, key_id)

    try:
        agent.remove_key(Path(key.path))
    except SSHieldError as e:
        logger.warning(f"Failed to remove key from agent: {e}")

    if remove_files:
        try:
            keys.delete_key_files(key)
            logger.info(f"Key files deleted: {key.path}")
        except IOFailureError as e:
            logger.warning(f"Failed to delete key files: {e}")

    manager.remove_key(project_id, key_id)
    logger.info(f'Key "{key.name}" deleted from project {project_id}')
    return key


def add_key_to_agent(
    key_id: str,
    project_id: str | None = None,
    lifetime: int | None = None,
    passphrase: str | None = None,
    paths: AppPaths | None = None,
    agent: AgentController | None = None,
) -> SSHKey:
    """Load one project key into the agent and record its use.

    Returns:
        The updated key record.
    """
    manager = _manager(paths)
    agent = agent or AgentController()
    project_id = manager.resolve_project_id(project_id)
    key = manager.get_key(project_id, key_id)

    agent.add_key(Path(key.path), lifetime=lifetime, passphrase=passphrase)

    key.last_used = utc_now()
    manager.update_key(project_id, key)
    return key


# Agent


def start_agent(agent: AgentController | None = None) -> AgentEnvironment:
    """Start the SSH agent, or return the running one."""
    return (agent or AgentController()).start_agent()


def stop_agent(agent: AgentController | None = None) -> None:
    """Stop the SSH agent."""
    (agent or AgentController()).stop_agent()


def agent_status(agent: AgentController | None = None) -> AgentStatus:
    """Query the SSH agent."""
    return (agent or AgentController()).get_agent_status()


def add_project_keys_to_agent(
    project_id: str | None = None,
    lifetime: int | None = None,
    paths: AppPaths | None = None,
    agent: AgentController | None = None,
) -> BatchResult:
    """Load every key of a project into the agent.

    Starts the agent when needed. Each key's failure is recorded and the
    remaining keys are still loaded. ``lastUsed`` of loaded keys is saved.

    Args:
        project_id: Project whose keys are loaded.
        lifetime: Key lifetime. Defaults to the configured agent timeout.
        paths: Application paths.
        agent: Agent controller.

    Returns:
        BatchResult with loaded key IDs and failures.
    """
    manager = _manager(paths)
    agent = agent or AgentController()
    project_id = manager.resolve_project_id(project_id)
    project = manager.load_project(project_id)

    if not project.keys:
        logger.info(f"No SSH keys found for project {project_id}.")
        return BatchResult()

    if not agent.is_running():
        logger.info("SSH agent is not running. Starting...")
        agent.start_agent()

    if lifetime is None:
        lifetime = manager.config.load_config().agent_settings.timeout

    result = agent.add_keys({key.id: Path(key.path) for key in project.keys}, lifetime)

    if result.added:
        project = manager.load_project(project_id)
        now = utc_now()
        for key in project.keys:
            if key.id in result.added:
                key.last_used = now
        manager.save_project(project)

    logger.info(f"Added {result.added_count} keys to SSH agent")
    return result


def remove_all_keys_from_agent(agent: AgentController | None = None) -> int:
    """Unload every key from the agent.

    Returns:
        Number of keys that were loaded. 0 when the agent is not running.
    """
    agent = agent or AgentController()
    status = agent.get_agent_status()
    if not status.running:
        logger.info("SSH agent is not running")
        return 0
    if not status.keys:
        logger.info("No keys are loaded in the SSH agent")
        return 0
    agent.remove_all_keys()
    return len(status.keys)


def write_agent_startup_script(
    output_path: Path | None = None,
    project_id: str | None = None,
    lifetime: int | None = None,
    paths: AppPaths | None = None,
) -> Path:
    """Write a shell script that starts an agent and loads a project's keys.

    Returns:
        Path of the executable script.
    """
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    output_path = Path(output_path or manager.paths.base_dir / "agent-startup.sh")

    content = AgentScriptTemplate().render_startup_script(
        project_id, manager.paths.base_dir, lifetime
    )
    write_file(output_path, content, 0o755)
    logger.info(f"SSH agent startup script generated: {output_path}")
    return output_path


def export_agent_environment(
    output_path: Path | None = None,
    paths: AppPaths | None = None,
    agent: AgentController | None = None,
) -> Path:
    """Write a sourceable file exporting the running agent's variables.

    Raises:
        InvalidOperationError: If no agent is running.
    """
    agent = agent or AgentController()
    environment = agent.environment()
    if environment is None or not agent.is_running():
        raise InvalidOperationError("SSH agent is not running")

    base_dir = (paths or AppPaths.default()).base_dir
    output_path = Path(output_path or base_dir / "agent-env")
    ensure_directory(output_path.parent)
    write_file(output_path, AgentScriptTemplate().render_environment(environment))
    logger.info(f"SSH agent environment exported: {output_path}")
    return output_path


# Servers


def add_server(
    name: str,
    hostname: str,
    username: str,
    port: int = 22,
    key_id: str = "",
    options: dict[str, str] | None = None,
    project_id: str | None = None,
    paths: AppPaths | None = None,
) -> ServerConfig:
    """Add a server to a project.

    Raises:
        NotFoundError: If ``key_id`` is not a key of the project.
        ConflictError: If the name is already used.
    """
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    if key_id:
        manager.get_key(project_id, key_id)

    server = ServerConfig(
        id=str(uuid.uuid4()),
        name=name,
        hostname=hostname,
        port=port,
        username=username,
        key_id=key_id,
        options={**DEFAULT_OPTIONS, **(options or {})},
    )
    manager.add_server(project_id, server)
    logger.info(f'Server "{name}" added to project {project_id}')
    return server


def update_server(
    server: str,
    project_id: str | None = None,
    paths: AppPaths | None = None,
    **changes: Any,
) -> ServerConfig:
    """Change fields of a server.

    Args:
        server: Server ID or name.
        project_id: Owning project.
        paths: Application paths.
        **changes: Attribute values (``hostname``, ``port``, ``username``,
            ``key_id``, ``options``, ``name``).

    Returns:
        The updated server.
    """
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    current = manager.find_server(project_id, server)
    if changes.get("key_id"):
        manager.get_key(project_id, changes["key_id"])

    updated = ServerConfig.model_validate({**current.model_dump(), **changes})
    manager.update_server(project_id, updated)
    return updated


def list_servers(
    project_id: str | None = None, paths: AppPaths | None = None
) -> list[ServerConfig]:
    """List a project's servers."""
    manager = _manager(paths)
    return manager.list_servers(manager.resolve_project_id(project_id))


def delete_server(
    server: str, project_id: str | None = None, paths: AppPaths | None = None
) -> ServerConfig:
    """Remove a server by ID or name.

    Returns:
        The removed server.
    """
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    target = manager.find_server(project_id, server)
    manager.remove_server(project_id, target.id)
    logger.info(f'Server "{target.name}" deleted from project {project_id}')
    return target


def _client_for(
    manager: ProjectManager, project_id: str, server: str, with_key: bool = True
) -> tuple[Project, ServerConfig, SSHClient]:
    project = manager.load_project(project_id)
    target = project.find_server(server)
    if target is None:
        raise NotFoundError(f'Server "{server}" not found in project {project_id}')
    key = project.key_for_server(target) if with_key else None
    return project, target, SSHClient.from_server(target, key.path if key else None)


def ssh_command(
    server: str,
    command: str | None = None,
    with_key: bool = True,
    project_id: str | None = None,
    paths: AppPaths | None = None,
) -> str:
    """Render the ssh command line for a server."""
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    _, _, client = _client_for(manager, project_id, server, with_key)
    return client.command_string(command)


def connect(
    server: str,
    command: str | None = None,
    project_id: str | None = None,
    paths: AppPaths | None = None,
) -> int:
    """Open an ssh session to a server in the foreground.

    The server's ``lastUsed`` is saved before connecting.

    Returns:
        Exit code of ssh.
    """
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    _, target, client = _client_for(manager, project_id, server)

    target.last_used = utc_now()
    manager.update_server(project_id, target)
    return client.open_session(command)


def test_server_connection(
    server: str, project_id: str | None = None, paths: AppPaths | None = None
) -> bool:
    """Check that a non-interactive login to a server works."""
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    _, _, client = _client_for(manager, project_id, server)
    return client.test_connection()


def open_tunnel(
    server: str,
    remote_host: str,
    remote_port: int,
    local_port: int | None = None,
    project_id: str | None = None,
    paths: AppPaths | None = None,
) -> tuple[subprocess.Popen, int]:
    """Forward a local port through a server.

    Returns:
        Tuple of (ssh process, local port).
    """
    manager = _manager(paths)
    project_id = manager.resolve_project_id(project_id)
    _, _, client = _client_for(manager, project_id, server)
    local_port = local_port or SSHClient.random_port()
    return client.open_tunnel(local_port, remote_host, remote_port), local_port


# SSH config


def update_ssh_config_with_project(
    project_id: str | None = None, paths: AppPaths | None = None
) -> Path | None:
    """Regenerate a project's block in the SSH client config.

    Returns:
        Path of the backup taken before writing, if the file existed.
    """
    manager = _manager(paths)
    project = manager.load_project(manager.resolve_project_id(project_id))
    synchronizer = SSHConfigSynchronizer(manager.paths.ssh_config_path)
    return synchronizer.update_with_project(project)
