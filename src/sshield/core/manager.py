"""Project store: the single writer of project documents."""

import logging

from pydantic import ValidationError

from sshield.core.config import ConfigManager
from sshield.core.errors import (
    ConflictError,
    InvalidOperationError,
    IOFailureError,
    NotFoundError,
)
from sshield.core.fs import ensure_directory, file_exists, read_json, write_json
from sshield.core.paths import AppPaths, slugify
from sshield.core.types import Project, ServerConfig, SSHKey, utc_now

logger = logging.getLogger(__name__)


class ProjectManager:
    """CRUD over projects and the keys and servers they own.

    Every mutation reloads the whole document, mutates it and writes it
    back. There is no locking: two processes mutating the same project race
    and the last writer wins.
    """

    def __init__(self, paths: AppPaths, config: ConfigManager | None = None) -> None:
        """Initialize project manager.

        Args:
            paths: Application paths.
            config: Configuration manager. Created from ``paths`` if None.
        """
        self._paths = paths
        self._config = config or ConfigManager(paths)

    @property
    def paths(self) -> AppPaths:
        """Get application paths."""
        return self._paths

    @property
    def config(self) -> ConfigManager:
        """Get configuration manager."""
        return self._config

    def resolve_project_id(self, project_id: str | None) -> str:
        """Return ``project_id`` or the active project when None."""
        return project_id or self._config.get_active_project()

    # Projects

    def project_exists(self, project_id: str) -> bool:
        """Check if a project document exists on disk."""
        return file_exists(self._paths.project_file(project_id))

    def load_project(self, project_id: str) -> Project:
        """Load a project document.

        Raises:
            NotFoundError: If the project document does not exist.
            IOFailureError: If the document is malformed.
        """
        project_file = self._paths.project_file(project_id)
        if not file_exists(project_file):
            raise NotFoundError(f"Project {project_id} does not exist ({project_file})")

        data = read_json(project_file)
        try:
            return Project.model_validate(data)
        except ValidationError as e:
            raise IOFailureError(
                f"Invalid project document {project_file}: {e}", project_file
            ) from e

    def save_project(self, project: Project) -> None:
        """Write a project document and register it in the configuration."""
        ensure_directory(self._paths.project_dir(project.id))
        write_json(self._paths.project_file(project.id), project.to_json_dict())

        config = self._config.load_config()
        if project.id not in config.projects:
            config.projects.append(project.id)
            self._config.save_config(config)

    def list_projects(self) -> list[Project]:
        """Load every registered project whose document exists."""
        projects: list[Project] = []
        for project_id in self._config.load_config().projects:
            if self.project_exists(project_id):
                projects.append(self.load_project(project_id))
            else:
                logger.warning(f"Registered project {project_id} has no document")
        return projects

    def create_project(self, name: str, description: str | None = None) -> Project:
        """Create an empty project whose ID is the slug of ``name``.

        Raises:
            ConflictError: If a project with the same ID already exists.
        """
        project_id = slugify(name)
        config = self._config.load_config()
        if project_id in config.projects or self.project_exists(project_id):
            raise ConflictError(f"Project with ID {project_id} already exists")

        project = Project(id=project_id, name=name, description=description)
        self.save_project(project)
        logger.info(f"Created project {project_id}")
        return project

    def update_project(
        self,
        project_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Project:
        """Rename a project or change its description. The ID is kept."""
        project = self.load_project(project_id)
        if name:
            project.name = name
        if description is not None:
            project.description = description
        self.save_project(project)
        return project

    def touch_project(self, project_id: str) -> Project:
        """Set a project's ``lastUsed`` timestamp to now."""
        project = self.load_project(project_id)
        project.last_used = utc_now()
        self.save_project(project)
        return project

    def delete_project(self, project_id: str) -> None:
        """Unregister a project.

        The project directory and its keys stay on disk.

        Raises:
            InvalidOperationError: If ``project_id`` is the default project or
                is not registered.
        """
        config = self._config.load_config()
        if project_id == config.default_project:
            raise InvalidOperationError("Cannot delete the default project")
        if project_id not in config.projects:
            raise InvalidOperationError(f"Project {project_id} is not registered")

        config.projects = [pid for pid in config.projects if pid != project_id]
        if config.active_project == project_id:
            config.active_project = config.default_project
        self._config.save_config(config)

        if self._config.get_active_project() == project_id:
            self._config.set_active_project(config.default_project)

        logger.warning(f"Project {project_id} has been removed from configuration.")
        logger.warning(
            f"The project files remain in {self._paths.project_dir(project_id)}."
        )

    # Keys

    def list_keys(self, project_id: str) -> list[SSHKey]:
        """List the keys of a project."""
        return self.load_project(project_id).keys

    def get_key(self, project_id: str, key_id: str) -> SSHKey:
        """Get a key by ID.

        Raises:
            NotFoundError: If the key is not in the project.
        """
        key = self.load_project(project_id).find_key(key_id)
        if key is None:
            raise NotFoundError(f"Key with ID {key_id} not found in project {project_id}")
        return key

    def add_key(self, project_id: str, key: SSHKey) -> Project:
        """Append a key to a project.

        Raises:
            ConflictError: If a key with the same ID exists.
        """
        project = self.load_project(project_id)
        if project.find_key(key.id) is not None:
            raise ConflictError(
                f"Key with ID {key.id} already exists in project {project_id}"
            )
        project.keys.append(key)
        self.save_project(project)
        return project

    def update_key(self, project_id: str, key: SSHKey) -> Project:
        """Replace a key record with the same ID.

        Raises:
            NotFoundError: If no key has that ID.
        """
        project = self.load_project(project_id)
        for i, existing in enumerate(project.keys):
            if existing.id == key.id:
                project.keys[i] = key
                self.save_project(project)
                return project
        raise NotFoundError(f"Key with ID {key.id} not found in project {project_id}")

    def remove_key(self, project_id: str, key_id: str) -> Project:
        """Remove a key and clear every server reference to it.

        Raises:
            NotFoundError: If the key is not in the project.
        """
        project = self.load_project(project_id)
        if project.find_key(key_id) is None:
            raise NotFoundError(f"Key with ID {key_id} not found in project {project_id}")

        project.keys = [k for k in project.keys if k.id != key_id]
        for server in project.servers:
            if server.key_id == key_id:
                server.key_id = ""
                logger.info(f"Cleared key reference on server {server.name}")

        self.save_project(project)
        return project

    # Servers

    def list_servers(self, project_id: str) -> list[ServerConfig]:
        """List the servers of a project."""
        return self.load_project(project_id).servers

    def find_server(self, project_id: str, server_id_or_name: str) -> ServerConfig:
        """Find a server by ID or name.

        Raises:
            NotFoundError: If no server matches.
        """
        server = self.load_project(project_id).find_server(server_id_or_name)
        if server is None:
            raise NotFoundError(
                f'Server "{server_id_or_name}" not found in project {project_id}'
            )
        return server

    def add_server(self, project_id: str, server: ServerConfig) -> Project:
        """Append a server to a project.

        Raises:
            ConflictError: If the server ID or name is already used.
        """
        project = self.load_project(project_id)
        for existing in project.servers:
            if existing.id == server.id:
                raise ConflictError(
                    f"Server with ID {server.id} already exists in project {project_id}"
                )
            if existing.name == server.name:
                raise ConflictError(
                    f"Server with name {server.name} already exists in project {project_id}"
                )
        project.servers.append(server)
        self.save_project(project)
        return project

    def update_server(self, project_id: str, server: ServerConfig) -> Project:
        """Replace a server record with the same ID.

        Raises:
            NotFoundError: If no server has that ID.
            ConflictError: If the new name belongs to another server.
        """
        project = self.load_project(project_id)
        index = None
        for i, existing in enumerate(project.servers):
            if existing.id == server.id:
                index = i
            elif existing.name == server.name:
                raise ConflictError(
                    f"Server with name {server.name} already exists in project {project_id}"
                )
        if index is None:
            raise NotFoundError(
                f"Server with ID {server.id} not found in project {project_id}"
            )
        project.servers[index] = server
        self.save_project(project)
        return project

    def remove_server(self, project_id: str, server_id: str) -> Project:
        """Remove a server.

        Raises:
            NotFoundError: If no server has that ID.
        """
        project = self.load_project(project_id)
        remaining = [s for s in project.servers if s.id != server_id]
        if len(remaining) == len(project.servers):
            raise NotFoundError(
                f"Server with ID {server_id} not found in project {project_id}"
            )
        project.servers = remaining
        self.save_project(project)
        return project
