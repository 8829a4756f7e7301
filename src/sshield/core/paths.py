"""Application data directory and path utilities."""

import os
import platform
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pydantic import BaseModel

from sshield.core.constant import PROJECT_ID_PATTERN
from sshield.core.errors import InvalidOperationError
from sshield.core.fs import ensure_directory


def get_app_data_dir() -> Path:
    """Get the application data directory.

    Returns:
        Path to the application data directory.
        - ``$SSHIELD_HOME`` when set
        - Windows: %APPDATA%/sshield
        - Linux/macOS: ~/.sshield
    """
    override = os.environ.get("SSHIELD_HOME")
    if override:
        return Path(override).expanduser()

    if platform.system() == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "sshield"
        return Path.home() / "AppData" / "Roaming" / "sshield"

    return Path.home() / ".sshield"


def get_ssh_config_path() -> Path:
    """Get the SSH client configuration file path."""
    override = os.environ.get("SSHIELD_SSH_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".ssh" / "config"


def slugify(name: str) -> str:
    """Derive a project ID from a human readable name.

    Lowercases, turns every character outside ``[a-z0-9]`` into a hyphen,
    collapses hyphen runs and strips hyphens from both ends.

    Args:
        name: Project name.

    Returns:
        Slug string.

    Raises:
        InvalidOperationError: If nothing usable remains.
    """
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    if not slug:
        raise InvalidOperationError(f"Cannot derive a project ID from name {name!r}")
    return slug


def check_project_id(project_id: str) -> str:
    """Reject project IDs that are not slugs.

    Returns:
        ``project_id`` unchanged.

    Raises:
        InvalidOperationError: If ``project_id`` could escape the data
            directory or break ssh_config markers.
    """
    if not re.fullmatch(PROJECT_ID_PATTERN, project_id):
        raise InvalidOperationError(f"Invalid project ID {project_id!r}")
    return project_id


class AppPaths(BaseModel):
    """Locations of everything sshield reads and writes."""

    base_dir: Path
    ssh_config_path: Path

    @classmethod
    def default(cls) -> "AppPaths":
        """Build paths from the environment and the user's home directory."""
        return cls(base_dir=get_app_data_dir(), ssh_config_path=get_ssh_config_path())

    @classmethod
    def under(cls, base_dir: Path, ssh_config_path: Path | None = None) -> "AppPaths":
        """Build paths rooted at ``base_dir``.

        Args:
            base_dir: Base directory for sshield data.
            ssh_config_path: SSH config file; defaults to ``base_dir/ssh_config``.
        """
        return cls(
            base_dir=base_dir,
            ssh_config_path=ssh_config_path or base_dir / "ssh_config",
        )

    @property
    def keys_dir(self) -> Path:
        return self.base_dir / "keys"

    @property
    def config_dir(self) -> Path:
        return self.base_dir / "config"

    @property
    def projects_dir(self) -> Path:
        return self.base_dir / "projects"

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def active_project_file(self) -> Path:
        return self.config_dir / "active-project"

    @property
    def log_file(self) -> Path:
        return self.logs_dir / "sshield.log"

    def project_dir(self, project_id: str) -> Path:
        """Get the directory holding a project's document.

        Raises:
            InvalidOperationError: If ``project_id`` is not a slug.
        """
        return self.projects_dir / check_project_id(project_id)

    def project_file(self, project_id: str) -> Path:
        """Get the path of a project's JSON document."""
        return self.project_dir(project_id) / "project.json"

    def project_keys_dir(self, project_id: str) -> Path:
        """Get the directory holding a project's key files."""
        return self.keys_dir / check_project_id(project_id)

    def ensure_directories(self) -> None:
        """Create the base, config, keys, projects and logs directories.

        The targets are disjoint, so they are created concurrently.
        """
        ensure_directory(self.base_dir)
        targets = [self.config_dir, self.keys_dir, self.projects_dir, self.logs_dir]
        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            # list() re-raises the first failure
            list(pool.map(ensure_directory, targets))
