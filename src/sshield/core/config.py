"""Application configuration and active project management."""

import logging

from pydantic import ValidationError

from sshield.core.constant import APP_NAME, DEFAULT_PROJECT, DEFAULT_PROJECT_NAME
from sshield.core.errors import IOFailureError
from sshield.core.fs import (
    ensure_directory,
    file_exists,
    read_file,
    read_json,
    write_file,
    write_json,
)
from sshield.core.paths import AppPaths
from sshield.core.types import AppConfig, Project

logger = logging.getLogger(__name__)


class ConfigManager:
    """Reads and writes ``config.json`` and the active project pointer.

    The pointer file is authoritative for the active project. The
    ``activeProject`` field in ``config.json`` is a mirror updated on every
    change; if a partial failure leaves them diverged, the pointer wins.
    """

    def __init__(self, paths: AppPaths) -> None:
        """Initialize configuration manager.

        Args:
            paths: Application paths.
        """
        self._paths = paths

    @property
    def paths(self) -> AppPaths:
        """Get application paths."""
        return self._paths

    def is_initialized(self) -> bool:
        """Check if a configuration file exists."""
        return file_exists(self._paths.config_file)

    def initialize(self, force: bool = False) -> bool:
        """Create directories, the default config and the default project.

        Args:
            force: Rewrite the configuration even if it exists.

        Returns:
            True if initialized, False if it already existed.
        """
        self._paths.ensure_directories()

        if self.is_initialized() and not force:
            logger.info("Configuration already exists. Use force to reinitialize.")
            return False

        write_json(self._paths.config_file, AppConfig().to_json_dict())

        ensure_directory(self._paths.project_dir(DEFAULT_PROJECT))
        default_project = Project(id=DEFAULT_PROJECT, name=DEFAULT_PROJECT_NAME)
        write_json(
            self._paths.project_file(DEFAULT_PROJECT), default_project.to_json_dict()
        )

        self.set_active_project(DEFAULT_PROJECT)
        logger.info(f"{APP_NAME} initialized in {self._paths.base_dir}")
        return True

    def load_config(self) -> AppConfig:
        """Load the configuration, bootstrapping it when missing.

        Raises:
            IOFailureError: If the file exists but is malformed.
        """
        if not self.is_initialized():
            self.initialize()

        data = read_json(self._paths.config_file)
        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise IOFailureError(
                f"Invalid configuration in {self._paths.config_file}: {e}",
                self._paths.config_file,
            ) from e

    def save_config(self, config: AppConfig) -> None:
        """Overwrite the configuration file."""
        ensure_directory(self._paths.config_dir)
        write_json(self._paths.config_file, config.to_json_dict())

    def get_active_project(self) -> str:
        """Get the active project ID.

        Reads the pointer file, falling back to the default project.
        """
        pointer = self._paths.active_project_file
        if file_exists(pointer):
            project_id = read_file(pointer).strip()
            if project_id:
                return project_id
        return self.load_config().default_project

    def set_active_project(self, project_id: str) -> None:
        """Point the active project at ``project_id``.

        Writes the pointer file first, then mirrors the value into the
        configuration.
        """
        ensure_directory(self._paths.config_dir)
        write_file(self._paths.active_project_file, project_id)

        config = self.load_config()
        config.active_project = project_id
        self.save_config(config)
