"""Synchronization of project servers into the SSH client config file."""

import logging
import re
from pathlib import Path

from sshield.core.constant import SERVER_ALIVE_COUNT_MAX, SERVER_ALIVE_INTERVAL
from sshield.core.fs import backup_file, ensure_directory, read_file, write_file
from sshield.core.types import Project

logger = logging.getLogger(__name__)

HEADER_PREFIX = "# Project: "

# "# Project: <name> (<id>)"
_HEADER_RE = re.compile(r"^# Project: .* \(([^()\s]+)\)$")

DEFAULT_OPTIONS: dict[str, str] = {
    "ServerAliveInterval": str(SERVER_ALIVE_INTERVAL),
    "ServerAliveCountMax": str(SERVER_ALIVE_COUNT_MAX),
}


def header_project_id(line: str) -> str | None:
    """Return the project ID encoded in a managed header line, if any."""
    match = _HEADER_RE.match(line.rstrip("\r\n"))
    return match.group(1) if match else None


def format_host_entry(
    host: str,
    hostname: str,
    user: str,
    port: int = 22,
    identity_file: str | None = None,
    options: dict[str, str] | None = None,
) -> str:
    """Format one ``Host`` entry.

    ``Port`` is always written, ``IdentityFile`` only when a key resolves.

    Args:
        host: Host alias.
        hostname: Real host name or address.
        user: Login user.
        port: SSH port.
        identity_file: Private key path.
        options: Extra options, written after the fixed fields.

    Returns:
        Entry text without a trailing newline.
    """
    lines = [
        f"Host {host}",
        f"    HostName {hostname}",
        f"    User {user}",
        f"    Port {port}",
    ]
    if identity_file:
        lines.append(f"    IdentityFile {identity_file}")
    for name, value in (options or {}).items():
        lines.append(f"    {name} {value}")
    return "\n".join(lines)


class SSHConfigSynchronizer:
    """Rewrites one project's block inside the SSH client config.

    A block starts at the project's header comment and owns every line up
    to the next project header or the end of the file. Everything outside
    owned blocks is left untouched.
    """

    def __init__(self, config_path: Path) -> None:
        """Initialize synchronizer.

        Args:
            config_path: SSH client config file (usually ``~/.ssh/config``).
        """
        self._config_path = config_path

    @property
    def config_path(self) -> Path:
        """Get the SSH config path."""
        return self._config_path

    @staticmethod
    def project_header(project: Project) -> str:
        """Format the header comment identifying a project's block."""
        return f"{HEADER_PREFIX}{project.name} ({project.id})"

    def render_project_block(self, project: Project) -> str:
        """Render the header and one entry per server.

        Returns:
            Block text ending with a blank line.
        """
        entries: list[str] = []
        for server in project.servers:
            key = project.key_for_server(server)
            entries.append(
                format_host_entry(
                    server.name,
                    hostname=server.hostname,
                    user=server.username,
                    port=server.port,
                    identity_file=key.path if key else None,
                    options={**DEFAULT_OPTIONS, **server.options},
                )
            )

        block = self.project_header(project) + "\n"
        if entries:
            block += "\n\n".join(entries) + "\n"
        return block + "\n"

    @staticmethod
    def find_block(lines: list[str], project_id: str) -> tuple[int, int] | None:
        """Locate a project's owned span.

        Args:
            lines: File lines, each keeping its line ending.
            project_id: Project to look for.

        Returns:
            ``(start, end)`` line indices (end exclusive), or None.
        """
        start = None
        for index, line in enumerate(lines):
            header_id = header_project_id(line)
            if header_id is None:
                continue
            if start is not None:
                return (start, index)
            if header_id == project_id:
                start = index
        if start is None:
            return None
        return (start, len(lines))

    def merge_block(self, content: str, project_id: str, block: str) -> str:
        """Replace or append a project's block.

        Args:
            content: Current config file content.
            project_id: Project owning ``block``.
            block: Rendered block.

        Returns:
            New file content.
        """
        lines = content.splitlines(keepends=True)
        span = self.find_block(lines, project_id)
        if span is not None:
            start, end = span
            return "".join(lines[:start]) + block + "".join(lines[end:])

        if not content.strip():
            return block
        separator = "\n" if content.endswith("\n") else "\n\n"
        return content + separator + block

    def remove_block(self, content: str, project_id: str) -> str:
        """Drop a project's block, leaving the rest untouched."""
        lines = content.splitlines(keepends=True)
        span = self.find_block(lines, project_id)
        if span is None:
            return content
        start, end = span
        return "".join(lines[:start]) + "".join(lines[end:])

    def read(self) -> str:
        """Read the config file, empty if it does not exist."""
        if not self._config_path.exists():
            return ""
        return read_file(self._config_path)

    def backup(self) -> Path | None:
        """Copy the config file aside before it is modified.

        Returns:
            Backup path, or None when there is no file yet.
        """
        if not self._config_path.exists():
            return None
        backup_path = backup_file(self._config_path)
        logger.info(f"SSH config backed up to {backup_path}")
        return backup_path

    def write(self, content: str) -> None:
        """Write the whole config file in one go."""
        ensure_directory(self._config_path.parent)
        write_file(self._config_path, content)

    def update_with_project(self, project: Project) -> Path | None:
        """Regenerate a project's block in the config file.

        Returns:
            Path of the backup taken before writing, if any.
        """
        backup_path = self.backup()
        content = self.merge_block(
            self.read(), project.id, self.render_project_block(project)
        )
        self.write(content)
        logger.info(
            f"SSH config updated with {len(project.servers)} servers "
            f"from project {project.id}."
        )
        return backup_path

    def remove_project(self, project_id: str) -> Path | None:
        """Remove a project's block from the config file.

        Returns:
            Path of the backup taken before writing, if any.
        """
        content = self.read()
        updated = self.remove_block(content, project_id)
        if updated == content:
            return None
        backup_path = self.backup()
        self.write(updated)
        return backup_path
