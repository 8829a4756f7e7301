"""Filesystem primitives with permission handling."""

import json
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sshield.core.constant import SSH_DIR_PERMISSIONS, SSH_KEY_PERMISSIONS
from sshield.core.errors import IOFailureError

logger = logging.getLogger(__name__)


def ensure_directory(path: Path, mode: int = SSH_DIR_PERMISSIONS) -> Path:
    """Create a directory (and parents) with restricted permissions.

    An existing directory is left untouched, including its mode.

    Args:
        path: Directory to create.
        mode: Permission bits applied to a newly created directory.

    Returns:
        The directory path.

    Raises:
        IOFailureError: If the directory cannot be created.
    """
    if path.is_dir():
        return path
    try:
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, mode)
    except OSError as e:
        raise IOFailureError(f"Failed to create directory {path}: {e}", path) from e
    return path


def file_exists(path: Path) -> bool:
    """Check whether a path exists."""
    return path.exists()


def read_file(path: Path) -> str:
    """Read a UTF-8 text file.

    Raises:
        IOFailureError: If the file cannot be read.
    """
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise IOFailureError(f"Failed to read file {path}: {e}", path) from e


def write_file(path: Path, content: str, mode: int = SSH_KEY_PERMISSIONS) -> None:
    """Write a UTF-8 text file and set its permissions.

    Args:
        path: Destination file.
        content: Text to write.
        mode: Permission bits applied after writing.

    Raises:
        IOFailureError: If the file cannot be written.
    """
    try:
        path.write_text(content, encoding="utf-8")
        os.chmod(path, mode)
    except OSError as e:
        raise IOFailureError(f"Failed to write file {path}: {e}", path) from e


def read_json(path: Path) -> Any:
    """Read a JSON document.

    A malformed document is an error; callers must never replace it silently.

    Raises:
        IOFailureError: If the file cannot be read or parsed.
    """
    content = read_file(path)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise IOFailureError(f"Malformed JSON in {path}: {e}", path) from e


def write_json(path: Path, data: Any, mode: int = SSH_KEY_PERMISSIONS) -> None:
    """Write a JSON document with two-space indentation."""
    write_file(path, json.dumps(data, indent=2, default=str) + "\n", mode)


def copy_file(source: Path, destination: Path) -> None:
    """Copy a file, overwriting the destination and keeping its mode."""
    try:
        shutil.copy2(source, destination)
    except OSError as e:
        raise IOFailureError(
            f"Failed to copy file {source} to {destination}: {e}", source
        ) from e


def delete_file(path: Path) -> bool:
    """Delete a file.

    Returns:
        True if deleted, False if it did not exist.
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise IOFailureError(f"Failed to delete file {path}: {e}", path) from e
    return True


def backup_timestamp(moment: datetime | None = None) -> str:
    """Format a timestamp usable as a file name suffix."""
    moment = moment or datetime.now(timezone.utc)
    return re.sub(r"[:.+]", "-", moment.isoformat())


def backup_file(path: Path) -> Path:
    """Copy a file next to itself with a timestamp suffix.

    Args:
        path: File to back up.

    Returns:
        Path of the backup copy.
    """
    backup_path = path.with_name(f"{path.name}.{backup_timestamp()}")
    copy_file(path, backup_path)
    logger.debug(f"Backed up {path} to {backup_path}")
    return backup_path
