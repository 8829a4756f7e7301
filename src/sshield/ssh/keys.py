"""SSH key generation and inspection through ssh-keygen."""

import logging
import os
import re
import secrets
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from sshield.core.constant import (
    DEFAULT_KDF_ROUNDS,
    DEFAULT_KEY_BITS,
    SSH_KEY_PERMISSIONS,
    SSH_PUB_KEY_PERMISSIONS,
)
from sshield.core.errors import (
    ConflictError,
    ExternalToolError,
    InvalidOperationError,
    NotFoundError,
)
from sshield.core.fs import delete_file, read_file
from sshield.core.types import KeyType, SSHKey

logger = logging.getLogger(__name__)

# "256 SHA256:abc... comment (ED25519)"
_FINGERPRINT_RE = re.compile(r"^(\d+)\s+(\S+)\s*(.*?)\s*\(([A-Z0-9-]+)\)\s*$")


class SSHKeyPair(NamedTuple):
    """SSH key pair."""

    private_key_path: Path
    public_key_path: Path
    public_key_content: str


class PublicKeyInfo(NamedTuple):
    """Fields of an OpenSSH public key line."""

    algorithm: str
    key: str
    comment: str | None
    key_type: KeyType
    bits: int | None


def generate_key_name(purpose: str, timestamp: datetime | None = None) -> str:
    """Build a collision resistant key file name.

    Args:
        purpose: Human readable key name.
        timestamp: Time to embed. Defaults to now.

    Returns:
        Name like ``deploy-key_20240101120000_1a2b3c``.
    """
    base = re.sub(r"[^a-z0-9]+", "-", purpose.lower()).strip("-") or "key"
    stamp = (timestamp or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    return f"{base}_{stamp}_{secrets.token_hex(3)}"


def parse_public_key(content: str) -> PublicKeyInfo:
    """Parse an OpenSSH public key line.

    Args:
        content: Public key text (``<algorithm> <base64> [comment]``).

    Returns:
        PublicKeyInfo with the algorithm mapped to a KeyType.

    Raises:
        ExternalToolError: If the content is not a public key line.
    """
    parts = content.strip().split(None, 2)
    if len(parts) < 2:
        raise ExternalToolError(f"Unparseable public key: {content.strip()[:40]!r}")

    algorithm, key = parts[0], parts[1]
    comment = parts[2] if len(parts) > 2 else None
    key_type = KeyType.from_public_key_prefix(algorithm)

    bits: int | None = None
    try:
        public_key = serialization.load_ssh_public_key(f"{algorithm} {key}".encode())
    except (ValueError, TypeError, NotImplementedError, UnsupportedAlgorithm):
        logger.debug(f"cryptography cannot load {algorithm} key")
    else:
        if isinstance(public_key, rsa.RSAPublicKey):
            bits = public_key.key_size
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            bits = public_key.curve.key_size
        elif key_type is KeyType.ED25519:
            bits = 256

    return PublicKeyInfo(algorithm, key, comment, key_type, bits)


class SSHKeyManager:
    """Creates and inspects key files with the platform ssh-keygen."""

    def __init__(self, keygen_binary: str = "ssh-keygen", timeout: int = 60) -> None:
        """Initialize SSH key manager.

        Args:
            keygen_binary: ssh-keygen executable.
            timeout: Timeout for each ssh-keygen call in seconds.
        """
        self._keygen = keygen_binary
        self._timeout = timeout

    def _run(self, args: list[str], action: str) -> subprocess.CompletedProcess:
        """Run ssh-keygen and fail on a non-zero exit code."""
        cmd = [self._keygen, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self._timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            raise ExternalToolError(f"Failed to {action}: {e}", cmd) from e

        if result.returncode != 0:
            raise ExternalToolError(
                f"Failed to {action}", cmd, result.returncode, result.stderr
            )
        return result

    def generate_key(
        self,
        key_path: Path,
        key_type: KeyType = KeyType.ED25519,
        bits: int = DEFAULT_KEY_BITS,
        kdf_rounds: int = DEFAULT_KDF_ROUNDS,
        passphrase: str = "",
        comment: str = "",
        force: bool = False,
    ) -> SSHKeyPair:
        """Generate a key pair at ``key_path`` and ``key_path.pub``.

        Args:
            key_path: Private key destination.
            key_type: Algorithm. ``UNKNOWN`` is rejected.
            bits: Key size for RSA and ECDSA keys.
            kdf_rounds: KDF rounds protecting the private key.
            passphrase: Passphrase, empty for none.
            comment: Key comment.
            force: Overwrite existing files.

        Returns:
            SSHKeyPair for the generated files.

        Raises:
            ConflictError: If the key file exists and ``force`` is False.
            InvalidOperationError: If ``key_type`` is ``UNKNOWN``.
            ExternalToolError: If ssh-keygen fails.
        """
        if key_type is KeyType.UNKNOWN:
            raise InvalidOperationError("Cannot generate a key of unknown type")

        public_key_path = Path(f"{key_path}.pub")
        if key_path.exists():
            if not force:
                raise ConflictError(
                    f"Key file {key_path} already exists. Use force to overwrite."
                )
            delete_file(key_path)
            delete_file(public_key_path)

        args = ["-t", key_type.value, "-a", str(kdf_rounds)]
        if key_type is KeyType.RSA:
            args += ["-b", str(bits)]
        elif key_type is KeyType.ECDSA:
            # ecdsa only supports 256, 384 and 521
            args += ["-b", str(bits if bits in (256, 384, 521) else 521)]
        args += ["-N", passphrase, "-C", comment, "-f", str(key_path), "-q"]

        self._run(args, f"generate key {key_path}")

        os.chmod(key_path, SSH_KEY_PERMISSIONS)
        os.chmod(public_key_path, SSH_PUB_KEY_PERMISSIONS)
        logger.info(f"Generated {key_type.value} key {key_path}")

        return SSHKeyPair(
            private_key_path=key_path,
            public_key_path=public_key_path,
            public_key_content=read_file(public_key_path),
        )

    def get_fingerprint(self, key_path: Path) -> str:
        """Get the SHA256 fingerprint of a key file.

        Raises:
            NotFoundError: If the file does not exist.
            ExternalToolError: If ssh-keygen fails or its output is unparseable.
        """
        if not key_path.exists():
            raise NotFoundError(f"Key file {key_path} does not exist")

        result = self._run(["-lf", str(key_path)], f"fingerprint {key_path}")
        match = _FINGERPRINT_RE.match(result.stdout.strip())
        if match is None:
            raise ExternalToolError(
                f"Unparseable fingerprint output for {key_path}: {result.stdout!r}",
                [self._keygen, "-lf", str(key_path)],
            )
        return match.group(2)

    def requires_passphrase(self, key_path: Path) -> bool:
        """Check whether a private key is protected by a passphrase.

        Raises:
            NotFoundError: If the file does not exist.
        """
        if not key_path.exists():
            raise NotFoundError(f"Key file {key_path} does not exist")

        cmd = [self._keygen, "-y", "-P", "", "-f", str(key_path)]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self._timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            raise ExternalToolError(f"Failed to inspect key {key_path}: {e}", cmd) from e

        if result.returncode == 0:
            return False
        if "passphrase" in result.stderr.lower():
            return True
        raise ExternalToolError(
            f"Failed to inspect key {key_path}", cmd, result.returncode, result.stderr
        )

    def read_public_key(self, key: SSHKey) -> str:
        """Read the public key text of a key record.

        Raises:
            NotFoundError: If the public key file is missing.
        """
        public_key_path = Path(key.public_key_path)
        if not public_key_path.exists():
            raise NotFoundError(
                f"Public key file {public_key_path} for key {key.id} does not exist"
            )
        return read_file(public_key_path)

    def delete_key_files(self, key: SSHKey) -> bool:
        """Delete the private and public key files of a key record.

        Returns:
            True if anything was deleted.
        """
        deleted = False
        for path in (Path(key.path), Path(key.public_key_path)):
            if delete_file(path):
                deleted = True
        return deleted
