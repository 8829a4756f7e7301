"""SSH connections to project servers through the system ssh client."""

import logging
import random
import subprocess
from pathlib import Path

from sshield.core.errors import ExternalToolError
from sshield.core.types import ServerConfig

logger = logging.getLogger(__name__)


class SSHClient:
    """Builds and runs ssh commands for one server."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        private_key_path: Path | None = None,
        timeout: int = 10,
    ) -> None:
        """Initialize SSH client.

        Args:
            host: Remote host address.
            port: SSH port.
            username: SSH username.
            private_key_path: Path to private key file, None to rely on the
                agent or ssh_config.
            timeout: Connection timeout in seconds.
        """
        self._host = host
        self._port = port
        self._username = username
        self._private_key_path = private_key_path
        self._timeout = timeout

    @classmethod
    def from_server(
        cls, server: ServerConfig, private_key_path: Path | str | None = None
    ) -> "SSHClient":
        """Create SSH client from a server definition.

        Args:
            server: Server configuration.
            private_key_path: Path to private key file.

        Returns:
            SSHClient instance.
        """
        return cls(
            host=server.hostname,
            port=server.port,
            username=server.username,
            private_key_path=Path(private_key_path) if private_key_path else None,
        )

    @property
    def host(self) -> str:
        """Get remote host."""
        return self._host

    @property
    def port(self) -> int:
        """Get SSH port."""
        return self._port

    @property
    def username(self) -> str:
        """Get SSH username."""
        return self._username

    def build_command(
        self,
        command: str | None = None,
        extra_options: list[str] | None = None,
    ) -> list[str]:
        """Build SSH command line.

        Args:
            command: Remote command to execute.
            extra_options: Additional SSH options.

        Returns:
            Command line as list.
        """
        cmd = ["ssh", f"{self._username}@{self._host}"]
        if self._port != 22:
            cmd.extend(["-p", str(self._port)])
        if self._private_key_path:
            cmd.extend(["-i", str(self._private_key_path)])
        if extra_options:
            cmd.extend(extra_options)
        if command:
            cmd.append(command)
        return cmd

    def command_string(self, command: str | None = None) -> str:
        """Render the ssh invocation the way a user would type it."""
        text = f"ssh {self._username}@{self._host}"
        if self._port != 22:
            text += f" -p {self._port}"
        if self._private_key_path:
            text += f' -i "{self._private_key_path}"'
        if command:
            text += f' "{command}"'
        return text

    def test_connection(self) -> bool:
        """Check that a non-interactive login succeeds.

        Returns:
            True if connected, False otherwise.
        """
        cmd = self.build_command(
            "echo ok",
            [
                "-o",
                "BatchMode=yes",
                "-o",
                f"ConnectTimeout={self._timeout}",
                "-o",
                "StrictHostKeyChecking=accept-new",
            ],
        )
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self._timeout + 5,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            logger.debug(f"Connection test to {self._host} failed: {e}")
            return False
        return result.returncode == 0

    def open_session(self, command: str | None = None) -> int:
        """Run ssh in the foreground, attached to the terminal.

        Ctrl-C terminates the ssh child before propagating.

        Args:
            command: Remote command, None for an interactive shell.

        Returns:
            Exit code of ssh.
        """
        cmd = self.build_command(command)
        logger.info(f"Executing: {self.command_string(command)}")
        try:
            process = subprocess.Popen(cmd)
        except (FileNotFoundError, OSError) as e:
            raise ExternalToolError(f"Failed to run ssh: {e}", cmd) from e

        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            self._terminate(process)
            raise

        # ssh reports 255 for connection errors and when the remote shell
        # was closed abruptly; neither is fatal here
        if returncode not in (0, 255):
            logger.warning(f"SSH process exited with code {returncode}")
        return returncode

    def open_tunnel(
        self,
        local_port: int,
        remote_host: str,
        remote_port: int,
    ) -> subprocess.Popen:
        """Start a local port forward in the background.

        Args:
            local_port: Port on localhost.
            remote_host: Host reachable from the server.
            remote_port: Port on ``remote_host``.

        Returns:
            The ssh process; pass it to :meth:`close_tunnel`.
        """
        cmd = self.build_command(
            extra_options=[
                "-N",
                "-L",
                f"{local_port}:{remote_host}:{remote_port}",
                "-o",
                "ExitOnForwardFailure=yes",
            ]
        )
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except (FileNotFoundError, OSError) as e:
            raise ExternalToolError(f"Failed to run ssh: {e}", cmd) from e

        logger.info(
            f"SSH tunnel: localhost:{local_port} -> {remote_host}:{remote_port} "
            f"via {self._host}"
        )
        return process

    @classmethod
    def close_tunnel(cls, process: subprocess.Popen) -> None:
        """Stop a tunnel started by :meth:`open_tunnel`."""
        cls._terminate(process)

    @staticmethod
    def _terminate(process: subprocess.Popen, timeout: float = 5.0) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    @staticmethod
    def random_port() -> int:
        """Pick a local port for a tunnel."""
        return random.randint(10000, 65000)
