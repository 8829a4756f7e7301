"""Tests for sshield.ssh.client module."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sshield.core.errors import ExternalToolError
from sshield.core.types import ServerConfig
from sshield.ssh.client import SSHClient


class TestSSHClient:
    """Tests for SSHClient class."""

    @pytest.fixture
    def ssh_client(self, temp_dir: Path) -> SSHClient:
        """Create SSH client for testing."""
        key_path = temp_dir / "test_key"
        key_path.write_text("fake_key", encoding="utf-8")
        return SSHClient(
            host="10.0.0.5",
            port=2222,
            username="deploy",
            private_key_path=key_path,
            timeout=10,
        )

    def test_init(self, ssh_client: SSHClient) -> None:
        """Test initialization."""
        assert ssh_client.host == "10.0.0.5"
        assert ssh_client.port == 2222
        assert ssh_client.username == "deploy"

    def test_from_server(self) -> None:
        """Test creating from a server definition."""
        server = ServerConfig(id="s1", name="web", hostname="example.com", username="admin")
        client = SSHClient.from_server(server, "/keys/k")
        assert client.host == "example.com"
        assert client.port == 22
        assert client.build_command() == ["ssh", "admin@example.com", "-i", "/keys/k"]

    def test_build_command(self, ssh_client: SSHClient, temp_dir: Path) -> None:
        """Test SSH command building."""
        cmd = ssh_client.build_command("uptime")
        assert cmd == [
            "ssh",
            "deploy@10.0.0.5",
            "-p",
            "2222",
            "-i",
            str(temp_dir / "test_key"),
            "uptime",
        ]

    def test_build_command_default_port(self) -> None:
        """Test that port 22 is not passed explicitly."""
        cmd = SSHClient("h", 22, "u").build_command(extra_options=["-v"])
        assert cmd == ["ssh", "u@h", "-v"]

    def test_command_string(self, ssh_client: SSHClient, temp_dir: Path) -> None:
        """Test the printable command."""
        text = ssh_client.command_string("ls -la")
        assert text == f'ssh deploy@10.0.0.5 -p 2222 -i "{temp_dir / "test_key"}" "ls -la"'
        assert SSHClient("h", 22, "u").command_string() == "ssh u@h"

    @patch("subprocess.run")
    def test_test_connection(self, mock_run: MagicMock, ssh_client: SSHClient) -> None:
        """Test the connection check."""
        mock_run.return_value = MagicMock(returncode=0, stdout="ok\n", stderr="")
        assert ssh_client.test_connection() is True

        cmd = mock_run.call_args[0][0]
        assert "BatchMode=yes" in cmd
        assert cmd[-1] == "echo ok"

    @patch("subprocess.run")
    def test_test_connection_failure(
        self, mock_run: MagicMock, ssh_client: SSHClient
    ) -> None:
        """Test a failing connection check."""
        mock_run.return_value = MagicMock(returncode=255, stdout="", stderr="refused")
        assert ssh_client.test_connection() is False

        mock_run.side_effect = subprocess.TimeoutExpired(["ssh"], 15)
        assert ssh_client.test_connection() is False

    @patch("subprocess.Popen")
    def test_open_session(self, mock_popen: MagicMock, ssh_client: SSHClient) -> None:
        """Test a foreground session."""
        mock_popen.return_value.wait.return_value = 0
        assert ssh_client.open_session() == 0
        assert mock_popen.call_args[0][0][1] == "deploy@10.0.0.5"

    @patch("subprocess.Popen")
    def test_open_session_interrupt(
        self, mock_popen: MagicMock, ssh_client: SSHClient
    ) -> None:
        """Test that Ctrl-C terminates the ssh child."""
        process = mock_popen.return_value
        process.wait.side_effect = [KeyboardInterrupt(), 0]
        process.poll.return_value = None

        with pytest.raises(KeyboardInterrupt):
            ssh_client.open_session()
        process.terminate.assert_called_once()

    @patch("subprocess.Popen", side_effect=FileNotFoundError("ssh"))
    def test_open_session_missing_ssh(
        self, mock_popen: MagicMock, ssh_client: SSHClient
    ) -> None:
        """Test a missing ssh binary."""
        with pytest.raises(ExternalToolError):
            ssh_client.open_session()

    @patch("subprocess.Popen")
    def test_tunnel(self, mock_popen: MagicMock, ssh_client: SSHClient) -> None:
        """Test opening and closing a tunnel."""
        process = mock_popen.return_value
        process.poll.return_value = None

        tunnel = ssh_client.open_tunnel(15432, "db.internal", 5432)
        cmd = mock_popen.call_args[0][0]
        assert "-N" in cmd
        assert cmd[cmd.index("-L") + 1] == "15432:db.internal:5432"

        SSHClient.close_tunnel(tunnel)
        process.terminate.assert_called_once()

    def test_random_port(self) -> None:
        """Test the tunnel port range."""
        assert 10000 <= SSHClient.random_port() <= 65000
