"""Tests for sshield.ssh.agent module."""

import os
import subprocess
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from sshield.core.errors import AuthRequiredError, ExternalToolError, NotFoundError
from sshield.ssh.agent import AgentController

REAL_RUN = subprocess.run

AGENT_ENV = {"SSH_AUTH_SOCK": "/tmp/ssh-test/agent.1", "SSH_AGENT_PID": "1234"}

LISTING = (
    "256 SHA256:testfingerprint test@host (ED25519)\n"
    "3072 SHA256:otherfingerprint ops key (RSA)\n"
)


def completed(
    returncode: int = 0, stdout: str = "", stderr: str = ""
) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


class FakeTools:
    """Scripted responses for ssh-agent and ssh-add."""

    def __init__(self, list_result: subprocess.CompletedProcess) -> None:
        self.list_result = list_result
        self.add_result = completed()
        self.calls: list[tuple[list[str], dict[str, str]]] = []

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        self.calls.append((cmd, kwargs.get("env", {})))
        if cmd[:2] == ["ssh-add", "-l"]:
            return self.list_result
        if cmd[:2] == ["ssh-agent", "-s"]:
            return completed(
                stdout=(
                    "SSH_AUTH_SOCK=/tmp/ssh-new/agent.99; export SSH_AUTH_SOCK;\n"
                    "SSH_AGENT_PID=100; export SSH_AGENT_PID;\n"
                    "echo Agent pid 100;\n"
                )
            )
        if cmd[0] == "ssh-add":
            return self.add_result
        return completed()

    def commands(self) -> list[list[str]]:
        return [cmd for cmd, _ in self.calls]


class PromptingTools(FakeTools):
    """Runs the askpass helper the way ssh-add prompts for a passphrase."""

    def __init__(self, list_result: subprocess.CompletedProcess, prompts: int) -> None:
        super().__init__(list_result)
        self.prompts = prompts
        self.answers: list[subprocess.CompletedProcess] = []

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        if cmd[0] != "ssh-add" or cmd[1] == "-l":
            return super().__call__(cmd, **kwargs)
        self.calls.append((cmd, kwargs["env"]))
        env = {**os.environ, **kwargs["env"]}
        for _ in range(self.prompts):
            self.answers.append(
                REAL_RUN(
                    [env["SSH_ASKPASS"], "Enter passphrase"],
                    env=env,
                    capture_output=True,
                    text=True,
                )
            )
        return completed(0 if self.prompts == 1 else 1)


class TestAgentStatus:
    """Tests for agent queries."""

    def test_no_socket(self) -> None:
        """Test that a missing socket means not running without running ssh-add."""
        with patch("subprocess.run") as mock_run:
            status = AgentController(env={}).get_agent_status()
        assert status.running is False
        mock_run.assert_not_called()

    def test_listing(self, mock_key_manager: MagicMock) -> None:
        """Test parsing loaded keys."""
        fake = FakeTools(completed(0, LISTING))
        with patch("subprocess.run", side_effect=fake):
            status = AgentController(AGENT_ENV, mock_key_manager).get_agent_status()

        assert status.running is True
        assert status.pid == 1234
        assert status.socket == AGENT_ENV["SSH_AUTH_SOCK"]
        assert [k.type for k in status.keys] == ["ed25519", "rsa"]
        assert status.keys[0].fingerprint == "SHA256:testfingerprint"
        assert status.keys[1].comment == "ops key"
        assert status.keys[1].bits == 3072

    def test_no_identities(self, mock_key_manager: MagicMock) -> None:
        """Test a running agent without keys."""
        fake = FakeTools(completed(1, "The agent has no identities.\n"))
        with patch("subprocess.run", side_effect=fake):
            status = AgentController(AGENT_ENV, mock_key_manager).get_agent_status()
        assert status.running is True
        assert status.keys == []

    def test_unresponsive_socket(self, mock_key_manager: MagicMock) -> None:
        """Test that a dead socket means not running."""
        fake = FakeTools(completed(2, stderr="Could not open a connection"))
        with patch("subprocess.run", side_effect=fake):
            assert AgentController(AGENT_ENV, mock_key_manager).is_running() is False

    def test_timeout_means_not_running(self, mock_key_manager: MagicMock) -> None:
        """Test that a hanging ssh-add means not running."""
        with patch(
            "subprocess.run", side_effect=subprocess.TimeoutExpired(["ssh-add"], 30)
        ):
            assert AgentController(AGENT_ENV, mock_key_manager).is_running() is False


class TestAgentLifecycle:
    """Tests for starting and stopping the agent."""

    def test_start(self, mock_key_manager: MagicMock) -> None:
        """Test starting a new agent."""
        agent = AgentController({}, mock_key_manager)
        fake = FakeTools(completed(2))
        with patch("subprocess.run", side_effect=fake):
            environment = agent.start_agent()

        assert environment.socket == "/tmp/ssh-new/agent.99"
        assert environment.pid == 100
        assert agent.env["SSH_AUTH_SOCK"] == "/tmp/ssh-new/agent.99"
        assert agent.env["SSH_AGENT_PID"] == "100"

    def test_start_idempotent(self, mock_key_manager: MagicMock) -> None:
        """Test that a running agent is reused."""
        agent = AgentController(AGENT_ENV, mock_key_manager)
        fake = FakeTools(completed(1))
        with patch("subprocess.run", side_effect=fake):
            environment = agent.start_agent()

        assert environment.socket == AGENT_ENV["SSH_AUTH_SOCK"]
        assert ["ssh-agent", "-s"] not in fake.commands()

    def test_start_failure(self, mock_key_manager: MagicMock) -> None:
        """Test ssh-agent failing."""
        agent = AgentController({}, mock_key_manager)
        with patch("subprocess.run", return_value=completed(1, stderr="no")):
            with pytest.raises(ExternalToolError):
                agent.start_agent()

    def test_start_unparseable(self, mock_key_manager: MagicMock) -> None:
        """Test ssh-agent output without a socket."""
        agent = AgentController({}, mock_key_manager)
        with patch("subprocess.run", return_value=completed(0, stdout="hello")):
            with pytest.raises(ExternalToolError):
                agent.start_agent()

    def test_stop(self, mock_key_manager: MagicMock) -> None:
        """Test stopping an agent."""
        agent = AgentController(AGENT_ENV, mock_key_manager)
        fake = FakeTools(completed(0))
        with patch("subprocess.run", side_effect=fake):
            agent.stop_agent()

        assert ["ssh-agent", "-k"] in fake.commands()
        assert agent.socket is None
        assert agent.environment() is None

    def test_stop_not_running(self, mock_key_manager: MagicMock) -> None:
        """Test that stopping a stopped agent is harmless."""
        agent = AgentController({}, mock_key_manager)
        with patch("subprocess.run") as mock_run:
            agent.stop_agent()
            agent.stop_agent()
        mock_run.assert_not_called()


class TestAddKey:
    """Tests for loading keys."""

    def test_missing_file(self, temp_dir: Path, mock_key_manager: MagicMock) -> None:
        """Test loading a missing key file."""
        with pytest.raises(NotFoundError):
            AgentController(AGENT_ENV, mock_key_manager).add_key(temp_dir / "missing")

    def test_agent_not_running(self, key_files: Path, mock_key_manager: MagicMock) -> None:
        """Test loading a key without an agent."""
        with pytest.raises(ExternalToolError):
            AgentController({}, mock_key_manager).add_key(key_files)

    def test_add(self, key_files: Path, mock_key_manager: MagicMock) -> None:
        """Test loading an unencrypted key."""
        fake = FakeTools(completed(1))
        with patch("subprocess.run", side_effect=fake):
            AgentController(AGENT_ENV, mock_key_manager).add_key(key_files, lifetime=3600)

        cmd, env = fake.calls[-1]
        assert cmd == ["ssh-add", "-t", "3600", str(key_files)]
        assert env["SSH_ASKPASS_REQUIRE"] == "never"
        assert env["SSH_AUTH_SOCK"] == AGENT_ENV["SSH_AUTH_SOCK"]

    def test_encrypted_without_passphrase(
        self, key_files: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test that encrypted keys need a passphrase."""
        mock_key_manager.requires_passphrase.return_value = True
        fake = FakeTools(completed(1))
        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(AuthRequiredError):
                AgentController(AGENT_ENV, mock_key_manager).add_key(key_files)
        assert all(cmd[:2] == ["ssh-add", "-l"] for cmd in fake.commands())

    def test_passphrase_through_askpass(
        self, key_files: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test that the passphrase is fed through an askpass helper."""
        mock_key_manager.requires_passphrase.return_value = True
        fake = FakeTools(completed(1))
        with patch("subprocess.run", side_effect=fake):
            AgentController(AGENT_ENV, mock_key_manager).add_key(
                key_files, passphrase="s3cret"
            )

        cmd, env = fake.calls[-1]
        assert cmd == ["ssh-add", str(key_files)]
        assert env["SSH_ASKPASS_REQUIRE"] == "force"
        assert env["SSHIELD_ASKPASS_PASSPHRASE"] == "s3cret"
        assert "s3cret" not in cmd
        assert not Path(env["SSH_ASKPASS"]).exists()

    def test_askpass_answers_once(
        self, key_files: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test that the helper answers one prompt and the retry is rejected."""
        fake = PromptingTools(completed(1), prompts=2)
        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(AuthRequiredError, match="rejected"):
                AgentController(AGENT_ENV, mock_key_manager).add_key(
                    key_files, passphrase="wrong"
                )

        first, second = fake.answers
        assert first.returncode == 0
        assert first.stdout == "wrong\n"
        assert second.returncode != 0
        assert second.stdout == ""

    def test_askpass_single_prompt(
        self, key_files: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test that an accepted passphrase is not reported as rejected."""
        fake = PromptingTools(completed(1), prompts=1)
        with patch("subprocess.run", side_effect=fake):
            AgentController(AGENT_ENV, mock_key_manager).add_key(
                key_files, passphrase="right"
            )

        assert [a.stdout for a in fake.answers] == ["right\n"]

    def test_ssh_add_failure(self, key_files: Path, mock_key_manager: MagicMock) -> None:
        """Test other ssh-add failures."""
        fake = FakeTools(completed(1))
        fake.add_result = completed(1, stderr="invalid format")
        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(ExternalToolError):
                AgentController(AGENT_ENV, mock_key_manager).add_key(key_files)

    def test_batch_isolates_failures(
        self, key_files: Path, temp_dir: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test that one failing key does not stop the others."""
        fake = FakeTools(completed(1))
        with patch("subprocess.run", side_effect=fake):
            result = AgentController(AGENT_ENV, mock_key_manager).add_keys(
                {"missing": temp_dir / "missing", "good": key_files}, lifetime=60
            )

        assert result.added == ["good"]
        assert list(result.failed) == ["missing"]
        assert result.added_count == 1


class TestRemoveKey:
    """Tests for unloading keys."""

    def test_remove_loaded(self, key_files: Path, mock_key_manager: MagicMock) -> None:
        """Test unloading a loaded key."""
        fake = FakeTools(completed(0, LISTING))
        with patch("subprocess.run", side_effect=fake):
            removed = AgentController(AGENT_ENV, mock_key_manager).remove_key(key_files)

        assert removed is True
        assert ["ssh-add", "-d", str(key_files)] in fake.commands()

    def test_remove_twice_is_noop(
        self, key_files: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test that removing a key that is not loaded does nothing."""
        fake = FakeTools(completed(1))
        agent = AgentController(AGENT_ENV, mock_key_manager)
        with patch("subprocess.run", side_effect=fake):
            assert agent.remove_key(key_files) is False
            assert agent.remove_key(key_files) is False
        assert all(cmd[:2] == ["ssh-add", "-l"] for cmd in fake.commands())

    def test_remove_without_agent(
        self, key_files: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test unloading when no agent runs."""
        with patch("subprocess.run") as mock_run:
            assert AgentController({}, mock_key_manager).remove_key(key_files) is False
        mock_run.assert_not_called()

    def test_remove_without_files(
        self, temp_dir: Path, mock_key_manager: MagicMock
    ) -> None:
        """Test unloading a key whose files are gone."""
        agent = AgentController(AGENT_ENV, mock_key_manager)
        assert agent.remove_key(temp_dir / "gone") is False

    def test_is_key_loaded(self, key_files: Path, mock_key_manager: MagicMock) -> None:
        """Test the loaded check by fingerprint."""
        fake = FakeTools(completed(0, LISTING))
        with patch("subprocess.run", side_effect=fake):
            assert AgentController(AGENT_ENV, mock_key_manager).is_key_loaded(key_files)

    def test_remove_all(self, mock_key_manager: MagicMock) -> None:
        """Test clearing the agent."""
        fake = FakeTools(completed(0, LISTING))
        with patch("subprocess.run", side_effect=fake):
            AgentController(AGENT_ENV, mock_key_manager).remove_all_keys()
        assert ["ssh-add", "-D"] in fake.commands()
