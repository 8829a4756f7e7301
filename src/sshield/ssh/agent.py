"""SSH agent lifecycle and key loading through ssh-agent and ssh-add."""

import logging
import os
import re
import stat
import subprocess
import tempfile
from collections.abc import Mapping
from pathlib import Path

from sshield.core.errors import (
    AuthRequiredError,
    ExternalToolError,
    NotFoundError,
)
from sshield.core.types import AgentEnvironment, AgentKey, AgentStatus, BatchResult
from sshield.ssh.keys import SSHKeyManager

logger = logging.getLogger(__name__)

_ENV_ASSIGN_RE = re.compile(r"(SSH_AUTH_SOCK|SSH_AGENT_PID)=([^;\s]+)")
_AGENT_KEY_RE = re.compile(r"^(\d+)\s+(\S+)\s*(.*?)\s*\(([A-Z0-9-]+)\)\s*$")

# ssh-add -l exit codes
_LIST_OK = 0
_LIST_NO_IDENTITIES = 1
_LIST_NO_AGENT = 2

_PASSPHRASE_ENV = "SSHIELD_ASKPASS_PASSPHRASE"
_PENDING_ENV = "SSHIELD_ASKPASS_PENDING"
_REJECTED_ENV = "SSHIELD_ASKPASS_REJECTED"

# Answers the first prompt only. ssh-add re-prompts after a bad passphrase;
# the second call records the rejection and fails so ssh-add gives up.
_ASKPASS_SCRIPT = f"""#!/bin/sh
if [ -f "${_PENDING_ENV}" ]; then
    rm -f "${_PENDING_ENV}"
    printf '%s\\n' "${_PASSPHRASE_ENV}"
else
    : > "${_REJECTED_ENV}"
    exit 1
fi
"""


class AgentController:
    """Controls one ssh-agent per invocation context.

    The agent is a detached process that outlives the command, so its
    socket and PID live in an environment mapping held by the controller.
    Starting an agent updates that mapping; callers export it to the
    invoking shell with :meth:`AgentEnvironment.export_lines`.
    """

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        key_manager: SSHKeyManager | None = None,
        timeout: int = 30,
    ) -> None:
        """Initialize agent controller.

        Args:
            env: Environment used to locate the agent. Defaults to a copy of
                ``os.environ``.
            key_manager: Key inspection helper.
            timeout: Timeout for each agent command in seconds.
        """
        self._env: dict[str, str] = dict(os.environ if env is None else env)
        self._keys = key_manager or SSHKeyManager()
        self._timeout = timeout

    @property
    def env(self) -> dict[str, str]:
        """Get the environment used for agent commands."""
        return self._env

    @property
    def socket(self) -> str | None:
        """Get the agent socket path, if known."""
        return self._env.get("SSH_AUTH_SOCK") or None

    @property
    def pid(self) -> int | None:
        """Get the agent process ID, if known."""
        value = self._env.get("SSH_AGENT_PID")
        return int(value) if value and value.isdigit() else None

    def _run(
        self,
        cmd: list[str],
        extra_env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess:
        """Run an agent command without a controlling terminal."""
        env = dict(self._env)
        if extra_env:
            env.update(extra_env)
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                env=env,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                f"{cmd[0]} timed out after {self._timeout}s", cmd
            ) from e
        except (FileNotFoundError, OSError) as e:
            raise ExternalToolError(f"Failed to run {cmd[0]}: {e}", cmd) from e

    def _list_keys(self) -> tuple[int, str]:
        """Run ``ssh-add -l``.

        Returns:
            Tuple of (exit_code, stdout).
        """
        if not self.socket:
            return (_LIST_NO_AGENT, "")
        try:
            result = self._run(["ssh-add", "-l"])
        except ExternalToolError as e:
            logger.debug(f"Agent query failed: {e}")
            return (_LIST_NO_AGENT, "")
        return (result.returncode, result.stdout)

    def is_running(self) -> bool:
        """Check if a responsive agent is reachable."""
        code, _ = self._list_keys()
        return code in (_LIST_OK, _LIST_NO_IDENTITIES)

    def get_agent_status(self) -> AgentStatus:
        """Query the agent.

        A missing socket, or a socket nobody answers on, means not running.

        Returns:
            AgentStatus with the loaded keys.
        """
        code, stdout = self._list_keys()
        if code not in (_LIST_OK, _LIST_NO_IDENTITIES):
            return AgentStatus(running=False)

        keys: list[AgentKey] = []
        if code == _LIST_OK:
            for line in stdout.splitlines():
                match = _AGENT_KEY_RE.match(line.strip())
                if match is None:
                    logger.debug(f"Skipping unparseable agent line: {line!r}")
                    continue
                bits, fingerprint, comment, key_type = match.groups()
                keys.append(
                    AgentKey(
                        type=key_type.lower(),
                        fingerprint=fingerprint,
                        comment=comment or None,
                        bits=int(bits),
                    )
                )

        return AgentStatus(running=True, pid=self.pid, socket=self.socket, keys=keys)

    def start_agent(self) -> AgentEnvironment:
        """Start an agent, or return the one already running.

        Returns:
            AgentEnvironment with socket and PID.

        Raises:
            ExternalToolError: If ssh-agent fails or prints no socket.
        """
        if self.is_running():
            logger.info("SSH agent is already running")
            return AgentEnvironment(socket=self.socket or "", pid=self.pid)

        cmd = ["ssh-agent", "-s"]
        result = self._run(cmd)
        if result.returncode != 0:
            raise ExternalToolError(
                "Failed to start SSH agent", cmd, result.returncode, result.stderr
            )

        values = dict(_ENV_ASSIGN_RE.findall(result.stdout))
        if "SSH_AUTH_SOCK" not in values:
            raise ExternalToolError(
                f"Unparseable ssh-agent output: {result.stdout!r}", cmd
            )

        self._env["SSH_AUTH_SOCK"] = values["SSH_AUTH_SOCK"]
        if "SSH_AGENT_PID" in values:
            self._env["SSH_AGENT_PID"] = values["SSH_AGENT_PID"]

        logger.info(f"SSH agent started (pid {self.pid})")
        return AgentEnvironment(socket=values["SSH_AUTH_SOCK"], pid=self.pid)

    def stop_agent(self) -> None:
        """Terminate the agent. An agent that is already gone is ignored."""
        if self.pid is None:
            logger.info("SSH agent is not running")
        else:
            try:
                result = self._run(["ssh-agent", "-k"])
                if result.returncode != 0:
                    logger.debug(f"ssh-agent -k: {result.stderr.strip()}")
            except ExternalToolError as e:
                logger.debug(f"Ignoring agent shutdown failure: {e}")

        self._env.pop("SSH_AUTH_SOCK", None)
        self._env.pop("SSH_AGENT_PID", None)

    def _ensure_running(self) -> None:
        if not self.is_running():
            raise ExternalToolError("SSH agent is not running")

    def add_key(
        self,
        key_path: Path,
        lifetime: int | None = None,
        passphrase: str | None = None,
    ) -> None:
        """Load a private key into the agent.

        Args:
            key_path: Private key file.
            lifetime: Seconds until the agent forgets the key. 0 or None
                keeps it until removed.
            passphrase: Passphrase for an encrypted key.

        Raises:
            NotFoundError: If the key file does not exist.
            AuthRequiredError: If the key is encrypted and no passphrase was
                given, or the passphrase is wrong.
            ExternalToolError: If the agent is unreachable or ssh-add fails.
        """
        key_path = Path(key_path)
        if not key_path.exists():
            raise NotFoundError(f"Key file {key_path} does not exist")

        self._ensure_running()

        if not passphrase and self._keys.requires_passphrase(key_path):
            raise AuthRequiredError(f"Key {key_path} requires a passphrase")

        cmd = ["ssh-add"]
        if lifetime:
            cmd += ["-t", str(lifetime)]
        cmd.append(str(key_path))

        if passphrase:
            result, rejected = self._run_with_askpass(cmd, passphrase)
            if rejected:
                raise AuthRequiredError(f"Passphrase rejected for key {key_path}")
        else:
            result = self._run(cmd, {"SSH_ASKPASS_REQUIRE": "never"})

        if result.returncode != 0:
            if "passphrase" in result.stderr.lower() or "bad pass" in result.stderr.lower():
                raise AuthRequiredError(
                    f"Passphrase rejected for key {key_path}: {result.stderr.strip()}"
                )
            raise ExternalToolError(
                f"Failed to add key {key_path} to agent",
                cmd,
                result.returncode,
                result.stderr,
            )
        logger.info(f"Added {key_path} to SSH agent")

    def _run_with_askpass(
        self, cmd: list[str], passphrase: str
    ) -> tuple[subprocess.CompletedProcess, bool]:
        """Run ssh-add with a throwaway askpass helper feeding ``passphrase``.

        Returns:
            Tuple of (result, rejected). ``rejected`` is True when ssh-add
            asked again after the passphrase was supplied.
        """
        with tempfile.TemporaryDirectory(prefix="sshield-") as tmp:
            helper = Path(tmp) / "askpass.sh"
            pending = Path(tmp) / "pending"
            rejected = Path(tmp) / "rejected"
            helper.write_text(_ASKPASS_SCRIPT, encoding="utf-8")
            os.chmod(helper, stat.S_IRWXU)
            pending.touch(mode=0o600)
            result = self._run(
                cmd,
                {
                    "SSH_ASKPASS": str(helper),
                    "SSH_ASKPASS_REQUIRE": "force",
                    "DISPLAY": self._env.get("DISPLAY", ":0"),
                    _PASSPHRASE_ENV: passphrase,
                    _PENDING_ENV: str(pending),
                    _REJECTED_ENV: str(rejected),
                },
            )
            return result, rejected.exists()

    def is_key_loaded(self, key_path: Path) -> bool:
        """Check if the key at ``key_path`` is loaded, by fingerprint."""
        status = self.get_agent_status()
        if not status.running or not status.keys:
            return False
        fingerprint = self._keys.get_fingerprint(Path(key_path))
        return any(k.fingerprint == fingerprint for k in status.keys)

    def remove_key(self, key_path: Path) -> bool:
        """Unload a key from the agent.

        A key that is not loaded, or an agent that is not running, is a
        no-op.

        Returns:
            True if a key was removed.

        Raises:
            ExternalToolError: If ssh-add fails to remove a loaded key.
        """
        key_path = Path(key_path)
        if not key_path.exists() and not Path(f"{key_path}.pub").exists():
            logger.debug(f"Key {key_path} has no files; nothing to unload")
            return False

        fingerprint_source = key_path if key_path.exists() else Path(f"{key_path}.pub")
        status = self.get_agent_status()
        if not status.running:
            return False
        fingerprint = self._keys.get_fingerprint(fingerprint_source)
        if not any(k.fingerprint == fingerprint for k in status.keys):
            logger.debug(f"Key {key_path} is not loaded in the agent")
            return False

        cmd = ["ssh-add", "-d", str(fingerprint_source)]
        result = self._run(cmd)
        if result.returncode != 0:
            raise ExternalToolError(
                f"Failed to remove key {key_path} from agent",
                cmd,
                result.returncode,
                result.stderr,
            )
        logger.info(f"Removed {key_path} from SSH agent")
        return True

    def remove_all_keys(self) -> None:
        """Unload every key from the agent.

        Raises:
            ExternalToolError: If the agent is unreachable or ssh-add fails.
        """
        self._ensure_running()
        cmd = ["ssh-add", "-D"]
        result = self._run(cmd)
        if result.returncode != 0:
            raise ExternalToolError(
                "Failed to remove keys from agent", cmd, result.returncode, result.stderr
            )
        logger.info("All keys removed from SSH agent")

    def add_keys(
        self,
        key_paths: Mapping[str, Path],
        lifetime: int | None = None,
    ) -> BatchResult:
        """Load several keys, isolating failures.

        Args:
            key_paths: Private key paths keyed by key ID.
            lifetime: Seconds until the agent forgets the keys.

        Returns:
            BatchResult listing loaded key IDs and failure messages.
        """
        result = BatchResult()
        for key_id, path in key_paths.items():
            try:
                self.add_key(Path(path), lifetime=lifetime)
            except (NotFoundError, AuthRequiredError, ExternalToolError) as e:
                logger.warning(f"Failed to add key {key_id}: {e}")
                result.failed[key_id] = str(e)
            else:
                result.added.append(key_id)
        return result

    def environment(self) -> AgentEnvironment | None:
        """Get socket and PID of the current agent, if one is known."""
        if not self.socket:
            return None
        return AgentEnvironment(socket=self.socket, pid=self.pid)
