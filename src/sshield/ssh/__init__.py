"""SSH tooling layer for sshield."""

from sshield.ssh.agent import AgentController
from sshield.ssh.client import SSHClient
from sshield.ssh.keys import SSHKeyManager
from sshield.ssh.sshconfig import SSHConfigSynchronizer

__all__ = [
    "AgentController",
    "SSHClient",
    "SSHConfigSynchronizer",
    "SSHKeyManager",
]
