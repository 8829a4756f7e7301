"""Template generation for sshield."""

from sshield.templates.agent import AgentScriptTemplate

__all__ = [
    "AgentScriptTemplate",
]
