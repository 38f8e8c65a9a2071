"""SSH transport to worker nodes."""

from .connection import SSHSession, CommandResult

__all__ = ["SSHSession", "CommandResult"]
