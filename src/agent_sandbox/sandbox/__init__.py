"""Sandbox subsystem: security baseline and container runtime driver."""

from agent_sandbox.sandbox.runtime import ContainerRuntime, ExecResult
from agent_sandbox.sandbox.security import SecurityPolicy

__all__ = [
    "ContainerRuntime",
    "ExecResult",
    "SecurityPolicy",
]
