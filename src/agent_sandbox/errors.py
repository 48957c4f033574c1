"""Exception hierarchy shared by the launcher, bootstrap and firewall."""


class AgentSandboxError(Exception):
    """Base class for all agent-sandbox failures."""


class ConfigurationError(AgentSandboxError):
    """Signal invalid operator input detected before any container is touched."""


class BootstrapError(AgentSandboxError):
    """Signal that the persistent home could not be populated."""


class FirewallError(AgentSandboxError):
    """Signal that a mandatory firewall command failed."""


class ContainerRuntimeError(AgentSandboxError):
    """Signal container lifecycle or execution failure."""
