"""Error taxonomy.

Every fatal condition the CLI can report derives from :class:`TinkerAgentError`.
``remediation`` is printed after the message so operators know what to fix.
"""

from __future__ import annotations


class TinkerAgentError(Exception):
    """Base class for orchestrator errors."""

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        self.remediation = remediation
        super().__init__(message)


class ConfigNotFound(TinkerAgentError):
    """No project configuration file in the project root."""


class ConfigInvalid(TinkerAgentError):
    """Configuration file exists but cannot be parsed or validated."""


class UnknownRole(TinkerAgentError):
    """Requested role is not in the agent registry."""

    def __init__(self, role: str, valid: list[str]) -> None:
        self.role = role
        self.valid = valid
        super().__init__(
            f"Unknown agent type: {role}",
            remediation=f"Available: {', '.join(valid)}",
        )


class MissingAuth(TinkerAgentError):
    """No usable GitHub credential strategy is configured."""


class CredentialExchangeFailed(TinkerAgentError):
    """The installation-token endpoint rejected the exchange or was unreachable."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(message)


class LaunchFailed(TinkerAgentError):
    """The container engine exited non-zero while creating the container."""

    def __init__(self, container_name: str, returncode: int) -> None:
        self.container_name = container_name
        self.returncode = returncode
        super().__init__(
            f"Failed to start container {container_name} (exit {returncode})",
        )


class UserDiscoveryExhausted(TinkerAgentError):
    """Every user probe came back empty. Attach downgrades this to a default user."""


class EngineUnavailable(TinkerAgentError):
    """The container engine CLI could not be run or did not answer in time."""

    def __init__(self, cli: str, verb: str, reason: str) -> None:
        self.cli = cli
        self.verb = verb
        super().__init__(
            f"Container engine '{cli}' failed during '{verb}': {reason}",
            remediation=f"Check that {cli} is installed and running, "
            "or point TINKER_CONTAINER__CLI at another engine.",
        )


class AgentEnvInvalid(TinkerAgentError):
    """The in-container environment lacks what the launcher should have injected."""
