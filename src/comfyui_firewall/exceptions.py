"""
This module defines the error types raised while toggling network isolation for
the ComfyUI container. Every user-visible failure carries the remediation step
the operator should take.
"""


class FirewallToggleError(Exception):
    """Base exception for all isolation toggle failures."""


class WorkloadNotRunning(FirewallToggleError):
    """Raised when the container is missing, stopped, or has no address."""

    def __init__(self, container_name: str, reason: str = "is not running"):
        self.container_name = container_name
        self.reason = reason
        super().__init__(f"Container '{container_name}' {reason}.")

    @property
    def remediation(self) -> str:
        return "Start it first:  docker compose up -d"


class InsufficientPrivilege(FirewallToggleError):
    """Raised when iptables state is read or written without root."""

    def __init__(self, message: str = "Modifying firewall rules requires root privileges."):
        super().__init__(message)


class FirewallCommandError(FirewallToggleError):
    def __init__(self, command: list[str], returncode: int | None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"Command '{' '.join(command)}' failed with exit status {returncode}{detail}")


class ContainerRuntimeError(FirewallToggleError):
    """Signal a docker daemon or API failure other than a missing container."""


class PartialRuleState(FirewallToggleError):
    """Only one half of an isolation pair was found for an address."""

    def __init__(self, address: str, present: str):
        self.address = address
        self.present = present
        super().__init__(f"Only the {present} rule was found for {address}; removing what is there.")


class VerificationInconclusive(FirewallToggleError):
    """The connectivity probe could not run or returned an unexpected result."""
