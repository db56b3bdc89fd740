"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ValidationError should block before any diffing happens.
PolicyRejected should stop and explain which services were blocked.
ServiceExecutionFailed should halt the ordered multi service run.
"""

from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for all reconciler exceptions."""


class ValidationError(ReconcilerError):
    """Raised when caller input is rejected before planning starts."""


class UnknownService(ValidationError):
    """Raised when a service name is not present in the service catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f'unrecognized service: "{name}"')
        self.name = name


class InvalidDesiredConfig(ValidationError):
    """Raised when the desired configuration tree has the wrong shape."""


class PolicyRejected(ReconcilerError):
    """
    Raised when the policy gate blocks a plan.

    services lists every service that triggered the rejection.
    """

    def __init__(self, message: str, services: list[str]) -> None:
        super().__init__(message)
        self.services = services


class PlanStateError(ReconcilerError):
    """Raised when a single use engine or executor is driven out of order."""


class PlanBindingError(ReconcilerError):
    """Raised when a deprovision cannot be bound to a deployed instance."""


class ConfigurationFrozen(ReconcilerError):
    """Raised when a read only service configuration is modified."""


class ExecutionFailed(ReconcilerError):
    """Raised when applying a plan against the provisioning backend fails."""


class ActionFailed(ExecutionFailed):
    """
    One failed provision, deprovision, or reprovision call.

    The original exception is chained as __cause__.
    """

    def __init__(self, node: str, service: str, action: str, detail: str) -> None:
        super().__init__(f'service "{service}" node "{node}": {action} failed: {detail}')
        self.node = node
        self.service = service
        self.action = action
        self.detail = detail


class ServiceExecutionFailed(ExecutionFailed):
    """
    Aggregate failure for one service.

    errors holds one ActionFailed per node that failed.
    """

    def __init__(self, service: str, errors: list[ActionFailed]) -> None:
        summary = "; ".join(str(e) for e in errors)
        super().__init__(f'service "{service}": {len(errors)} node(s) failed: {summary}')
        self.service = service
        self.errors = errors
