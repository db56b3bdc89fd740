"""
Execution interfaces.

Goal
Define stable interfaces for plan execution without binding the engine to a
specific provisioning backend.

Design notes
The provisioner exposes three asynchronous, fallible calls. The executor
never retries them. Callers that need retries or timeouts put them in the
provisioner implementation.

Every action outcome is handed to a ResultCollector so callers can audit a
run, including runs that stopped half way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from fleet_reconciler.core.types import PlanAction


@dataclass(frozen=True)
class DeployOptions:
    """
    Parameters for one provision call.

    server is None when the plan targets any node.
    shard is None for services that are not sharded.
    """

    image: str
    server: Optional[str] = None
    shard: Optional[str] = None


class Provisioner(Protocol):
    """
    Provisioning backend interface.

    deploy
    Create a new instance and return its id.

    undeploy
    Remove an instance.

    reprovision
    Replace the image of an instance in place.
    """

    async def deploy(self, options: DeployOptions, service: str) -> str:
        """Create an instance of service and return its id."""

    async def undeploy(self, instance_id: str) -> None:
        """Remove an instance."""

    async def reprovision(self, instance_id: str, image: str) -> None:
        """Swap the image of an existing instance."""


@dataclass(frozen=True)
class ActionOutcome:
    """
    Result of one executed plan entry.

    instance_id is the created instance for a provision and the bound
    instance otherwise. error is a readable message when ok is False.
    """

    node: str
    service: str
    action: PlanAction
    instance_id: Optional[str]
    image: str
    shard: Optional[str]
    ok: bool
    error: Optional[str] = None


class ResultCollector(Protocol):
    """Sink for action outcomes. Implementations only append."""

    def record(self, outcome: ActionOutcome) -> None:
        """Record one outcome."""


@dataclass(frozen=True)
class ExecutorConfig:
    """
    Executor configuration.

    dry_run
    Render every action instead of calling the provisioner.
    Dry runs always process nodes one at a time so output is readable.
    """

    dry_run: bool = False
