"""
Plan executor.

This executor walks an ordered Plan and applies it through a Provisioner.

Behavior
Services run one after another in catalog order, not in plan order.
A service runs only after every earlier service finished without error.
If any node of a service fails, the executor stops and raises one aggregate
ServiceExecutionFailed. Later services are never attempted and nothing that
already ran is rolled back. Recovery is to plan and run again.

Within a service the nodes run concurrently, one worker per node, except in
dry run mode and for services flagged serial_deploy, which take one node at
a time. Within a node, actions run strictly in plan order and each call must
finish before the next one starts. A failing action stops its own node only.

The plan is read only here. Outcomes go to the result collector.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import List, Optional, TextIO

from fleet_reconciler.core.errors import (
    ActionFailed,
    PlanBindingError,
    PlanStateError,
    ServiceExecutionFailed,
)
from fleet_reconciler.core.types import ANY_NODE, PlanAction, PlanEntry
from fleet_reconciler.execution.audit import FanoutCollector, MemoryCollector
from fleet_reconciler.execution.base import (
    ActionOutcome,
    DeployOptions,
    ExecutorConfig,
    Provisioner,
    ResultCollector,
)
from fleet_reconciler.execution.report import node_header, render_action, service_header
from fleet_reconciler.inventory.services import ServiceCatalog
from fleet_reconciler.planner.plan import Plan

logger = logging.getLogger(__name__)


class ExecutorState(StrEnum):
    idle = "idle"
    running = "running"
    done = "done"


@dataclass(frozen=True)
class ExecutionReport:
    """
    Summary of one executor run.

    services_touched
    Number of services that had plan entries and were reached.

    lines
    Dry run output, one string per line.

    outcomes
    Every recorded action outcome in completion order.
    """

    dry_run: bool
    services_touched: int
    lines: List[str] = field(default_factory=list)
    outcomes: List[ActionOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)


class PlanExecutor:
    """
    Single use plan executor.

    provisioner may be None for dry runs.
    collector receives every outcome in addition to the internal report.
    out, when given, receives dry run lines as they are produced.
    """

    def __init__(
        self,
        catalog: ServiceCatalog,
        provisioner: Provisioner | None = None,
        config: ExecutorConfig | None = None,
        collector: ResultCollector | None = None,
        out: TextIO | None = None,
    ) -> None:
        self._catalog = catalog
        self._provisioner = provisioner
        self._config = config or ExecutorConfig()
        self._memory = MemoryCollector()
        self._collector: ResultCollector = (
            FanoutCollector((self._memory, collector)) if collector is not None else self._memory
        )
        self._out = out
        self._lines: List[str] = []
        self._touched = 0
        self._state = ExecutorState.idle

    @property
    def state(self) -> ExecutorState:
        return self._state

    def report(self) -> ExecutionReport:
        """Report for what has run so far. Valid after a failed run too."""
        return ExecutionReport(
            dry_run=self._config.dry_run,
            services_touched=self._touched,
            lines=list(self._lines),
            outcomes=list(self._memory.outcomes),
        )

    async def execute(self, plan: Plan) -> ExecutionReport:
        """
        Run the plan.

        Raises ServiceExecutionFailed for the first service with a failing node.
        """

        if self._state != ExecutorState.idle:
            raise PlanStateError(f"executor already {self._state.value}")
        if not self._config.dry_run and self._provisioner is None:
            raise PlanStateError("a provisioner is required unless running dry")

        self._state = ExecutorState.running
        try:
            for service in self._catalog.names():
                if not plan.has_service(service):
                    continue

                self._touched += 1
                if self._config.dry_run:
                    self._emit(service_header(service))

                errors = await self._run_service(plan, service)
                if errors:
                    logger.error("service %s failed on %d node(s), stopping", service, len(errors))
                    raise ServiceExecutionFailed(service, errors)

            if self._touched == 0:
                self._emit("nothing to do")
        finally:
            self._state = ExecutorState.done

        return self.report()

    async def _run_service(self, plan: Plan, service: str) -> List[ActionFailed]:
        nodes = plan.nodes(service)
        serial = self._config.dry_run or self._catalog.is_serial(service)
        logger.info("service %s: %d node(s), %s", service, len(nodes), "serial" if serial else "concurrent")

        async def worker(node: str) -> Optional[ActionFailed]:
            if self._config.dry_run:
                self._emit(node_header(node))
            return await self._run_node(plan.entries(service, node))

        if serial:
            results = [await worker(node) for node in nodes]
        else:
            results = await asyncio.gather(*(worker(node) for node in nodes))
        return [err for err in results if err is not None]

    async def _run_node(self, entries: List[PlanEntry]) -> Optional[ActionFailed]:
        """Run one node's entries in order. Stop at the first failure."""
        for entry in entries:
            if self._config.dry_run:
                for line in render_action(entry):
                    self._emit(line)
                continue

            try:
                instance_id = await self._apply(entry)
            except Exception as exc:
                logger.error(
                    "service %s node %s: %s failed: %s",
                    entry.service,
                    entry.node,
                    entry.action.value,
                    exc,
                )
                failure = ActionFailed(entry.node, entry.service, entry.action.value, str(exc))
                failure.__cause__ = exc
                self._collector.record(self._outcome(entry, entry.instance_id, error=str(exc)))
                return failure

            self._collector.record(self._outcome(entry, instance_id))

        return None

    async def _apply(self, entry: PlanEntry) -> Optional[str]:
        provisioner = self._provisioner
        if provisioner is None:
            raise PlanStateError("a provisioner is required unless running dry")

        if entry.action == PlanAction.provision:
            options = DeployOptions(
                image=entry.image,
                server=None if entry.node == ANY_NODE else entry.node,
                shard=entry.shard,
            )
            logger.info("service %s: provisioning %s", entry.service, options)
            instance_id = await provisioner.deploy(options, entry.service)
            logger.info("service %s: provisioned %s", entry.service, instance_id)
            return instance_id

        if entry.instance_id is None:
            raise PlanBindingError(f"{entry.action.value} of {entry.service} on {entry.node} has no bound instance")

        if entry.action == PlanAction.deprovision:
            logger.info("service %s: removing %s on %s", entry.service, entry.instance_id, entry.node)
            await provisioner.undeploy(entry.instance_id)
            logger.info("service %s: removed %s", entry.service, entry.instance_id)
            return entry.instance_id

        logger.info(
            "service %s: reprovisioning %s to image %s",
            entry.service,
            entry.instance_id,
            entry.image,
        )
        await provisioner.reprovision(entry.instance_id, entry.image)
        logger.info("service %s: reprovisioned %s", entry.service, entry.instance_id)
        return entry.instance_id

    def _outcome(
        self,
        entry: PlanEntry,
        instance_id: Optional[str],
        error: Optional[str] = None,
    ) -> ActionOutcome:
        return ActionOutcome(
            node=entry.node,
            service=entry.service,
            action=entry.action,
            instance_id=instance_id,
            image=entry.image,
            shard=entry.shard,
            ok=error is None,
            error=error,
        )

    def _emit(self, line: str) -> None:
        self._lines.append(line)
        if self._out is not None:
            print(line, file=self._out)
