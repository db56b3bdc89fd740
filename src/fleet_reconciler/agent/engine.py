"""
Reconcile engine.

This engine coordinates:
plan generation, ordering, and dry run or real execution.

Single use
An engine builds exactly one plan and executes it at most once. Planning is
pure and happens before any provisioning call, so the plan can be shown to an
operator and then applied unchanged. To reconcile again, build a new engine
against freshly discovered inventory.

Determinism and safety
The planner remains deterministic.
Execution halts at the first failing service and never rolls back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TextIO

from fleet_reconciler.agent.execution_mode import ExecutionMode
from fleet_reconciler.core.errors import ExecutionFailed, PlanStateError
from fleet_reconciler.execution.base import ExecutorConfig, Provisioner, ResultCollector
from fleet_reconciler.execution.executor import ExecutionReport, PlanExecutor
from fleet_reconciler.intent.base import DesiredConfig
from fleet_reconciler.inventory.services import ServiceCatalog
from fleet_reconciler.inventory.store import DeployedInventory
from fleet_reconciler.planner.generator import PlanGenerator, PlannerConfig
from fleet_reconciler.planner.plan import Plan

logger = logging.getLogger(__name__)


class EngineState(StrEnum):
    not_built = "not_built"
    built = "built"
    executed = "executed"
    failed = "failed"


@dataclass(frozen=True)
class EngineRunResult:
    """
    Result of a full run.

    ok
    True when every action succeeded, or the run was a dry run.

    error
    The execution failure that halted the run, if any.
    """

    ok: bool
    mode: ExecutionMode
    plan: Plan
    report: ExecutionReport
    error: ExecutionFailed | None = None


class ReconcileEngine:
    """
    Reconcile engine.

    catalog
    Canonical service list and per service flags.

    provisioner
    Applies plan actions. Not needed for dry runs.

    config
    Planner configuration.

    collector
    Optional sink for per action outcomes, for example an AuditLogger.

    out
    Optional stream for dry run output.
    """

    def __init__(
        self,
        catalog: ServiceCatalog,
        provisioner: Provisioner | None = None,
        config: PlannerConfig | None = None,
        collector: ResultCollector | None = None,
        out: TextIO | None = None,
    ) -> None:
        self._catalog = catalog
        self._provisioner = provisioner
        self._generator = PlanGenerator(catalog, config)
        self._collector = collector
        self._out = out
        self._state = EngineState.not_built
        self._plan: Plan | None = None
        self._executor: PlanExecutor | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def plan(self) -> Plan:
        if self._plan is None:
            raise PlanStateError("no plan has been generated")
        return self._plan

    def generate(self, desired: DesiredConfig, inventory: DeployedInventory) -> Plan:
        """
        Generate and order the plan. Allowed once per engine.

        A validation or policy error leaves the engine failed. Build a new
        engine to plan again.
        """
        if self._state != EngineState.not_built:
            raise PlanStateError(f"plan generation already attempted for this engine: {self._state.value}")

        try:
            plan = self._generator.generate(desired, inventory)
        except Exception:
            self._state = EngineState.failed
            raise

        self._plan = plan
        self._state = EngineState.built
        return plan

    def dump_plan(self) -> list[dict[str, Any]]:
        """Flattened plan records in execution order."""
        return self.plan.dump(self._catalog)

    async def execute(self, dry_run: bool = False) -> ExecutionReport:
        """
        Execute the generated plan. Allowed once, after generate.

        Raises ServiceExecutionFailed when a service fails.
        """

        if self._state == EngineState.not_built:
            raise PlanStateError("generate a plan before executing it")
        if self._state != EngineState.built:
            raise PlanStateError(f"cannot execute, engine is {self._state.value}")
        if not dry_run and self._provisioner is None:
            raise PlanStateError("a provisioner is required unless running dry")

        self._state = EngineState.executed
        executor = PlanExecutor(
            self._catalog,
            provisioner=self._provisioner,
            config=ExecutorConfig(dry_run=dry_run),
            collector=self._collector,
            out=self._out,
        )
        self._executor = executor
        return await executor.execute(self.plan)

    async def run(
        self,
        desired: DesiredConfig,
        inventory: DeployedInventory,
        mode: ExecutionMode = ExecutionMode.apply,
    ) -> EngineRunResult:
        """
        Plan and execute in one call.

        Steps
        1) generate and order
        2) dry run or apply
        3) report

        Validation and policy errors propagate. Execution failures are
        returned in the result together with what ran before the halt.
        """

        plan = self.generate(desired, inventory)
        dry_run = mode == ExecutionMode.dry_run

        try:
            report = await self.execute(dry_run=dry_run)
        except ExecutionFailed as exc:
            logger.error("reconcile halted: %s", exc)
            if self._executor is None:
                raise PlanStateError("execution failed before an executor was created") from exc
            return EngineRunResult(
                ok=False,
                mode=mode,
                plan=plan,
                report=self._executor.report(),
                error=exc,
            )

        return EngineRunResult(ok=report.ok, mode=mode, plan=plan, report=report)
