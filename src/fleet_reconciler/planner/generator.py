"""
Plan generator.

Purpose
Diff the operator's desired configuration against what is deployed and
produce an ordered Plan of provision, deprovision and reprovision actions.

Why deterministic
The plan touches production instances, so it must be stable, auditable and
repeatable. Given the same desired tree and the same inventory, the generator
emits the same entries in the same order and binds the same instances.

Diff rules, per node in the desired tree
1  For each desired service, compare against the datacenter wide counts when
   the node is the any node sentinel, else against the counts on that node.
   Positive deltas become provisions ("more wanted"), negative deltas become
   deprovisions ("fewer wanted").
2  Deployed configurations absent from the desired service are removed
   ("image no longer used").
3  Services deployed on the node but absent from its desired entry are removed
   ("service no longer used").

When the sentinel is not used, nodes that run instances but are missing from
the desired tree are emptied ("node no longer used").

Policy gate
New instances of experimental services are rejected unless the operator opts
in. The check runs after diffing and before any plan is returned.

The generator performs no I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Set

from fleet_reconciler.core.errors import PlanStateError, PolicyRejected, UnknownService
from fleet_reconciler.core.types import ANY_NODE, ConfigKey, PlanAction, PlanEntry
from fleet_reconciler.intent.base import DesiredConfig
from fleet_reconciler.inventory.configuration import ServiceConfiguration, empty_configuration
from fleet_reconciler.inventory.services import ServiceCatalog
from fleet_reconciler.inventory.store import DeployedInventory
from fleet_reconciler.planner.ordering import order_entries
from fleet_reconciler.planner.plan import Plan

logger = logging.getLogger(__name__)

REASON_MORE_WANTED = "more wanted"
REASON_FEWER_WANTED = "fewer wanted"
REASON_IMAGE_UNUSED = "image no longer used"
REASON_SERVICE_UNUSED = "service no longer used"
REASON_NODE_UNUSED = "node no longer used"


@dataclass(frozen=True)
class PlannerConfig:
    """
    Planner configuration.

    service_filter
    When set, only this service is planned. Must name a catalog service.

    allow_experimental
    Permit new instances of services flagged experimental.

    allow_reprovision
    Operator override. When False, upgrades always use a provision followed
    by a deprovision even for services that support reprovisioning.
    """

    service_filter: Optional[str] = None
    allow_experimental: bool = False
    allow_reprovision: bool = True


class PlanGenerator:
    """
    Build an ordered Plan from a desired tree and a deployed inventory.

    One generator may be used for many plans. Single use semantics live in
    the engine.
    """

    def __init__(self, catalog: ServiceCatalog, config: PlannerConfig | None = None) -> None:
        self._catalog = catalog
        self._config = config or PlannerConfig()

    def generate(self, desired: DesiredConfig, inventory: DeployedInventory) -> Plan:
        """
        Diff, gate and order.

        Raises UnknownService for a bad filter before any diffing and
        PolicyRejected when the experimental gate blocks the plan.
        """

        service_filter = self._config.service_filter
        if service_filter is not None and not self._catalog.is_valid(service_filter):
            raise UnknownService(service_filter)

        logger.info("generating plan")
        plan = Plan()
        provisioned: Set[str] = set()
        used_any = False

        for node, node_services in desired.items():
            if node == ANY_NODE:
                used_any = True
            logger.debug("desired config: processing node %s", node)

            for service, wanted in node_services.items():
                if not self._selected(service):
                    continue

                if node == ANY_NODE:
                    actual = inventory.global_config(service)
                else:
                    actual = inventory.node_config(service, node) or empty_configuration(
                        self._catalog.config_fields(service)
                    )

                self._diff_service(plan, node, service, wanted, actual, provisioned)

            for service in inventory.services():
                if not self._selected(service) or service in node_services:
                    continue
                deployed = inventory.node_config(service, node)
                if deployed is None:
                    continue
                for key, count in deployed.each():
                    logger.debug(
                        "service not present in new config: node=%s service=%s config=%r delta=%d",
                        node,
                        service,
                        key,
                        -count,
                    )
                    self._queue(plan, node, service, key, PlanAction.deprovision, count, REASON_SERVICE_UNUSED)

        if not used_any:
            for service in inventory.services():
                if not self._selected(service):
                    continue
                for node in inventory.nodes_for(service):
                    if node in desired:
                        continue
                    deployed = inventory.node_config(service, node)
                    if deployed is None:
                        continue
                    for key, count in deployed.each():
                        logger.debug(
                            "node not present in new config: node=%s service=%s config=%r delta=%d",
                            node,
                            service,
                            key,
                            -count,
                        )
                        self._queue(plan, node, service, key, PlanAction.deprovision, count, REASON_NODE_UNUSED)

        self._check_experimental(provisioned)
        self._order(plan, inventory)

        logger.info("plan generated: %d entries across %d services", len(plan), len(plan.services()))
        return plan

    def _selected(self, service: str) -> bool:
        return self._config.service_filter is None or service == self._config.service_filter

    def _diff_service(
        self,
        plan: Plan,
        node: str,
        service: str,
        wanted: ServiceConfiguration,
        actual: ServiceConfiguration,
        provisioned: Set[str],
    ) -> None:
        """Compare one desired service against its deployed counts."""

        for key, desired_count in wanted.each():
            actual_count = actual.get(key)
            delta = desired_count - actual_count
            logger.debug(
                "match count in new config: node=%s service=%s config=%r wanted=%d have=%d delta=%d",
                node,
                service,
                key,
                desired_count,
                actual_count,
                delta,
            )
            if delta > 0:
                self._queue(plan, node, service, key, PlanAction.provision, delta, REASON_MORE_WANTED)
                provisioned.add(service)
            elif delta < 0:
                self._queue(plan, node, service, key, PlanAction.deprovision, -delta, REASON_FEWER_WANTED)

        for key, count in actual.each():
            if wanted.has(key):
                continue
            logger.debug(
                "image not present in new config: node=%s service=%s config=%r delta=%d",
                node,
                service,
                key,
                -count,
            )
            self._queue(plan, node, service, key, PlanAction.deprovision, count, REASON_IMAGE_UNUSED)

    def _queue(
        self,
        plan: Plan,
        node: str,
        service: str,
        key: ConfigKey,
        action: PlanAction,
        count: int,
        reason: str,
    ) -> None:
        """Add count identical entries to the plan."""
        if count <= 0:
            raise PlanStateError(f"cannot queue {count} entries for {service} on {node}")
        fields = self._catalog.config_fields(service)
        for _ in range(count):
            plan.add(
                PlanEntry(
                    node=node,
                    service=service,
                    fields=fields,
                    key=tuple(key),
                    action=action,
                    reason=reason,
                )
            )

    def _check_experimental(self, provisioned: Set[str]) -> None:
        if self._config.allow_experimental:
            return

        blocked: List[str] = [
            name for name in self._catalog.names() if name in provisioned and self._catalog.is_experimental(name)
        ]
        if blocked:
            raise PolicyRejected(
                "refusing to deploy new instances of experimental services "
                f"without opt in: {', '.join(blocked)}",
                services=blocked,
            )

    def _order(self, plan: Plan, inventory: DeployedInventory) -> None:
        """
        Order each service and node in place.

        The plan is already divided by service, since updating several services
        at once is never safe, and by node, since the same service can often
        be updated on several nodes concurrently.
        """

        consumed: Set[str] = set()
        for service in plan.services():
            instances = inventory.instances_for(service)
            allow = self._config.allow_reprovision and self._catalog.allows_reprovision(service)
            for node in plan.nodes(service):
                ordered = order_entries(plan.entries(service, node), instances, allow, consumed)
                plan.replace(service, node, ordered)
