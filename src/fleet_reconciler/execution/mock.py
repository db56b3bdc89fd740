"""
In memory provisioner.

This provisioner is used for tests and local simulations.
It behaves like a tiny instance database keyed by instance id.

Features
- Seeds itself from InstanceRecord objects or a DeployedInventory
- Applies deploy, undeploy and reprovision into internal state
- Can inject failures per node, per instance or per service
- Records every call in order, and tracks peak concurrency per service
- Rebuilds a DeployedInventory from its state so a plan can be re run
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from fleet_reconciler.core.types import InstanceRecord
from fleet_reconciler.execution.base import DeployOptions, Provisioner
from fleet_reconciler.inventory.services import ServiceCatalog
from fleet_reconciler.inventory.store import DeployedInventory


class ProvisionError(RuntimeError):
    """Injected failure raised by InMemoryProvisioner."""


@dataclass
class InMemoryProvisioner(Provisioner):
    """
    In memory provisioner.

    fail_nodes, fail_instances, fail_services
    Any call touching one of these raises ProvisionError.

    placement_node
    Node used for deploys that target any node.

    delay
    Seconds each call sleeps, so concurrent callers interleave.
    """

    instances: Dict[str, InstanceRecord] = field(default_factory=dict)
    fail_nodes: Set[str] = field(default_factory=set)
    fail_instances: Set[str] = field(default_factory=set)
    fail_services: Set[str] = field(default_factory=set)
    placement_node: str = "cn-placed"
    delay: float = 0.0
    calls: List[Tuple[str, ...]] = field(default_factory=list)
    peak_concurrency: Dict[str, int] = field(default_factory=dict)
    _active: Dict[str, int] = field(default_factory=dict)
    _next_id: int = 0

    @classmethod
    def seeded(cls, records: Iterable[InstanceRecord], **kwargs: object) -> "InMemoryProvisioner":
        prov = cls(**kwargs)  # type: ignore[arg-type]
        for rec in records:
            prov.instances[rec.instance_id] = rec
        return prov

    def inventory(self, catalog: ServiceCatalog) -> DeployedInventory:
        """Current state as a DeployedInventory."""
        return DeployedInventory.from_instances(self.instances.values(), catalog)

    async def deploy(self, options: DeployOptions, service: str) -> str:
        node = options.server or self.placement_node
        async with self._tracking(service):
            self.calls.append(("deploy", service, node, options.image, options.shard or "-"))
            if service in self.fail_services or node in self.fail_nodes:
                raise ProvisionError(f"deploy of {service} on {node} failed")

            self._next_id += 1
            instance_id = f"{service}-{self._next_id:04d}"
            self.instances[instance_id] = InstanceRecord(
                service=service,
                instance_id=instance_id,
                node=node,
                image=options.image,
                shard=options.shard,
            )
            return instance_id

    async def undeploy(self, instance_id: str) -> None:
        rec = self._lookup(instance_id)
        async with self._tracking(rec.service):
            self.calls.append(("undeploy", instance_id))
            self._check(rec)
            del self.instances[instance_id]

    async def reprovision(self, instance_id: str, image: str) -> None:
        rec = self._lookup(instance_id)
        async with self._tracking(rec.service):
            self.calls.append(("reprovision", instance_id, image))
            self._check(rec)
            self.instances[instance_id] = InstanceRecord(
                service=rec.service,
                instance_id=rec.instance_id,
                node=rec.node,
                image=image,
                shard=rec.shard,
            )

    def _lookup(self, instance_id: str) -> InstanceRecord:
        rec = self.instances.get(instance_id)
        if rec is None:
            raise ProvisionError(f"no such instance: {instance_id}")
        return rec

    def _check(self, rec: InstanceRecord) -> None:
        if (
            rec.instance_id in self.fail_instances
            or rec.service in self.fail_services
            or (rec.node is not None and rec.node in self.fail_nodes)
        ):
            raise ProvisionError(f"{rec.service} instance {rec.instance_id} failed")

    def _tracking(self, service: str) -> "_Tracker":
        return _Tracker(self, service)


class _Tracker:
    """Count in flight calls per service and keep the peak."""

    def __init__(self, prov: InMemoryProvisioner, service: str) -> None:
        self._prov = prov
        self._service = service

    async def __aenter__(self) -> None:
        active = self._prov._active.get(self._service, 0) + 1
        self._prov._active[self._service] = active
        peak = self._prov.peak_concurrency.get(self._service, 0)
        self._prov.peak_concurrency[self._service] = max(peak, active)
        await asyncio.sleep(self._prov.delay)

    async def __aexit__(self, *exc_info: object) -> Optional[bool]:
        self._prov._active[self._service] -= 1
        return None
