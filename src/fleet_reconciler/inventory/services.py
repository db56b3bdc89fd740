"""
Service catalog.

The catalog is the canonical, ordered list of every deployable service.
Its order is also the order in which plans are executed: a service is only
touched after every service before it in the catalog finished cleanly.

Each service carries a few flags that change how it is planned:

sharded
  Instances are grouped by (shard, image) instead of image alone.

experimental
  New instances may only be planned when the operator opts in.

allow_reprovision
  Whether a provision and a deprovision may be fused into an in place image
  swap. Some services must always be replaced with a fresh instance.

serial_deploy
  The service keeps shared coordination state that cannot be updated by more
  than one concurrent writer, so its nodes are always processed one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from fleet_reconciler.core.errors import UnknownService
from fleet_reconciler.core.types import IMAGE_FIELD, SHARD_FIELD


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    sharded: bool = False
    experimental: bool = False
    allow_reprovision: bool = True
    serial_deploy: bool = False


class ServiceCatalog:
    """Ordered registry of service specs keyed by name."""

    def __init__(self, specs: Iterable[ServiceSpec]) -> None:
        self._specs: Dict[str, ServiceSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"duplicate service in catalog: {spec.name}")
            self._specs[spec.name] = spec

    def names(self) -> List[str]:
        """Return service names in canonical execution order."""
        return list(self._specs.keys())

    def is_valid(self, name: str) -> bool:
        return name in self._specs

    def get(self, name: str) -> ServiceSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise UnknownService(name)
        return spec

    def position(self, name: str) -> int:
        """Index of the service in canonical order. Used for stable sorting."""
        self.get(name)
        return self.names().index(name)

    def is_sharded(self, name: str) -> bool:
        return self.get(name).sharded

    def is_experimental(self, name: str) -> bool:
        return self.get(name).experimental

    def allows_reprovision(self, name: str) -> bool:
        return self.get(name).allow_reprovision

    def is_serial(self, name: str) -> bool:
        return self.get(name).serial_deploy

    def config_fields(self, name: str) -> Tuple[str, ...]:
        """
        Return the configuration key fields for a service.

        The image is always last.
        """
        if self.is_sharded(name):
            return (SHARD_FIELD, IMAGE_FIELD)
        return (IMAGE_FIELD,)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)


DEFAULT_SERVICES: Tuple[ServiceSpec, ...] = (
    ServiceSpec("nameservice"),
    ServiceSpec("postgres", sharded=True),
    ServiceSpec("moray", sharded=True),
    ServiceSpec("electric-moray"),
    ServiceSpec("storage", serial_deploy=True),
    ServiceSpec("authcache"),
    ServiceSpec("webapi"),
    ServiceSpec("loadbalancer"),
    ServiceSpec("jobsupervisor"),
    ServiceSpec("jobpuller"),
    ServiceSpec("medusa"),
    ServiceSpec("ops"),
    ServiceSpec("madtom"),
    ServiceSpec("marlin-dashboard"),
    ServiceSpec("marlin", allow_reprovision=False),
    ServiceSpec("reshard"),
    ServiceSpec("propeller", experimental=True),
)


def default_catalog(extra: Optional[Iterable[ServiceSpec]] = None) -> ServiceCatalog:
    """Catalog for a standard deployment, optionally extended with more services."""
    specs = list(DEFAULT_SERVICES)
    if extra:
        specs.extend(extra)
    return ServiceCatalog(specs)
