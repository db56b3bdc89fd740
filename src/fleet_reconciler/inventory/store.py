"""
Deployed inventory.

We keep a normalized, read only view of what is actually running.
Discovery plugins produce InstanceRecord objects and this module turns them
into the structures the planner diffs against:

global configuration
  One ServiceConfiguration per service counting every instance in the
  datacenter. Used when the desired tree targets any node.

per node configuration
  One ServiceConfiguration per service per node.

flattened instances
  Every instance, stably sorted by service, configuration key and instance
  id. The orderer scans this list to pick which concrete instances to remove,
  so the sort order is what makes repeated planning deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from fleet_reconciler.core.types import ConfigKey, InstanceRecord
from fleet_reconciler.inventory.configuration import ServiceConfiguration, empty_configuration
from fleet_reconciler.inventory.services import ServiceCatalog

logger = logging.getLogger(__name__)

UNKNOWN = "-"


def instance_key(record: InstanceRecord, fields: Iterable[str]) -> ConfigKey:
    """Configuration key of an instance for the given service fields."""
    return tuple(record.field_value(name) for name in fields)


@dataclass
class DeployedInventory:
    """
    Read only view of deployed instances.

    Build it with from_instances. The constructor fields are internal.
    """

    catalog: ServiceCatalog
    _global: Dict[str, ServiceConfiguration] = field(default_factory=dict)
    _by_node: Dict[str, Dict[str, ServiceConfiguration]] = field(default_factory=dict)
    _instances: List[InstanceRecord] = field(default_factory=list)

    @classmethod
    def from_instances(
        cls,
        records: Iterable[InstanceRecord],
        catalog: ServiceCatalog,
    ) -> "DeployedInventory":
        inv = cls(catalog=catalog)
        rows = list(records)

        for rec in rows:
            fields = catalog.config_fields(rec.service)

            if rec.image is None or rec.image == UNKNOWN:
                logger.debug("instance %s has no image, not counted", rec.instance_id)
                continue

            key = instance_key(rec, fields)
            inv._global.setdefault(rec.service, ServiceConfiguration(fields)).incr(key)

            if rec.node is None or rec.node == UNKNOWN:
                continue

            per_node = inv._by_node.setdefault(rec.service, {})
            per_node.setdefault(rec.node, ServiceConfiguration(fields)).incr(key)

        for config in inv._global.values():
            config.freeze()
        for per_node in inv._by_node.values():
            for config in per_node.values():
                config.freeze()

        def _sort_key(rec: InstanceRecord) -> tuple:
            fields = catalog.config_fields(rec.service)
            return (catalog.position(rec.service), instance_key(rec, fields), rec.instance_id)

        inv._instances = sorted(rows, key=_sort_key)
        logger.debug(
            "loaded %d instances across %d services",
            len(inv._instances),
            len(inv._global),
        )
        return inv

    def services(self) -> List[str]:
        """Services with at least one counted instance, in catalog order."""
        present = set(self._global) | set(self._by_node)
        return [name for name in self.catalog.names() if name in present]

    def global_config(self, service: str) -> ServiceConfiguration:
        """Datacenter wide configuration, empty when the service is not deployed."""
        config = self._global.get(service)
        if config is None:
            return empty_configuration(self.catalog.config_fields(service))
        return config

    def node_config(self, service: str, node: str) -> Optional[ServiceConfiguration]:
        """Configuration for one node, or None when the node runs no instances."""
        return self._by_node.get(service, {}).get(node)

    def nodes_for(self, service: str) -> List[str]:
        """Nodes running the service, in discovery order."""
        return list(self._by_node.get(service, {}).keys())

    def deployed_nodes(self) -> List[str]:
        """Every node running anything, sorted. Useful for deterministic output."""
        nodes: set[str] = set()
        for per_node in self._by_node.values():
            nodes.update(per_node.keys())
        return sorted(nodes)

    def instances(self) -> List[InstanceRecord]:
        """All instances in stable sorted order."""
        return list(self._instances)

    def instances_for(self, service: str) -> List[InstanceRecord]:
        return [rec for rec in self._instances if rec.service == service]

    def __iter__(self) -> Iterator[InstanceRecord]:
        return iter(self._instances)

    def __len__(self) -> int:
        return len(self._instances)
