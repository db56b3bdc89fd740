"""
Plan container.

A Plan maps service name to node id to an ordered list of PlanEntry objects.
It is filled by the generator, rewritten in place by the orderer and then
only read by the executor.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List

from fleet_reconciler.core.types import PlanEntry
from fleet_reconciler.inventory.services import ServiceCatalog


class Plan:
    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, List[PlanEntry]]] = {}

    def add(self, entry: PlanEntry) -> None:
        self._entries.setdefault(entry.service, {}).setdefault(entry.node, []).append(entry)

    def services(self) -> List[str]:
        """Services with entries, in insertion order."""
        return list(self._entries.keys())

    def nodes(self, service: str) -> List[str]:
        return list(self._entries.get(service, {}).keys())

    def entries(self, service: str, node: str) -> List[PlanEntry]:
        return list(self._entries.get(service, {}).get(node, []))

    def replace(self, service: str, node: str, entries: List[PlanEntry]) -> None:
        """Swap in the ordered entry list for one service and node."""
        if service not in self._entries or node not in self._entries[service]:
            raise KeyError(f"no plan entries for {service} on {node}")
        self._entries[service][node] = list(entries)

    def has_service(self, service: str) -> bool:
        return service in self._entries

    def is_empty(self) -> bool:
        return not self._entries

    def __iter__(self) -> Iterator[PlanEntry]:
        for per_node in self._entries.values():
            for entries in per_node.values():
                yield from entries

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def dump(self, catalog: ServiceCatalog) -> List[Dict[str, Any]]:
        """
        Flattened records in execution order.

        Services follow catalog order, nodes follow insertion order.
        image is the new image for a reprovision.
        """
        rows: List[Dict[str, Any]] = []
        for service in catalog.names():
            for node in self.nodes(service):
                for entry in self.entries(service, node):
                    rows.append(
                        {
                            "node": entry.node,
                            "service": entry.service,
                            "action": entry.action.value,
                            "instance_id": entry.instance_id,
                            "image": entry.image,
                            "shard": entry.shard,
                        }
                    )
        return rows
