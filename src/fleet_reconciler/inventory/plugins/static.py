"""
Static inventory plugin.

Reads a local json file that contains a list of deployed instances.
This is useful for dev, tests, and offline planning against a captured
snapshot of a datacenter.

Schema example
{
  "instances": [
    {
      "service": "moray",
      "instance_id": "3b6c6d4e",
      "node": "cn001",
      "image": "img002",
      "shard": "1"
    }
  ]
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from fleet_reconciler.core.types import InstanceRecord
from fleet_reconciler.inventory.plugins.base import InventoryPlugin
from fleet_reconciler.inventory.services import ServiceCatalog
from fleet_reconciler.inventory.store import DeployedInventory


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _instance_from_dict(obj: dict[str, Any]) -> InstanceRecord:
    """Convert an instance dict into an InstanceRecord."""
    return InstanceRecord(
        service=str(obj["service"]),
        instance_id=str(obj["instance_id"]),
        node=_optional_str(obj.get("node")),
        image=_optional_str(obj.get("image")),
        shard=_optional_str(obj.get("shard")),
    )


@dataclass(frozen=True)
class StaticInventoryPlugin(InventoryPlugin):
    """
    Load inventory from a local json file.

    path points to a json file that matches the schema described in the module docstring.
    """

    path: Path
    catalog: ServiceCatalog

    def load(self) -> DeployedInventory:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        raw = data.get("instances", []) if isinstance(data, dict) else []

        records: list[InstanceRecord] = []
        if isinstance(raw, list):
            for obj in raw:
                if isinstance(obj, dict):
                    records.append(_instance_from_dict(obj))

        return DeployedInventory.from_instances(records, self.catalog)
