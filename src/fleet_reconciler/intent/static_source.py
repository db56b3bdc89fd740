"""
Static desired configuration source.

Reads a local json file with the nested node, service, shard, image shape
described in fleet_reconciler.intent.desired.

Schema example
{
  "cn001": {
    "webapi": {"img001": 2},
    "moray": {"1": {"img002": 3}}
  }
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from fleet_reconciler.core.errors import InvalidDesiredConfig
from fleet_reconciler.intent.base import DesiredConfig, DesiredSource
from fleet_reconciler.intent.desired import parse_desired_config
from fleet_reconciler.inventory.services import ServiceCatalog


@dataclass(frozen=True)
class StaticDesiredSource(DesiredSource):
    """Load the desired configuration from a local json file."""

    path: Path
    catalog: ServiceCatalog

    def fetch(self) -> DesiredConfig:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise InvalidDesiredConfig(f'processing "{self.path}": {exc}') from exc

        return parse_desired_config(data, self.catalog)
