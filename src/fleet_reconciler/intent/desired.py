"""
Desired configuration parser.

Input shape
The operator describes, for every node, every service and the number of
instances wanted per image:

  {"cn001": {"webapi": {"img001": 2}}}

Sharded services add a shard level above the image:

  {"cn001": {"moray": {"1": {"img002": 3}, "2": {"img002": 3}}}}

The sentinel node "<any>" lets the deployment pick nodes. It cannot be mixed
with concrete node ids in the same tree.

If the structure is wrong we raise InvalidDesiredConfig so the caller can
report a clear error before any plan is generated.
"""

from __future__ import annotations

from typing import Any, Mapping

from fleet_reconciler.core.errors import InvalidDesiredConfig
from fleet_reconciler.core.types import ANY_NODE
from fleet_reconciler.intent.base import DesiredConfig
from fleet_reconciler.inventory.configuration import ServiceConfiguration
from fleet_reconciler.inventory.services import ServiceCatalog


def _count(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidDesiredConfig(f"{where}: count must be an integer, got {value!r}")
    if value < 0:
        raise InvalidDesiredConfig(f"{where}: count must not be negative, got {value}")
    return value


def _flatten(
    raw: Any,
    depth: int,
    prefix: tuple[str, ...],
    where: str,
) -> list[tuple[tuple[str, ...], int]]:
    """Walk depth levels of nested mappings and return (key, count) rows."""
    if not isinstance(raw, Mapping):
        raise InvalidDesiredConfig(f"{where}: expected an object, got {type(raw).__name__}")

    rows: list[tuple[tuple[str, ...], int]] = []
    for name, value in raw.items():
        key = prefix + (str(name),)
        if depth == 1:
            rows.append((key, _count(value, f"{where}/{name}")))
        else:
            rows.extend(_flatten(value, depth - 1, key, f"{where}/{name}"))
    return rows


def parse_desired_config(raw: Any, catalog: ServiceCatalog) -> DesiredConfig:
    """
    Convert the nested plain structure into a DesiredConfig.

    Every configuration is frozen after parsing.
    """

    if not isinstance(raw, Mapping):
        raise InvalidDesiredConfig("desired configuration must be an object keyed by node")

    nodes = [str(n) for n in raw.keys()]
    if ANY_NODE in nodes and len(nodes) > 1:
        raise InvalidDesiredConfig(f'cannot combine "{ANY_NODE}" with specific nodes')

    desired: DesiredConfig = {}
    for node, services in raw.items():
        node = str(node)
        if not isinstance(services, Mapping):
            raise InvalidDesiredConfig(f"{node}: expected an object keyed by service")

        desired[node] = {}
        for service, body in services.items():
            service = str(service)
            if not catalog.is_valid(service):
                raise InvalidDesiredConfig(f'{node}: unrecognized service: "{service}"')

            fields = catalog.config_fields(service)
            config = ServiceConfiguration(fields)
            for key, count in _flatten(body, len(fields), (), f"{node}/{service}"):
                config.incr(key, count)
            desired[node][service] = config.freeze()

    return desired


def desired_to_plain(desired: DesiredConfig) -> dict[str, Any]:
    """Inverse of parse_desired_config, suitable for json.dumps."""
    return {
        node: {service: config.nested_summary() for service, config in services.items()}
        for node, services in desired.items()
    }
