"""
Dry run rendering.

Each action becomes one or more human readable lines, in the order the
executor would have run it.
"""

from __future__ import annotations

from typing import List

from fleet_reconciler.core.types import PlanAction, PlanEntry


def service_header(service: str) -> str:
    return f'service "{service}"'


def node_header(node: str) -> str:
    return f'  node "{node}":'


def render_action(entry: PlanEntry) -> List[str]:
    """Lines describing one plan entry."""
    prefix = f"shard {entry.shard}: " if entry.shard is not None else ""

    if entry.action == PlanAction.reprovision:
        return [
            f"    {prefix}reprovision instance {entry.instance_id}",
            f"        (old image: {entry.old_image})",
            f"        (new image: {entry.image})",
        ]

    if entry.action == PlanAction.provision:
        return [f"    {prefix}provision (image {entry.image})"]

    return [
        f"    {prefix}deprovision instance {entry.instance_id}",
        f"        (image: {entry.image})",
    ]
