"""
Plan ordering.

The generator emits, per service and node, an unordered bag of provision and
deprovision entries. This module decides what actually happens and in which
order.

Rules
1  Entries are split by partition, meaning the key without the image, so a
   shard is never mixed with another shard.
2  Every deprovision is bound to a concrete instance by scanning the sorted
   instance list and taking the first unused match. Same inventory and same
   queue order always pick the same instances.
3  When reprovision is allowed, provision and deprovision pairs are fused into
   one in place image swap.
4  Remaining pairs are staggered, provision first, so capacity never drops to
   zero and never doubles during the transition.
5  Leftover provisions run before leftover deprovisions.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Set

from fleet_reconciler.core.errors import PlanBindingError, PlanStateError
from fleet_reconciler.core.types import ANY_NODE, ConfigKey, InstanceRecord, PlanAction, PlanEntry
from fleet_reconciler.inventory.store import instance_key

logger = logging.getLogger(__name__)


def bind_deprovisions(
    deprovisions: Iterable[PlanEntry],
    instances: List[InstanceRecord],
    consumed: Set[str],
) -> None:
    """
    Assign an instance id to each deprovision entry.

    consumed is shared across one planning run so no instance is ever bound
    twice. Bound ids are added to it.
    """

    for entry in deprovisions:
        for inst in instances:
            if inst.instance_id in consumed:
                continue
            if inst.service != entry.service:
                continue
            if entry.node != ANY_NODE and inst.node != entry.node:
                continue
            if instance_key(inst, entry.fields) != entry.key:
                continue

            entry.instance_id = inst.instance_id
            consumed.add(inst.instance_id)
            break
        else:
            raise PlanBindingError(
                f'service "{entry.service}" node "{entry.node}": '
                f"no deployed instance left to remove for {entry.key!r}"
            )


def _fuse(provision: PlanEntry, deprovision: PlanEntry) -> PlanEntry:
    assert provision.node == deprovision.node
    assert provision.service == deprovision.service
    assert provision.partition == deprovision.partition
    assert deprovision.instance_id is not None

    return PlanEntry(
        node=provision.node,
        service=provision.service,
        fields=provision.fields,
        key=provision.key,
        action=PlanAction.reprovision,
        reason=provision.reason,
        instance_id=deprovision.instance_id,
        old_image=deprovision.image,
        old_reason=deprovision.reason,
    )


def order_partition(entries: List[PlanEntry], allow_reprovision: bool) -> List[PlanEntry]:
    """Order one partition whose deprovisions are already bound."""
    provisions: Deque[PlanEntry] = deque(e for e in entries if e.action == PlanAction.provision)
    deprovisions: Deque[PlanEntry] = deque(e for e in entries if e.action == PlanAction.deprovision)
    if len(provisions) + len(deprovisions) != len(entries):
        raise PlanStateError("partition already ordered: it contains reprovision entries")

    ordered: List[PlanEntry] = []

    while allow_reprovision and provisions and deprovisions:
        ordered.append(_fuse(provisions.popleft(), deprovisions.popleft()))

    while provisions and deprovisions:
        p = provisions.popleft()
        d = deprovisions.popleft()
        ordered.append(p)
        ordered.append(d)

    ordered.extend(provisions)
    ordered.extend(deprovisions)
    return ordered


def order_entries(
    entries: List[PlanEntry],
    instances: List[InstanceRecord],
    allow_reprovision: bool,
    consumed: Set[str],
) -> List[PlanEntry]:
    """
    Order all entries for one service on one node.

    instances must be the stably sorted instance list for the service.
    """

    partitions: Dict[ConfigKey, List[PlanEntry]] = {}
    for entry in entries:
        partitions.setdefault(entry.partition, []).append(entry)

    ordered: List[PlanEntry] = []
    for partition, group in partitions.items():
        bind_deprovisions(
            (e for e in group if e.action == PlanAction.deprovision),
            instances,
            consumed,
        )
        part = order_partition(group, allow_reprovision)
        logger.debug(
            "ordered partition %r: %d entries in, %d out",
            partition,
            len(group),
            len(part),
        )
        ordered.extend(part)

    return ordered
