"""
Core types.

This file defines the shared data structures used across the engine.

Important design choice
A configuration key is a plain tuple of field values, ordered the way the
service catalog describes the service. The last field is always the image.
Sharded services put the shard first. Keys are never compared across services.

Plan entries are mutable on purpose. The generator creates them, the orderer
binds deprovisions to concrete instances or replaces pairs of entries with a
reprovision, and the executor only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

ANY_NODE = "<any>"
"""Sentinel node id meaning any node in this datacenter."""

ConfigKey = Tuple[str, ...]
"""Tuple of field values for one service, image last."""

SHARD_FIELD = "shard"
IMAGE_FIELD = "image"


class PlanAction(str, Enum):
    """
    Kind of change queued in a plan.

    provision
      Create a new instance.

    deprovision
      Remove an existing instance.

    reprovision
      Replace the image of an existing instance in place.
    """

    provision = "provision"
    deprovision = "deprovision"
    reprovision = "reprovision"


@dataclass(frozen=True)
class InstanceRecord:
    """
    One deployed instance as reported by inventory discovery.

    node is None when the instance runs outside the local datacenter.
    image is None when the instance has no known image. Such instances are
    listed but never counted.
    """

    service: str
    instance_id: str
    node: Optional[str]
    image: Optional[str]
    shard: Optional[str] = None

    def field_value(self, name: str) -> str:
        """Return the value used for the named configuration field."""
        if name == SHARD_FIELD:
            return "-" if self.shard is None else str(self.shard)
        if name == IMAGE_FIELD:
            return "-" if self.image is None else self.image
        raise KeyError(name)


@dataclass
class PlanEntry:
    """
    One queued action.

    key and fields describe the configuration the action targets.
    For a reprovision key holds the new configuration, old_image holds the
    image being replaced, reason is the provision reason and old_reason is the
    deprovision reason.

    instance_id is bound by the orderer for deprovision and reprovision.
    """

    node: str
    service: str
    fields: Tuple[str, ...]
    key: ConfigKey
    action: PlanAction
    reason: str
    instance_id: Optional[str] = None
    old_image: Optional[str] = None
    old_reason: Optional[str] = None

    @property
    def image(self) -> str:
        return self.key[-1]

    @property
    def shard(self) -> Optional[str]:
        if SHARD_FIELD not in self.fields:
            return None
        return self.key[self.fields.index(SHARD_FIELD)]

    @property
    def partition(self) -> ConfigKey:
        """Key without the image. Entries in different partitions never mix."""
        return self.key[:-1]

    def to_dict(self) -> Dict[str, Any]:
        """Full record, including reasons and both images for reprovisions."""
        out: Dict[str, Any] = {
            "node": self.node,
            "service": self.service,
            "action": self.action.value,
            "instance_id": self.instance_id,
            "image": self.image,
            "shard": self.shard,
            "reason": self.reason,
        }
        if self.action == PlanAction.reprovision:
            out["old_image"] = self.old_image
            out["new_image"] = self.image
            out["old_reason"] = self.old_reason
        return out
