"""
Service configuration multiset.

A ServiceConfiguration counts instances of one service grouped by a
configuration key. For most services the key is just the image, which gives
a count of instances per image. For sharded services the key is
(shard, image), so counts are kept per shard and image.

The planner keeps one of these per service for the whole datacenter and one
per service per node, plus one per service per node in the desired tree.

Counts are never negative. The multiset is built by repeated incr calls and
then frozen, after which it is read only.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from fleet_reconciler.core.errors import ConfigurationFrozen
from fleet_reconciler.core.types import ConfigKey


class ServiceConfiguration:
    def __init__(self, fields: Sequence[str]) -> None:
        if not fields:
            raise ValueError("a service configuration needs at least one field")
        self._fields: Tuple[str, ...] = tuple(fields)
        self._counts: Dict[ConfigKey, int] = {}
        self._frozen = False

    @property
    def fields(self) -> Tuple[str, ...]:
        return self._fields

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "ServiceConfiguration":
        self._frozen = True
        return self

    def _check_key(self, key: ConfigKey) -> ConfigKey:
        key = tuple(key)
        if len(key) != len(self._fields):
            raise ValueError(
                f"key {key!r} does not match configuration fields {self._fields!r}"
            )
        return key

    def incr(self, key: ConfigKey, count: int = 1) -> None:
        """Add count instances for the given configuration."""
        if self._frozen:
            raise ConfigurationFrozen("service configuration is read only")
        if count < 0:
            raise ValueError(f"count must not be negative, got {count}")
        key = self._check_key(key)
        self._counts[key] = self._counts.get(key, 0) + count

    def get(self, key: ConfigKey) -> int:
        """Return the count for a configuration, zero when absent."""
        return self._counts.get(self._check_key(key), 0)

    def has(self, key: ConfigKey) -> bool:
        return self._check_key(key) in self._counts

    def each(self) -> Iterator[Tuple[ConfigKey, int]]:
        """Iterate (key, count) pairs in insertion order."""
        return iter(list(self._counts.items()))

    def each_sorted(self, by: Optional[Sequence[str]] = None) -> Iterator[Tuple[ConfigKey, int]]:
        """
        Iterate (key, count) pairs sorted by the named fields.

        by defaults to every field in key order. Ties keep insertion order.
        """
        names = list(by) if by is not None else list(self._fields)
        indexes = [self._fields.index(name) for name in names]
        rows = sorted(self._counts.items(), key=lambda kv: [kv[0][i] for i in indexes])
        return iter(rows)

    def total(self) -> int:
        return sum(self._counts.values())

    def summary(self) -> List[Dict[str, Any]]:
        """One dict per configuration with each field value plus count."""
        rows: List[Dict[str, Any]] = []
        for key, count in self.each():
            row: Dict[str, Any] = dict(zip(self._fields, key))
            row["count"] = count
            rows.append(row)
        return rows

    def nested_summary(self) -> Dict[str, Any]:
        """
        Plain nested dict keyed field by field.

        For a sharded service this looks like {shard: {image: count}}.
        """
        out: Dict[str, Any] = {}
        for key, count in self.each():
            level = out
            for value in key[:-1]:
                level = level.setdefault(value, {})
            level[key[-1]] = count
        return out

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != len(self._fields):
            return False
        return key in self._counts

    def __iter__(self) -> Iterator[Tuple[ConfigKey, int]]:
        return self.each()

    def __len__(self) -> int:
        return len(self._counts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServiceConfiguration):
            return NotImplemented
        return self._fields == other._fields and self._counts == other._counts

    def __repr__(self) -> str:
        return f"ServiceConfiguration(fields={self._fields!r}, counts={self._counts!r})"


def empty_configuration(fields: Sequence[str]) -> ServiceConfiguration:
    """Frozen configuration with no instances."""
    return ServiceConfiguration(fields).freeze()
