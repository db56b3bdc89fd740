from __future__ import annotations

from dataclasses import asdict
from typing import Any


def _normalize(obj: Any) -> Any:
    if hasattr(obj, "value"):
        return obj.value
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def to_json_safe_dict(obj: Any) -> dict[str, Any]:
    """
    Convert a dataclass object into a JSON safe dict.

    Enums collapse to their values and tuples become lists.
    """
    raw = asdict(obj)
    normalized = _normalize(raw)
    if not isinstance(normalized, dict):
        raise TypeError("expected dict after normalization")
    return normalized


def plan_to_json(plan: Any) -> dict[str, Any]:
    """
    Plan transport shape.

    We only rely on plan.services, plan.nodes and plan.entries.
    """
    services: dict[str, Any] = {}
    for service in plan.services():
        services[service] = {
            node: [entry.to_dict() for entry in plan.entries(service, node)]
            for node in plan.nodes(service)
        }
    return {"services": services}
