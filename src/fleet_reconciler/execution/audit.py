from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from fleet_reconciler.core.serialization import to_json_safe_dict
from fleet_reconciler.execution.base import ActionOutcome, ResultCollector


@dataclass
class MemoryCollector(ResultCollector):
    """Keep outcomes in a list. Used for reports and tests."""

    outcomes: List[ActionOutcome] = field(default_factory=list)

    def record(self, outcome: ActionOutcome) -> None:
        self.outcomes.append(outcome)

    def failures(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if not o.ok]


@dataclass(frozen=True)
class AuditLogger(ResultCollector):
    """
    JSON line audit logger.

    Each outcome appends one JSON object per line.
    """

    path: Path

    def record(self, outcome: ActionOutcome) -> None:
        payload = to_json_safe_dict(outcome)
        payload["ts_unix"] = int(time.time())
        line = json.dumps(payload, sort_keys=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


@dataclass(frozen=True)
class FanoutCollector(ResultCollector):
    """Forward each outcome to several collectors in order."""

    collectors: tuple[ResultCollector, ...]

    def record(self, outcome: ActionOutcome) -> None:
        for collector in self.collectors:
            collector.record(outcome)
