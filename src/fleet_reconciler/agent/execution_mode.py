"""
Execution modes.

apply
Execute the plan through the provisioner.

dry_run
Build the plan and render every action, but do not apply.
"""

from __future__ import annotations

from enum import StrEnum


class ExecutionMode(StrEnum):
    apply = "apply"
    dry_run = "dry_run"
