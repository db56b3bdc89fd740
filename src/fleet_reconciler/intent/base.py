"""
Desired configuration source interfaces.

Goal
Provide pluggable ingestion of the operator's desired configuration.

Sources return a DesiredConfig tree that the plan generator can diff against
the deployed inventory.
"""

from __future__ import annotations

from typing import Dict, Protocol

from fleet_reconciler.inventory.configuration import ServiceConfiguration

DesiredConfig = Dict[str, Dict[str, ServiceConfiguration]]
"""Node id (or the any node sentinel) to service name to configuration."""


class DesiredSource(Protocol):
    """
    Desired configuration source interface.

    fetch returns a fully parsed and validated DesiredConfig.
    """

    def fetch(self) -> DesiredConfig:
        """Fetch the desired configuration."""
