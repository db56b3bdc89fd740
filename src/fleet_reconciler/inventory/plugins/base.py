"""
Inventory plugin interfaces.

Goal
Provide pluggable inventory discovery so the reconciler is source agnostic.

Inventory is normalized into InstanceRecord objects and a DeployedInventory.

We keep the interface narrow so it is easy to mock in tests.
"""

from __future__ import annotations

from typing import Protocol

from fleet_reconciler.inventory.store import DeployedInventory


class InventoryPlugin(Protocol):
    """
    Inventory plugin interface.

    load returns a fully populated DeployedInventory.
    """

    def load(self) -> DeployedInventory:
        """Load deployed instances into a DeployedInventory."""
