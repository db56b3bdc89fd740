"""
Planner package.

This makes the planner folder an explicit package so both Python and mypy
resolve modules consistently.
"""

from fleet_reconciler.planner.generator import PlanGenerator, PlannerConfig
from fleet_reconciler.planner.plan import Plan

__all__ = ["Plan", "PlanGenerator", "PlannerConfig"]
