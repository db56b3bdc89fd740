"""
fleet_reconciler

This package is the reconciliation engine for a multi service, multi node
storage deployment. Operators declare how many instances of which image each
service should run on each node, and the engine computes and applies the
provision, deprovision and reprovision actions that get there.

We keep modules small and well separated:
core contains shared data structures, errors and logging setup
inventory contains the service catalog, configuration multisets and discovery plugins
intent contains desired configuration parsing and sources
planner contains plan generation and ordering
execution contains the provisioner interface, the async executor and result collectors
agent contains the single use engine that wires planning and execution
"""
