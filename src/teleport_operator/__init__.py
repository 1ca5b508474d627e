"""
Teleport Operator - keeps a fleet of Cluster API clusters enrolled with Teleport.

The operator provides:
- Join token issuance, validation, rotation and revocation per cluster
- Idempotent per-cluster join-token Secrets and agent values ConfigMaps
- Ordered, finalizer-driven teardown of enrollment state
- Fleet-wide re-reconciliation when the operator configuration changes
"""

__version__ = "0.1.0"
