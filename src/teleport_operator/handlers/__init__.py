"""
Handlers package - kopf event handlers for the Teleport operator.

- cluster.py: Cluster API cluster events
- artifacts.py: events on the Secrets and ConfigMaps the operator renders
- config.py: events on the operator ConfigMap
"""
