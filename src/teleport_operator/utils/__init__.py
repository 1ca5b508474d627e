"""
Utility modules for the Teleport operator.

- kubernetes: client configuration and Cluster / App object access
- records: Secret and ConfigMap operations for per-cluster records
- circuit_breaker: aiobreaker wrapper for access proxy calls
"""
