"""
Reconciliation services for the Teleport operator.

- token_manager: join token issuance, validation and revocation
- artifact_sync: per-cluster join token Secret and agent values ConfigMap
- bot_config: optional tbot ConfigMaps and App extra configs
- finalizer: ordered teardown of a deleted cluster
- config_change: operator configuration change classification
- cluster_reconciler: one reconciliation attempt per cluster
- dispatcher: per-cluster work queue with coalescing, requeue and backoff
"""
