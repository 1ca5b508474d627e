"""
Cluster API cluster events.

Every event (including the initial listing and deletions) becomes a trigger
for the cluster's key; the dispatcher coalesces and runs the attempts.
"""

import kopf

from ..constants import CLUSTER_API_GROUP, CLUSTER_API_PLURAL, CLUSTER_API_VERSION
from ..models.cluster import ClusterKey


@kopf.on.event(CLUSTER_API_GROUP, CLUSTER_API_VERSION, CLUSTER_API_PLURAL)
async def on_cluster_event(name: str, namespace: str, memo: kopf.Memo, **_) -> None:
    memo.dispatcher.trigger(ClusterKey(namespace, name))
