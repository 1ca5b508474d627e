"""
Events on the per-cluster records.

Editing or deleting a join token Secret or an agent values ConfigMap by hand
triggers the owning cluster so the record is restored.
"""

import logging

import kopf

from ..constants import (
    CLUSTER_NAME_LABEL,
    CLUSTER_NAMESPACE_LABEL,
    CONFIG_MAP_SUFFIX,
    JOIN_TOKEN_SECRET_SUFFIX,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
)
from ..models.cluster import ClusterKey

logger = logging.getLogger(__name__)

MANAGED_LABELS = {OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE}


def cluster_key_for_record(
    name: str, namespace: str, labels: dict[str, str], suffix: str
) -> ClusterKey | None:
    """
    Map a record back to its cluster.

    Records carry the cluster's name and namespace as labels. Records
    written before those labels existed fall back to the name pattern,
    assuming the cluster lives in the record's namespace.
    """
    cluster_name = labels.get(CLUSTER_NAME_LABEL)
    cluster_namespace = labels.get(CLUSTER_NAMESPACE_LABEL)
    if cluster_name and cluster_namespace:
        return ClusterKey(cluster_namespace, cluster_name)
    if suffix == JOIN_TOKEN_SECRET_SUFFIX and name.endswith(suffix):
        return ClusterKey(namespace, name[: -len(suffix)])
    return None


def _is_credential_record(name: str, **_) -> bool:
    return name.endswith(JOIN_TOKEN_SECRET_SUFFIX)


def _is_config_record(name: str, **_) -> bool:
    return name.endswith(CONFIG_MAP_SUFFIX)


def _trigger(memo: kopf.Memo, key: ClusterKey | None, kind: str, name: str) -> None:
    if key is None:
        logger.debug(f"Ignoring {kind} {name}: cannot map it to a cluster")
        return
    memo.dispatcher.trigger(key)


@kopf.on.event("v1", "secrets", labels=MANAGED_LABELS, when=_is_credential_record)
async def on_credential_record_event(
    name: str, namespace: str, labels: dict[str, str], memo: kopf.Memo, **_
) -> None:
    key = cluster_key_for_record(name, namespace, labels, JOIN_TOKEN_SECRET_SUFFIX)
    _trigger(memo, key, "secret", name)


@kopf.on.event("v1", "configmaps", labels=MANAGED_LABELS, when=_is_config_record)
async def on_config_record_event(
    name: str, namespace: str, labels: dict[str, str], memo: kopf.Memo, **_
) -> None:
    key = cluster_key_for_record(name, namespace, labels, CONFIG_MAP_SUFFIX)
    _trigger(memo, key, "config map", name)
