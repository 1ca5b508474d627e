"""
Cluster API cluster view and the registration derived from it.
"""

from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from ..constants import (
    CLUSTER_NAME_LABEL,
    CLUSTER_NAMESPACE_LABEL,
    CONFIG_MAP_SUFFIX,
    JOIN_TOKEN_SECRET_SUFFIX,
    MANAGEMENT_CLUSTER_NAMESPACE,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
    TBOT_CONFIG_MAP_SUFFIX,
    TELEPORT_FINALIZER,
    USER_VALUES_CONFIG_MAP_SUFFIX,
)
from .config import ControllerConfig


class ClusterKey(NamedTuple):
    """Work queue key of a cluster."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ClusterIdentity(BaseModel):
    """The parts of a Cluster API cluster the operator looks at."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    resource_version: str | None = None
    deletion_timestamp: str | None = None
    finalizers: list[str] = Field(default_factory=list)
    annotations: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_object(cls, body: dict[str, Any]) -> "ClusterIdentity":
        metadata = body.get("metadata", {})
        return cls(
            name=metadata["name"],
            namespace=metadata["namespace"],
            resource_version=metadata.get("resourceVersion"),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            finalizers=list(metadata.get("finalizers") or []),
            annotations=dict(metadata.get("annotations") or {}),
        )

    @property
    def key(self) -> ClusterKey:
        return ClusterKey(self.namespace, self.name)

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def has_finalizer(self) -> bool:
        return TELEPORT_FINALIZER in self.finalizers


class ClusterRegistration(BaseModel):
    """
    How a cluster is registered with the access proxy and where its records
    live.

    The management cluster registers under its own name and keeps its
    records in the ``giantswarm`` namespace. Workload clusters register as
    ``<management cluster>-<cluster>`` and keep their records next to the
    Cluster object.
    """

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    cluster_namespace: str
    register_name: str
    install_namespace: str
    is_management_cluster: bool
    app_name: str

    @classmethod
    def for_cluster(
        cls, cluster: ClusterIdentity, config: ControllerConfig
    ) -> "ClusterRegistration":
        is_mc = cluster.name == config.management_cluster_name
        return cls(
            cluster_name=cluster.name,
            cluster_namespace=cluster.namespace,
            register_name=register_name(cluster.name, config.management_cluster_name),
            install_namespace=MANAGEMENT_CLUSTER_NAMESPACE if is_mc else cluster.namespace,
            is_management_cluster=is_mc,
            app_name=config.app_name,
        )

    @property
    def credential_record_name(self) -> str:
        return f"{self.cluster_name}{JOIN_TOKEN_SECRET_SUFFIX}"

    @property
    def config_record_name(self) -> str:
        return f"{self.cluster_name}-{self.app_name}{CONFIG_MAP_SUFFIX}"

    @property
    def user_values_name(self) -> str:
        return f"{self.cluster_name}{USER_VALUES_CONFIG_MAP_SUFFIX}"

    @property
    def tbot_config_name(self) -> str:
        return f"{self.cluster_name}{TBOT_CONFIG_MAP_SUFFIX}"

    def record_labels(self) -> dict[str, str]:
        """Labels stamped on every record so events map back to the cluster."""
        return {
            OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE,
            CLUSTER_NAME_LABEL: self.cluster_name,
            CLUSTER_NAMESPACE_LABEL: self.cluster_namespace,
        }


def register_name(cluster_name: str, management_cluster_name: str) -> str:
    """Name under which a cluster is known to the access proxy."""
    if cluster_name == management_cluster_name:
        return cluster_name
    return f"{management_cluster_name}-{cluster_name}"
