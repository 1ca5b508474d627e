"""
Kubernetes utilities for the Teleport operator.

Key functionality:
- Kubernetes client management and configuration
- Cluster API cluster reads and metadata patches (finalizer, annotations)
- Giant Swarm App reads and patches for the tbot extra configs

The kubernetes client blocks; every call runs in a worker thread.
"""

import asyncio
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..constants import (
    APP_API_GROUP,
    APP_API_PLURAL,
    APP_API_VERSION,
    CLUSTER_API_GROUP,
    CLUSTER_API_PLURAL,
    CLUSTER_API_VERSION,
    CONFLICT_RETRY_DELAY,
    TELEPORT_FINALIZER,
)
from ..errors import ConflictError, KubernetesAPIError
from ..models.cluster import ClusterIdentity, ClusterKey

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries the in-cluster configuration first and falls back to the local
    kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def api_error(e: ApiException, action: str) -> Exception:
    """Translate an ApiException into the operator error for ``action``."""
    if e.status == 409:
        return ConflictError(f"Conflict while trying to {action}", delay=CONFLICT_RETRY_DELAY)
    return KubernetesAPIError(f"Failed to {action}: {e.reason}", reason=e.reason)


class _CustomObjectClient:
    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client
        self._api: client.CustomObjectsApi | None = None

    @property
    def api(self) -> client.CustomObjectsApi:
        """Get CustomObjectsApi client."""
        if self._api is None:
            if self.k8s_client:
                self._api = client.CustomObjectsApi(self.k8s_client)
            else:
                self._api = client.CustomObjectsApi()
        return self._api


class ClusterClient(_CustomObjectClient):
    """Reads and patches Cluster API ``Cluster`` objects."""

    def _coordinates(self) -> dict[str, str]:
        return {
            "group": CLUSTER_API_GROUP,
            "version": CLUSTER_API_VERSION,
            "plural": CLUSTER_API_PLURAL,
        }

    async def get_cluster(self, key: ClusterKey) -> ClusterIdentity | None:
        """
        Fetch a cluster.

        Returns:
            The cluster, or None if it does not exist

        Raises:
            KubernetesAPIError: If the read fails for reasons other than 404
        """
        try:
            body = await asyncio.to_thread(
                self.api.get_namespaced_custom_object,
                namespace=key.namespace,
                name=key.name,
                **self._coordinates(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise api_error(e, f"read cluster {key}") from e
        return ClusterIdentity.from_object(body)

    async def list_clusters(
        self, namespaces: list[str] | None = None
    ) -> list[ClusterIdentity]:
        """List clusters in ``namespaces``, or cluster-wide when None."""
        try:
            if namespaces:
                items: list[dict[str, Any]] = []
                for namespace in namespaces:
                    response = await asyncio.to_thread(
                        self.api.list_namespaced_custom_object,
                        namespace=namespace,
                        **self._coordinates(),
                    )
                    items.extend(response.get("items", []))
            else:
                response = await asyncio.to_thread(
                    self.api.list_cluster_custom_object, **self._coordinates()
                )
                items = response.get("items", [])
        except ApiException as e:
            raise api_error(e, "list clusters") from e
        return [ClusterIdentity.from_object(item) for item in items]

    async def _patch_metadata(
        self, cluster: ClusterIdentity, metadata: dict[str, Any], action: str
    ) -> bool:
        """
        Merge-patch cluster metadata guarded by the observed resourceVersion.

        Returns:
            False if the cluster no longer exists
        """
        if cluster.resource_version:
            metadata = {**metadata, "resourceVersion": cluster.resource_version}
        try:
            await asyncio.to_thread(
                self.api.patch_namespaced_custom_object,
                namespace=cluster.namespace,
                name=cluster.name,
                body={"metadata": metadata},
                **self._coordinates(),
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise api_error(e, f"{action} on cluster {cluster.key}") from e
        return True

    async def add_finalizer(self, cluster: ClusterIdentity) -> bool:
        """Add the operator finalizer; a no-op if it is already present."""
        if cluster.has_finalizer:
            return False
        finalizers = [*cluster.finalizers, TELEPORT_FINALIZER]
        added = await self._patch_metadata(
            cluster, {"finalizers": finalizers}, "add finalizer"
        )
        if added:
            logger.info(f"Added finalizer to cluster {cluster.key}")
        return added

    async def remove_finalizer(self, cluster: ClusterIdentity) -> None:
        if not cluster.has_finalizer:
            return
        finalizers = [f for f in cluster.finalizers if f != TELEPORT_FINALIZER]
        if await self._patch_metadata(
            cluster, {"finalizers": finalizers}, "remove finalizer"
        ):
            logger.info(f"Removed finalizer from cluster {cluster.key}")

    async def annotate(self, cluster: ClusterIdentity, key: str, value: str) -> None:
        """Set one annotation; last writer wins, no resourceVersion guard."""
        try:
            await asyncio.to_thread(
                self.api.patch_namespaced_custom_object,
                namespace=cluster.namespace,
                name=cluster.name,
                body={"metadata": {"annotations": {key: value}}},
                **self._coordinates(),
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise api_error(e, f"annotate cluster {cluster.key}") from e


class AppClient(_CustomObjectClient):
    """Reads and patches Giant Swarm ``App`` objects."""

    def _coordinates(self) -> dict[str, str]:
        return {
            "group": APP_API_GROUP,
            "version": APP_API_VERSION,
            "plural": APP_API_PLURAL,
        }

    async def get_app(self, name: str, namespace: str) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(
                self.api.get_namespaced_custom_object,
                namespace=namespace,
                name=name,
                **self._coordinates(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise api_error(e, f"read app {namespace}/{name}") from e

    async def set_extra_configs(
        self, app: dict[str, Any], extra_configs: list[dict[str, Any]]
    ) -> None:
        """Replace ``spec.extraConfigs`` guarded by the app's resourceVersion."""
        metadata = app["metadata"]
        body = {
            "metadata": {"resourceVersion": metadata.get("resourceVersion")},
            "spec": {"extraConfigs": extra_configs},
        }
        try:
            await asyncio.to_thread(
                self.api.patch_namespaced_custom_object,
                namespace=metadata["namespace"],
                name=metadata["name"],
                body=body,
                **self._coordinates(),
            )
        except ApiException as e:
            raise api_error(
                e, f"update extra configs of app {metadata['namespace']}/{metadata['name']}"
            ) from e
