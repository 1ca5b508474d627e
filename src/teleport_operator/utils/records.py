"""
Secret and ConfigMap operations for per-cluster records.

Not-found is reported as None on reads and as False on deletes; create and
replace conflicts surface as ConflictError so the attempt is retried against
a fresh read. The blocking client calls run in worker threads.
"""

import asyncio
import base64
import binascii
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import MalformedStateError
from .kubernetes import api_error

logger = logging.getLogger(__name__)


def encode_secret_data(data: dict[str, str]) -> dict[str, str]:
    return {key: base64.b64encode(value.encode()).decode() for key, value in data.items()}


def decode_secret_value(secret: client.V1Secret, key: str) -> str | None:
    """
    Decode one key of a secret, None if it is absent.

    Raises:
        MalformedStateError: If the value is not base64 encoded UTF-8
    """
    raw = (secret.data or {}).get(key)
    if raw is None:
        return None
    try:
        return base64.b64decode(raw, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        metadata = secret.metadata
        where = f"{metadata.namespace}/{metadata.name}" if metadata else "secret"
        raise MalformedStateError(f"{where}: key {key!r} cannot be decoded: {e}") from e


class RecordManager:
    """Manages the Secrets and ConfigMaps the operator renders per cluster."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    async def get_secret(self, name: str, namespace: str) -> client.V1Secret | None:
        """
        Retrieve a secret.

        Returns:
            Secret object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            return await asyncio.to_thread(
                self.v1.read_namespaced_secret, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise api_error(e, f"read secret {namespace}/{name}") from e

    async def create_secret(
        self,
        name: str,
        namespace: str,
        data: dict[str, str],
        labels: dict[str, str] | None = None,
    ) -> client.V1Secret:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels),
            type="Opaque",
            data=encode_secret_data(data),
        )
        try:
            secret = await asyncio.to_thread(
                self.v1.create_namespaced_secret, namespace=namespace, body=body
            )
        except ApiException as e:
            raise api_error(e, f"create secret {namespace}/{name}") from e
        logger.info(f"Created secret {namespace}/{name}")
        return secret

    async def replace_secret(self, secret: client.V1Secret) -> client.V1Secret:
        """Write back a secret read earlier; its resourceVersion guards the write."""
        name = secret.metadata.name
        namespace = secret.metadata.namespace
        try:
            updated = await asyncio.to_thread(
                self.v1.replace_namespaced_secret,
                name=name,
                namespace=namespace,
                body=secret,
            )
        except ApiException as e:
            raise api_error(e, f"update secret {namespace}/{name}") from e
        logger.info(f"Updated secret {namespace}/{name}")
        return updated

    async def delete_secret(self, name: str, namespace: str) -> bool:
        try:
            await asyncio.to_thread(
                self.v1.delete_namespaced_secret, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise api_error(e, f"delete secret {namespace}/{name}") from e
        logger.info(f"Deleted secret {namespace}/{name}")
        return True

    async def get_config_map(
        self, name: str, namespace: str
    ) -> client.V1ConfigMap | None:
        try:
            return await asyncio.to_thread(
                self.v1.read_namespaced_config_map, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise api_error(e, f"read config map {namespace}/{name}") from e

    async def create_config_map(
        self,
        name: str,
        namespace: str,
        data: dict[str, str],
        labels: dict[str, str] | None = None,
    ) -> client.V1ConfigMap:
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels),
            data=data,
        )
        try:
            config_map = await asyncio.to_thread(
                self.v1.create_namespaced_config_map,
                namespace=namespace,
                body=body,
            )
        except ApiException as e:
            raise api_error(e, f"create config map {namespace}/{name}") from e
        logger.info(f"Created config map {namespace}/{name}")
        return config_map

    async def replace_config_map(
        self, config_map: client.V1ConfigMap
    ) -> client.V1ConfigMap:
        name = config_map.metadata.name
        namespace = config_map.metadata.namespace
        try:
            updated = await asyncio.to_thread(
                self.v1.replace_namespaced_config_map,
                name=name,
                namespace=namespace,
                body=config_map,
            )
        except ApiException as e:
            raise api_error(e, f"update config map {namespace}/{name}") from e
        logger.info(f"Updated config map {namespace}/{name}")
        return updated

    async def delete_config_map(self, name: str, namespace: str) -> bool:
        try:
            await asyncio.to_thread(
                self.v1.delete_namespaced_config_map, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise api_error(e, f"delete config map {namespace}/{name}") from e
        logger.info(f"Deleted config map {namespace}/{name}")
        return True
