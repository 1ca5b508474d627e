"""
Idempotent per-cluster records consumed by the in-cluster agent.

Two records are kept per cluster:

- CredentialRecord: Secret ``<cluster>-teleport-join-token`` with the
  current join token under ``joinToken``.
- ConfigRecord: ConfigMap ``<cluster>-<appName>-config`` whose ``values``
  key holds the agent's Helm values as YAML.

Every ensure re-derives the desired state and writes only when it differs
from what is stored. Keys in the values payload the operator does not own
are carried over untouched.
"""

import base64
from typing import Any

import yaml
from kubernetes import client

from ..constants import (
    APPS_KEY,
    JOIN_TOKEN_KEY,
    VALUES_AUTH_TOKEN_KEY,
    VALUES_KEY,
    VALUES_KUBE_CLUSTER_NAME_KEY,
    VALUES_PROXY_ADDR_KEY,
    VALUES_ROLES_KEY,
    VALUES_VERSION_OVERRIDE_KEY,
)
from ..errors import MalformedStateError
from ..models.cluster import ClusterRegistration
from ..models.config import ControllerConfig
from ..models.token import TokenRole, format_roles
from ..observability.logging import OperatorLogger
from ..utils.records import RecordManager, decode_secret_value
from .token_manager import TokenLifecycleManager

CREDENTIAL_ROLES = frozenset({TokenRole.KUBE, TokenRole.NODE})
AGENT_ROLES = frozenset({TokenRole.KUBE})
AGENT_ROLES_WITH_APPS = frozenset({TokenRole.KUBE, TokenRole.APP})


def parse_values(raw: str | None, where: str) -> dict[str, Any]:
    """
    Parse a Helm values payload.

    An empty payload is an empty mapping.

    Raises:
        MalformedStateError: If the payload is not a YAML mapping
    """
    if not raw or not raw.strip():
        return {}
    try:
        values = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise MalformedStateError(f"{where}: values are not valid YAML: {e}") from e
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise MalformedStateError(
            f"{where}: values must be a mapping, got {type(values).__name__}"
        )
    return values


def dump_values(values: dict[str, Any]) -> str:
    return yaml.safe_dump(values, default_flow_style=False, sort_keys=False)


def managed_values(
    registration: ClusterRegistration,
    config: ControllerConfig,
    roles: frozenset[TokenRole],
) -> dict[str, Any]:
    """The values keys owned by the operator, except the auth token."""
    values: dict[str, Any] = {
        VALUES_ROLES_KEY: format_roles(roles),
        VALUES_PROXY_ADDR_KEY: config.proxy_addr,
        VALUES_KUBE_CLUSTER_NAME_KEY: registration.register_name,
    }
    if config.teleport_version:
        values[VALUES_VERSION_OVERRIDE_KEY] = config.teleport_version
    return values


def _missing_labels(metadata: client.V1ObjectMeta, labels: dict[str, str]) -> bool:
    current = metadata.labels or {}
    return any(current.get(key) != value for key, value in labels.items())


class ArtifactSynchronizer:
    """Creates, refreshes and deletes the records of one cluster at a time."""

    def __init__(self, records: RecordManager):
        self.records = records
        self.logger = OperatorLogger(self.__class__.__name__)

    async def agent_roles(self, registration: ClusterRegistration) -> frozenset[TokenRole]:
        """
        Roles the agent needs: ``kube``, plus ``app`` when the user values of
        the cluster configure at least one app.
        """
        user_values = await self.records.get_config_map(
            registration.user_values_name, registration.install_namespace
        )
        if user_values is None:
            return AGENT_ROLES
        values = parse_values(
            (user_values.data or {}).get(VALUES_KEY),
            f"config map {registration.install_namespace}/{registration.user_values_name}",
        )
        apps = values.get(APPS_KEY)
        if isinstance(apps, list) and apps:
            return AGENT_ROLES_WITH_APPS
        return AGENT_ROLES

    async def ensure_credential_record(
        self, registration: ClusterRegistration, tokens: TokenLifecycleManager
    ) -> str:
        """
        Make sure the join token Secret holds a valid token.

        Returns:
            The join token stored in the Secret
        """
        name = registration.credential_record_name
        namespace = registration.install_namespace
        owner = registration.register_name
        labels = registration.record_labels()

        secret = await self.records.get_secret(name, namespace)
        if secret is None:
            token = await tokens.generate_token(owner, CREDENTIAL_ROLES)
            await self.records.create_secret(
                name, namespace, {JOIN_TOKEN_KEY: token}, labels=labels
            )
            return token

        try:
            current = decode_secret_value(secret, JOIN_TOKEN_KEY)
        except MalformedStateError as e:
            self.logger.warning(f"Discarding undecodable join token: {e}")
            current = None
        token_ok = bool(current) and await tokens.is_token_valid(
            owner, current, CREDENTIAL_ROLES
        )
        if token_ok and not _missing_labels(secret.metadata, labels):
            return current

        token = current
        if not token_ok:
            self.logger.info(f"Join token in secret {namespace}/{name} is not valid, rotating")
            token = await tokens.generate_token(owner, CREDENTIAL_ROLES)
            secret.data = {
                **(secret.data or {}),
                JOIN_TOKEN_KEY: base64.b64encode(token.encode()).decode(),
            }
        secret.metadata.labels = {**(secret.metadata.labels or {}), **labels}
        await self.records.replace_secret(secret)
        return token

    async def ensure_config_record(
        self,
        registration: ClusterRegistration,
        config: ControllerConfig,
        roles: frozenset[TokenRole],
        tokens: TokenLifecycleManager,
    ) -> None:
        """
        Make sure the agent values ConfigMap carries a valid token and the
        current controller-owned values.
        """
        name = registration.config_record_name
        namespace = registration.install_namespace
        owner = registration.register_name
        labels = registration.record_labels()

        config_map = await self.records.get_config_map(name, namespace)
        if config_map is None:
            values = {
                VALUES_AUTH_TOKEN_KEY: await tokens.generate_token(owner, roles),
                **managed_values(registration, config, roles),
            }
            await self.records.create_config_map(
                name, namespace, {VALUES_KEY: dump_values(values)}, labels=labels
            )
            return

        stored = parse_values(
            (config_map.data or {}).get(VALUES_KEY), f"config map {namespace}/{name}"
        )
        desired = dict(stored)
        desired.update(managed_values(registration, config, roles))
        if not config.teleport_version:
            desired.pop(VALUES_VERSION_OVERRIDE_KEY, None)

        current = stored.get(VALUES_AUTH_TOKEN_KEY)
        token_ok = (
            isinstance(current, str)
            and bool(current)
            and await tokens.is_token_valid(owner, current, roles)
        )
        if not token_ok:
            self.logger.info(f"Auth token in config map {namespace}/{name} is not valid, rotating")
            desired[VALUES_AUTH_TOKEN_KEY] = await tokens.generate_token(owner, roles)

        if desired == stored and not _missing_labels(config_map.metadata, labels):
            return

        config_map.data = {**(config_map.data or {}), VALUES_KEY: dump_values(desired)}
        config_map.metadata.labels = {**(config_map.metadata.labels or {}), **labels}
        await self.records.replace_config_map(config_map)

    async def delete_credential_record(self, registration: ClusterRegistration) -> None:
        await self.records.delete_secret(
            registration.credential_record_name, registration.install_namespace
        )

    async def delete_config_record(self, registration: ClusterRegistration) -> None:
        await self.records.delete_config_map(
            registration.config_record_name, registration.install_namespace
        )
