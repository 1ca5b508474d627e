"""
tbot auxiliary records.

With the tbot feature enabled every cluster gets a ConfigMap in the tbot
namespace, referenced from the ``teleport-tbot`` App as an extra config so
tbot produces a kubeconfig for the cluster.
"""

from typing import Any

from ..constants import (
    TBOT_APP_NAME,
    TBOT_EXTRA_CONFIG_PRIORITY,
    TBOT_NAMESPACE,
    VALUES_KEY,
)
from ..errors import ReconciliationError
from ..models.cluster import ClusterRegistration
from ..observability.logging import OperatorLogger
from ..utils.kubernetes import AppClient
from ..utils.records import RecordManager
from .artifact_sync import dump_values


def bot_extra_config(registration: ClusterRegistration) -> dict[str, Any]:
    return {
        "kind": "configMap",
        "name": registration.tbot_config_name,
        "namespace": TBOT_NAMESPACE,
        "priority": TBOT_EXTRA_CONFIG_PRIORITY,
    }


def bot_values(registration: ClusterRegistration) -> dict[str, Any]:
    return {
        "clusterName": registration.register_name,
        "outputs": [
            {
                "type": "kubernetes",
                "kubernetesCluster": registration.register_name,
                "secretName": f"{registration.cluster_name}-teleport-kubeconfig",
            }
        ],
    }


def _same_entry(entry: dict[str, Any], wanted: dict[str, Any]) -> bool:
    return all(entry.get(key) == value for key, value in wanted.items())


class BotConfigSynchronizer:
    """Keeps the tbot ConfigMap and App extra config of each cluster."""

    def __init__(
        self,
        records: RecordManager,
        apps: AppClient,
        namespace: str = TBOT_NAMESPACE,
        app_name: str = TBOT_APP_NAME,
    ):
        self.records = records
        self.apps = apps
        self.namespace = namespace
        self.app_name = app_name
        self.logger = OperatorLogger(self.__class__.__name__)

    async def ensure(self, registration: ClusterRegistration) -> None:
        name = registration.tbot_config_name
        if await self.records.get_config_map(name, self.namespace) is None:
            await self.records.create_config_map(
                name,
                self.namespace,
                {VALUES_KEY: dump_values(bot_values(registration))},
                labels=registration.record_labels(),
            )

        app = await self.apps.get_app(self.app_name, self.namespace)
        if app is None:
            raise ReconciliationError(
                f"tbot app {self.namespace}/{self.app_name} not found",
                user_action="Install the teleport-tbot app or disable ENABLE_TBOT",
            )
        extra_configs = list(app.get("spec", {}).get("extraConfigs") or [])
        wanted = bot_extra_config(registration)
        if any(_same_entry(entry, wanted) for entry in extra_configs):
            return
        self.logger.info(f"Adding tbot extra config {name} to app {self.app_name}")
        await self.apps.set_extra_configs(app, [*extra_configs, wanted])

    async def remove(self, registration: ClusterRegistration) -> None:
        """Drop the cluster's extra config entry and ConfigMap; absence is success."""
        app = await self.apps.get_app(self.app_name, self.namespace)
        if app is not None:
            extra_configs = list(app.get("spec", {}).get("extraConfigs") or [])
            wanted = bot_extra_config(registration)
            remaining = [e for e in extra_configs if not _same_entry(e, wanted)]
            if len(remaining) != len(extra_configs):
                self.logger.info(
                    f"Removing tbot extra config {registration.tbot_config_name} "
                    f"from app {self.app_name}"
                )
                await self.apps.set_extra_configs(app, remaining)

        await self.records.delete_config_map(
            registration.tbot_config_name, self.namespace
        )
