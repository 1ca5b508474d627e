"""
Controller configuration and change classification.

The controller configuration is read from the ``teleport-operator``
ConfigMap. Every field carries an impact tier that decides what a change to
it means for the fleet.
"""

import base64
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..errors import MalformedStateError


class ImpactTier(IntEnum):
    """How far a configuration change reaches, ordered by severity."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class ControllerConfig(BaseModel):
    """Snapshot of the operator ConfigMap."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    proxy_addr: str = Field(..., alias="proxyAddr")
    management_cluster_name: str = Field(..., alias="managementClusterName")
    app_name: str = Field(..., alias="appName")
    app_version: str = Field(..., alias="appVersion")
    app_catalog: str = Field(..., alias="appCatalog")
    teleport_version: str = Field("", alias="teleportVersion")

    @classmethod
    def from_config_map(cls, config_map: Any) -> "ControllerConfig":
        """
        Build a config snapshot from a V1ConfigMap.

        Raises:
            MalformedStateError: If a required key is missing
        """
        return cls.from_data(
            getattr(config_map, "data", None), getattr(config_map, "binary_data", None)
        )

    @classmethod
    def from_data(
        cls,
        config_data: dict[str, str] | None,
        binary_data: dict[str, str] | None = None,
    ) -> "ControllerConfig":
        """
        Build a config snapshot from ConfigMap ``data`` and ``binaryData``.

        Keys in ``data`` win over ``binaryData``.

        Raises:
            MalformedStateError: If a required key is missing
        """
        data: dict[str, str] = {}
        for key, value in (binary_data or {}).items():
            data[key] = base64.b64decode(value).decode("utf-8")
        data.update(config_data or {})

        values = {}
        for name, field in cls.model_fields.items():
            key = field.alias or name
            if key in data:
                values[key] = data[key].strip()
            elif field.is_required():
                raise MalformedStateError(
                    f"malformed config map: required key {key!r} not found"
                )
        return cls.model_validate(values)


FIELD_IMPACT: dict[str, ImpactTier] = {
    "proxy_addr": ImpactTier.CRITICAL,
    "management_cluster_name": ImpactTier.HIGH,
    "teleport_version": ImpactTier.MEDIUM,
    "app_name": ImpactTier.MEDIUM,
    "app_version": ImpactTier.LOW,
    "app_catalog": ImpactTier.LOW,
}


class ChangeRecord(BaseModel):
    """A single field that differs between two config snapshots."""

    model_config = ConfigDict(frozen=True)

    field: str
    old_value: str
    new_value: str
    tier: ImpactTier


def detect_changes(
    old: ControllerConfig | None, new: ControllerConfig
) -> list[ChangeRecord]:
    """Diff two snapshots field by field; the first snapshot is never a change."""
    if old is None:
        return []
    changes = []
    for name, tier in FIELD_IMPACT.items():
        before = getattr(old, name)
        after = getattr(new, name)
        if before != after:
            changes.append(
                ChangeRecord(field=name, old_value=before, new_value=after, tier=tier)
            )
    return changes


def max_tier(changes: list[ChangeRecord]) -> ImpactTier | None:
    if not changes:
        return None
    return max(change.tier for change in changes)
