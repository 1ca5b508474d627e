"""Shared pytest fixtures for the operator unit tests."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from teleport_operator.models.cluster import ClusterIdentity, ClusterRegistration
from teleport_operator.models.config import ControllerConfig
from teleport_operator.services.artifact_sync import ArtifactSynchronizer
from teleport_operator.services.token_manager import (
    SequentialTokenGenerator,
    TokenLifecycleManager,
)
from teleport_operator.utils.kubernetes import AppClient, ClusterClient
from teleport_operator.utils.records import RecordManager
from tests.fixtures.fakes import (
    FakeAccessProxyClient,
    FakeCoreV1Api,
    FakeCustomObjectsApi,
    FrozenClock,
)

MANAGEMENT_CLUSTER = "golem"
WORKLOAD_NAMESPACE = "org-acme"


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig(
        proxy_addr="teleport.example.com:443",
        management_cluster_name=MANAGEMENT_CLUSTER,
        app_name="teleport-kube-agent",
        app_version="0.3.0",
        app_catalog="default",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def core_api() -> FakeCoreV1Api:
    return FakeCoreV1Api()


@pytest.fixture
def custom_api() -> FakeCustomObjectsApi:
    return FakeCustomObjectsApi()


@pytest.fixture
def records(core_api) -> RecordManager:
    manager = RecordManager(k8s_client=MagicMock())
    manager._v1 = core_api
    return manager


@pytest.fixture
def clusters(custom_api) -> ClusterClient:
    cluster_client = ClusterClient(k8s_client=MagicMock())
    cluster_client._api = custom_api
    return cluster_client


@pytest.fixture
def apps(custom_api) -> AppClient:
    app_client = AppClient(k8s_client=MagicMock())
    app_client._api = custom_api
    return app_client


@pytest.fixture
def proxy() -> FakeAccessProxyClient:
    return FakeAccessProxyClient()


@pytest.fixture
def token_factory(clock):
    generator = SequentialTokenGenerator()

    def factory(client):
        return TokenLifecycleManager(client, generator=generator, clock=clock, timeout=1.0)

    return factory


@pytest.fixture
def tokens(proxy, token_factory) -> TokenLifecycleManager:
    return token_factory(proxy)


@pytest.fixture
def artifacts(records) -> ArtifactSynchronizer:
    return ArtifactSynchronizer(records)


@pytest.fixture
def sessions(proxy):
    """Session handle stub always handing out the fake proxy."""
    handle = MagicMock()
    handle.get = AsyncMock(return_value=SimpleNamespace(client=proxy))
    return handle


@pytest.fixture
def make_registration(controller_config):
    def make(name: str = "foo", namespace: str = WORKLOAD_NAMESPACE, config=None):
        return ClusterRegistration.for_cluster(
            ClusterIdentity(name=name, namespace=namespace), config or controller_config
        )

    return make
