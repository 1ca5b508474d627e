"""Unit tests for structured logging, metrics and the metrics server."""

import json
import logging
from unittest.mock import MagicMock

import pytest
from prometheus_client import generate_latest

from teleport_operator.errors import MalformedStateError
from teleport_operator.observability.logging import StructuredFormatter
from teleport_operator.observability.metrics import (
    MetricsServer,
    get_metrics_registry,
    metrics_collector,
)


class TestStructuredFormatter:
    def test_extra_fields_are_emitted(self):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "issued", None, None)
        record.register_name = "golem-foo"
        record.token_roles = "kube,node"
        record.correlation_id = "abc12345"

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "issued"
        assert data["register_name"] == "golem-foo"
        assert data["token_roles"] == "kube,node"
        assert data["correlation_id"] == "abc12345"


class TestMetrics:
    @pytest.mark.asyncio
    async def test_failed_reconciliation_is_counted(self):
        with pytest.raises(MalformedStateError):
            async with metrics_collector.track_reconciliation("cluster", "org-metrics"):
                raise MalformedStateError("bad yaml")

        output = generate_latest(get_metrics_registry()).decode()
        assert 'namespace="org-metrics"' in output
        assert 'error_type="MalformedStateError"' in output
        assert 'retryable="false"' in output

    def test_token_metrics_are_exposed(self):
        metrics_collector.record_token_issued("kube,node")

        output = generate_latest(get_metrics_registry()).decode()
        assert 'teleport_operator_tokens_issued_total{roles="kube,node"}' in output


class TestMetricsServer:
    @pytest.mark.asyncio
    async def test_ready_follows_check(self):
        ready = False
        server = MetricsServer(ready_check=lambda: ready)

        response = await server._ready_handler(MagicMock())
        assert response.status == 503

        ready = True
        response = await server._ready_handler(MagicMock())
        assert response.status == 200

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self):
        response = await MetricsServer()._metrics_handler(MagicMock())

        assert response.status == 200
        assert b"teleport_operator_" in response.body
