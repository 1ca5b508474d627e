"""
Events on the operator ConfigMap.

Each event re-parses the ConfigMap and hands the snapshot to the config
change detector. A failed reaction is retried here with exponential
backoff; if it still fails the detector keeps the old snapshot as applied
and the next event retries again.
"""

import asyncio
import logging
from typing import Any

import kopf

from ..constants import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_INITIAL_DELAY,
    OPERATOR_CONFIG_NAME,
)
from ..errors import OperatorError
from ..models.config import ControllerConfig
from ..observability.tracing import traced_handler
from ..services.config_change import ConfigChangeDetector
from ..settings import settings as operator_settings

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


def _is_operator_config(name: str, namespace: str, **_) -> bool:
    return (
        name == OPERATOR_CONFIG_NAME
        and namespace == operator_settings.operator_namespace
    )


async def observe_with_retry(
    detector: ConfigChangeDetector,
    config: ControllerConfig,
    max_retries: int = MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
) -> None:
    """
    Hand ``config`` to the detector, retrying retryable failures.

    Raises:
        Exception: The last failure once retries are exhausted, or the first
            non-retryable one
    """
    delay = initial_delay
    for attempt in range(max_retries + 1):
        try:
            await detector.observe(config)
            return
        except Exception as e:
            if not getattr(e, "retryable", True) or attempt == max_retries:
                raise
            logger.warning(
                f"Applying operator config failed (attempt {attempt + 1}), "
                f"retrying in {delay}s: {e}"
            )
            await asyncio.sleep(delay)
            delay *= backoff_factor


@kopf.on.event("v1", "configmaps", when=_is_operator_config)
@traced_handler("operator_config_event", resource_type="configmap")
async def on_operator_config_event(
    type: str | None, body: dict[str, Any], memo: kopf.Memo, **_
) -> None:
    if type == "DELETED":
        logger.warning("Operator config map deleted; keeping the last known config")
        return

    try:
        config = ControllerConfig.from_data(body.get("data"), body.get("binaryData"))
    except OperatorError as e:
        logger.error(f"Ignoring operator config update: {e}")
        return

    await observe_with_retry(memo.config_detector, config)
