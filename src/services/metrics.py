"""
Metrics emitters.

Components that record measurements receive an emitter explicitly
(constructor argument or application state) instead of reaching for a
process-wide registry. ``CloudWatchMetrics`` publishes to CloudWatch;
``NullMetrics`` discards everything and is used when metrics are disabled.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError

from src.aws_clients import cloudwatch_client

logger = logging.getLogger(__name__)


class NullMetrics:
    """Emitter that records nothing."""

    def put_metric(
        self,
        name: str,
        value: float,
        unit: str = "None",
        dimensions: Optional[Dict[str, str]] = None,
    ) -> bool:
        return True

    @contextmanager
    def timed(self, name: str, dimensions: Optional[Dict[str, str]] = None) -> Iterator[None]:
        yield


class CloudWatchMetrics:
    """Publishes individual metric data points to a CloudWatch namespace."""

    def __init__(
        self,
        client: Any,
        namespace: str,
        default_dimensions: Optional[Dict[str, str]] = None,
    ) -> None:
        self._client = client
        self.namespace = namespace
        self.default_dimensions = dict(default_dimensions or {})

    def put_metric(
        self,
        name: str,
        value: float,
        unit: str = "None",
        dimensions: Optional[Dict[str, str]] = None,
    ) -> bool:
        """
        Publish one data point.

        Args:
            name: Metric name
            value: Metric value
            unit: CloudWatch unit, e.g. "Milliseconds" or "Count"
            dimensions: Extra dimensions merged over the default ones

        Returns:
            True if published, False otherwise
        """
        merged = {**self.default_dimensions, **(dimensions or {})}
        datum = {
            "MetricName": name,
            "Value": value,
            "Unit": unit,
            "Timestamp": datetime.now(timezone.utc),
            "Dimensions": [{"Name": k, "Value": v} for k, v in merged.items()],
        }
        try:
            self._client.put_metric_data(Namespace=self.namespace, MetricData=[datum])
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"Error publishing metric {name} to CloudWatch: {error_code} - {str(e)}")
            return False
        except BotoCoreError as e:
            logger.error(f"Unexpected error publishing metric {name}: {type(e).__name__}: {str(e)}")
            return False

        logger.debug(f"Published metric {name}={value} {unit} dimensions={merged}")
        return True

    @contextmanager
    def timed(self, name: str, dimensions: Optional[Dict[str, str]] = None) -> Iterator[None]:
        """Publish the elapsed time of the block in milliseconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self.put_metric(name, elapsed_ms, "Milliseconds", dimensions)


def create_metrics(config) -> Any:
    """Build the emitter described by the configuration."""
    if not config.metrics.enabled:
        logger.info("Metrics disabled")
        return NullMetrics()
    client = cloudwatch_client(region=config.aws.region, endpoint=config.aws.endpoint)
    return CloudWatchMetrics(
        client,
        config.aws.metrics_namespace,
        default_dimensions={"service": config.metrics.service_name},
    )
