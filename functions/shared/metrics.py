"""
CloudWatch Metrics Helper

Provides utilities for emitting custom metrics to CloudWatch. Metric
failures are logged and never propagated to the caller.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shared.aws_clients import get_cloudwatch

logger = logging.getLogger(__name__)

NAMESPACE = os.environ.get("CLOUDWATCH_NAMESPACE", "PkgIntel")

# CloudWatch allows up to 20 metrics per request
MAX_METRICS_PER_REQUEST = 20


def _metric_datum(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> dict:
    data = {
        "MetricName": metric_name,
        "Value": value,
        "Unit": unit,
        "Timestamp": datetime.now(timezone.utc),
    }
    if dimensions:
        data["Dimensions"] = [{"Name": k, "Value": v} for k, v in dimensions.items()]
    return data


def emit_metric(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> None:
    """
    Emit a custom metric to CloudWatch.

    Example:
        emit_metric("PackagesCollected", dimensions={"Ecosystem": "npm"})
        emit_metric("BatchProcessingTime", 2.5, unit="Seconds")
    """
    try:
        get_cloudwatch().put_metric_data(
            Namespace=NAMESPACE,
            MetricData=[_metric_datum(metric_name, value, unit, dimensions)],
        )
        logger.debug(
            f"Emitted metric: {metric_name}={value} {unit}",
            extra={"dimensions": dimensions},
        )
    except Exception as e:
        # Don't fail the collection if metrics fail
        logger.warning(f"Failed to emit metric {metric_name}: {e}")


def emit_batch_metrics(metrics: list[Dict[str, Any]]) -> None:
    """
    Emit multiple metrics, chunked to CloudWatch's per-request limit.

    Args:
        metrics: List of metric dictionaries with keys:
            - metric_name (str)
            - value (float)
            - unit (str, optional)
            - dimensions (dict, optional)
    """
    try:
        metric_data = [
            _metric_datum(
                metric["metric_name"],
                metric.get("value", 1.0),
                metric.get("unit", "Count"),
                metric.get("dimensions"),
            )
            for metric in metrics
        ]

        for i in range(0, len(metric_data), MAX_METRICS_PER_REQUEST):
            get_cloudwatch().put_metric_data(
                Namespace=NAMESPACE,
                MetricData=metric_data[i : i + MAX_METRICS_PER_REQUEST],
            )

        logger.debug(f"Emitted {len(metric_data)} metrics in batch")

    except Exception as e:
        # Don't fail the collection if metrics fail
        logger.warning(f"Failed to emit batch metrics: {e}")
