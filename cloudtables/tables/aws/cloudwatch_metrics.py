"""
CloudWatch metric statistics shared by the *_metric_* tables.

Each table lists one parent resource type and emits one row per datapoint of
a single metric at 5-minute, hourly or daily granularity.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

from cloudtables.services.tables.context import ScanContext
from cloudtables.services.tables.definitions import ColumnSpec, ColumnType, RateTag

CLOUDWATCH_TAG = RateTag("cloudwatch", "GetMetricStatistics")

STATISTICS = ["Average", "Maximum", "Minimum", "SampleCount", "Sum"]

# granularity -> (period seconds, look-back window); each stays within the 1440 datapoint cap
GRANULARITIES = {
    "5_MIN": (300, timedelta(days=5)),
    "HOURLY": (3600, timedelta(days=60)),
    "DAILY": (86400, timedelta(days=365)),
}


@dataclass(frozen=True)
class MetricRow:
    namespace: str
    metric_name: str
    dimension_name: str
    dimension_value: str
    datapoint: dict[str, Any]


async def list_metric_statistics(
    ctx: ScanContext,
    granularity: str,
    namespace: str,
    metric_name: str,
    dimension_name: str,
    dimension_value: str,
) -> AsyncIterator[MetricRow]:
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown metric granularity: {granularity}")
    period, window = GRANULARITIES[granularity]
    end_time = datetime.now(timezone.utc)

    client = await ctx.client("cloudwatch")
    response = await ctx.call(
        client.get_metric_statistics,
        tag=CLOUDWATCH_TAG,
        Namespace=namespace,
        MetricName=metric_name,
        Dimensions=[{"Name": dimension_name, "Value": dimension_value}],
        StartTime=end_time - window,
        EndTime=end_time,
        Period=period,
        Statistics=STATISTICS,
    )
    for datapoint in sorted(response.get("Datapoints", []), key=lambda d: d["Timestamp"]):
        yield MetricRow(namespace, metric_name, dimension_name, dimension_value, datapoint)


def metric_columns(columns: list[ColumnSpec]) -> list[ColumnSpec]:
    return columns + [
        ColumnSpec("metric_name", ColumnType.STRING, "The name of the metric.", field="metric_name"),
        ColumnSpec("namespace", ColumnType.STRING, "The metric namespace.", field="namespace"),
        ColumnSpec(
            "average",
            ColumnType.DOUBLE,
            "The average of the metric values that correspond to the data point.",
            field="datapoint.Average",
        ),
        ColumnSpec(
            "maximum",
            ColumnType.DOUBLE,
            "The maximum metric value for the data point.",
            field="datapoint.Maximum",
        ),
        ColumnSpec(
            "minimum",
            ColumnType.DOUBLE,
            "The minimum metric value for the data point.",
            field="datapoint.Minimum",
        ),
        ColumnSpec(
            "sample_count",
            ColumnType.DOUBLE,
            "The number of metric values that contributed to the aggregate value of this data point.",
            field="datapoint.SampleCount",
        ),
        ColumnSpec(
            "sum",
            ColumnType.DOUBLE,
            "The sum of the metric values for the data point.",
            field="datapoint.Sum",
        ),
        ColumnSpec(
            "unit",
            ColumnType.STRING,
            "The standard unit for the data point.",
            field="datapoint.Unit",
        ),
        ColumnSpec(
            "timestamp",
            ColumnType.TIMESTAMP,
            "The time stamp used for the data point.",
            field="datapoint.Timestamp",
        ),
    ]
