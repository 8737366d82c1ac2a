"""
Columns and helpers shared by every AWS table.
"""

from typing import Any, Optional

import structlog

from cloudtables.services.tables.context import ScanContext
from cloudtables.services.tables.definitions import ColumnSpec, ColumnType, RateTag
from cloudtables.services.tables.hydrate import RowContext

logger = structlog.get_logger()

STS_TAG = RateTag("sts", "GetCallerIdentity")


def _partition_from_arn(arn: str) -> Optional[str]:
    parts = arn.split(":")
    return parts[1] if len(parts) > 5 else None


async def get_common_columns(ctx: ScanContext, row: Optional[RowContext]) -> dict[str, Any]:
    """
    Account id and partition of the connection's credentials.

    One STS GetCallerIdentity per connection; every table and row reuses it.
    """

    async def fetch() -> dict[str, Any]:
        client = await ctx.client("sts")
        identity = await ctx.call(client.get_caller_identity, tag=STS_TAG)
        arn = identity.get("Arn", "")
        common = {
            "AccountId": identity.get("Account"),
            "Partition": _partition_from_arn(arn) or ctx.partition,
            "UserArn": arn,
        }
        logger.debug("aws_common_columns_loaded", account_id=common["AccountId"], partition=common["Partition"])
        return common

    return await ctx.cached("aws:caller_identity", fetch)


async def common_columns_for(ctx: ScanContext, row: Optional[RowContext]) -> dict[str, Any]:
    """Common columns from the row's memo when available, else from the connection cache."""
    if row is not None and row.has_result(get_common_columns):
        return row.result(get_common_columns)
    return await get_common_columns(ctx, row)


def _standard_columns() -> list[ColumnSpec]:
    return [
        ColumnSpec(
            "partition",
            ColumnType.STRING,
            "The AWS partition in which the resource is located (aws, aws-cn, or aws-us-gov).",
            hydrate=get_common_columns,
            field="Partition",
        ),
        ColumnSpec(
            "region",
            ColumnType.STRING,
            "The AWS Region in which the resource is located.",
            from_matrix="scope",
        ),
        ColumnSpec(
            "account_id",
            ColumnType.STRING,
            "The AWS Account ID in which the resource is located.",
            hydrate=get_common_columns,
            field="AccountId",
        ),
    ]


def aws_columns(columns: list[ColumnSpec]) -> tuple[ColumnSpec, ...]:
    """Table columns plus partition, region and account_id. Rows of global entries report region "global"."""
    return tuple(columns) + tuple(_standard_columns())


def aws_default_region_columns(columns: list[ColumnSpec]) -> tuple[ColumnSpec, ...]:
    """For tables that describe regions themselves: no region column."""
    return tuple(columns) + tuple(c for c in _standard_columns() if c.name != "region")

