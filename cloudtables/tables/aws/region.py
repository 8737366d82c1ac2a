from typing import Any, AsyncIterator, Optional

from cloudtables.services.tables.context import ScanContext
from cloudtables.services.tables.definitions import (
    ColumnSpec,
    ColumnType,
    GetConfig,
    HydrateConfig,
    ListConfig,
    RateTag,
    TableDefinition,
)
from cloudtables.services.tables.hydrate import RowContext
from cloudtables.services.tables.matrix import default_region_matrix
from cloudtables.services.tables.transforms import arn_to_akas
from cloudtables.tables.aws.common import aws_default_region_columns, common_columns_for, get_common_columns


async def list_regions(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client("ec2")
    response = await ctx.call(client.describe_regions, AllRegions=True)
    for region in response.get("Regions", []):
        yield region


async def get_region(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    name = ctx.equals_qual("name")
    if not name:
        return None
    client = await ctx.client("ec2")
    response = await ctx.call(client.describe_regions, RegionNames=[name], AllRegions=True)
    regions = response.get("Regions", [])
    return regions[0] if regions else None


async def get_region_arn(ctx: ScanContext, row: RowContext) -> str:
    common = await common_columns_for(ctx, row)
    return f"arn:{common['Partition']}::{row.item['RegionName']}:{common['AccountId']}"


def table_aws_region() -> TableDefinition:
    return TableDefinition(
        name="aws_region",
        description="AWS Region",
        matrix=default_region_matrix,
        list_config=ListConfig(func=list_regions, tag=RateTag("ec2", "DescribeRegions")),
        get_config=GetConfig(
            func=get_region,
            key_columns=("name",),
            ignore_codes=("InvalidParameterValue",),
            tag=RateTag("ec2", "DescribeRegions"),
        ),
        hydrate=(HydrateConfig(func=get_region_arn, depends=(get_common_columns,)),),
        columns=aws_default_region_columns(
            [
                ColumnSpec("name", ColumnType.STRING, "The name of the region.", field="RegionName"),
                ColumnSpec(
                    "opt_in_status",
                    ColumnType.STRING,
                    "The Region opt-in status (opt-in-not-required, opted-in, not-opted-in).",
                ),
                ColumnSpec("endpoint", ColumnType.STRING, "The Region service endpoint."),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="RegionName"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    hydrate=get_region_arn,
                    from_value=True,
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )
