from typing import Any, AsyncIterator, Optional

from cloudtables.services.tables.context import ScanContext
from cloudtables.services.tables.definitions import (
    ColumnSpec,
    ColumnType,
    GetConfig,
    HydrateConfig,
    ListConfig,
    Pushdown,
    RateTag,
    TableDefinition,
)
from cloudtables.services.tables.hydrate import RowContext
from cloudtables.services.tables.matrix import supported_region_matrix
from cloudtables.services.tables.paginator import PageSpec
from cloudtables.services.tables.transforms import ensure_string_array, tags_to_map
from cloudtables.tables.aws.common import aws_columns, common_columns_for, get_common_columns

SERVICE = "ec2"

# DescribeInstances pages over reservations; instances are flattened below
RESERVATION_PAGES = PageSpec(items="Reservations", max_page_size=1000, min_page_size=5)

NOT_FOUND_CODES = ("InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed")


async def list_instances(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    request: dict[str, Any] = {}
    filters = ctx.filter.as_filters()
    if filters:
        request["Filters"] = filters
    async for reservation in ctx.paginate(client.describe_instances, request, RESERVATION_PAGES):
        for instance in reservation.get("Instances", []):
            yield instance


async def get_instance(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    instance_id = ctx.equals_qual("instance_id")
    if not instance_id:
        return None
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.describe_instances, InstanceIds=[instance_id])
    for reservation in response.get("Reservations", []):
        for instance in reservation.get("Instances", []):
            return instance
    return None


async def get_instance_arn(ctx: ScanContext, row: RowContext) -> str:
    common = await common_columns_for(ctx, row)
    return (
        f"arn:{common['Partition']}:ec2:{ctx.region}:{common['AccountId']}"
        f":instance/{row.item['InstanceId']}"
    )


def _title(item: dict[str, Any]) -> str:
    for tag in item.get("Tags") or []:
        if tag.get("Key") == "Name" and tag.get("Value"):
            return tag["Value"]
    return item["InstanceId"]


def table_aws_ec2_instance() -> TableDefinition:
    return TableDefinition(
        name="aws_ec2_instance",
        description="AWS EC2 Instance",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_instances, tag=RateTag(SERVICE, "DescribeInstances")),
        get_config=GetConfig(
            func=get_instance,
            key_columns=("instance_id",),
            ignore_codes=NOT_FOUND_CODES,
            tag=RateTag(SERVICE, "DescribeInstances"),
        ),
        hydrate=(HydrateConfig(func=get_instance_arn, depends=(get_common_columns,)),),
        columns=aws_columns(
            [
                ColumnSpec(
                    "instance_id",
                    ColumnType.STRING,
                    "The ID of the instance.",
                    pushdown=Pushdown("instance-id"),
                ),
                ColumnSpec(
                    "arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) specifying the instance.",
                    hydrate=get_instance_arn,
                    from_value=True,
                ),
                ColumnSpec(
                    "instance_type",
                    ColumnType.STRING,
                    "The instance type.",
                    pushdown=Pushdown("instance-type"),
                ),
                ColumnSpec(
                    "instance_state",
                    ColumnType.STRING,
                    "The state of the instance (pending | running | shutting-down | terminated | stopping | stopped).",
                    field="State.Name",
                    pushdown=Pushdown("instance-state-name"),
                ),
                ColumnSpec(
                    "monitoring_state",
                    ColumnType.STRING,
                    "Indicates whether detailed monitoring is enabled (disabled | enabled).",
                    field="Monitoring.State",
                    pushdown=Pushdown("monitoring-state"),
                ),
                ColumnSpec("launch_time", ColumnType.TIMESTAMP, "The time the instance was launched."),
                ColumnSpec(
                    "private_ip_address",
                    ColumnType.STRING,
                    "The private IPv4 address assigned to the instance.",
                    field="PrivateIpAddress",
                ),
                ColumnSpec(
                    "public_ip_address",
                    ColumnType.STRING,
                    "The public IPv4 address assigned to the instance.",
                    field="PublicIpAddress",
                ),
                ColumnSpec(
                    "vpc_id",
                    ColumnType.STRING,
                    "The ID of the VPC in which the instance is running.",
                    field="VpcId",
                    pushdown=Pushdown("vpc-id"),
                ),
                ColumnSpec(
                    "subnet_id",
                    ColumnType.STRING,
                    "The ID of the subnet in which the instance is running.",
                    pushdown=Pushdown("subnet-id"),
                ),
                ColumnSpec(
                    "image_id",
                    ColumnType.STRING,
                    "The ID of the AMI used to launch the instance.",
                    pushdown=Pushdown("image-id"),
                ),
                ColumnSpec("key_name", ColumnType.STRING, "The name of the key pair, if this instance was launched with an associated key pair."),
                ColumnSpec("architecture", ColumnType.STRING, "The architecture of the image."),
                ColumnSpec("platform_details", ColumnType.STRING, "The platform details value for the instance."),
                ColumnSpec("ebs_optimized", ColumnType.BOOL, "Indicates whether the instance is optimized for Amazon EBS I/O."),
                ColumnSpec(
                    "security_groups",
                    ColumnType.JSON,
                    "The security groups for the instance.",
                ),
                ColumnSpec("tags_src", ColumnType.JSON, "A list of tags attached with the instance.", field="Tags"),
                ColumnSpec(
                    "tags",
                    ColumnType.JSON,
                    "A map of tags for the resource.",
                    field="Tags",
                    transforms=(tags_to_map(),),
                ),
                ColumnSpec(
                    "title",
                    ColumnType.STRING,
                    "Title of the resource.",
                    from_value=True,
                    transforms=(_title,),
                ),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    hydrate=get_instance_arn,
                    from_value=True,
                    transforms=(ensure_string_array,),
                ),
            ]
        ),
    )
