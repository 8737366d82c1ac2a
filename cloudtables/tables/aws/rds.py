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
from cloudtables.services.tables.transforms import arn_to_akas, tags_to_map
from cloudtables.tables.aws.cloudwatch_metrics import CLOUDWATCH_TAG, list_metric_statistics, metric_columns
from cloudtables.tables.aws.common import aws_columns

SERVICE = "rds"

# DescribeDBInstances / DescribeDBSnapshots accept MaxRecords 20..100
INSTANCE_PAGES = PageSpec(
    items="DBInstances",
    input_token="Marker",
    output_token="Marker",
    limit_key="MaxRecords",
    max_page_size=100,
    min_page_size=20,
)
SNAPSHOT_PAGES = PageSpec(
    items="DBSnapshots",
    input_token="Marker",
    output_token="Marker",
    limit_key="MaxRecords",
    max_page_size=100,
    min_page_size=20,
)


async def list_db_instances(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    request: dict[str, Any] = {}
    filters = ctx.filter.as_filters()
    if filters:
        request["Filters"] = filters
    async for instance in ctx.paginate(client.describe_db_instances, request, INSTANCE_PAGES):
        yield instance


async def get_db_instance(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    identifier = ctx.equals_qual("db_instance_identifier")
    if not identifier:
        return None
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.describe_db_instances, DBInstanceIdentifier=identifier)
    instances = response.get("DBInstances", [])
    return instances[0] if instances else None


async def list_db_snapshots(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    request: dict[str, Any] = {}
    filters = ctx.filter.as_filters()
    if filters:
        request["Filters"] = filters
    async for snapshot in ctx.paginate(client.describe_db_snapshots, request, SNAPSHOT_PAGES):
        yield snapshot


async def get_db_snapshot(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    identifier = ctx.equals_qual("db_snapshot_identifier")
    if not identifier:
        return None
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.describe_db_snapshots, DBSnapshotIdentifier=identifier)
    snapshots = response.get("DBSnapshots", [])
    return snapshots[0] if snapshots else None


async def get_db_snapshot_attributes(ctx: ScanContext, row: RowContext) -> dict[str, Any]:
    client = await ctx.client(SERVICE)
    response = await ctx.call(
        client.describe_db_snapshot_attributes,
        DBSnapshotIdentifier=row.item["DBSnapshotIdentifier"],
    )
    return response.get("DBSnapshotAttributesResult", {})


async def list_cpu_utilization(ctx: ScanContext, instance: dict[str, Any]) -> AsyncIterator[Any]:
    async for metric in list_metric_statistics(
        ctx, "5_MIN", "AWS/RDS", "CPUUtilization", "DBInstanceIdentifier", instance["DBInstanceIdentifier"]
    ):
        yield metric


def table_aws_rds_db_instance() -> TableDefinition:
    return TableDefinition(
        name="aws_rds_db_instance",
        description="AWS RDS DB Instance",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_db_instances, tag=RateTag(SERVICE, "DescribeDBInstances")),
        get_config=GetConfig(
            func=get_db_instance,
            key_columns=("db_instance_identifier",),
            ignore_codes=("DBInstanceNotFound", "DBInstanceNotFoundFault"),
            tag=RateTag(SERVICE, "DescribeDBInstances"),
        ),
        columns=aws_columns(
            [
                ColumnSpec(
                    "db_instance_identifier",
                    ColumnType.STRING,
                    "The friendly name to identify the DB Instance.",
                    field="DBInstanceIdentifier",
                ),
                ColumnSpec(
                    "arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) for the DB Instance.",
                    field="DBInstanceArn",
                ),
                ColumnSpec(
                    "db_cluster_identifier",
                    ColumnType.STRING,
                    "The friendly name to identify the DB cluster, that the DB instance is a member of.",
                    field="DBClusterIdentifier",
                    pushdown=Pushdown("db-cluster-id"),
                ),
                ColumnSpec(
                    "resource_id",
                    ColumnType.STRING,
                    "The AWS Region-unique, immutable identifier for the DB instance.",
                    field="DbiResourceId",
                    pushdown=Pushdown("dbi-resource-id"),
                ),
                ColumnSpec(
                    "class",
                    ColumnType.STRING,
                    "Contains the name of the compute and memory capacity class of the DB instance.",
                    field="DBInstanceClass",
                ),
                ColumnSpec(
                    "engine",
                    ColumnType.STRING,
                    "The name of the database engine to be used for this DB instance.",
                    pushdown=Pushdown("engine"),
                ),
                ColumnSpec("engine_version", ColumnType.STRING, "Indicates the database engine version."),
                ColumnSpec(
                    "status",
                    ColumnType.STRING,
                    "Specifies the current state of this database.",
                    field="DBInstanceStatus",
                ),
                ColumnSpec(
                    "allocated_storage",
                    ColumnType.INT,
                    "Specifies the allocated storage size specified in gibibytes(GiB).",
                ),
                ColumnSpec(
                    "multi_az",
                    ColumnType.BOOL,
                    "Specifies if the DB instance is a Multi-AZ deployment.",
                    field="MultiAZ",
                ),
                ColumnSpec(
                    "publicly_accessible",
                    ColumnType.BOOL,
                    "Specifies the accessibility options for the DB instance.",
                ),
                ColumnSpec(
                    "storage_encrypted",
                    ColumnType.BOOL,
                    "Specifies whether the DB instance is encrypted, or not.",
                ),
                ColumnSpec(
                    "availability_zone",
                    ColumnType.STRING,
                    "Specifies the name of the Availability Zone the DB instance is located in.",
                ),
                ColumnSpec(
                    "create_time",
                    ColumnType.TIMESTAMP,
                    "Provides the date and time the DB instance was created.",
                    field="InstanceCreateTime",
                ),
                ColumnSpec(
                    "endpoint_address",
                    ColumnType.STRING,
                    "Specifies the DNS address of the DB instance.",
                    field="Endpoint.Address",
                ),
                ColumnSpec(
                    "endpoint_port",
                    ColumnType.INT,
                    "Specifies the port that the DB instance listens on.",
                    field="Endpoint.Port",
                ),
                ColumnSpec(
                    "vpc_id",
                    ColumnType.STRING,
                    "Provides the VpcId of the DB subnet group.",
                    field="DBSubnetGroup.VpcId",
                ),
                ColumnSpec("tags_src", ColumnType.JSON, "A list of tags attached to the DB Instance.", field="TagList"),
                ColumnSpec(
                    "tags",
                    ColumnType.JSON,
                    "A map of tags for the resource.",
                    field="TagList",
                    transforms=(tags_to_map(),),
                ),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="DBInstanceIdentifier"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    field="DBInstanceArn",
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )


def table_aws_rds_db_snapshot() -> TableDefinition:
    return TableDefinition(
        name="aws_rds_db_snapshot",
        description="AWS RDS DB Snapshot",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_db_snapshots, tag=RateTag(SERVICE, "DescribeDBSnapshots")),
        get_config=GetConfig(
            func=get_db_snapshot,
            key_columns=("db_snapshot_identifier",),
            ignore_codes=("DBSnapshotNotFound", "DBSnapshotNotFoundFault"),
            tag=RateTag(SERVICE, "DescribeDBSnapshots"),
        ),
        hydrate=(
            HydrateConfig(
                func=get_db_snapshot_attributes,
                ignore_codes=("DBSnapshotNotFound", "DBSnapshotNotFoundFault"),
                tag=RateTag(SERVICE, "DescribeDBSnapshotAttributes"),
            ),
        ),
        columns=aws_columns(
            [
                ColumnSpec(
                    "db_snapshot_identifier",
                    ColumnType.STRING,
                    "The friendly name to identify the DB snapshot.",
                    field="DBSnapshotIdentifier",
                ),
                ColumnSpec(
                    "arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) for the DB snapshot.",
                    field="DBSnapshotArn",
                ),
                ColumnSpec(
                    "type",
                    ColumnType.STRING,
                    "Provides the type of the DB snapshot.",
                    field="SnapshotType",
                    pushdown=Pushdown("snapshot-type"),
                ),
                ColumnSpec("status", ColumnType.STRING, "Specifies the status of this DB snapshot."),
                ColumnSpec(
                    "db_instance_identifier",
                    ColumnType.STRING,
                    "Specifies the DB instance identifier of the DB instance this DB snapshot was created from.",
                    field="DBInstanceIdentifier",
                    pushdown=Pushdown("db-instance-id"),
                ),
                ColumnSpec(
                    "allocated_storage",
                    ColumnType.INT,
                    "Specifies the allocated storage size in Gibibytes(GiB).",
                ),
                ColumnSpec("encrypted", ColumnType.BOOL, "Specifies whether the DB snapshot is encrypted, or not."),
                ColumnSpec(
                    "engine",
                    ColumnType.STRING,
                    "Specifies the name of the database engine.",
                    pushdown=Pushdown("engine"),
                ),
                ColumnSpec(
                    "engine_version",
                    ColumnType.STRING,
                    "Specifies the version of the database engine.",
                ),
                ColumnSpec(
                    "iam_database_authentication_enabled",
                    ColumnType.BOOL,
                    "Specifies whether the mapping of AWS IAM accounts to database accounts is enabled, or not.",
                    field="IAMDatabaseAuthenticationEnabled",
                ),
                ColumnSpec("license_model", ColumnType.STRING, "Specifies the License model information for the restored DB instance."),
                ColumnSpec("master_user_name", ColumnType.STRING, "Provides the master username for the DB snapshot.", field="MasterUsername"),
                ColumnSpec("port", ColumnType.INT, "Specifies the port that the database engine was listening on at the time of the snapshot."),
                ColumnSpec("storage_type", ColumnType.STRING, "Specifies the storage type associated with DB snapshot."),
                ColumnSpec("vpc_id", ColumnType.STRING, "Provides the VPC ID associated with the DB snapshot.", field="VpcId"),
                ColumnSpec(
                    "create_time",
                    ColumnType.TIMESTAMP,
                    "Specifies when the snapshot was taken.",
                    field="SnapshotCreateTime",
                ),
                ColumnSpec("kms_key_id", ColumnType.STRING, "Specifies the AWS KMS key identifier for the encrypted DB snapshot."),
                ColumnSpec(
                    "db_snapshot_attributes",
                    ColumnType.JSON,
                    "A list of DB snapshot attribute names and values.",
                    hydrate=get_db_snapshot_attributes,
                    field="DBSnapshotAttributes",
                ),
                ColumnSpec("tags_src", ColumnType.JSON, "A list of tags attached to the DB snapshot.", field="TagList"),
                ColumnSpec(
                    "tags",
                    ColumnType.JSON,
                    "A map of tags for the resource.",
                    field="TagList",
                    transforms=(tags_to_map(),),
                ),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="DBSnapshotIdentifier"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    field="DBSnapshotArn",
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )


def table_aws_rds_db_instance_metric_cpu_utilization() -> TableDefinition:
    return TableDefinition(
        name="aws_rds_db_instance_metric_cpu_utilization",
        description="AWS RDS DB Instance Cloudwatch Metrics - CPU Utilization",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(
            func=list_cpu_utilization,
            parent="aws_rds_db_instance",
            tag=CLOUDWATCH_TAG,
        ),
        columns=aws_columns(
            metric_columns(
                [
                    ColumnSpec(
                        "db_instance_identifier",
                        ColumnType.STRING,
                        "The friendly name to identify the DB Instance.",
                        field="dimension_value",
                    ),
                ]
            )
        ),
    )
