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
from cloudtables.services.tables.matrix import supported_region_matrix
from cloudtables.services.tables.paginator import PageSpec
from cloudtables.services.tables.transforms import arn_to_akas, tags_to_map
from cloudtables.tables.aws.common import aws_columns

SERVICE = "redshift-serverless"

NAMESPACE_PAGES = PageSpec(items="namespaces", input_token="nextToken", output_token="nextToken", limit_key="maxResults", max_page_size=100)


async def list_namespaces(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    async for namespace in ctx.paginate(client.list_namespaces, {}, NAMESPACE_PAGES):
        yield namespace


async def get_namespace(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    name = ctx.equals_qual("namespace_name")
    if not name:
        return None
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.get_namespace, namespaceName=name)
    return response.get("namespace")


async def list_namespace_tags(ctx: ScanContext, row: RowContext) -> list[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.list_tags_for_resource, resourceArn=row.item["namespaceArn"])
    return response.get("tags", [])


def table_aws_redshiftserverless_namespace() -> TableDefinition:
    return TableDefinition(
        name="aws_redshiftserverless_namespace",
        description="AWS Redshift Serverless Namespace",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_namespaces, tag=RateTag(SERVICE, "ListNamespaces")),
        get_config=GetConfig(
            func=get_namespace,
            key_columns=("namespace_name",),
            ignore_codes=("ResourceNotFoundException",),
            tag=RateTag(SERVICE, "GetNamespace"),
        ),
        hydrate=(
            HydrateConfig(
                func=list_namespace_tags,
                ignore_codes=("ResourceNotFoundException",),
                tag=RateTag(SERVICE, "ListTagsForResource"),
            ),
        ),
        columns=aws_columns(
            [
                ColumnSpec("namespace_name", ColumnType.STRING, "The name of the namespace.", field="namespaceName"),
                ColumnSpec(
                    "namespace_arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) associated with a namespace.",
                    field="namespaceArn",
                ),
                ColumnSpec(
                    "namespace_id",
                    ColumnType.STRING,
                    "The unique identifier of a namespace.",
                    field="namespaceId",
                ),
                ColumnSpec("status", ColumnType.STRING, "The status of the namespace.", field="status"),
                ColumnSpec(
                    "admin_username",
                    ColumnType.STRING,
                    "The username of the administrator for the first database created in the namespace.",
                    field="adminUsername",
                ),
                ColumnSpec(
                    "creation_date",
                    ColumnType.TIMESTAMP,
                    "The date of when the namespace was created.",
                    field="creationDate",
                ),
                ColumnSpec("db_name", ColumnType.STRING, "The name of the first database created in the namespace.", field="dbName"),
                ColumnSpec(
                    "default_iam_role_arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) of the IAM role to set as a default in the namespace.",
                    field="defaultIamRoleArn",
                ),
                ColumnSpec("kms_key_id", ColumnType.STRING, "The ID of the KMS key used to encrypt your data.", field="kmsKeyId"),
                ColumnSpec(
                    "iam_roles",
                    ColumnType.JSON,
                    "A list of IAM roles to associate with the namespace.",
                    field="iamRoles",
                ),
                ColumnSpec("log_exports", ColumnType.JSON, "The types of logs the namespace can export.", field="logExports"),
                ColumnSpec(
                    "tags_src",
                    ColumnType.JSON,
                    "The list of tags for the namespace.",
                    hydrate=list_namespace_tags,
                    from_value=True,
                ),
                ColumnSpec(
                    "tags",
                    ColumnType.JSON,
                    "A map of tags for the resource.",
                    hydrate=list_namespace_tags,
                    from_value=True,
                    transforms=(tags_to_map("key", "value"),),
                ),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="namespaceName"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    field="namespaceArn",
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )
