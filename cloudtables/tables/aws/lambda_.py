"""
aws_lambda_function and aws_lambda_alias

Aliases are listed per function, so aws_lambda_alias walks aws_lambda_function
as its parent. Both tables hydrate their resource policy lazily; a function
without a policy yields null columns instead of an error.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from botocore.exceptions import ClientError

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
from cloudtables.services.tables.errors import error_code
from cloudtables.services.tables.hydrate import RowContext, extract_path
from cloudtables.services.tables.matrix import supported_region_matrix
from cloudtables.services.tables.paginator import PageSpec
from cloudtables.services.tables.transforms import arn_to_akas, policy_to_canonical, unmarshal_json
from cloudtables.tables.aws.common import aws_columns

SERVICE = "lambda"

FUNCTION_PAGES = PageSpec(
    items="Functions",
    input_token="Marker",
    output_token="NextMarker",
    limit_key="MaxItems",
    max_page_size=50,
)
ALIAS_PAGES = PageSpec(
    items="Aliases",
    input_token="Marker",
    output_token="NextMarker",
    limit_key="MaxItems",
    max_page_size=50,
)

NOT_FOUND_CODES = ("ResourceNotFoundException", "InvalidParameter", "InvalidParameterValueException")


@dataclass(frozen=True)
class AliasRow:
    function_name: str
    alias: dict[str, Any]


def _function_name(row: RowContext) -> str:
    return extract_path(row.item, "FunctionName") or extract_path(row.item, "Configuration.FunctionName")


async def _get_policy(ctx: ScanContext, function_name: str, qualifier: Optional[str] = None) -> dict[str, Any]:
    client = await ctx.client(SERVICE)
    kwargs: dict[str, Any] = {"FunctionName": function_name}
    if qualifier:
        kwargs["Qualifier"] = qualifier
    try:
        return await ctx.call(client.get_policy, **kwargs)
    except ClientError as exc:
        # no resource policy attached
        if error_code(exc) == "ResourceNotFoundException":
            return {}
        raise


async def list_functions(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    async for function in ctx.paginate(client.list_functions, {}, FUNCTION_PAGES):
        yield function


async def get_function(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    name = _function_name(row) if row is not None else ctx.equals_qual("name")
    if not name:
        return None
    client = await ctx.client(SERVICE)
    return await ctx.call(client.get_function, FunctionName=name)


async def get_function_policy(ctx: ScanContext, row: RowContext) -> dict[str, Any]:
    return await _get_policy(ctx, _function_name(row))


async def list_aliases(ctx: ScanContext, function: dict[str, Any]) -> AsyncIterator[AliasRow]:
    client = await ctx.client(SERVICE)
    request = {"FunctionName": function["FunctionName"]}
    async for alias in ctx.paginate(client.list_aliases, request, ALIAS_PAGES):
        yield AliasRow(function_name=function["FunctionName"], alias=alias)


async def get_alias(ctx: ScanContext, row: Optional[RowContext]) -> Optional[AliasRow]:
    name = ctx.equals_qual("name")
    function_name = ctx.equals_qual("function_name")
    if not name or not function_name:
        return None
    client = await ctx.client(SERVICE)
    alias = await ctx.call(client.get_alias, FunctionName=function_name, Name=name)
    return AliasRow(function_name=function_name, alias=alias)


async def get_alias_policy(ctx: ScanContext, row: RowContext) -> dict[str, Any]:
    item: AliasRow = row.item
    return await _get_policy(ctx, item.function_name, qualifier=item.alias["Name"])


def table_aws_lambda_function() -> TableDefinition:
    return TableDefinition(
        name="aws_lambda_function",
        description="AWS Lambda Function",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_functions, tag=RateTag(SERVICE, "ListFunctions")),
        get_config=GetConfig(
            func=get_function,
            key_columns=("name",),
            ignore_codes=NOT_FOUND_CODES,
            tag=RateTag(SERVICE, "GetFunction"),
        ),
        hydrate=(
            HydrateConfig(func=get_function, ignore_codes=NOT_FOUND_CODES, tag=RateTag(SERVICE, "GetFunction")),
            HydrateConfig(func=get_function_policy, ignore_codes=NOT_FOUND_CODES, tag=RateTag(SERVICE, "GetPolicy")),
        ),
        columns=aws_columns(
            [
                ColumnSpec(
                    "name",
                    ColumnType.STRING,
                    "The name of the function.",
                    field=("FunctionName", "Configuration.FunctionName"),
                ),
                ColumnSpec(
                    "arn",
                    ColumnType.STRING,
                    "The function's Amazon Resource Name (ARN).",
                    field=("FunctionArn", "Configuration.FunctionArn"),
                ),
                ColumnSpec(
                    "runtime",
                    ColumnType.STRING,
                    "The runtime environment for the Lambda function.",
                    field=("Runtime", "Configuration.Runtime"),
                ),
                ColumnSpec(
                    "handler",
                    ColumnType.STRING,
                    "The function that Lambda calls to begin executing your function.",
                    field=("Handler", "Configuration.Handler"),
                ),
                ColumnSpec(
                    "role",
                    ColumnType.STRING,
                    "The function's execution role.",
                    field=("Role", "Configuration.Role"),
                ),
                ColumnSpec(
                    "memory_size",
                    ColumnType.INT,
                    "The memory that's allocated to the function.",
                    field=("MemorySize", "Configuration.MemorySize"),
                ),
                ColumnSpec(
                    "timeout",
                    ColumnType.INT,
                    "The amount of time in seconds that Lambda allows a function to run before stopping it.",
                    field=("Timeout", "Configuration.Timeout"),
                ),
                ColumnSpec(
                    "code_size",
                    ColumnType.INT,
                    "The size of the function's deployment package, in bytes.",
                    field=("CodeSize", "Configuration.CodeSize"),
                ),
                ColumnSpec(
                    "version",
                    ColumnType.STRING,
                    "The version of the Lambda function.",
                    field=("Version", "Configuration.Version"),
                ),
                ColumnSpec(
                    "last_modified",
                    ColumnType.TIMESTAMP,
                    "The date and time that the function was last updated.",
                    field=("LastModified", "Configuration.LastModified"),
                ),
                ColumnSpec(
                    "description",
                    ColumnType.STRING,
                    "The function's description.",
                    field=("Description", "Configuration.Description"),
                ),
                ColumnSpec(
                    "vpc_id",
                    ColumnType.STRING,
                    "The VPC ID that is attached to Lambda function.",
                    field=("VpcConfig.VpcId", "Configuration.VpcConfig.VpcId"),
                ),
                ColumnSpec(
                    "environment_variables",
                    ColumnType.JSON,
                    "The environment variables that are accessible from function code during execution.",
                    field=("Environment.Variables", "Configuration.Environment.Variables"),
                ),
                ColumnSpec(
                    "code",
                    ColumnType.JSON,
                    "The deployment package of the function or version.",
                    hydrate=get_function,
                    field="Code",
                ),
                ColumnSpec(
                    "policy",
                    ColumnType.JSON,
                    "The resource-based iam policy of Lambda function.",
                    hydrate=get_function_policy,
                    field="Policy",
                    transforms=(unmarshal_json,),
                ),
                ColumnSpec(
                    "policy_std",
                    ColumnType.JSON,
                    "Contains the contents of the resource-based policy in a canonical form for easier searching.",
                    hydrate=get_function_policy,
                    field="Policy",
                    transforms=(policy_to_canonical,),
                ),
                ColumnSpec(
                    "tags",
                    ColumnType.JSON,
                    "A map of tags for the resource.",
                    hydrate=get_function,
                    field="Tags",
                ),
                ColumnSpec(
                    "title",
                    ColumnType.STRING,
                    "Title of the resource.",
                    field=("FunctionName", "Configuration.FunctionName"),
                ),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    field=("FunctionArn", "Configuration.FunctionArn"),
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )


def table_aws_lambda_alias() -> TableDefinition:
    return TableDefinition(
        name="aws_lambda_alias",
        description="AWS Lambda Alias",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(
            func=list_aliases,
            parent="aws_lambda_function",
            tag=RateTag(SERVICE, "ListAliases"),
        ),
        get_config=GetConfig(
            func=get_alias,
            key_columns=("name", "function_name", "region"),
            ignore_codes=NOT_FOUND_CODES,
            tag=RateTag(SERVICE, "GetAlias"),
        ),
        hydrate=(
            HydrateConfig(func=get_alias_policy, ignore_codes=NOT_FOUND_CODES, tag=RateTag(SERVICE, "GetPolicy")),
        ),
        columns=aws_columns(
            [
                ColumnSpec("name", ColumnType.STRING, "The name of the alias.", field="alias.Name"),
                ColumnSpec(
                    "function_name",
                    ColumnType.STRING,
                    "The name of the function.",
                    field="function_name",
                ),
                ColumnSpec(
                    "alias_arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) of the alias.",
                    field="alias.AliasArn",
                ),
                ColumnSpec(
                    "function_version",
                    ColumnType.STRING,
                    "The function version that the alias invokes.",
                    field="alias.FunctionVersion",
                ),
                ColumnSpec(
                    "revision_id",
                    ColumnType.STRING,
                    "A unique identifier that changes when you update the alias.",
                    field="alias.RevisionId",
                ),
                ColumnSpec(
                    "description",
                    ColumnType.STRING,
                    "A description of the alias.",
                    field="alias.Description",
                ),
                ColumnSpec(
                    "routing_config",
                    ColumnType.JSON,
                    "The routing configuration of the alias.",
                    field="alias.RoutingConfig",
                ),
                ColumnSpec(
                    "policy",
                    ColumnType.JSON,
                    "The resource-based iam policy of the alias.",
                    hydrate=get_alias_policy,
                    field="Policy",
                    transforms=(unmarshal_json,),
                ),
                ColumnSpec(
                    "policy_std",
                    ColumnType.JSON,
                    "Contains the contents of the resource-based policy in a canonical form for easier searching.",
                    hydrate=get_alias_policy,
                    field="Policy",
                    transforms=(policy_to_canonical,),
                ),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="alias.Name"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    field="alias.AliasArn",
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )
