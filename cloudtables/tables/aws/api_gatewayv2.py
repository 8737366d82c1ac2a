from dataclasses import dataclass
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
from cloudtables.services.tables.transforms import ensure_string_array
from cloudtables.tables.aws.common import aws_columns, common_columns_for, get_common_columns

SERVICE = "apigatewayv2"

APIS_PAGES = PageSpec(items="Items", max_page_size=500, limit_as_string=True)
ROUTES_PAGES = PageSpec(items="Items", max_page_size=500, limit_as_string=True)


@dataclass(frozen=True)
class RouteRow:
    """A route plus the API it belongs to; GetRoutes items do not carry the API id."""

    api_id: str
    route: dict[str, Any]


async def list_apis(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    async for api in ctx.paginate(client.get_apis, {}, APIS_PAGES):
        yield api


async def get_api(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    api_id = ctx.equals_qual("api_id")
    if not api_id:
        return None
    client = await ctx.client(SERVICE)
    return await ctx.call(client.get_api, ApiId=api_id)


async def get_api_arn(ctx: ScanContext, row: RowContext) -> str:
    common = await common_columns_for(ctx, row)
    return f"arn:{common['Partition']}:apigateway:{ctx.region}::/apis/{row.item['ApiId']}"


async def list_routes(ctx: ScanContext, api: dict[str, Any]) -> AsyncIterator[RouteRow]:
    client = await ctx.client(SERVICE)
    async for route in ctx.paginate(client.get_routes, {"ApiId": api["ApiId"]}, ROUTES_PAGES):
        yield RouteRow(api_id=api["ApiId"], route=route)


async def get_route(ctx: ScanContext, row: Optional[RowContext]) -> Optional[RouteRow]:
    api_id = ctx.equals_qual("api_id")
    route_id = ctx.equals_qual("route_id")
    if not api_id or not route_id:
        return None
    client = await ctx.client(SERVICE)
    route = await ctx.call(client.get_route, ApiId=api_id, RouteId=route_id)
    return RouteRow(api_id=api_id, route=route)


async def get_route_arn(ctx: ScanContext, row: RowContext) -> str:
    common = await common_columns_for(ctx, row)
    item: RouteRow = row.item
    return (
        f"arn:{common['Partition']}:apigateway:{ctx.region}::/apis/{item.api_id}"
        f"/routes/{item.route['RouteId']}"
    )


def table_aws_api_gatewayv2_api() -> TableDefinition:
    return TableDefinition(
        name="aws_api_gatewayv2_api",
        description="AWS API Gateway Version 2 API",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_apis, tag=RateTag(SERVICE, "GetApis")),
        get_config=GetConfig(
            func=get_api,
            key_columns=("api_id",),
            ignore_codes=("NotFoundException",),
            tag=RateTag(SERVICE, "GetApi"),
        ),
        hydrate=(HydrateConfig(func=get_api_arn, depends=(get_common_columns,)),),
        columns=aws_columns(
            [
                ColumnSpec("name", ColumnType.STRING, "The name of the API."),
                ColumnSpec("api_id", ColumnType.STRING, "The API ID."),
                ColumnSpec("api_endpoint", ColumnType.STRING, "The URI of the API."),
                ColumnSpec("protocol_type", ColumnType.STRING, "The API protocol (HTTP or WEBSOCKET)."),
                ColumnSpec(
                    "api_key_selection_expression",
                    ColumnType.STRING,
                    "An API key selection expression.",
                ),
                ColumnSpec(
                    "route_selection_expression",
                    ColumnType.STRING,
                    "The route selection expression for the API.",
                ),
                ColumnSpec("created_date", ColumnType.TIMESTAMP, "The timestamp when the API was created."),
                ColumnSpec("description", ColumnType.STRING, "The description of the API."),
                ColumnSpec(
                    "disable_execute_api_endpoint",
                    ColumnType.BOOL,
                    "Whether clients can invoke the API through the default execute-api endpoint.",
                ),
                ColumnSpec("version", ColumnType.STRING, "A version identifier for the API."),
                ColumnSpec("cors_configuration", ColumnType.JSON, "The CORS configuration of the API."),
                ColumnSpec("tags", ColumnType.JSON, "A map of tags assigned to the resource."),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="Name"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    hydrate=get_api_arn,
                    from_value=True,
                    transforms=(ensure_string_array,),
                ),
            ]
        ),
    )


def table_aws_api_gatewayv2_route() -> TableDefinition:
    return TableDefinition(
        name="aws_api_gatewayv2_route",
        description="AWS API Gateway Version 2 Route",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(
            func=list_routes,
            parent="aws_api_gatewayv2_api",
            tag=RateTag(SERVICE, "GetRoutes"),
        ),
        get_config=GetConfig(
            func=get_route,
            key_columns=("route_id", "api_id"),
            ignore_codes=("NotFoundException",),
            tag=RateTag(SERVICE, "GetRoute"),
        ),
        hydrate=(HydrateConfig(func=get_route_arn, depends=(get_common_columns,)),),
        columns=aws_columns(
            [
                ColumnSpec("route_key", ColumnType.STRING, "The route key for the route.", field="route.RouteKey"),
                ColumnSpec("api_id", ColumnType.STRING, "Represents the identifier of an API.", field="api_id"),
                ColumnSpec("route_id", ColumnType.STRING, "The route ID.", field="route.RouteId"),
                ColumnSpec(
                    "api_gateway_managed",
                    ColumnType.BOOL,
                    "Whether the route is managed by API Gateway.",
                    field="route.ApiGatewayManaged",
                ),
                ColumnSpec(
                    "api_key_required",
                    ColumnType.BOOL,
                    "Whether an API key is required for this route. Supported only for WebSocket APIs.",
                    field="route.ApiKeyRequired",
                ),
                ColumnSpec(
                    "authorization_type",
                    ColumnType.STRING,
                    "The authorization type for the route.",
                    field="route.AuthorizationType",
                ),
                ColumnSpec(
                    "authorizer_id",
                    ColumnType.STRING,
                    "The identifier of the Authorizer resource to be associated with this route.",
                    field="route.AuthorizerId",
                ),
                ColumnSpec(
                    "model_selection_expression",
                    ColumnType.STRING,
                    "The model selection expression for the route. Supported only for WebSocket APIs.",
                    field="route.ModelSelectionExpression",
                ),
                ColumnSpec(
                    "operation_name",
                    ColumnType.STRING,
                    "The operation name for the route.",
                    field="route.OperationName",
                ),
                ColumnSpec(
                    "route_response_selection_expression",
                    ColumnType.STRING,
                    "The route response selection expression for the route. Supported only for WebSocket APIs.",
                    field="route.RouteResponseSelectionExpression",
                ),
                ColumnSpec(
                    "target",
                    ColumnType.STRING,
                    "The target for the route.",
                    field="route.Target",
                ),
                ColumnSpec(
                    "authorization_scopes",
                    ColumnType.JSON,
                    "A list of authorization scopes configured on a route.",
                    field="route.AuthorizationScopes",
                ),
                ColumnSpec(
                    "request_models",
                    ColumnType.JSON,
                    "The request models for the route. Supported only for WebSocket APIs.",
                    field="route.RequestModels",
                ),
                ColumnSpec(
                    "request_parameters",
                    ColumnType.JSON,
                    "The request parameters for the route. Supported only for WebSocket APIs.",
                    field="route.RequestParameters",
                ),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", field="route.RouteId"),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    hydrate=get_route_arn,
                    from_value=True,
                    transforms=(ensure_string_array,),
                ),
            ]
        ),
    )
