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
from cloudtables.services.tables.hydrate import RowContext, extract_path
from cloudtables.services.tables.matrix import global_matrix
from cloudtables.services.tables.paginator import PageSpec
from cloudtables.services.tables.transforms import ensure_string_array
from cloudtables.tables.aws.common import aws_columns, common_columns_for, get_common_columns

SERVICE = "cloudfront"

OAI_PAGES = PageSpec(
    items="CloudFrontOriginAccessIdentityList.Items",
    input_token="Marker",
    output_token="CloudFrontOriginAccessIdentityList.NextMarker",
    limit_key="MaxItems",
    max_page_size=1000,
    limit_as_string=True,
)


def _identity_id(row: Optional[RowContext]) -> Optional[str]:
    if row is None:
        return None
    return extract_path(row.item, "Id") or extract_path(row.item, "CloudFrontOriginAccessIdentity.Id")


async def list_origin_access_identities(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    async for summary in ctx.paginate(client.list_cloud_front_origin_access_identities, {}, OAI_PAGES):
        yield summary


async def get_origin_access_identity(ctx: ScanContext, row: Optional[RowContext]) -> Optional[dict[str, Any]]:
    """Get by the `id` qual, or hydrate a listed summary with its config and ETag."""
    identity_id = _identity_id(row) if row is not None else ctx.equals_qual("id")
    if not identity_id:
        return None
    client = await ctx.client(SERVICE)
    return await ctx.call(client.get_cloud_front_origin_access_identity, Id=identity_id)


async def get_origin_access_identity_arn(ctx: ScanContext, row: RowContext) -> str:
    common = await common_columns_for(ctx, row)
    return (
        f"arn:{common['Partition']}:cloudfront::{common['AccountId']}"
        f":origin-access-identity/{_identity_id(row)}"
    )


def table_aws_cloudfront_origin_access_identity() -> TableDefinition:
    return TableDefinition(
        name="aws_cloudfront_origin_access_identity",
        description="AWS CloudFront Origin Access Identity",
        matrix=global_matrix(SERVICE),
        list_config=ListConfig(
            func=list_origin_access_identities,
            tag=RateTag(SERVICE, "ListCloudFrontOriginAccessIdentities"),
        ),
        get_config=GetConfig(
            func=get_origin_access_identity,
            key_columns=("id",),
            ignore_codes=("NoSuchCloudFrontOriginAccessIdentity",),
            tag=RateTag(SERVICE, "GetCloudFrontOriginAccessIdentity"),
        ),
        hydrate=(
            HydrateConfig(
                func=get_origin_access_identity,
                ignore_codes=("NoSuchCloudFrontOriginAccessIdentity",),
                tag=RateTag(SERVICE, "GetCloudFrontOriginAccessIdentity"),
            ),
            HydrateConfig(func=get_origin_access_identity_arn, depends=(get_common_columns,)),
        ),
        columns=aws_columns(
            [
                ColumnSpec(
                    "id",
                    ColumnType.STRING,
                    "The ID for the origin access identity.",
                    field=("Id", "CloudFrontOriginAccessIdentity.Id"),
                ),
                ColumnSpec(
                    "arn",
                    ColumnType.STRING,
                    "The Amazon Resource Name (ARN) specifying the origin access identity.",
                    hydrate=get_origin_access_identity_arn,
                    from_value=True,
                ),
                ColumnSpec(
                    "s3_canonical_user_id",
                    ColumnType.STRING,
                    "The Amazon S3 canonical user ID for the origin access identity.",
                    field=("S3CanonicalUserId", "CloudFrontOriginAccessIdentity.S3CanonicalUserId"),
                ),
                ColumnSpec(
                    "caller_reference",
                    ColumnType.STRING,
                    "A unique value that ensures that the request can't be replayed.",
                    hydrate=get_origin_access_identity,
                    field="CloudFrontOriginAccessIdentity.CloudFrontOriginAccessIdentityConfig.CallerReference",
                ),
                ColumnSpec(
                    "comment",
                    ColumnType.STRING,
                    "The comment for this origin access identity.",
                    field=(
                        "Comment",
                        "CloudFrontOriginAccessIdentity.CloudFrontOriginAccessIdentityConfig.Comment",
                    ),
                ),
                ColumnSpec(
                    "etag",
                    ColumnType.STRING,
                    "The current version of the origin access identity's information.",
                    hydrate=get_origin_access_identity,
                    field="ETag",
                ),
                ColumnSpec(
                    "title",
                    ColumnType.STRING,
                    "Title of the resource.",
                    field=("Id", "CloudFrontOriginAccessIdentity.Id"),
                ),
                ColumnSpec(
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    hydrate=get_origin_access_identity_arn,
                    from_value=True,
                    transforms=(ensure_string_array,),
                ),
            ]
        ),
    )
