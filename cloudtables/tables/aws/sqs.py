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
from cloudtables.services.tables.transforms import arn_to_akas, policy_to_canonical, unmarshal_json
from cloudtables.tables.aws.common import aws_columns

SERVICE = "sqs"

QUEUE_PAGES = PageSpec(items="QueueUrls", max_page_size=1000)

NOT_FOUND_CODES = ("AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist")


async def list_queues(ctx: ScanContext, parent: Any) -> AsyncIterator[str]:
    client = await ctx.client(SERVICE)
    async for queue_url in ctx.paginate(client.list_queues, {}, QUEUE_PAGES):
        yield queue_url


async def get_queue(ctx: ScanContext, row: Optional[RowContext]) -> Optional[str]:
    return ctx.equals_qual("queue_url") or None


async def get_queue_attributes(ctx: ScanContext, row: RowContext) -> dict[str, Any]:
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.get_queue_attributes, QueueUrl=row.item, AttributeNames=["All"])
    return response.get("Attributes", {})


async def list_queue_tags(ctx: ScanContext, row: RowContext) -> dict[str, str]:
    client = await ctx.client(SERVICE)
    response = await ctx.call(client.list_queue_tags, QueueUrl=row.item)
    return response.get("Tags", {})


def _attribute(name: str, column: str, column_type: ColumnType, description: str, **kwargs: Any) -> ColumnSpec:
    return ColumnSpec(column, column_type, description, hydrate=get_queue_attributes, field=name, **kwargs)


def table_aws_sqs_queue() -> TableDefinition:
    return TableDefinition(
        name="aws_sqs_queue",
        description="AWS SQS Queue",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(func=list_queues, tag=RateTag(SERVICE, "ListQueues")),
        get_config=GetConfig(
            func=get_queue,
            key_columns=("queue_url",),
            ignore_codes=NOT_FOUND_CODES,
        ),
        hydrate=(
            HydrateConfig(
                func=get_queue_attributes,
                ignore_codes=NOT_FOUND_CODES,
                tag=RateTag(SERVICE, "GetQueueAttributes"),
            ),
            HydrateConfig(
                func=list_queue_tags,
                ignore_codes=NOT_FOUND_CODES,
                tag=RateTag(SERVICE, "ListQueueTags"),
            ),
        ),
        columns=aws_columns(
            [
                ColumnSpec("queue_url", ColumnType.STRING, "The URL of the Amazon SQS queue.", from_value=True),
                _attribute("QueueArn", "queue_arn", ColumnType.STRING, "The Amazon resource name (ARN) of the queue."),
                _attribute(
                    "FifoQueue",
                    "fifo_queue",
                    ColumnType.BOOL,
                    "Returns true if the queue is FIFO.",
                ),
                _attribute(
                    "DelaySeconds",
                    "delay_seconds",
                    ColumnType.INT,
                    "The default delay on the queue in seconds.",
                ),
                _attribute(
                    "MaximumMessageSize",
                    "max_message_size",
                    ColumnType.INT,
                    "The limit of how many bytes a message can contain before Amazon SQS rejects it.",
                ),
                _attribute(
                    "MessageRetentionPeriod",
                    "message_retention_seconds",
                    ColumnType.INT,
                    "The length of time, in seconds, for which Amazon SQS retains a message.",
                ),
                _attribute(
                    "ReceiveMessageWaitTimeSeconds",
                    "receive_wait_time_seconds",
                    ColumnType.INT,
                    "The length of time, in seconds, for which the ReceiveMessage action waits for a message to arrive.",
                ),
                _attribute(
                    "VisibilityTimeout",
                    "visibility_timeout_seconds",
                    ColumnType.INT,
                    "The visibility timeout for the queue in seconds.",
                ),
                _attribute(
                    "KmsMasterKeyId",
                    "kms_master_key_id",
                    ColumnType.STRING,
                    "The ID of an AWS-managed customer master key (CMK) for Amazon SQS or a custom CMK.",
                ),
                _attribute(
                    "SqsManagedSseEnabled",
                    "sqs_managed_sse_enabled",
                    ColumnType.BOOL,
                    "Returns true if the queue is using SSE-SQS encryption with SQS-owned encryption keys.",
                ),
                _attribute(
                    "ContentBasedDeduplication",
                    "content_based_deduplication",
                    ColumnType.STRING,
                    "Mentions whether content-based deduplication is enabled for the queue.",
                ),
                _attribute(
                    "RedrivePolicy",
                    "redrive_policy",
                    ColumnType.JSON,
                    "The string that includes the parameters for the dead-letter queue functionality of the source queue.",
                    transforms=(unmarshal_json,),
                ),
                _attribute(
                    "Policy",
                    "policy",
                    ColumnType.JSON,
                    "The resource IAM policy of the queue.",
                    transforms=(unmarshal_json,),
                ),
                _attribute(
                    "Policy",
                    "policy_std",
                    ColumnType.JSON,
                    "Contains the policy in a canonical form for easier searching.",
                    transforms=(policy_to_canonical,),
                ),
                ColumnSpec(
                    "tags",
                    ColumnType.JSON,
                    "A map of tags for the resource.",
                    hydrate=list_queue_tags,
                    from_value=True,
                ),
                ColumnSpec("title", ColumnType.STRING, "Title of the resource.", from_value=True),
                _attribute(
                    "QueueArn",
                    "akas",
                    ColumnType.STRING_ARRAY,
                    "Array of globally unique identifier strings (also known as) for the resource.",
                    transforms=(arn_to_akas,),
                ),
            ]
        ),
    )
