"""
aws_cloudtrail_trail_event

CloudTrail events delivered to a CloudWatch Logs log group. `=` and `<>` quals on
event fields are pushed into a CloudWatch JSON filter pattern and timestamp
quals into the StartTime/EndTime window. A raw `filter` qual is passed through
verbatim; event-field quals are then evaluated locally instead.
"""

import json
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from cloudtables.services.tables.context import ScanContext
from cloudtables.services.tables.definitions import (
    ColumnSpec,
    ColumnType,
    Combine,
    KeyColumn,
    ListConfig,
    Pushdown,
    RateTag,
    Require,
    TableDefinition,
)
from cloudtables.services.tables.hydrate import RowContext
from cloudtables.services.tables.matrix import supported_region_matrix
from cloudtables.services.tables.paginator import PageSpec
from cloudtables.services.tables.quals import EQ, GE, GT, LE, LT, NE
from cloudtables.services.tables.transforms import trim, unix_ms_to_timestamp, unmarshal_json
from cloudtables.tables.aws.common import aws_columns

SERVICE = "logs"

EVENT_PAGES = PageSpec(
    items="events",
    input_token="nextToken",
    output_token="nextToken",
    limit_key="limit",
    max_page_size=10000,
)

# column -> path in the CloudTrail event JSON
EVENT_FILTER_KEYS = {
    "access_key_id": "userIdentity.accessKeyId",
    "aws_region": "awsRegion",
    "error_code": "errorCode",
    "event_category": "eventCategory",
    "event_id": "eventID",
    "event_name": "eventName",
    "event_source": "eventSource",
    "source_ip_address": "sourceIPAddress",
    "username": "userIdentity.userName",
    "user_type": "userIdentity.type",
}

TIMESTAMP_OPERATORS = (EQ, GT, GE, LT, LE)
EVENT_OPERATORS = (EQ, NE)


def _to_epoch_ms(value: Any) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


def _event_pushdown(column: str) -> Pushdown:
    return Pushdown(
        filter_key=EVENT_FILTER_KEYS[column],
        operators=EVENT_OPERATORS,
        combine=Combine.ANY,
        unless=("filter",),
    )


async def list_trail_events(ctx: ScanContext, parent: Any) -> AsyncIterator[dict[str, Any]]:
    client = await ctx.client(SERVICE)
    request: dict[str, Any] = {"logGroupName": ctx.equals_qual("log_group_name")}

    stream_name = ctx.equals_qual("log_stream_name")
    if stream_name:
        request["logStreamNames"] = [stream_name]

    pattern = ctx.equals_qual("filter") or ctx.filter.as_filter_pattern(
        keys=list(EVENT_FILTER_KEYS.values())
    )
    if pattern:
        request["filterPattern"] = pattern

    exact = ctx.filter.value("timestamp")
    if exact is not None:
        request["startTime"] = exact
        request["endTime"] = exact
    bounds = ctx.filter.range("timestamp")
    if GE in bounds:
        request["startTime"] = bounds[GE]
    if GT in bounds:
        request["startTime"] = bounds[GT] + 1
    if LE in bounds:
        request["endTime"] = bounds[LE]
    if LT in bounds:
        request["endTime"] = bounds[LT] - 1

    ctx.log.debug("cloudtrail_filter_log_events", pattern=request.get("filterPattern"))
    async for event in ctx.paginate(client.filter_log_events, request, EVENT_PAGES):
        yield event


async def get_cloudtrail_message(ctx: ScanContext, row: Optional[RowContext]) -> dict[str, Any]:
    return json.loads(row.item["message"])


def _event_column(
    name: str,
    column_type: ColumnType,
    description: str,
    field: Any,
) -> ColumnSpec:
    return ColumnSpec(
        name,
        column_type,
        description,
        hydrate=get_cloudtrail_message,
        field=field,
        pushdown=_event_pushdown(name) if name in EVENT_FILTER_KEYS else None,
    )


def table_aws_cloudtrail_trail_event() -> TableDefinition:
    optional = [
        KeyColumn(name, operators=EVENT_OPERATORS if name in EVENT_FILTER_KEYS else (EQ,))
        for name in (
            "log_stream_name",
            "filter",
            "region",
            "event_category",
            "event_id",
            "aws_region",
            "source_ip_address",
            "error_code",
            "event_name",
            "read_only",
            "username",
            "user_type",
            "event_source",
            "access_key_id",
        )
    ]
    return TableDefinition(
        name="aws_cloudtrail_trail_event",
        description="CloudTrail events from cloudwatch service.",
        matrix=supported_region_matrix(SERVICE),
        list_config=ListConfig(
            func=list_trail_events,
            tag=RateTag(SERVICE, "FilterLogEvents"),
            key_columns=(
                KeyColumn("log_group_name", require=Require.REQUIRED),
                KeyColumn("timestamp", operators=TIMESTAMP_OPERATORS),
                *optional,
            ),
        ),
        columns=aws_columns(
            [
                # top fields
                ColumnSpec(
                    "filter",
                    ColumnType.STRING,
                    "The cloudwatch filter pattern for the search.",
                    from_qual="filter",
                ),
                ColumnSpec(
                    "log_group_name",
                    ColumnType.STRING,
                    "The name of the log group to which this event belongs.",
                    from_qual="log_group_name",
                ),
                ColumnSpec(
                    "log_stream_name",
                    ColumnType.STRING,
                    "The name of the log stream to which this event belongs.",
                    field="logStreamName",
                ),
                ColumnSpec(
                    "timestamp",
                    ColumnType.TIMESTAMP,
                    "The time when the event occurred.",
                    field="timestamp",
                    transforms=(unix_ms_to_timestamp,),
                    pushdown=Pushdown(
                        filter_key="timestamp",
                        operators=TIMESTAMP_OPERATORS,
                        combine=Combine.NONE,
                        convert=_to_epoch_ms,
                    ),
                ),
                ColumnSpec(
                    "timestamp_ms",
                    ColumnType.INT,
                    "The time when the event occurred.",
                    field="timestamp",
                ),
                # event fields
                _event_column(
                    "access_key_id",
                    ColumnType.STRING,
                    "The AWS access key ID that was used to sign the request. If the request was made with "
                    "temporary security credentials, this is the access key ID of the temporary credentials.",
                    "userIdentity.accessKeyId",
                ),
                _event_column(
                    "aws_region",
                    ColumnType.STRING,
                    "The AWS region that the request was made to, such as us-east-2.",
                    "awsRegion",
                ),
                _event_column(
                    "error_code",
                    ColumnType.STRING,
                    "The AWS service error if the request returns an error.",
                    "errorCode",
                ),
                _event_column(
                    "error_message",
                    ColumnType.STRING,
                    "If the request returns an error, the description of the error.",
                    "errorMessage",
                ),
                _event_column(
                    "event_category",
                    ColumnType.STRING,
                    "Shows the event category that is used in LookupEvents calls.",
                    "eventCategory",
                ),
                _event_column("event_id", ColumnType.STRING, "The ID of the event.", "eventID"),
                _event_column("event_name", ColumnType.STRING, "The name of the event returned.", "eventName"),
                _event_column(
                    "event_source",
                    ColumnType.STRING,
                    "The AWS service that the request was made to.",
                    "eventSource",
                ),
                _event_column(
                    "event_time",
                    ColumnType.TIMESTAMP,
                    "The date and time the request was made, in coordinated universal time (UTC).",
                    "eventTime",
                ),
                _event_column(
                    "event_type",
                    ColumnType.STRING,
                    "Identifies the type of event that generated the event record.",
                    "eventType",
                ),
                _event_column(
                    "event_version",
                    ColumnType.STRING,
                    "The version of the log event format.",
                    "eventVersion",
                ),
                _event_column(
                    "read_only",
                    ColumnType.BOOL,
                    "Information about whether the event is a write event or a read event.",
                    "readOnly",
                ),
                _event_column(
                    "recipient_account_id",
                    ColumnType.STRING,
                    "Represents the account ID that received this event.",
                    "recipientAccountId",
                ),
                _event_column(
                    "request_id",
                    ColumnType.STRING,
                    "The value that identifies the request.",
                    "requestID",
                ),
                _event_column(
                    "shared_event_id",
                    ColumnType.STRING,
                    "GUID generated by CloudTrail to uniquely identify CloudTrail events from the same AWS "
                    "action that is sent to different AWS accounts.",
                    "sharedEventID",
                ),
                _event_column(
                    "source_ip_address",
                    ColumnType.STRING,
                    "The IP address that the request was made from.",
                    "sourceIPAddress",
                ),
                _event_column(
                    "user_agent",
                    ColumnType.STRING,
                    "The agent through which the request was made, such as the AWS Management Console, "
                    "an AWS service, the AWS SDKs or the AWS CLI.",
                    "userAgent",
                ),
                _event_column(
                    "user_type",
                    ColumnType.STRING,
                    "The type of the identity that made the request.",
                    "userIdentity.type",
                ),
                _event_column(
                    "username",
                    ColumnType.STRING,
                    "The user name of the user that made the api request.",
                    "userIdentity.userName",
                ),
                _event_column(
                    "user_identifier",
                    ColumnType.STRING,
                    "The name/arn of user/role that made the api call.",
                    (
                        "userIdentity.arn",
                        "userIdentity.sessionContext.sessionIssuer.arn",
                        "userIdentity.sessionContext.sessionIssuer.principalId",
                    ),
                ),
                _event_column(
                    "vpc_endpoint_id",
                    ColumnType.STRING,
                    "Identifies the VPC endpoint in which requests were made from a VPC to another AWS "
                    "service, such as Amazon S3.",
                    "vpcEndpointId",
                ),
                # json fields
                _event_column(
                    "additional_event_data",
                    ColumnType.JSON,
                    "Additional data about the event that was not part of the request or response.",
                    "additionalEventData",
                ),
                ColumnSpec(
                    "cloudtrail_event",
                    ColumnType.JSON,
                    "The CloudTrail event in the json format.",
                    field="message",
                    transforms=(trim, unmarshal_json),
                ),
                _event_column(
                    "request_parameters",
                    ColumnType.JSON,
                    "The parameters, if any, that were sent with the request.",
                    "requestParameters",
                ),
                _event_column(
                    "response_elements",
                    ColumnType.JSON,
                    "The response element for actions that make changes (create, update, or delete actions).",
                    "responseElements",
                ),
                _event_column(
                    "resources",
                    ColumnType.JSON,
                    "A list of resources referenced by the event returned.",
                    "resources",
                ),
                _event_column(
                    "tls_details",
                    ColumnType.JSON,
                    "Shows information about the Transport Layer Security (TLS) version, cipher suites, "
                    "and the FQDN of the client-provided host name of a service API call.",
                    "tlsDetails",
                ),
                _event_column(
                    "user_identity",
                    ColumnType.JSON,
                    "Information about the user that made the request.",
                    "userIdentity",
                ),
            ]
        ),
    )
