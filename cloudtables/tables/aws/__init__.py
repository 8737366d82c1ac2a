from cloudtables.tables.aws.api_gatewayv2 import table_aws_api_gatewayv2_api, table_aws_api_gatewayv2_route
from cloudtables.tables.aws.cloudfront import table_aws_cloudfront_origin_access_identity
from cloudtables.tables.aws.cloudtrail import table_aws_cloudtrail_trail_event
from cloudtables.tables.aws.ec2 import table_aws_ec2_instance
from cloudtables.tables.aws.lambda_ import table_aws_lambda_alias, table_aws_lambda_function
from cloudtables.tables.aws.rds import (
    table_aws_rds_db_instance,
    table_aws_rds_db_instance_metric_cpu_utilization,
    table_aws_rds_db_snapshot,
)
from cloudtables.tables.aws.redshiftserverless import table_aws_redshiftserverless_namespace
from cloudtables.tables.aws.region import table_aws_region
from cloudtables.tables.aws.sqs import table_aws_sqs_queue

AWS_TABLES = [
    table_aws_region,
    table_aws_api_gatewayv2_api,
    table_aws_api_gatewayv2_route,
    table_aws_cloudfront_origin_access_identity,
    table_aws_cloudtrail_trail_event,
    table_aws_ec2_instance,
    table_aws_lambda_function,
    table_aws_lambda_alias,
    table_aws_rds_db_instance,
    table_aws_rds_db_instance_metric_cpu_utilization,
    table_aws_rds_db_snapshot,
    table_aws_redshiftserverless_namespace,
    table_aws_sqs_queue,
]
