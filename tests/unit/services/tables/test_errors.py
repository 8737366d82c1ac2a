import asyncio

from botocore.exceptions import ClientError, EndpointConnectionError, UnknownServiceError

from cloudtables.services.tables.errors import ErrorClass, ErrorClassifier, error_code
from cloudtables.shared.core.exceptions import UnsupportedRegionError


def client_error(code: str, status: int = 400, operation: str = "DescribeWidgets") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


def test_error_code_reads_client_error():
    assert error_code(client_error("Throttling")) == "Throttling"
    assert error_code(ValueError("x")) is None


def test_ignore_list_wins_over_other_classes():
    classifier = ErrorClassifier({"ResourceNotFoundException"})
    assert classifier.classify(client_error("ResourceNotFoundException", 404)) is ErrorClass.NOT_FOUND_IGNORABLE


def test_per_operation_ignore_codes_extend_central_list():
    classifier = ErrorClassifier()
    exc = client_error("InvalidInstanceID.NotFound")
    assert classifier.classify(exc) is ErrorClass.FATAL
    assert classifier.classify(exc, {"InvalidInstanceID.NotFound"}) is ErrorClass.NOT_FOUND_IGNORABLE


def test_throttling_codes_and_429():
    classifier = ErrorClassifier()
    assert classifier.classify(client_error("ThrottlingException")) is ErrorClass.THROTTLED
    assert classifier.classify(client_error("RequestLimitExceeded")) is ErrorClass.THROTTLED
    assert classifier.classify(client_error("SomethingNew", 429)) is ErrorClass.THROTTLED


def test_server_errors_are_transient():
    classifier = ErrorClassifier()
    assert classifier.classify(client_error("InternalError", 500)) is ErrorClass.TRANSIENT
    assert classifier.classify(client_error("Whatever", 503)) is ErrorClass.TRANSIENT
    assert classifier.classify(EndpointConnectionError(endpoint_url="https://x")) is ErrorClass.TRANSIENT
    assert classifier.classify(asyncio.TimeoutError()) is ErrorClass.TRANSIENT


def test_unsupported_region_and_service():
    classifier = ErrorClassifier()
    assert classifier.classify(UnsupportedRegionError("widgets", "eu-west-1")) is ErrorClass.UNSUPPORTED
    assert (
        classifier.classify(UnknownServiceError(service_name="nope", known_service_names="ec2"))
        is ErrorClass.UNSUPPORTED
    )
    assert classifier.classify(client_error("OptInRequired", 401)) is ErrorClass.UNSUPPORTED


def test_everything_else_is_fatal():
    classifier = ErrorClassifier()
    assert classifier.classify(client_error("AccessDeniedException", 403)) is ErrorClass.FATAL
    assert classifier.classify(KeyError("x")) is ErrorClass.FATAL


def test_is_retryable_only_for_throttled_and_transient():
    classifier = ErrorClassifier({"NotFound"})
    assert classifier.is_retryable(client_error("Throttling")) is True
    assert classifier.is_retryable(client_error("ServiceUnavailable", 503)) is True
    assert classifier.is_retryable(client_error("NotFound", 404)) is False
    assert classifier.is_retryable(client_error("AccessDenied", 403)) is False


def test_describe():
    summary = ErrorClassifier().describe(client_error("AccessDenied", 403))
    assert summary["error_type"] == "ClientError"
    assert summary["error_code"] == "AccessDenied"
