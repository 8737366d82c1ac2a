"""
Provider Error Classification

Every failure escaping a provider call is sorted into one class that decides
what the engine does next:

    NOT_FOUND_IGNORABLE  skip the item / row, scan continues
    THROTTLED            back off and retry (bounded)
    TRANSIENT            back off and retry (bounded)
    UNSUPPORTED          skip the matrix entry
    FATAL                abort the scan
"""

import asyncio
from enum import Enum
from typing import Any, Iterable, Optional

import structlog
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
    UnknownEndpointError,
    UnknownServiceError,
)

from cloudtables.shared.core.exceptions import UnsupportedRegionError

logger = structlog.get_logger()


class ErrorClass(str, Enum):
    NOT_FOUND_IGNORABLE = "not_found_ignorable"
    THROTTLED = "throttled"
    UNSUPPORTED = "unsupported"
    TRANSIENT = "transient"
    FATAL = "fatal"


THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestThrottled",
        "RequestThrottledException",
        "TooManyRequestsException",
        "ProvisionedThroughputExceededException",
        "TransactionInProgressException",
        "RequestLimitExceeded",
        "BandwidthLimitExceeded",
        "LimitExceededException",
        "SlowDown",
        "PriorRequestNotComplete",
        "EC2ThrottledException",
    }
)

TRANSIENT_CODES = frozenset(
    {
        "InternalError",
        "InternalFailure",
        "InternalServerError",
        "InternalServerException",
        "InternalServiceError",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "ServiceException",
        "RequestTimeout",
        "RequestTimeoutException",
        "Unavailable",
        "IDPCommunicationError",
    }
)

UNSUPPORTED_CODES = frozenset(
    {
        "UnsupportedOperation",
        "UnsupportedOperationException",
        "InvalidAction",
        "OptInRequired",
        "SubscriptionRequiredException",
    }
)

_TRANSIENT_TYPES = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
    asyncio.TimeoutError,
    ConnectionError,
)


def error_code(exc: BaseException) -> Optional[str]:
    """Provider error code of `exc`, if it carries one."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    code = getattr(exc, "provider_code", None)
    return code if isinstance(code, str) else None


def http_status(exc: BaseException) -> Optional[int]:
    if isinstance(exc, ClientError):
        return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return None


class ErrorClassifier:
    """Classifies provider failures; per-operation codes extend the default ignore list."""

    def __init__(self, ignore_codes: Iterable[str] = ()):
        self.ignore_codes = frozenset(ignore_codes)

    def classify(self, exc: BaseException, extra_ignore: Iterable[str] = ()) -> ErrorClass:
        if isinstance(exc, (UnsupportedRegionError, UnknownServiceError, UnknownEndpointError)):
            return ErrorClass.UNSUPPORTED

        code = error_code(exc)
        if code:
            if code in self.ignore_codes or code in set(extra_ignore):
                return ErrorClass.NOT_FOUND_IGNORABLE
            if code in THROTTLING_CODES:
                return ErrorClass.THROTTLED
            if code in UNSUPPORTED_CODES:
                return ErrorClass.UNSUPPORTED
            status = http_status(exc) or 0
            if code in TRANSIENT_CODES or status >= 500:
                return ErrorClass.TRANSIENT
            if status == 429:
                return ErrorClass.THROTTLED
            return ErrorClass.FATAL

        if isinstance(exc, _TRANSIENT_TYPES):
            return ErrorClass.TRANSIENT
        return ErrorClass.FATAL

    def is_retryable(self, exc: BaseException, extra_ignore: Iterable[str] = ()) -> bool:
        return self.classify(exc, extra_ignore) in (ErrorClass.THROTTLED, ErrorClass.TRANSIENT)

    def describe(self, exc: BaseException) -> dict[str, Any]:
        """Log-friendly summary of an error."""
        return {
            "error_type": type(exc).__name__,
            "error_code": error_code(exc),
            "error": str(exc),
        }
