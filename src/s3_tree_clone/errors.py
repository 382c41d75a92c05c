"""Error taxonomy and backend error classification."""

from enum import Enum
from typing import Callable

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


class S3TreeCloneError(Exception):
    """Base class for all s3-tree-clone errors."""


class UsageError(S3TreeCloneError):
    """Malformed command-line arguments (exit code 2)."""


class ConfigurationError(S3TreeCloneError):
    """Invalid configuration or an unusable environment (exit code 1)."""


class OperationCancelled(S3TreeCloneError):
    """The run-scoped cancellation signal was set while waiting."""


class ObjectNotFound(S3TreeCloneError):
    """The requested object does not exist. This is an expected signal, not a failure."""

    def __init__(self, bucket: str, key: str):
        super().__init__(f"s3://{bucket}/{key} does not exist")
        self.bucket = bucket
        self.key = key


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    FATAL = "fatal"


ErrorClassifier = Callable[[BaseException], ErrorKind]

NOT_FOUND_CODES = frozenset({"404", "NotFound", "NoSuchKey", "NoSuchBucket", "NoSuchUpload"})

TRANSIENT_CODES = frozenset({
    "RequestTimeout",
    "RequestTimeoutException",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "TransactionInProgressException",
    "RequestLimitExceeded",
    "BandwidthLimitExceeded",
    "PriorRequestNotComplete",
    "EC2ThrottledException",
    "IDPCommunicationError",
})

TRANSIENT_STATUS_CODES = frozenset({500, 502, 503, 504})

TIMEOUT_ERRORS = (ReadTimeoutError, ConnectTimeoutError, TimeoutError)


def error_code(error: BaseException) -> str:
    """Return the service error code carried by a botocore ClientError, or ''."""
    response = getattr(error, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


def classify_error(error: BaseException) -> ErrorKind:
    """Map a raw backend error to NOT_FOUND, TRANSIENT or FATAL."""
    if isinstance(error, ObjectNotFound):
        return ErrorKind.NOT_FOUND

    if isinstance(error, ClientError):
        code = error_code(error)
        if code in NOT_FOUND_CODES:
            return ErrorKind.NOT_FOUND
        if code in TRANSIENT_CODES:
            return ErrorKind.TRANSIENT
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status in TRANSIENT_STATUS_CODES:
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL

    if isinstance(error, (EndpointConnectionError, ConnectionClosedError) + TIMEOUT_ERRORS):
        return ErrorKind.TRANSIENT

    if isinstance(error, ConnectionError):
        return ErrorKind.TRANSIENT

    return ErrorKind.FATAL


def is_timeout(error: BaseException) -> bool:
    return isinstance(error, TIMEOUT_ERRORS)
