"""
Analysis Error Taxonomy
=======================

Every failure inside a photo's pipeline is converted to a coded
`PhotoAnalysisError`. The code is persisted as a `[CODE]` prefix on the
record's error message, which is what the orchestrator's retry loop reads
back.

Retryable: TIMEOUT, RATE_LIMIT, API_ERROR
Not retryable: IMAGE_ERROR, PARSE_ERROR, VALIDATION_ERROR, UNKNOWN
"""

import asyncio
import enum
import re
from typing import Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)
from google.api_core import exceptions as google_exceptions


class ErrorCode(str, enum.Enum):
    API_ERROR = "API_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    IMAGE_ERROR = "IMAGE_ERROR"
    UNKNOWN = "UNKNOWN"


RETRYABLE_CODES = frozenset({ErrorCode.TIMEOUT, ErrorCode.RATE_LIMIT, ErrorCode.API_ERROR})

# AWS error codes that mean "slow down"
THROTTLING_CODES = frozenset({
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
})

_PREFIX_RE = re.compile(r"^\[([A-Z_]+)\]")


class PhotoAnalysisError(Exception):
    """Coded failure raised by analysis stages and external clients."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"PhotoAnalysisError(code={self.code.value}, message={self.message!r})"


def format_error_message(code: ErrorCode, message: str) -> str:
    """Prefix a message with its `[CODE]` tag."""
    return f"[{ErrorCode(code).value}] {message}"


def error_code_from_message(message: Optional[str]) -> Optional[ErrorCode]:
    """Read the `[CODE]` tag back from a stored error message."""
    if not message:
        return None
    match = _PREFIX_RE.match(message)
    if not match:
        return None
    try:
        return ErrorCode(match.group(1))
    except ValueError:
        return None


def is_retryable_message(message: Optional[str]) -> bool:
    return error_code_from_message(message) in RETRYABLE_CODES


def classify_client_error(exc: BaseException) -> ErrorCode:
    """
    Classify a transport/SDK error raised by an external service.

    Throttling and quota errors map to RATE_LIMIT, explicit timeouts and
    deadlines to TIMEOUT, anything else to API_ERROR.
    """
    if isinstance(exc, PhotoAnalysisError):
        return exc.code

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCode.TIMEOUT

    # AWS
    if isinstance(exc, ClientError):
        aws_code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if aws_code in THROTTLING_CODES or status == 429:
            return ErrorCode.RATE_LIMIT
        return ErrorCode.API_ERROR
    if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
        return ErrorCode.TIMEOUT
    if isinstance(exc, BotoCoreError):
        return ErrorCode.API_ERROR

    # Google
    if isinstance(exc, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return ErrorCode.RATE_LIMIT
    if isinstance(exc, (google_exceptions.DeadlineExceeded, google_exceptions.Cancelled)):
        return ErrorCode.TIMEOUT

    # Fall back to message text (proxies and wrapped SDK errors)
    text = str(exc).lower()
    if "429" in text or "quota" in text or "throttl" in text or "rate limit" in text:
        return ErrorCode.RATE_LIMIT
    if "timed out" in text or "timeout" in text or "deadline" in text:
        return ErrorCode.TIMEOUT

    return ErrorCode.API_ERROR


def error_code_for(exc: BaseException) -> ErrorCode:
    """Code for an exception reaching the photo boundary."""
    if isinstance(exc, PhotoAnalysisError):
        return exc.code
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCode.TIMEOUT
    return ErrorCode.UNKNOWN
