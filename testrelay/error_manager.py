"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Collection and classification of errors raised during a migration pass.

The error manager keeps a bounded history of typed errors so that a pass can
keep going past bad records and still report exactly what went wrong. In
strict mode the first transformation error is re-raised instead.
"""

from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import pydantic

from testrelay.core.logging import get_logger
from testrelay.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DataError,
    ErrorType,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    TestRelayError,
    TransformationError,
    ValidationError,
)

logger = get_logger("testrelay.error_manager")

_TYPE_CLASSES: dict[ErrorType, type[TestRelayError]] = {
    ErrorType.CONFIGURATION: ConfigurationError,
    ErrorType.AUTHENTICATION: AuthenticationError,
    ErrorType.NETWORK: NetworkError,
    ErrorType.VALIDATION: ValidationError,
    ErrorType.TRANSFORMATION: TransformationError,
    ErrorType.DATA: DataError,
    ErrorType.TIMEOUT: RequestTimeoutError,
    ErrorType.RATE_LIMIT: RateLimitError,
}


@dataclass(frozen=True)
class ErrorRecord:
    """A recorded error with the moment it was recorded."""

    error: TestRelayError
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def error_type(self) -> ErrorType:
        return self.error.error_type

    def to_dict(self) -> dict[str, Any]:
        return {**self.error.to_dict(), "timestamp": self.timestamp.isoformat()}


def classify_exception(
    error: BaseException,
    default_type: ErrorType = ErrorType.UNKNOWN,
    context: dict[str, Any] | None = None,
) -> TestRelayError:
    """
    Convert any exception into a TestRelayError.

    TestRelay errors are returned as they are; HTTP client and pydantic errors
    map onto their matching types; anything else becomes a generic error of
    ``default_type`` with the original exception chained.
    """
    context = dict(context or {})
    if isinstance(error, TestRelayError):
        if context:
            error.context = {**context, **error.context}
        return error

    if isinstance(error, httpx.TimeoutException):
        converted: TestRelayError = RequestTimeoutError(str(error) or "Request timed out", context=context)
    elif isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        url = str(error.request.url)
        if status == 429:
            converted = RateLimitError(str(error), url=url, status_code=status, context=context)
        else:
            converted = NetworkError(
                str(error), url=url, status_code=status, context=context, retryable=status >= 500
            )
    elif isinstance(error, httpx.TransportError):
        converted = NetworkError(str(error) or type(error).__name__, context=context)
    elif isinstance(error, pydantic.ValidationError):
        converted = ValidationError(str(error), context=context)
    else:
        error_class = _TYPE_CLASSES.get(default_type, TestRelayError)
        converted = error_class(str(error) or type(error).__name__, context=context)

    converted.__cause__ = error
    return converted


class ErrorManager:
    """
    Bounded, typed error history for one migration pass.

    Args:
        max_errors: Maximum errors retained; the oldest are dropped first
        strict: Re-raise the first transformation error instead of recording it
        on_error: Callback invoked with every recorded error
    """

    def __init__(
        self,
        max_errors: int = 100,
        strict: bool = False,
        on_error: Callable[[TestRelayError], None] | None = None,
    ):
        self.max_errors = max_errors
        self.strict = strict
        self.on_error = on_error
        self._records: deque[ErrorRecord] = deque(maxlen=max_errors)
        self.total_recorded = 0

    from_exception = staticmethod(classify_exception)

    def add_error(self, error: TestRelayError) -> TestRelayError:
        self._records.append(ErrorRecord(error))
        self.total_recorded += 1
        if self.on_error is not None:
            self.on_error(error)
        return error

    def handle_error(
        self,
        error: BaseException,
        default_type: ErrorType = ErrorType.UNKNOWN,
        context: dict[str, Any] | None = None,
    ) -> TestRelayError:
        """
        Classify and record an error.

        Raises:
            TestRelayError: In strict mode, when the classified error is a transformation error.
        """
        converted = classify_exception(error, default_type, context)
        self.add_error(converted)
        if self.strict and converted.error_type == ErrorType.TRANSFORMATION:
            logger.error(f"Strict mode: aborting on transformation error: {converted.message}")
            raise converted
        return converted

    @property
    def errors(self) -> list[TestRelayError]:
        return [record.error for record in self._records]

    def errors_by_type(self, error_type: ErrorType) -> list[TestRelayError]:
        return [error for error in self.errors if error.error_type == error_type]

    def retryable_errors(self) -> list[TestRelayError]:
        return [error for error in self.errors if error.retryable]

    def has_errors(self) -> bool:
        return bool(self._records)

    def has_critical_errors(self) -> bool:
        """Any recorded error that retrying would not fix."""
        return any(not error.retryable for error in self.errors)

    def summary(self) -> dict[str, Any]:
        counts = Counter(error.error_type.value for error in self.errors)
        retryable = sum(1 for error in self.errors if error.retryable)
        return {
            "total_errors": len(self._records),
            "errors_by_type": {error_type.value: counts.get(error_type.value, 0) for error_type in ErrorType},
            "retryable_errors": retryable,
            "non_retryable_errors": len(self._records) - retryable,
            "errors": [record.to_dict() for record in self._records],
        }

    def clear(self) -> None:
        self._records.clear()
        self.total_recorded = 0
