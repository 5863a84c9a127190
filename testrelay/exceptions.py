"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Exception hierarchy for TestRelay.

Every error raised by the package derives from :class:`TestRelayError` and
carries an :class:`ErrorType`, a context mapping and a retryable flag, so the
error manager and the batch executor can classify failures without string
matching.
"""

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Classification of a failure."""

    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    VALIDATION = "validation"
    TRANSFORMATION = "transformation"
    DATA = "data"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


class TestRelayError(Exception):
    """Base class for all TestRelay errors."""

    __test__ = False  # keep pytest from collecting this as a test class

    error_type: ErrorType = ErrorType.UNKNOWN
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.error_type.value,
            "error": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


class ConfigurationError(TestRelayError):
    """Invalid or incomplete configuration. Always fatal."""

    error_type = ErrorType.CONFIGURATION


class MalformedTemplateError(ConfigurationError):
    """A URL template has unbalanced braces."""


class MissingSubstitutionValues(ConfigurationError):
    """Strict substitution found placeholders without values."""

    def __init__(self, template: str, missing: list[str]):
        self.template = template
        self.missing = list(missing)
        super().__init__(
            f"Missing values for placeholders {', '.join(self.missing)} in template '{template}'",
            context={"template": template, "missing": self.missing},
        )


class DependencyResolutionError(ConfigurationError):
    """A resource or endpoint needed to order requests is not configured."""


class CyclicDependencyError(DependencyResolutionError):
    """Resource paths reference each other in a loop."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Cyclic dependency between resources: {' -> '.join(self.cycle)}",
            context={"cycle": self.cycle},
        )


class AuthenticationError(TestRelayError):
    """Credentials are missing, malformed or rejected by the service."""

    error_type = ErrorType.AUTHENTICATION


class NetworkError(TestRelayError):
    """A request failed at the transport level or returned a non-2xx status."""

    error_type = ErrorType.NETWORK
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ):
        context = dict(context or {})
        if url is not None:
            context.setdefault("url", url)
        if status_code is not None:
            context.setdefault("status_code", status_code)
        super().__init__(message, context=context, retryable=retryable)
        self.url = url
        self.status_code = status_code


class RequestTimeoutError(NetworkError):
    """A request exceeded its timeout."""

    error_type = ErrorType.TIMEOUT


class RateLimitError(NetworkError):
    """The service answered 429."""

    error_type = ErrorType.RATE_LIMIT


class ValidationError(TestRelayError):
    """A record failed a shape check."""

    error_type = ErrorType.VALIDATION


class TransformationError(TestRelayError):
    """A mapping or override could not be applied to a record."""

    error_type = ErrorType.TRANSFORMATION


class DataError(TestRelayError):
    """Input data could not be read or has an unusable shape."""

    error_type = ErrorType.DATA


class ReportInputError(DataError):
    """A test report could not be located, read or parsed."""


class BatchExecutionError(TestRelayError):
    """At least one operation of a batch failed after exhausting its retries."""

    def __init__(
        self,
        failures: dict[int, BaseException],
        results: list[Any],
        total: int,
    ):
        self.failures = dict(sorted(failures.items()))
        self.results = results
        self.total = total
        first_index, first_error = next(iter(self.failures.items()))
        self.first_error = first_error
        self.first_index = first_index
        super().__init__(
            f"{len(self.failures)} of {total} operations failed; "
            f"first failure at index {first_index}: {first_error}",
            context={"failed": len(self.failures), "total": total},
        )
        self.error_type = getattr(first_error, "error_type", ErrorType.UNKNOWN)
        self.__cause__ = first_error
