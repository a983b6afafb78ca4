"""
Errors raised by the exchange sync and the history queries.

    ExchangeError                 an upstream call failed; sync jobs skip the stock
    ├── ExchangeConnectionError   no response at all; retried by the client
    ├── ExchangeAPIError          error status from the exchange; never retried
    └── ExchangeDataError         response did not parse into stocks/shareholders

    ValidationError               bad query parameter, answered with HTTP 400
    QueryTimeoutError             a DuckDB statement outlived its timeout
"""
from typing import Optional


class ExchangeError(Exception):
    """An upstream request failed. ``path`` is the exchange endpoint, when known."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (GET {self.path})"
        return self.message


class ExchangeConnectionError(ExchangeError):
    """Network failure or timeout before any response arrived."""


class ExchangeAPIError(ExchangeError):
    """The exchange answered with a 4xx/5xx status."""

    def __init__(self, message: str, path: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, path)
        self.status_code = status_code


class ExchangeDataError(ExchangeError):
    """A payload field is missing or has the wrong shape."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        expected: Optional[str] = None,
        got: Optional[str] = None,
    ):
        super().__init__(message, path)
        self.expected = expected
        self.got = got


class ValidationError(Exception):
    """A query parameter was rejected at the HTTP boundary."""

    def __init__(self, field: str, message: str, value: object = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class QueryTimeoutError(Exception):
    """A store statement did not finish within ``timeout`` seconds."""

    def __init__(self, statement: str, timeout: float):
        self.statement = statement if len(statement) <= 200 else statement[:200] + "..."
        self.timeout = timeout
        super().__init__(f"DuckDB statement exceeded {timeout}s: {self.statement}")
