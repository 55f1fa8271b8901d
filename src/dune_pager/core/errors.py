from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import ExecutionStatus


class DuneError(Exception):
    """Base exception for all client errors."""

    code = "DUNE_ERROR"


class RequestError(DuneError):
    """Transport failure, or a non-2xx answer from the API."""

    code = "REQUEST_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(DuneError):
    """Response body does not decode into the expected shape."""

    code = "PARSE_ERROR"


class EncodingError(DuneError):
    """Outbound parameters could not be serialized."""

    code = "ENCODING_ERROR"


class QueryNotFinished(DuneError):
    """Results were requested before the execution finished."""

    code = "QUERY_NOT_FINISHED"

    def __init__(self, execution_id: str | None = None) -> None:
        message = "query execution has not finished"
        if execution_id:
            message += f", execution_id={execution_id}"
        super().__init__(message)
        self.execution_id = execution_id


class QueryStatusError(DuneError):
    """The polled execution reached a terminal failure state."""

    code = "QUERY_STATUS_ERROR"

    def __init__(
        self,
        status: ExecutionStatus,
        *,
        execution_id: str | None = None,
        detail: Any = None,
    ) -> None:
        message = f"query execution ended with state={status.value}"
        if execution_id:
            message += f" execution_id={execution_id}"
        if detail:
            message += f", error={detail}"
        super().__init__(message)
        self.status = status
        self.execution_id = execution_id
        self.detail = detail


class PaginationError(DuneError):
    """The server returned a next offset that does not move forward."""

    code = "PAGINATION_ERROR"


class OperationCancelled(DuneError):
    """A cancel token was triggered while waiting on the API."""

    code = "CANCELLED"


def error_response(exc: BaseException, *, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Build the error envelope returned by tools instead of raising."""
    code = exc.code if isinstance(exc, DuneError) else "UNKNOWN_ERROR"
    error: dict[str, Any] = {
        "code": code,
        "message": str(exc) or type(exc).__name__,
        "context": dict(context or {}),
    }
    if isinstance(exc, QueryStatusError):
        error["status"] = exc.status.value
    if isinstance(exc, RequestError) and exc.status_code is not None:
        error["status_code"] = exc.status_code
    return {"ok": False, "error": error}
