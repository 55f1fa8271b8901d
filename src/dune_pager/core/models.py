from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from .errors import PaginationError, ParseError

if TYPE_CHECKING:
    import polars as pl


PEEK_PAGE_SIZE = 10
FULL_PAGE_SIZE = 1000

_MISSING = object()


def _take(payload: Mapping[str, Any], key: str, kind: type | tuple[type, ...], *, optional: bool = False, where: str) -> Any:
    """Read one field from a decoded JSON object, enforcing its JSON type."""
    value = payload.get(key, _MISSING)
    if value is _MISSING or value is None:
        if optional:
            return None
        raise ParseError(f"{where}: missing required field {key!r}")
    # bool is a subclass of int; JSON true/false is never a count or an id
    if isinstance(value, bool) and bool not in (kind if isinstance(kind, tuple) else (kind,)):
        raise ParseError(f"{where}: field {key!r} has unexpected type bool")
    if not isinstance(value, kind):
        raise ParseError(f"{where}: field {key!r} has unexpected type {type(value).__name__}")
    return value


def _expect_object(payload: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ParseError(f"{where}: expected a JSON object, got {type(payload).__name__}")
    return payload


def _string_list(payload: Mapping[str, Any], key: str, *, where: str) -> list[str]:
    values = _take(payload, key, list, where=where)
    if not all(isinstance(v, str) for v in values):
        raise ParseError(f"{where}: field {key!r} must be a list of strings")
    return list(values)


class EngineSize(str, Enum):
    """Remote compute tier used for an execution."""

    MEDIUM = "medium"
    LARGE = "large"

    @classmethod
    def parse(cls, value: str | EngineSize) -> EngineSize:
        if isinstance(value, EngineSize):
            return value
        aliases = {"medium": cls.MEDIUM, "m": cls.MEDIUM, "large": cls.LARGE, "l": cls.LARGE}
        try:
            return aliases[value.strip().lower()]
        except (AttributeError, KeyError):
            raise ValueError(f"invalid engine size {value!r}, use 'medium' or 'large'") from None


class ExecutionStatus(str, Enum):
    PENDING = "QUERY_STATE_PENDING"
    EXECUTING = "QUERY_STATE_EXECUTING"
    FAILED = "QUERY_STATE_FAILED"
    COMPLETED = "QUERY_STATE_COMPLETED"
    CANCELLED = "QUERY_STATE_CANCELLED"
    EXPIRED = "QUERY_STATE_EXPIRED"
    COMPLETED_PARTIAL = "QUERY_STATE_COMPLETED_PARTIAL"

    @classmethod
    def from_wire(cls, token: Any) -> ExecutionStatus:
        """Decode a wire token; unknown tokens are errors, never defaults."""
        if isinstance(token, str):
            for status in cls:
                if status.value == token:
                    return status
        raise ParseError(f"unknown execution state {token!r}")

    @property
    def is_terminal(self) -> bool:
        return self not in (ExecutionStatus.PENDING, ExecutionStatus.EXECUTING)

    @property
    def is_success(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.COMPLETED_PARTIAL)

    @property
    def is_failure(self) -> bool:
        return self in (ExecutionStatus.FAILED, ExecutionStatus.CANCELLED, ExecutionStatus.EXPIRED)


@dataclass(frozen=True)
class ExecuteResponse:
    """Handle returned by a submit call."""

    execution_id: str
    state: ExecutionStatus

    @classmethod
    def from_json(cls, payload: Any) -> ExecuteResponse:
        where = "execute response"
        data = _expect_object(payload, where)
        return cls(
            execution_id=_take(data, "execution_id", str, where=where),
            state=ExecutionStatus.from_wire(_take(data, "state", str, where=where)),
        )


ExecutionHandle = ExecuteResponse


@dataclass(frozen=True)
class ResultMetadata:
    column_names: list[str]
    column_types: list[str]
    datapoint_count: int
    total_row_count: int
    row_count: int | None = None

    @classmethod
    def from_json(cls, payload: Any) -> ResultMetadata:
        where = "result metadata"
        data = _expect_object(payload, where)
        return cls(
            column_names=_string_list(data, "column_names", where=where),
            column_types=_string_list(data, "column_types", where=where),
            datapoint_count=_take(data, "datapoint_count", int, where=where),
            total_row_count=_take(data, "total_row_count", int, where=where),
            row_count=_take(data, "row_count", int, optional=True, where=where),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "column_names": list(self.column_names),
            "column_types": list(self.column_types),
            "datapoint_count": self.datapoint_count,
            "total_row_count": self.total_row_count,
            "row_count": self.row_count,
        }


@dataclass(frozen=True)
class StatusResponse:
    execution_id: str
    query_id: int
    is_execution_finished: bool
    state: ExecutionStatus
    result_metadata: ResultMetadata | None = None
    submitted_at: str | None = None
    execution_started_at: str | None = None
    execution_ended_at: str | None = None
    error: Any = None

    @classmethod
    def from_json(cls, payload: Any) -> StatusResponse:
        where = "status response"
        data = _expect_object(payload, where)
        metadata = data.get("result_metadata")
        return cls(
            execution_id=_take(data, "execution_id", str, where=where),
            query_id=_take(data, "query_id", int, where=where),
            is_execution_finished=_take(data, "is_execution_finished", bool, where=where),
            state=ExecutionStatus.from_wire(_take(data, "state", str, where=where)),
            result_metadata=ResultMetadata.from_json(metadata) if metadata is not None else None,
            submitted_at=_take(data, "submitted_at", str, optional=True, where=where),
            execution_started_at=_take(data, "execution_started_at", str, optional=True, where=where),
            execution_ended_at=_take(data, "execution_ended_at", str, optional=True, where=where),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ResultPage:
    """One response of the paginated results endpoints."""

    state: ExecutionStatus
    execution_id: str
    query_id: int
    is_execution_finished: bool
    next_offset: int | None = None
    metadata: ResultMetadata | None = None
    rows: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, payload: Any) -> ResultPage:
        where = "results response"
        data = _expect_object(payload, where)
        finished = _take(data, "is_execution_finished", bool, where=where)
        result = data.get("result")
        metadata = None
        rows: list[dict[str, Any]] = []
        if result is not None:
            result = _expect_object(result, "results response.result")
            metadata = ResultMetadata.from_json(result.get("metadata"))
            raw_rows = _take(result, "rows", list, where="results response.result")
            for row in raw_rows:
                if not isinstance(row, dict):
                    raise ParseError(f"results response: row is not an object: {row!r}")
            rows = raw_rows
        elif finished:
            raise ParseError(f"{where}: missing required field 'result'")
        next_offset = _take(data, "next_offset", int, optional=True, where=where)
        if next_offset is not None and next_offset < 0:
            raise ParseError(f"{where}: negative next_offset {next_offset}")
        return cls(
            state=ExecutionStatus.from_wire(_take(data, "state", str, where=where)),
            execution_id=_take(data, "execution_id", str, where=where),
            query_id=_take(data, "query_id", int, where=where),
            is_execution_finished=finished,
            next_offset=next_offset,
            metadata=metadata,
            rows=rows,
        )


@dataclass
class QueryResult:
    """Metadata of the first page plus the rows of every fetched page."""

    metadata: ResultMetadata
    rows: list[dict[str, Any]] = field(default_factory=list)
    execution_id: str | None = None
    query_id: int | None = None
    state: ExecutionStatus | None = None
    pages_fetched: int = 0
    truncated: bool = False

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_polars(self) -> pl.DataFrame:
        import polars as pl

        if not self.rows:
            return pl.DataFrame(schema={name: pl.String for name in self.metadata.column_names})
        df = pl.from_dicts(self.rows, infer_schema_length=None)
        ordered = [c for c in self.metadata.column_names if c in df.columns]
        return df.select(ordered + [c for c in df.columns if c not in ordered])


@dataclass(frozen=True)
class QueryTarget:
    """Results of the latest execution of a saved query."""

    query_id: int
    parameters: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ExecutionTarget:
    """Results of one specific execution."""

    execution_id: str


ResultTarget = Union[QueryTarget, ExecutionTarget]


class ResultsFilter:
    """Raw filter expressions, AND-ed together in insertion order."""

    def __init__(self, filters: Sequence[str] | None = None) -> None:
        self.filters: list[str] = list(filters or [])

    def add(self, expression: str) -> ResultsFilter:
        self.filters.append(expression)
        return self

    def to_param(self) -> str | None:
        if not self.filters:
            return None
        return " AND ".join(self.filters)

    def __len__(self) -> int:
        return len(self.filters)

    def __repr__(self) -> str:
        return f"ResultsFilter({self.filters!r})"


@dataclass
class PageRequest:
    """Cursor state of one pagination run; only `offset` changes."""

    target: ResultTarget
    limit: int = FULL_PAGE_SIZE
    offset: int = 0
    columns: Sequence[str] | None = None
    filters: ResultsFilter = field(default_factory=ResultsFilter)
    ignore_max_datapoints_per_request: bool = False

    def advance(self, next_offset: int) -> None:
        if next_offset <= self.offset:
            raise PaginationError(
                f"server returned non-increasing next_offset={next_offset} after offset={self.offset}"
            )
        self.offset = next_offset

    def query_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "offset": self.offset,
            "limit": self.limit,
            "columns": list(self.columns) if self.columns else None,
            "filters": self.filters.to_param(),
            "ignore_max_datapoints_per_request": self.ignore_max_datapoints_per_request,
        }
        if isinstance(self.target, QueryTarget) and self.target.parameters:
            params["query_parameters"] = dict(self.target.parameters)
        return params
