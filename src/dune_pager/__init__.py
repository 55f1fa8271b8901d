"""Client for the Dune execution API: submit, poll and page through results."""

__version__ = "0.1.0"

from .adapters.dune.client import AsyncDuneClient, DuneClient  # noqa: E402
from .adapters.dune.polling import CancelToken  # noqa: E402
from .core.errors import (  # noqa: E402
    DuneError,
    EncodingError,
    OperationCancelled,
    PaginationError,
    ParseError,
    QueryNotFinished,
    QueryStatusError,
    RequestError,
)
from .core.models import (  # noqa: E402
    EngineSize,
    ExecutionStatus,
    ExecutionTarget,
    QueryResult,
    QueryTarget,
    ResultsFilter,
)
from .service_layer.query_service import AsyncQueryService, QueryService  # noqa: E402

__all__ = [
    "AsyncDuneClient",
    "AsyncQueryService",
    "CancelToken",
    "DuneClient",
    "DuneError",
    "EncodingError",
    "EngineSize",
    "ExecutionStatus",
    "ExecutionTarget",
    "OperationCancelled",
    "PaginationError",
    "ParseError",
    "QueryNotFinished",
    "QueryResult",
    "QueryService",
    "QueryStatusError",
    "QueryTarget",
    "RequestError",
    "ResultsFilter",
]
