from __future__ import annotations

import logging
import os
from typing import Any, Literal

from fastmcp import FastMCP

from ..adapters.dune import urls as dune_urls
from ..adapters.dune.client import AsyncDuneClient
from ..config import Config
from ..core.errors import error_response
from ..core.models import EngineSize, QueryResult, ResultsFilter
from ..logging.query_history import QueryHistory
from ..service_layer.query_service import AsyncQueryService

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 50

# Global handles initialized on demand
CONFIG: Config | None = None
QUERY_HISTORY: QueryHistory | None = None
DUNE_CLIENT: AsyncDuneClient | None = None
QUERY_SERVICE: AsyncQueryService | None = None


app = FastMCP("dune-pager")


def _ensure_initialized() -> None:
    """Build configuration and the query service on first use."""
    global CONFIG, QUERY_HISTORY, DUNE_CLIENT, QUERY_SERVICE

    if CONFIG is not None and QUERY_SERVICE is not None:
        return

    logger.info("Initializing dune-pager MCP server...")
    CONFIG = Config.from_env()
    QUERY_HISTORY = QueryHistory.from_env()
    DUNE_CLIENT = AsyncDuneClient(
        CONFIG.dune.api_key, api_url=CONFIG.dune.api_url, http_config=CONFIG.http
    )
    QUERY_SERVICE = AsyncQueryService(DUNE_CLIENT, QUERY_HISTORY)
    logger.info("dune-pager server ready")


def _result_payload(result: QueryResult, *, preview_rows: int = PREVIEW_ROWS) -> dict[str, Any]:
    return {
        "ok": True,
        "execution_id": result.execution_id,
        "query_id": result.query_id,
        "state": result.state.value if result.state else None,
        "rowcount": result.row_count,
        "columns": list(result.metadata.column_names),
        "metadata": result.metadata.to_dict(),
        "pages_fetched": result.pages_fetched,
        "truncated": result.truncated,
        "data_preview": result.rows[:preview_rows],
    }


def compute_health_status() -> dict[str, Any]:
    """Report configuration health without touching the network."""
    has_api_key = bool(os.getenv("DUNE_API_KEY") or (CONFIG and CONFIG.dune.api_key))
    qh = QUERY_HISTORY if QUERY_HISTORY is not None else QueryHistory.from_env()
    return {
        "api_key_present": has_api_key,
        "query_history_path": str(qh.history_path) if qh is not None else None,
        "api_url": CONFIG.dune.api_url if CONFIG else os.getenv("DUNE_API_URL", dune_urls.DEFAULT_API_URL),
        "status": "ok" if has_api_key else "degraded",
    }


async def _dune_execute_impl(
    query_id: int, engine_size: str = "medium", parameters: dict[str, Any] | None = None
) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    handle = await QUERY_SERVICE.execute(query_id, EngineSize.parse(engine_size), parameters)
    return {"ok": True, "execution_id": handle.execution_id, "state": handle.state.value}


async def _dune_execution_status_impl(execution_id: str) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    status = await QUERY_SERVICE.status(execution_id)
    return {
        "ok": True,
        "execution_id": status.execution_id,
        "query_id": status.query_id,
        "state": status.state.value,
        "is_execution_finished": status.is_execution_finished,
        "result_metadata": status.result_metadata.to_dict() if status.result_metadata else None,
    }


async def _dune_results_impl(
    target: str,
    kind: Literal["auto", "query", "execution"] = "auto",
    peek: bool = True,
    columns: list[str] | None = None,
    filters: list[str] | None = None,
) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    result = await QUERY_SERVICE.fetch_results(
        dune_urls.parse_target(target, kind=kind),
        peek=peek,
        columns=columns,
        filters=ResultsFilter(filters),
    )
    return _result_payload(result)


async def _dune_execute_and_wait_impl(
    query_id: int,
    engine_size: str = "medium",
    parameters: dict[str, Any] | None = None,
    poll_interval: float | None = None,
    peek: bool = True,
) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None and CONFIG is not None
    result = await QUERY_SERVICE.submit_and_await(
        query_id,
        EngineSize.parse(engine_size),
        parameters,
        poll_interval=CONFIG.dune.poll_interval_seconds if poll_interval is None else poll_interval,
        peek=peek,
    )
    return _result_payload(result)


async def _dune_await_execution_impl(
    execution_id: str, poll_interval: float | None = None, peek: bool = True
) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None and CONFIG is not None
    result = await QUERY_SERVICE.await_existing(
        execution_id,
        poll_interval=CONFIG.dune.poll_interval_seconds if poll_interval is None else poll_interval,
        peek=peek,
    )
    return _result_payload(result)


@app.tool(
    name="dune_execute",
    title="Execute Query",
    description="Submit a saved Dune query for execution and return its execution id.",
    tags={"dune", "query"},
)
async def dune_execute(
    query_id: int, engine_size: Literal["medium", "large"] = "medium", parameters: dict[str, Any] | None = None
) -> dict[str, Any]:
    try:
        return await _dune_execute_impl(query_id, engine_size, parameters)
    except Exception as e:
        return error_response(e, context={"tool": "dune_execute", "query_id": query_id})


@app.tool(
    name="dune_execution_status",
    title="Execution Status",
    description="Fetch the current state of a Dune execution.",
    tags={"dune", "query"},
)
async def dune_execution_status(execution_id: str) -> dict[str, Any]:
    try:
        return await _dune_execution_status_impl(execution_id)
    except Exception as e:
        return error_response(e, context={"tool": "dune_execution_status", "execution_id": execution_id})


@app.tool(
    name="dune_results",
    title="Fetch Results",
    description="Fetch results of a query (latest execution) or of a specific execution.",
    tags={"dune", "query"},
)
async def dune_results(
    target: str,
    kind: Literal["auto", "query", "execution"] = "auto",
    peek: bool = True,
    columns: list[str] | None = None,
    filters: list[str] | None = None,
) -> dict[str, Any]:
    try:
        return await _dune_results_impl(target, kind, peek, columns, filters)
    except Exception as e:
        return error_response(e, context={"tool": "dune_results", "target": target, "kind": kind})


@app.tool(
    name="dune_execute_and_wait",
    title="Execute And Wait",
    description="Execute a saved query, wait until it finishes and return its results.",
    tags={"dune", "query"},
)
async def dune_execute_and_wait(
    query_id: int,
    engine_size: Literal["medium", "large"] = "medium",
    parameters: dict[str, Any] | None = None,
    poll_interval: float | None = None,
    peek: bool = True,
) -> dict[str, Any]:
    try:
        return await _dune_execute_and_wait_impl(query_id, engine_size, parameters, poll_interval, peek)
    except Exception as e:
        return error_response(e, context={"tool": "dune_execute_and_wait", "query_id": query_id})


@app.tool(
    name="dune_await_execution",
    title="Await Execution",
    description="Wait for a running execution to finish and return its results.",
    tags={"dune", "query"},
)
async def dune_await_execution(
    execution_id: str, poll_interval: float | None = None, peek: bool = True
) -> dict[str, Any]:
    try:
        return await _dune_await_execution_impl(execution_id, poll_interval, peek)
    except Exception as e:
        return error_response(e, context={"tool": "dune_await_execution", "execution_id": execution_id})


@app.tool(
    name="dune_health_check",
    title="Health Check",
    description="Validate Dune API key presence and history logging setup.",
    tags={"health"},
)
async def dune_health_check() -> dict[str, Any]:
    return compute_health_status()


def main() -> None:
    # Defer initialization to the first tool call so a missing key does not
    # break the MCP handshake.
    app.run(show_banner=False)


if __name__ == "__main__":
    main()
