from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from ..adapters.dune.client import AsyncDuneClient, DuneClient
from ..adapters.dune.polling import CancelToken
from ..config import DEFAULT_POLL_INTERVAL
from ..core.errors import DuneError
from ..core.models import (
    EngineSize,
    ExecuteResponse,
    ExecutionTarget,
    QueryResult,
    ResultsFilter,
    ResultTarget,
    StatusResponse,
)
from ..logging.query_history import QueryHistory

logger = logging.getLogger(__name__)


class _History:
    def __init__(self, history: QueryHistory | None):
        self.history = history

    def _record(self, action: str, t_start: float, *, error: BaseException | None = None, result: QueryResult | None = None, **fields: Any) -> None:
        if self.history is None:
            return
        fields["duration_ms"] = int((time.monotonic() - t_start) * 1000)
        if result is not None:
            fields.update(
                execution_id=result.execution_id,
                rowcount=result.row_count,
                pages=result.pages_fetched,
                truncated=result.truncated,
            )
        if error is not None:
            code = error.code if isinstance(error, DuneError) else type(error).__name__
            self.history.record(action=action, status="error", error_code=code, error=str(error), **fields)
        else:
            self.history.record(action=action, status="ok", **fields)


class QueryService(_History):
    """Submit, wait and collect results with a blocking client."""

    def __init__(self, client: DuneClient, history: QueryHistory | None = None):
        super().__init__(history)
        self.client = client

    def execute(
        self,
        query_id: int,
        engine_size: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
    ) -> ExecuteResponse:
        handle = self.client.execute_query(query_id, engine_size, parameters)
        logger.info("query %s submitted, execution_id = %s", query_id, handle.execution_id)
        return handle

    def status(self, execution_id: str) -> StatusResponse:
        return self.client.get_execution_status(execution_id)

    def fetch_results(
        self,
        target: ResultTarget,
        *,
        peek: bool = False,
        columns: Sequence[str] | None = None,
        filters: ResultsFilter | Sequence[str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        t_start = time.monotonic()
        try:
            result = self.client.get_results(
                target, peek=peek, columns=columns, filters=filters, cancel_token=cancel_token
            )
        except Exception as exc:
            self._record("fetch_results", t_start, error=exc, target=str(target))
            raise
        self._record("fetch_results", t_start, result=result, target=str(target))
        return result

    def submit_and_await(
        self,
        query_id: int,
        engine_size: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        peek: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        t_start = time.monotonic()
        try:
            handle = self.execute(query_id, engine_size, parameters)
            result = self._await(handle.execution_id, poll_interval, peek, cancel_token)
        except Exception as exc:
            self._record("submit_and_await", t_start, error=exc, query_id=query_id)
            raise
        self._record("submit_and_await", t_start, result=result, query_id=query_id)
        return result

    def await_existing(
        self,
        execution_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        peek: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        t_start = time.monotonic()
        try:
            result = self._await(execution_id, poll_interval, peek, cancel_token)
        except Exception as exc:
            self._record("await_existing", t_start, error=exc, execution_id=execution_id)
            raise
        self._record("await_existing", t_start, result=result)
        return result

    def _await(self, execution_id: str, poll_interval: float, peek: bool, cancel_token: CancelToken | None) -> QueryResult:
        self.client.wait_for_completion(execution_id, poll_interval=poll_interval, cancel_token=cancel_token)
        return self.client.get_results(ExecutionTarget(execution_id), peek=peek, cancel_token=cancel_token)


class AsyncQueryService(_History):
    """Same flows as :class:`QueryService`, suspending instead of blocking."""

    def __init__(self, client: AsyncDuneClient, history: QueryHistory | None = None):
        super().__init__(history)
        self.client = client

    async def execute(
        self,
        query_id: int,
        engine_size: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
    ) -> ExecuteResponse:
        handle = await self.client.execute_query(query_id, engine_size, parameters)
        logger.info("query %s submitted, execution_id = %s", query_id, handle.execution_id)
        return handle

    async def status(self, execution_id: str) -> StatusResponse:
        return await self.client.get_execution_status(execution_id)

    async def fetch_results(
        self,
        target: ResultTarget,
        *,
        peek: bool = False,
        columns: Sequence[str] | None = None,
        filters: ResultsFilter | Sequence[str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        t_start = time.monotonic()
        try:
            result = await self.client.get_results(
                target, peek=peek, columns=columns, filters=filters, cancel_token=cancel_token
            )
        except Exception as exc:
            self._record("fetch_results", t_start, error=exc, target=str(target))
            raise
        self._record("fetch_results", t_start, result=result, target=str(target))
        return result

    async def submit_and_await(
        self,
        query_id: int,
        engine_size: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        peek: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        t_start = time.monotonic()
        try:
            handle = await self.execute(query_id, engine_size, parameters)
            result = await self._await(handle.execution_id, poll_interval, peek, cancel_token)
        except Exception as exc:
            self._record("submit_and_await", t_start, error=exc, query_id=query_id)
            raise
        self._record("submit_and_await", t_start, result=result, query_id=query_id)
        return result

    async def await_existing(
        self,
        execution_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        peek: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        t_start = time.monotonic()
        try:
            result = await self._await(execution_id, poll_interval, peek, cancel_token)
        except Exception as exc:
            self._record("await_existing", t_start, error=exc, execution_id=execution_id)
            raise
        self._record("await_existing", t_start, result=result)
        return result

    async def _await(self, execution_id: str, poll_interval: float, peek: bool, cancel_token: CancelToken | None) -> QueryResult:
        await self.client.wait_for_completion(execution_id, poll_interval=poll_interval, cancel_token=cancel_token)
        return await self.client.get_results(ExecutionTarget(execution_id), peek=peek, cancel_token=cancel_token)
