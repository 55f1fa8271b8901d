from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from .models import EngineSize, ExecuteResponse, PageRequest, ResultPage, StatusResponse


class ExecutionApi(Protocol):
    """Port for the blocking Dune execution endpoints."""

    def execute_query(
        self,
        query_id: int,
        performance: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
    ) -> ExecuteResponse:
        ...

    def get_execution_status(self, execution_id: str) -> StatusResponse:
        ...

    def get_results_page(self, request: PageRequest) -> ResultPage:
        ...


class AsyncExecutionApi(Protocol):
    """Port for the same endpoints driven from an event loop."""

    async def execute_query(
        self,
        query_id: int,
        performance: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
    ) -> ExecuteResponse:
        ...

    async def get_execution_status(self, execution_id: str) -> StatusResponse:
        ...

    async def get_results_page(self, request: PageRequest) -> ResultPage:
        ...
