from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from ... import __version__
from ...config import DEFAULT_API_URL, DEFAULT_POLL_INTERVAL, HttpClientConfig
from ...core.errors import ParseError, RequestError
from ...core.models import (
    FULL_PAGE_SIZE,
    PEEK_PAGE_SIZE,
    EngineSize,
    ExecuteResponse,
    PageRequest,
    QueryResult,
    ResultPage,
    ResultsFilter,
    ResultTarget,
    StatusResponse,
)
from ..http_client import AsyncHttpClient, HttpClient, HttpResponse
from . import urls as _urls
from .pagination import async_fetch_all, fetch_all
from .polling import CancelToken, async_poll_execution, poll_execution

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_user_agent() -> str:
    return "dune-pager/" + __version__


def build_page_request(
    target: ResultTarget,
    *,
    peek: bool = False,
    page_size: int | None = None,
    columns: Sequence[str] | None = None,
    filters: ResultsFilter | Sequence[str] | None = None,
    ignore_max_datapoints_per_request: bool = False,
) -> PageRequest:
    if page_size is None:
        page_size = PEEK_PAGE_SIZE if peek else FULL_PAGE_SIZE
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    if not isinstance(filters, ResultsFilter):
        filters = ResultsFilter(filters)
    return PageRequest(
        target=target,
        limit=page_size,
        columns=columns,
        filters=filters,
        ignore_max_datapoints_per_request=ignore_max_datapoints_per_request,
    )


class _DuneRequests:
    """Request construction and response decoding shared by both clients."""

    def __init__(self, api_key: str, *, api_url: str = DEFAULT_API_URL):
        if not api_key:
            raise ValueError("a Dune API key is required")
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")

    def _headers(self, *, json_body: bool = False) -> dict[str, str]:
        headers = {"X-Dune-API-Key": self.api_key, "User-Agent": get_user_agent()}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _payload(response: HttpResponse, url: str) -> Any:
        try:
            payload = response.json()
        except ValueError as exc:
            if not response.ok:
                raise RequestError(
                    f"HTTP {response.status_code} from {url}", status_code=response.status_code
                ) from exc
            raise ParseError(f"response from {url} is not valid JSON") from exc
        if not response.ok:
            message = payload.get("error") if isinstance(payload, Mapping) else None
            raise RequestError(
                f"HTTP {response.status_code} from {url}: {message or response.text[:200]}",
                status_code=response.status_code,
            )
        return payload

    def _decode(self, response: HttpResponse, url: str, model: type[T]) -> T:
        return model.from_json(self._payload(response, url))  # type: ignore[attr-defined]


class DuneClient(_DuneRequests):
    """Blocking client for the Dune execution API."""

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        http_client: HttpClient | None = None,
        http_config: HttpClientConfig | None = None,
    ):
        super().__init__(api_key, api_url=api_url)
        self.http = http_client or HttpClient(http_config)

    def execute_query(
        self,
        query_id: int,
        performance: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
    ) -> ExecuteResponse:
        url = _urls.get_query_execute_url(query_id, self.api_url)
        body = _urls.encode_execute_body(performance, parameters)
        logger.info("executing query, query_id = %s", query_id)
        response = self.http.request("POST", url, headers=self._headers(json_body=True), data=body)
        return self._decode(response, url, ExecuteResponse)

    def get_execution_status(self, execution_id: str) -> StatusResponse:
        url = _urls.get_execution_status_url(execution_id, self.api_url)
        response = self.http.request("GET", url, headers=self._headers())
        return self._decode(response, url, StatusResponse)

    def get_results_page(self, request: PageRequest) -> ResultPage:
        url = _urls.get_results_url(request.target, self.api_url)
        params = _urls.encode_page_request(request)
        response = self.http.request("GET", url, headers=self._headers(), params=params)
        return self._decode(response, url, ResultPage)

    def get_materialized_view(self, name: str) -> Mapping[str, Any]:
        url = _urls.get_materialized_view_url(name, self.api_url)
        payload = self._payload(self.http.request("GET", url, headers=self._headers()), url)
        if not isinstance(payload, Mapping):
            raise ParseError(f"response from {url} is not a JSON object")
        return payload

    def get_results(
        self,
        target: ResultTarget,
        *,
        peek: bool = False,
        page_size: int | None = None,
        columns: Sequence[str] | None = None,
        filters: ResultsFilter | Sequence[str] | None = None,
        ignore_max_datapoints_per_request: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        request = build_page_request(
            target,
            peek=peek,
            page_size=page_size,
            columns=columns,
            filters=filters,
            ignore_max_datapoints_per_request=ignore_max_datapoints_per_request,
        )
        logger.info("getting results for %s", target)
        return fetch_all(self, request, peek=peek, cancel_token=cancel_token)

    def wait_for_completion(
        self,
        execution_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cancel_token: CancelToken | None = None,
    ) -> StatusResponse:
        return poll_execution(self, execution_id, poll_interval=poll_interval, cancel_token=cancel_token)

    def close(self) -> None:
        self.http.close()


class AsyncDuneClient(_DuneRequests):
    """Event-loop client for the Dune execution API."""

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        http_client: AsyncHttpClient | None = None,
        http_config: HttpClientConfig | None = None,
    ):
        super().__init__(api_key, api_url=api_url)
        self.http = http_client or AsyncHttpClient(http_config)

    async def execute_query(
        self,
        query_id: int,
        performance: EngineSize = EngineSize.MEDIUM,
        parameters: Mapping[str, Any] | None = None,
    ) -> ExecuteResponse:
        url = _urls.get_query_execute_url(query_id, self.api_url)
        body = _urls.encode_execute_body(performance, parameters)
        logger.info("executing query, query_id = %s", query_id)
        response = await self.http.request("POST", url, headers=self._headers(json_body=True), data=body)
        return self._decode(response, url, ExecuteResponse)

    async def get_execution_status(self, execution_id: str) -> StatusResponse:
        url = _urls.get_execution_status_url(execution_id, self.api_url)
        response = await self.http.request("GET", url, headers=self._headers())
        return self._decode(response, url, StatusResponse)

    async def get_results_page(self, request: PageRequest) -> ResultPage:
        url = _urls.get_results_url(request.target, self.api_url)
        params = _urls.encode_page_request(request)
        response = await self.http.request("GET", url, headers=self._headers(), params=params)
        return self._decode(response, url, ResultPage)

    async def get_materialized_view(self, name: str) -> Mapping[str, Any]:
        url = _urls.get_materialized_view_url(name, self.api_url)
        payload = self._payload(await self.http.request("GET", url, headers=self._headers()), url)
        if not isinstance(payload, Mapping):
            raise ParseError(f"response from {url} is not a JSON object")
        return payload

    async def get_results(
        self,
        target: ResultTarget,
        *,
        peek: bool = False,
        page_size: int | None = None,
        columns: Sequence[str] | None = None,
        filters: ResultsFilter | Sequence[str] | None = None,
        ignore_max_datapoints_per_request: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> QueryResult:
        request = build_page_request(
            target,
            peek=peek,
            page_size=page_size,
            columns=columns,
            filters=filters,
            ignore_max_datapoints_per_request=ignore_max_datapoints_per_request,
        )
        logger.info("getting results for %s", target)
        return await async_fetch_all(self, request, peek=peek, cancel_token=cancel_token)

    async def wait_for_completion(
        self,
        execution_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cancel_token: CancelToken | None = None,
    ) -> StatusResponse:
        return await async_poll_execution(
            self, execution_id, poll_interval=poll_interval, cancel_token=cancel_token
        )

    async def close(self) -> None:
        await self.http.close()

    async def __aenter__(self) -> AsyncDuneClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
