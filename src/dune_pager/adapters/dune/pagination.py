from __future__ import annotations

import logging

from ...core.errors import QueryNotFinished
from ...core.models import PageRequest, QueryResult, ResultPage
from ...core.ports import AsyncExecutionApi, ExecutionApi
from .polling import CancelToken

logger = logging.getLogger(__name__)


class ResultAssembler:
    """Accumulates pages for one pagination run and moves the cursor."""

    def __init__(self, request: PageRequest, *, peek: bool = False):
        self.request = request
        self.peek = peek
        self.result: QueryResult | None = None

    def add(self, page: ResultPage) -> bool:
        """Append a page; return True when another page must be fetched."""
        if not page.is_execution_finished:
            raise QueryNotFinished(page.execution_id)
        if self.result is None:
            assert page.metadata is not None
            self.result = QueryResult(
                metadata=page.metadata,
                execution_id=page.execution_id,
                query_id=page.query_id,
                state=page.state,
            )
        self.result.rows.extend(page.rows)
        self.result.pages_fetched += 1
        logger.debug(
            "page %d at offset %d: %d rows, %d collected",
            self.result.pages_fetched,
            self.request.offset,
            len(page.rows),
            len(self.result.rows),
        )
        if page.next_offset is None:
            return False
        if self.peek:
            self.result.truncated = True
            return False
        self.request.advance(page.next_offset)
        return True

    def build(self) -> QueryResult:
        assert self.result is not None, "no page was fetched"
        expected = self.result.metadata.total_row_count
        if not self.result.truncated and self.result.row_count != expected:
            logger.warning(
                "execution %s: collected %d rows but metadata reports total_row_count = %d",
                self.result.execution_id,
                self.result.row_count,
                expected,
            )
        return self.result


def fetch_all(
    client: ExecutionApi,
    request: PageRequest,
    *,
    peek: bool = False,
    cancel_token: CancelToken | None = None,
) -> QueryResult:
    """Fetch every page of ``request`` (or only the first when peeking)."""
    assembler = ResultAssembler(request, peek=peek)
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if not assembler.add(client.get_results_page(request)):
            break
    result = assembler.build()
    logger.info("fetched %d rows in %d pages", result.row_count, result.pages_fetched)
    return result


async def async_fetch_all(
    client: AsyncExecutionApi,
    request: PageRequest,
    *,
    peek: bool = False,
    cancel_token: CancelToken | None = None,
) -> QueryResult:
    assembler = ResultAssembler(request, peek=peek)
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if not assembler.add(await client.get_results_page(request)):
            break
    result = assembler.build()
    logger.info("fetched %d rows in %d pages", result.row_count, result.pages_fetched)
    return result
