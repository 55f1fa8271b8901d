from __future__ import annotations

import logging

import pytest
from stubs import AsyncFakeResultsApi, FakeResultsApi, make_rows

from dune_pager.adapters.dune.pagination import async_fetch_all, fetch_all
from dune_pager.adapters.dune.polling import CancelToken
from dune_pager.core.errors import OperationCancelled, PaginationError, QueryNotFinished
from dune_pager.core.models import (
    FULL_PAGE_SIZE,
    PEEK_PAGE_SIZE,
    ExecutionStatus,
    ExecutionTarget,
    PageRequest,
    QueryTarget,
)

TARGET = ExecutionTarget("01J5ZMD33P6J413G1KQM6QTE4S")


@pytest.mark.parametrize("total,limit", [(0, 10), (1, 10), (10, 10), (25, 10), (2500, FULL_PAGE_SIZE)])
def test_full_fetch_collects_every_row_in_offset_order(total, limit):
    api = FakeResultsApi(make_rows(total))
    result = fetch_all(api, PageRequest(TARGET, limit=limit))

    assert result.row_count == total
    assert result.metadata.total_row_count == total
    assert result.rows == make_rows(total)
    expected_pages = max(1, -(-total // limit))
    assert result.pages_fetched == expected_pages
    assert [offset for offset, _ in api.page_calls] == [i * limit for i in range(expected_pages)]
    assert not result.truncated
    assert result.state is ExecutionStatus.COMPLETED


def test_empty_result_set_is_not_an_error():
    result = fetch_all(FakeResultsApi([]), PageRequest(QueryTarget(4011227), limit=10))
    assert result.rows == []
    assert result.metadata.column_names == ["address", "balance"]
    assert result.pages_fetched == 1


def test_peek_never_requests_a_second_page():
    api = FakeResultsApi(make_rows(95))
    result = fetch_all(api, PageRequest(TARGET, limit=PEEK_PAGE_SIZE), peek=True)

    assert len(api.page_calls) == 1
    assert result.row_count == PEEK_PAGE_SIZE
    assert result.truncated
    assert result.metadata.total_row_count == 95


def test_peek_on_single_page_is_not_truncated():
    result = fetch_all(FakeResultsApi(make_rows(3)), PageRequest(TARGET, limit=PEEK_PAGE_SIZE), peek=True)
    assert result.row_count == 3
    assert not result.truncated


def test_unfinished_execution_raises_before_collecting():
    api = FakeResultsApi(make_rows(5), finished=False)
    with pytest.raises(QueryNotFinished):
        fetch_all(api, PageRequest(TARGET, limit=10))
    assert len(api.page_calls) == 1


@pytest.mark.parametrize("next_offsets", [[10, 10], [10, 5], [0]])
def test_non_increasing_next_offset_is_a_protocol_error(next_offsets):
    api = FakeResultsApi(make_rows(30), next_offsets=next_offsets)
    with pytest.raises(PaginationError):
        fetch_all(api, PageRequest(TARGET, limit=10))
    assert len(api.page_calls) <= len(next_offsets)


def test_cancel_token_checked_before_each_request():
    api = FakeResultsApi(make_rows(30))
    token = CancelToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        fetch_all(api, PageRequest(TARGET, limit=10), cancel_token=token)
    assert api.page_calls == []


def test_request_offset_is_the_only_mutated_field():
    request = PageRequest(TARGET, limit=10, columns=["address"])
    fetch_all(FakeResultsApi(make_rows(25)), request)
    assert request.offset == 20
    assert request.limit == 10
    assert request.columns == ["address"]
    assert request.target is TARGET


@pytest.mark.asyncio
async def test_async_fetch_matches_sync_fetch():
    api = AsyncFakeResultsApi(make_rows(23))
    result = await async_fetch_all(api, PageRequest(TARGET, limit=10))
    assert result.rows == make_rows(23)
    assert api.page_calls == [(0, 10), (10, 10), (20, 10)]


@pytest.mark.asyncio
async def test_async_peek_single_request():
    api = AsyncFakeResultsApi(make_rows(23))
    result = await async_fetch_all(api, PageRequest(TARGET, limit=PEEK_PAGE_SIZE), peek=True)
    assert result.row_count == PEEK_PAGE_SIZE
    assert api.page_calls == [(0, PEEK_PAGE_SIZE)]


def test_short_full_fetch_logs_row_count_mismatch(caplog):
    # server stops advertising next_offset after the first of three pages
    api = FakeResultsApi(make_rows(30), next_offsets=[])
    with caplog.at_level(logging.WARNING, logger="dune_pager.adapters.dune.pagination"):
        result = fetch_all(api, PageRequest(TARGET, limit=10))
    assert result.row_count == 10
    assert "total_row_count = 30" in caplog.text


def test_complete_fetch_and_peek_do_not_warn(caplog):
    with caplog.at_level(logging.WARNING, logger="dune_pager.adapters.dune.pagination"):
        fetch_all(FakeResultsApi(make_rows(25)), PageRequest(TARGET, limit=10))
        fetch_all(FakeResultsApi(make_rows(25)), PageRequest(TARGET, limit=10), peek=True)
    assert caplog.records == []
