from __future__ import annotations

import json

import pytest
from stubs import (
    EXECUTION_ID,
    QUERY_ID,
    StubHttpClient,
    json_response,
    make_rows,
    page_payload,
    status_payload,
)

from dune_pager.adapters.dune.client import DuneClient
from dune_pager.adapters.dune.polling import CancelToken
from dune_pager.core.errors import OperationCancelled, QueryNotFinished, QueryStatusError
from dune_pager.core.models import EngineSize, ExecutionStatus, ExecutionTarget
from dune_pager.logging.query_history import QueryHistory
from dune_pager.service_layer.query_service import QueryService


def _service(responses, history=None) -> tuple[QueryService, StubHttpClient]:
    http = StubHttpClient(responses)
    return QueryService(DuneClient("test-key", http_client=http), history), http


def _history_lines(path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_submit_wait_and_paginate(tmp_path):
    history = QueryHistory(tmp_path / "queries.jsonl")
    service, http = _service(
        [
            json_response({"execution_id": EXECUTION_ID, "state": "QUERY_STATE_PENDING"}),
            json_response(status_payload("QUERY_STATE_EXECUTING")),
            json_response(status_payload("QUERY_STATE_COMPLETED")),
            json_response(page_payload(make_rows(1000), total=2500, next_offset=1000)),
            json_response(page_payload(make_rows(1000, start=1000), total=2500, next_offset=2000)),
            json_response(page_payload(make_rows(500, start=2000), total=2500)),
        ],
        history,
    )

    result = service.submit_and_await(QUERY_ID, EngineSize.MEDIUM, poll_interval=0)

    assert result.row_count == result.metadata.total_row_count == 2500
    assert result.rows == make_rows(2500)
    assert result.state is ExecutionStatus.COMPLETED
    assert [c[0] for c in http.calls] == ["POST", "GET", "GET", "GET", "GET", "GET"]
    assert json.loads(http.calls[0][2]["data"]) == {"performance": "medium"}

    (entry,) = _history_lines(tmp_path / "queries.jsonl")
    assert entry["action"] == "submit_and_await"
    assert entry["status"] == "ok"
    assert entry["query_id"] == QUERY_ID
    assert entry["execution_id"] == EXECUTION_ID
    assert entry["rowcount"] == 2500
    assert entry["pages"] == 3


def test_await_existing_failed_execution_raises_without_results_call(tmp_path):
    history = QueryHistory(tmp_path / "queries.jsonl")
    service, http = _service([json_response(status_payload("QUERY_STATE_FAILED"))], history)

    with pytest.raises(QueryStatusError) as excinfo:
        service.await_existing(EXECUTION_ID, poll_interval=0)

    assert excinfo.value.status is ExecutionStatus.FAILED
    assert len(http.calls) == 1
    assert http.calls[0][1].endswith("/status")

    (entry,) = _history_lines(tmp_path / "queries.jsonl")
    assert entry["status"] == "error"
    assert entry["error_code"] == "QUERY_STATUS_ERROR"
    assert entry["execution_id"] == EXECUTION_ID


def test_fetch_results_on_unfinished_execution():
    service, http = _service(
        [json_response(page_payload([], finished=False, state="QUERY_STATE_EXECUTING"))]
    )
    with pytest.raises(QueryNotFinished):
        service.fetch_results(ExecutionTarget(EXECUTION_ID))
    assert len(http.calls) == 1


def test_peek_fetch_requests_one_small_page():
    service, http = _service([json_response(page_payload(make_rows(10), total=95, next_offset=10))])

    result = service.fetch_results(ExecutionTarget(EXECUTION_ID), peek=True)

    assert result.row_count == 10
    assert result.truncated
    assert "limit=10" in http.calls[0][2]["params"]


def test_cancelled_token_stops_before_polling():
    service, http = _service([json_response({"execution_id": EXECUTION_ID, "state": "QUERY_STATE_PENDING"})])
    token = CancelToken()
    token.cancel()

    with pytest.raises(OperationCancelled):
        service.submit_and_await(QUERY_ID, poll_interval=0, cancel_token=token)

    assert [c[0] for c in http.calls] == ["POST"]


def test_history_disabled_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.setenv("DUNE_QUERY_HISTORY", "disabled")
    assert QueryHistory.from_env() is None

    service, _ = _service([json_response(page_payload(make_rows(1)))], QueryHistory.from_env())
    service.fetch_results(ExecutionTarget(EXECUTION_ID))
    assert list(tmp_path.iterdir()) == []


def test_history_path_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DUNE_QUERY_HISTORY", str(tmp_path / "nested" / "log.jsonl"))
    history = QueryHistory.from_env()
    history.record(action="fetch_results", status="ok", target="x")
    (entry,) = _history_lines(tmp_path / "nested" / "log.jsonl")
    assert entry["target"] == "x"
    assert "ts" in entry
