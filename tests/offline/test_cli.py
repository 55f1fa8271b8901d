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

from dune_pager import cli
from dune_pager.adapters.dune.client import DuneClient
from dune_pager.config import Config, DuneConfig
from dune_pager.core.models import EngineSize
from dune_pager.service_layer.query_service import QueryService


def _run(argv, responses):
    http = StubHttpClient(responses)
    service = QueryService(DuneClient("test-key", http_client=http))
    config = Config(dune=DuneConfig(api_key="test-key", poll_interval_seconds=0))
    args = cli.build_parser().parse_args(argv)
    return cli.run(args, service, config), http


def test_parser_defaults():
    args = cli.build_parser().parse_args(["execute-get-results", "--id", str(QUERY_ID)])
    assert args.engine_size is EngineSize.MEDIUM
    assert args.params is None
    assert args.poll_interval is None
    assert args.path_csv is None
    assert not args.peek


def test_parser_path_csv_without_value_uses_default_name():
    args = cli.build_parser().parse_args(["get-results", "--id", "1", "--path-csv"])
    assert args.path_csv == "output.csv"


def test_parser_rejects_bad_engine_size_and_params():
    parser = cli.build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["execute", "--id", "1", "--engine-size", "huge"])
    with pytest.raises(SystemExit):
        parser.parse_args(["execute", "--id", "1", "--params", "{not json"])


def test_execute_prints_handle(capsys):
    code, http = _run(
        ["execute", "--id", str(QUERY_ID), "--engine-size", "l", "--params", '{"wallet": "0xabc"}'],
        [json_response({"execution_id": EXECUTION_ID, "state": "QUERY_STATE_PENDING"})],
    )
    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"execution_id": EXECUTION_ID, "state": "QUERY_STATE_PENDING"}
    assert json.loads(http.calls[0][2]["data"]) == {"performance": "large", "query_parameters": {"wallet": "0xabc"}}


def test_get_status_prints_state(capsys):
    code, _ = _run(["get-status", "--id", EXECUTION_ID], [json_response(status_payload("QUERY_STATE_EXECUTING"))])
    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["state"] == "QUERY_STATE_EXECUTING"
    assert out["is_execution_finished"] is False


def test_get_results_with_filters_to_csv(tmp_path):
    path = tmp_path / "rows.csv"
    code, http = _run(
        [
            "get-results",
            "--id",
            str(QUERY_ID),
            "-f",
            "balance > 0",
            "-f",
            "address != 0x0",
            "--columns",
            "address, balance",
            "--path-csv",
            str(path),
        ],
        [json_response(page_payload(make_rows(2)))],
    )
    assert code == 0
    method, url, kwargs = http.calls[0]
    assert url.endswith(f"/query/{QUERY_ID}/results")
    assert "filters=balance+%3E+0+AND+address+%21%3D+0x0" in kwargs["params"]
    assert "columns=address%2Cbalance" in kwargs["params"]
    assert path.read_text(encoding="utf-8").splitlines() == ["address;balance", "0x0000;0.0", "0x0001;1.0"]


def test_execute_get_results_polls_and_prints_table(capsys):
    code, http = _run(
        ["execute-get-results", "--id", str(QUERY_ID), "--peek"],
        [
            json_response({"execution_id": EXECUTION_ID, "state": "QUERY_STATE_PENDING"}),
            json_response(status_payload("QUERY_STATE_COMPLETED")),
            json_response(page_payload(make_rows(3))),
        ],
    )
    assert code == 0
    assert "0x0002" in capsys.readouterr().out
    assert len(http.calls) == 3


def test_main_without_api_key_exits(monkeypatch):
    monkeypatch.delenv("DUNE_API_KEY", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["get-status", "--id", EXECUTION_ID])
    assert excinfo.value.code == 2


def test_main_maps_client_errors_to_exit_code(monkeypatch):
    monkeypatch.setenv("DUNE_API_KEY", "test-key")
    http = StubHttpClient([json_response({"error": "invalid API Key"}, status=401)])
    monkeypatch.setattr(cli, "DuneClient", lambda api_key, **kw: DuneClient(api_key, http_client=http))

    assert cli.main(["get-status", "--id", EXECUTION_ID]) == 1
