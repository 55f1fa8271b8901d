"""Small command line tool for the Dune execution API.

Usage:
    dune-pager execute --id 4011227 [--engine-size large] [--params '{"a": 1}']
    dune-pager get-status --id 01J5ZMD33P6J413G1KQM6QTE4S
    dune-pager get-results --id 4011227 [--filter "balance > 0"] [--peek] [--path-csv out.csv]
    dune-pager execute-get-results --id 4011227 [--poll-interval 30] [--path-csv]
    dune-pager await-results --id 01J5ZMD33P6J413G1KQM6QTE4S
    dune-pager get-materialized-view --id dune.team.result_name
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from .adapters.dune import urls
from .adapters.dune.client import DuneClient
from .config import Config
from .core.errors import DuneError
from .core.models import EngineSize, QueryResult, ResultsFilter
from .export import DEFAULT_CSV_PATH, save_rows_as_csv
from .logging.query_history import QueryHistory
from .service_layer.query_service import QueryService

logger = logging.getLogger("dune_pager")


def _json_arg(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON: {exc}") from exc


def _engine_size_arg(value: str) -> EngineSize:
    try:
        return EngineSize.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dune-pager",
        description="Small CLI tool for executing commands of the Dune API client.",
    )
    parser.add_argument("-k", "--api-key", help="Dune API key (defaults to $DUNE_API_KEY)")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_engine(p: argparse.ArgumentParser) -> None:
        p.add_argument("--engine-size", type=_engine_size_arg, default=EngineSize.MEDIUM, help="medium (default) or large")
        p.add_argument("--params", type=_json_arg, default=None, help="query parameters as a JSON object")

    def add_output(p: argparse.ArgumentParser) -> None:
        p.add_argument("-p", "--peek", action="store_true", help="only fetch the first 10 records")
        p.add_argument(
            "--path-csv",
            nargs="?",
            const=DEFAULT_CSV_PATH,
            default=None,
            help=f"save rows to a CSV file (default name {DEFAULT_CSV_PATH})",
        )

    p = sub.add_parser("execute", help="execute a query")
    p.add_argument("--id", required=True, type=int, help="query id")
    add_engine(p)

    p = sub.add_parser("get-status", help="get the status of an execution")
    p.add_argument("--id", required=True, help="execution id")

    p = sub.add_parser("get-materialized-view", help="get metadata of a materialized view")
    p.add_argument("--id", required=True, help="materialized view name")

    p = sub.add_parser("get-results", help="get the results of a query or an execution")
    p.add_argument("--id", required=True, help="query id (latest execution) or execution id")
    p.add_argument(
        "--kind",
        choices=("auto", "query", "execution"),
        default="auto",
        help="how to read --id; auto treats all-digit ids as query ids",
    )
    p.add_argument("-f", "--filter", action="append", default=[], help="filter expression, repeatable (AND-ed)")
    p.add_argument("--columns", default=None, help="comma separated columns to return")
    add_output(p)

    p = sub.add_parser("execute-get-results", help="execute a query and wait for its results")
    p.add_argument("--id", required=True, type=int, help="query id")
    p.add_argument("--poll-interval", type=float, default=None, help="seconds between status checks")
    add_engine(p)
    add_output(p)

    p = sub.add_parser("await-results", help="wait for a running execution and get its results")
    p.add_argument("--id", required=True, help="execution id")
    p.add_argument("--poll-interval", type=float, default=None, help="seconds between status checks")
    add_output(p)

    return parser


def _emit(result: QueryResult, path_csv: str | None) -> None:
    if path_csv:
        n = save_rows_as_csv(result.rows, path_csv)
        logger.info("results saved to %s (%d rows)", path_csv, n)
        return
    print(result.to_polars())
    if result.truncated:
        logger.info("showing first page only (%d rows)", result.row_count)


def run(args: argparse.Namespace, service: QueryService, config: Config) -> int:
    poll_interval = getattr(args, "poll_interval", None)
    if poll_interval is None:
        poll_interval = config.dune.poll_interval_seconds

    if args.command == "execute":
        handle = service.execute(args.id, args.engine_size, args.params)
        print(json.dumps({"execution_id": handle.execution_id, "state": handle.state.value}))
    elif args.command == "get-status":
        status = service.status(args.id)
        print(json.dumps({
            "execution_id": status.execution_id,
            "query_id": status.query_id,
            "state": status.state.value,
            "is_execution_finished": status.is_execution_finished,
            "result_metadata": status.result_metadata.to_dict() if status.result_metadata else None,
        }))
    elif args.command == "get-materialized-view":
        print(json.dumps(dict(service.client.get_materialized_view(args.id)), default=str))
    elif args.command == "get-results":
        target = urls.parse_target(args.id, kind=args.kind)
        columns = [c.strip() for c in args.columns.split(",") if c.strip()] if args.columns else None
        result = service.fetch_results(
            target, peek=args.peek, columns=columns, filters=ResultsFilter(args.filter)
        )
        _emit(result, args.path_csv)
    elif args.command == "execute-get-results":
        result = service.submit_and_await(
            args.id, args.engine_size, args.params, poll_interval=poll_interval, peek=args.peek
        )
        _emit(result, args.path_csv)
    elif args.command == "await-results":
        result = service.await_existing(args.id, poll_interval=poll_interval, peek=args.peek)
        _emit(result, args.path_csv)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level_name = "DEBUG" if args.verbose else os.getenv("DUNE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = Config.from_env(api_key=args.api_key)
    except ValueError as exc:
        parser.error(str(exc))

    client = DuneClient(config.dune.api_key, api_url=config.dune.api_url, http_config=config.http)
    service = QueryService(client, QueryHistory.from_env())
    try:
        return run(args, service, config)
    except DuneError as exc:
        logger.error("%s: %s", exc.code, exc)
        return 1
    except ValueError as exc:
        logger.error("%s", exc)
        return 2
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
