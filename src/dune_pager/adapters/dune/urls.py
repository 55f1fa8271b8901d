from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any, Literal
from urllib.parse import quote, urlencode

from ...config import DEFAULT_API_URL
from ...core.errors import EncodingError
from ...core.models import (
    EngineSize,
    ExecutionTarget,
    PageRequest,
    QueryTarget,
    ResultTarget,
)

url_templates = {
    "execute": "{base}/query/{query_id}/execute",
    "execution_status": "{base}/execution/{execution_id}/status",
    "execution_results": "{base}/execution/{execution_id}/results",
    "query_results": "{base}/query/{query_id}/results",
    "materialized_view": "{base}/materialized-views/{name}",
}

_QUERY_URL = re.compile(r"^(?:https?://)?(?:www\.)?dune\.com/queries/(\d+)(?:[/?#].*)?$")


def get_query_id(query: int | str) -> int:
    """Resolve a numeric id, a digit string, or a dune.com query URL."""
    if isinstance(query, bool):
        raise ValueError(f"invalid query id: {query!r}")
    if isinstance(query, int):
        if query < 0:
            raise ValueError(f"invalid query id: {query!r}")
        return query
    text = query.strip()
    if text.isdigit():
        return int(text)
    match = _QUERY_URL.match(text)
    if match:
        return int(match.group(1))
    raise ValueError(f"invalid query id: {query!r}")


def parse_target(
    identifier: str,
    *,
    kind: Literal["auto", "query", "execution"] = "auto",
    parameters: Mapping[str, Any] | None = None,
) -> ResultTarget:
    """Turn a user supplied identifier into a result target.

    With ``kind="auto"`` an identifier made only of digits is taken as a query
    id and anything else as an execution id. An execution id that happens to be
    all digits is misrouted by that rule, so callers that know better should
    pass ``kind`` explicitly.
    """
    identifier = identifier.strip()
    if not identifier:
        raise ValueError("empty result identifier")
    if kind == "execution":
        return ExecutionTarget(identifier)
    if kind == "query":
        return QueryTarget(get_query_id(identifier), parameters)
    if identifier.isascii() and identifier.isdigit():
        return QueryTarget(int(identifier), parameters)
    return ExecutionTarget(identifier)


def get_query_execute_url(query_id: int, base: str = DEFAULT_API_URL) -> str:
    return url_templates["execute"].format(base=base, query_id=query_id)


def get_execution_status_url(execution_id: str, base: str = DEFAULT_API_URL) -> str:
    return url_templates["execution_status"].format(base=base, execution_id=quote(execution_id, safe=""))


def get_results_url(target: ResultTarget, base: str = DEFAULT_API_URL) -> str:
    if isinstance(target, QueryTarget):
        return url_templates["query_results"].format(base=base, query_id=target.query_id)
    return url_templates["execution_results"].format(
        base=base, execution_id=quote(target.execution_id, safe="")
    )


def get_materialized_view_url(name: str, base: str = DEFAULT_API_URL) -> str:
    return url_templates["materialized_view"].format(base=base, name=quote(name, safe=""))


def _encode_scalar(key: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise EncodingError(f"parameter {key!r} is not valid UTF-8") from exc
        return value
    raise EncodingError(f"cannot encode parameter {key!r} of type {type(value).__name__}")


def encode_query(params: Mapping[str, Any]) -> str:
    """Encode request parameters as a URL query string.

    ``None`` values are dropped, sequences are comma-joined and a nested
    ``query_parameters`` mapping is flattened to ``params.<name>`` keys.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if key == "query_parameters":
            if not isinstance(value, Mapping):
                raise EncodingError("query_parameters must be a mapping")
            for name, param in value.items():
                pairs.append((f"params.{name}", _encode_scalar(f"params.{name}", param)))
            continue
        if isinstance(value, Sequence) and not isinstance(value, str):
            pairs.append((key, ",".join(_encode_scalar(key, v) for v in value)))
            continue
        pairs.append((key, _encode_scalar(key, value)))
    return urlencode(pairs)


def encode_page_request(request: PageRequest) -> str:
    return encode_query(request.query_params())


def encode_execute_body(
    performance: EngineSize,
    parameters: Mapping[str, Any] | None = None,
) -> str:
    data: dict[str, Any] = {"performance": EngineSize.parse(performance).value}
    if parameters is not None:
        if not isinstance(parameters, Mapping):
            raise EncodingError("query parameters must be a JSON object")
        data["query_parameters"] = dict(parameters)
    try:
        body = json.dumps(data, ensure_ascii=False, allow_nan=False)
        body.encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"cannot serialize query parameters: {exc}") from exc
    return body
