"""HTTP transports used by the Dune clients.

Both transports return an :class:`HttpResponse` whose body has already been
read, so callers never hold a live connection while decoding. Transport
failures surface as :class:`RequestError`; status codes are left to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import requests

from ..config import HttpClientConfig
from ..core.errors import RequestError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    text: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.text)


def _decode_body(body: bytes, charset: str | None) -> str:
    # undecodable bytes become U+FFFD, as requests does for Response.text
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class HttpClient:
    """Blocking transport backed by a shared ``requests.Session``."""

    def __init__(self, config: HttpClientConfig | None = None, *, session: requests.Session | None = None):
        self.config = config or HttpClientConfig()
        self._session = session or requests.Session()

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: str | None = None,
        data: str | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        if params:
            url = f"{url}?{params}"
        logger.debug("%s %s", method, url)
        try:
            resp = self._session.request(
                method,
                url,
                headers=dict(headers or {}),
                data=data.encode("utf-8") if data is not None else None,
                timeout=timeout if timeout is not None else self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise RequestError(f"{method} {url} failed: {exc}") from exc
        return HttpResponse(resp.status_code, resp.text, dict(resp.headers))

    def close(self) -> None:
        self._session.close()


class AsyncHttpClient:
    """Non-blocking transport backed by a lazily created ``aiohttp`` session."""

    def __init__(self, config: HttpClientConfig | None = None):
        self.config = config or HttpClientConfig()
        self.timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: str | None = None,
        data: str | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        if params:
            url = f"{url}?{params}"
        logger.debug("%s %s", method, url)
        request_timeout = aiohttp.ClientTimeout(total=timeout) if timeout is not None else self.timeout
        try:
            async with self.session.request(
                method,
                url,
                headers=dict(headers or {}),
                data=data.encode("utf-8") if data is not None else None,
                timeout=request_timeout,
            ) as resp:
                body = await resp.read()
                return HttpResponse(resp.status, _decode_body(body, resp.charset), dict(resp.headers))
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RequestError(f"{method} {url} failed: {exc!r}") from exc

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> AsyncHttpClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
