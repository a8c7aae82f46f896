"""Minimal HTTP transport interface and adapters for requests and httpx.

A transport only moves bytes. Tracing lives in the traced clients, which need
to know one thing about a transport: whether its library can take trace
context through the OpenTelemetry propagator (``native_propagation``) or needs
the ``traceparent`` header built by hand.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

import httpx
import requests

Body = Union[bytes, str, None]


@dataclass
class HttpRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Body = None
    timeout: Optional[float] = None

    @property
    def body_size(self) -> int:
        if self.body is None:
            return 0
        if isinstance(self.body, str):
            return len(self.body.encode("utf-8"))
        return len(self.body)


@dataclass
class HttpResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)


@runtime_checkable
class Transport(Protocol):
    name: str
    native_propagation: bool

    def send(self, request: HttpRequest) -> HttpResponse:
        ...


@runtime_checkable
class AsyncTransport(Protocol):
    name: str
    native_propagation: bool

    async def send(self, request: HttpRequest) -> HttpResponse:
        ...


class RequestsTransport:
    """Transport over a ``requests.Session``."""

    name = "requests"
    native_propagation = False

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, request: HttpRequest) -> HttpResponse:
        response = self.session.request(
            request.method,
            request.url,
            headers=request.headers,
            params=request.params or None,
            data=request.body,
            timeout=request.timeout if request.timeout is not None else self.timeout,
        )
        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    def close(self) -> None:
        self.session.close()


def _httpx_kwargs(request: HttpRequest) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"headers": request.headers}
    if request.params:
        kwargs["params"] = request.params
    if request.body is not None:
        kwargs["content"] = request.body
    if request.timeout is not None:
        kwargs["timeout"] = request.timeout
    return kwargs


class HttpxTransport:
    """Transport over an ``httpx.Client``."""

    name = "httpx"
    native_propagation = True

    def __init__(self, client: Optional[httpx.Client] = None) -> None:
        self.client = client or httpx.Client()

    def send(self, request: HttpRequest) -> HttpResponse:
        response = self.client.request(request.method, request.url, **_httpx_kwargs(request))
        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    def close(self) -> None:
        self.client.close()


class AsyncHttpxTransport:
    """Transport over an ``httpx.AsyncClient``."""

    name = "httpx"
    native_propagation = True

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self.client = client or httpx.AsyncClient()

    async def send(self, request: HttpRequest) -> HttpResponse:
        response = await self.client.request(request.method, request.url, **_httpx_kwargs(request))
        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
