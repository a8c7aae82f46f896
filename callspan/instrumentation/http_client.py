"""Traced HTTP clients.

Each request becomes a CLIENT span named ``HTTP {METHOD}``. The trace context
of that span travels on the outgoing request, either through the OpenTelemetry
propagator or as a hand-built ``traceparent`` header, depending on the
transport.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional
from urllib.parse import urlsplit

from opentelemetry.trace import SpanKind

from callspan.context.context import get_current_span
from callspan.context.propagators import inject, inject_traceparent
from callspan.instrumentation.transports import AsyncTransport, Body, HttpRequest, HttpResponse, Transport
from callspan.instrumentation.wrapper import SpanWrapper

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"https": 443, "http": 80}


def inject_headers(headers: Dict[str, str], native: bool = False) -> Dict[str, str]:
    """
    Put the active trace context on outgoing headers.

    With ``native`` the OpenTelemetry global propagator writes the headers;
    otherwise the traceparent codec does. Returns the same mapping.
    """
    if native:
        inject(headers)
        return headers
    span = get_current_span()
    if span is not None:
        inject_traceparent(headers, span.context)
    return headers


def _status_error(response: HttpResponse) -> Optional[str]:
    if response.status_code >= 400:
        return f"HTTP {response.status_code}"
    return None


class _TracedClientBase:
    def __init__(
        self,
        wrapper: Optional[SpanWrapper] = None,
        capture_request_headers: Iterable[str] = (),
        capture_response_headers: Iterable[str] = (),
    ) -> None:
        self._span_wrapper = wrapper
        self.capture_request_headers = frozenset(h.lower() for h in capture_request_headers)
        self.capture_response_headers = frozenset(h.lower() for h in capture_response_headers)

    @property
    def wrapper(self) -> SpanWrapper:
        if self._span_wrapper is None:
            from callspan.auto import get_span_wrapper

            return get_span_wrapper()
        return self._span_wrapper

    @staticmethod
    def _build_request(
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]],
        params: Optional[Mapping[str, Any]],
        body: Body,
        timeout: Optional[float],
    ) -> HttpRequest:
        return HttpRequest(
            method=method.upper(),
            url=url,
            headers=dict(headers or {}),
            params=dict(params or {}),
            body=body,
            timeout=timeout,
        )

    def _request_attributes(self, request: HttpRequest, client_name: str) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "http.method": request.method,
            "http.url": request.url,
            "http.client": client_name,
            "http.request.params.count": len(request.params),
            "http.request.body.size": request.body_size,
        }
        try:
            parts = urlsplit(request.url)
        except ValueError:
            # Unparseable URLs are left for the transport to reject
            logger.debug("Could not parse URL %r for span attributes", request.url)
            parts = None
        if parts is not None:
            scheme = parts.scheme.lower() or "http"
            target = parts.path or "/"
            if parts.query:
                target = f"{target}?{parts.query}"
            attributes["http.scheme"] = scheme
            attributes["http.target"] = target
            attributes["net.peer.name"] = parts.hostname
            try:
                attributes["net.peer.port"] = parts.port or _DEFAULT_PORTS.get(scheme, 80)
            except ValueError:
                logger.debug("Invalid port in URL %r; omitting net.peer.port", request.url)

        for name, value in request.headers.items():
            if name.lower() in self.capture_request_headers:
                attributes[f"http.request.header.{name.lower()}"] = value
        return attributes

    def _response_attributes(self, response: HttpResponse) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "http.status_code": response.status_code,
            "http.response.body.size": len(response.content),
        }
        for name, value in response.headers.items():
            if name.lower() in self.capture_response_headers:
                attributes[f"http.response.header.{name.lower()}"] = value
        return attributes


class TracedHttpClient(_TracedClientBase):
    """Synchronous traced client over a :class:`Transport`."""

    def __init__(
        self,
        transport: Transport,
        wrapper: Optional[SpanWrapper] = None,
        capture_request_headers: Iterable[str] = (),
        capture_response_headers: Iterable[str] = (),
    ) -> None:
        super().__init__(wrapper, capture_request_headers, capture_response_headers)
        self.transport = transport

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Body = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Send a request; transport exceptions propagate unchanged."""
        request = self._build_request(method, url, headers, params, body, timeout)
        attributes = self._request_attributes(request, self.transport.name)

        def send() -> HttpResponse:
            inject_headers(request.headers, native=self.transport.native_propagation)
            return self.transport.send(request)

        return self.wrapper.run(
            f"HTTP {request.method}",
            send,
            kind=SpanKind.CLIENT,
            attributes=attributes,
            result_attributes=self._response_attributes,
            result_error=_status_error,
        )

    def get(self, url: str, **kwargs) -> HttpResponse:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> HttpResponse:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs) -> HttpResponse:
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs) -> HttpResponse:
        return self.request("DELETE", url, **kwargs)


class AsyncTracedHttpClient(_TracedClientBase):
    """Asynchronous traced client over an :class:`AsyncTransport`."""

    def __init__(
        self,
        transport: AsyncTransport,
        wrapper: Optional[SpanWrapper] = None,
        capture_request_headers: Iterable[str] = (),
        capture_response_headers: Iterable[str] = (),
    ) -> None:
        super().__init__(wrapper, capture_request_headers, capture_response_headers)
        self.transport = transport

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Body = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        request = self._build_request(method, url, headers, params, body, timeout)
        attributes = self._request_attributes(request, self.transport.name)

        async def send() -> HttpResponse:
            inject_headers(request.headers, native=self.transport.native_propagation)
            return await self.transport.send(request)

        return await self.wrapper.arun(
            f"HTTP {request.method}",
            send,
            kind=SpanKind.CLIENT,
            attributes=attributes,
            result_attributes=self._response_attributes,
            result_error=_status_error,
        )

    async def get(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("DELETE", url, **kwargs)
