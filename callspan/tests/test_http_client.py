"""Tests for the traced HTTP clients and their transports."""

import asyncio
import unittest
from unittest import mock

import httpx
import pytest
import requests
from opentelemetry.trace import SpanKind

from callspan.context.propagators import decode
from callspan.exporter import InMemoryExporter
from callspan.instrumentation import (
    AsyncHttpxTransport,
    AsyncTracedHttpClient,
    HttpResponse,
    HttpxTransport,
    RequestsTransport,
    SpanWrapper,
    TracedHttpClient,
)
from callspan.processors import SamplingPolicy, SimpleSpanProcessor
from callspan.tracer import SpanStatus, TracerProvider


def make_wrapper(policy=None):
    exporter = InMemoryExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return SpanWrapper(provider.get_tracer("tests"), policy), exporter


class FakeTransport:
    name = "fake"
    native_propagation = False

    def __init__(self, status_code=200, content=b"ok", headers=None, error=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.error = error
        self.requests = []

    def send(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return HttpResponse(self.status_code, dict(self.headers), self.content)


class NativeFakeTransport(FakeTransport):
    native_propagation = True


class TestTracedHttpClient(unittest.TestCase):
    def setUp(self):
        self.wrapper, self.exporter = make_wrapper()

    def test_client_span_and_attributes(self):
        transport = FakeTransport(content=b"hello", headers={"X-Trace-Echo": "1"})
        client = TracedHttpClient(
            transport,
            wrapper=self.wrapper,
            capture_request_headers=["X-Request-Id"],
            capture_response_headers=["x-trace-echo"],
        )
        response = client.get(
            "https://api.example.com/v1/items?limit=5",
            headers={"X-Request-Id": "req-1"},
            params={"page": 2, "sort": "name"},
        )
        self.assertEqual(response.status_code, 200)

        record = self.exporter.get_finished_spans()[0]
        self.assertEqual(record.name, "HTTP GET")
        self.assertEqual(record.kind, SpanKind.CLIENT)
        self.assertEqual(record.status, SpanStatus.OK)
        attrs = record.attributes
        self.assertEqual(attrs["http.method"], "GET")
        self.assertEqual(attrs["http.url"], "https://api.example.com/v1/items?limit=5")
        self.assertEqual(attrs["http.scheme"], "https")
        self.assertEqual(attrs["http.target"], "/v1/items?limit=5")
        self.assertEqual(attrs["net.peer.name"], "api.example.com")
        self.assertEqual(attrs["net.peer.port"], 443)
        self.assertEqual(attrs["http.client"], "fake")
        self.assertEqual(attrs["http.request.params.count"], 2)
        self.assertEqual(attrs["http.request.body.size"], 0)
        self.assertEqual(attrs["http.status_code"], 200)
        self.assertEqual(attrs["http.response.body.size"], 5)
        self.assertEqual(attrs["http.request.header.x-request-id"], "req-1")
        self.assertEqual(attrs["http.response.header.x-trace-echo"], "1")

    def test_traceparent_carries_client_span(self):
        transport = FakeTransport()
        client = TracedHttpClient(transport, wrapper=self.wrapper)
        client.post("http://svc:8080/orders", body='{"id": 1}')

        record = self.exporter.get_finished_spans()[0]
        carrier = decode(transport.requests[0].headers["traceparent"])
        self.assertEqual(carrier.span_id, record.span_id)
        self.assertEqual(carrier.trace_id, record.trace_id)
        self.assertEqual(record.attributes["net.peer.port"], 8080)
        self.assertEqual(record.attributes["http.request.body.size"], 9)

    def test_default_http_port(self):
        client = TracedHttpClient(FakeTransport(), wrapper=self.wrapper)
        client.delete("http://svc/orders/1")
        self.assertEqual(self.exporter.get_finished_spans()[0].attributes["net.peer.port"], 80)

    def test_native_propagation(self):
        transport = NativeFakeTransport()
        client = TracedHttpClient(transport, wrapper=self.wrapper)
        client.put("http://svc/orders/1", body=b"x")

        record = self.exporter.get_finished_spans()[0]
        carrier = decode(transport.requests[0].headers["traceparent"])
        self.assertEqual(carrier.span_id, record.span_id)

    def test_error_status(self):
        client = TracedHttpClient(FakeTransport(status_code=503), wrapper=self.wrapper)
        response = client.get("http://svc/down")
        self.assertEqual(response.status_code, 503)
        record = self.exporter.get_finished_spans()[0]
        self.assertEqual(record.status, SpanStatus.ERROR)
        self.assertEqual(record.status_description, "HTTP 503")

    def test_transport_error_reraised(self):
        error = requests.ConnectionError("refused")
        client = TracedHttpClient(FakeTransport(error=error), wrapper=self.wrapper)
        with self.assertRaises(requests.ConnectionError) as ctx:
            client.get("http://svc/")
        self.assertIs(ctx.exception, error)

        record = self.exporter.get_finished_spans()[0]
        self.assertEqual(record.status, SpanStatus.ERROR)
        self.assertEqual([e["name"] for e in record.events], ["exception"])

    def test_nested_under_active_span(self):
        client = TracedHttpClient(FakeTransport(), wrapper=self.wrapper)
        self.wrapper.run("handler", lambda: client.get("http://svc/a"))
        client_record, handler = self.exporter.get_finished_spans()
        self.assertEqual(client_record.parent_span_id, handler.span_id)

    def test_invalid_port_leaves_transport_error_intact(self):
        error = requests.exceptions.InvalidURL("bad port")
        client = TracedHttpClient(FakeTransport(error=error), wrapper=self.wrapper)
        with self.assertRaises(requests.exceptions.InvalidURL) as ctx:
            client.get("http://example.invalid:abc/x")
        self.assertIs(ctx.exception, error)

        attrs = self.exporter.get_finished_spans()[0].attributes
        self.assertNotIn("net.peer.port", attrs)
        self.assertEqual(attrs["net.peer.name"], "example.invalid")
        self.assertEqual(attrs["http.target"], "/x")


class TestExcludedRequests(unittest.TestCase):
    def test_excluded_request_propagates_parent(self):
        policy = SamplingPolicy.from_patterns(exclude_urls=["/actuator/health/**"])
        wrapper, exporter = make_wrapper(policy)
        transport = FakeTransport()
        client = TracedHttpClient(transport, wrapper=wrapper)

        wrapper.run("handler", lambda: client.get("http://svc/actuator/health/liveness"))

        records = exporter.get_finished_spans()
        self.assertEqual([r.name for r in records], ["handler"])
        carrier = decode(transport.requests[0].headers["traceparent"])
        self.assertEqual(carrier.span_id, records[0].span_id)

    def test_excluded_request_without_parent_sends_no_header(self):
        policy = SamplingPolicy.from_patterns(exclude_urls=["/actuator/health/**"])
        wrapper, exporter = make_wrapper(policy)
        transport = FakeTransport()
        TracedHttpClient(transport, wrapper=wrapper).get("http://svc/actuator/health")
        self.assertNotIn("traceparent", transport.requests[0].headers)
        self.assertEqual(exporter.get_finished_spans(), [])


class TestRequestsTransport(unittest.TestCase):
    def test_send_through_session(self):
        session = mock.Mock(spec=requests.Session)
        session.request.return_value = mock.Mock(status_code=201, headers={"Content-Type": "text/plain"}, content=b"made")
        wrapper, exporter = make_wrapper()
        client = TracedHttpClient(RequestsTransport(session, timeout=3.0), wrapper=wrapper)

        response = client.post("http://svc/items", body=b"payload", params={"a": 1})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.text, "made")
        args, kwargs = session.request.call_args
        self.assertEqual(args, ("POST", "http://svc/items"))
        self.assertEqual(kwargs["data"], b"payload")
        self.assertEqual(kwargs["params"], {"a": 1})
        self.assertEqual(kwargs["timeout"], 3.0)
        carrier = decode(kwargs["headers"]["traceparent"])
        record = exporter.get_finished_spans()[0]
        self.assertEqual(carrier.span_id, record.span_id)
        self.assertEqual(record.attributes["http.client"], "requests")


class TestHttpxTransports(unittest.TestCase):
    def test_sync_httpx(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"pong")

        wrapper, exporter = make_wrapper()
        transport = HttpxTransport(httpx.Client(transport=httpx.MockTransport(handler)))
        client = TracedHttpClient(transport, wrapper=wrapper)
        response = client.get("http://svc/ping", params={"q": "1"})

        self.assertEqual(response.content, b"pong")
        self.assertEqual(seen[0].url.params["q"], "1")
        record = exporter.get_finished_spans()[0]
        self.assertEqual(decode(seen[0].headers["traceparent"]).span_id, record.span_id)
        self.assertEqual(record.attributes["http.client"], "httpx")
        self.assertEqual(record.attributes["http.response.body.size"], 4)
        transport.close()

    def test_async_httpx(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(404, content=b"")

        wrapper, exporter = make_wrapper()

        async def go():
            transport = AsyncHttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
            client = AsyncTracedHttpClient(transport, wrapper=wrapper)
            try:
                return await client.get("http://svc/missing")
            finally:
                await transport.aclose()

        response = asyncio.run(go())
        self.assertEqual(response.status_code, 404)
        record = exporter.get_finished_spans()[0]
        self.assertEqual(record.status, SpanStatus.ERROR)
        self.assertEqual(record.status_description, "HTTP 404")
        self.assertEqual(decode(seen[0].headers["traceparent"]).span_id, record.span_id)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
