from __future__ import annotations

import httpx
import pytest

from conftest import BASE_URL, Recorder, no_sleep
from rest_adapter.api_client import ApiClient
from rest_adapter.cache import ResponseCache
from rest_adapter.dispatcher import IDEMPOTENCY_HEADER, Dispatcher
from rest_adapter.errors import (
    AuthenticationError,
    AuthorizationError,
    InvalidArgumentError,
    NotFoundError,
    RateLimitedError,
    TransientTransportError,
    UnknownRemoteError,
)
from rest_adapter.models import APIRequest
from rest_adapter.retry import RetryPolicy


def _dispatcher(recorder: Recorder, max_retries: int = 3, cache=None) -> Dispatcher:
    client = ApiClient(BASE_URL, "test-key", transport=recorder.transport)
    return Dispatcher(
        client,
        policy=RetryPolicy(max_retries=max_retries),
        cache=cache,
        sleep=no_sleep,
        rng=lambda: 0.0,
    )


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_retries_configured_times(self):
        recorder = Recorder(httpx.Response(503, json={"message": "unavailable"}))

        with pytest.raises(TransientTransportError) as excinfo:
            await _dispatcher(recorder, max_retries=3).dispatch(APIRequest("POST", "/widgets", body={}))

        assert len(recorder.requests) == 4
        assert excinfo.value.status_code == 503
        assert excinfo.value.message == "unavailable"

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_retried(self):
        recorder = Recorder(httpx.Response(401, json={"errors": [{"title": "Unauthorized"}]}))

        with pytest.raises(AuthenticationError) as excinfo:
            await _dispatcher(recorder).dispatch(APIRequest("GET", "/widgets"))

        assert len(recorder.requests) == 1
        assert excinfo.value.kind == "authentication"

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self):
        recorder = Recorder(httpx.Response(429, headers={"Retry-After": "7"}, json={}))

        with pytest.raises(RateLimitedError) as excinfo:
            await _dispatcher(recorder).dispatch(APIRequest("GET", "/widgets"))

        assert excinfo.value.retry_after == 7.0
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_recovers_and_reports_attempts(self):
        recorder = Recorder(
            httpx.Response(502),
            httpx.Response(500, text="<html>oops</html>"),
            httpx.Response(201, json={"data": {"id": "w1"}}),
        )

        response = await _dispatcher(recorder).dispatch(
            APIRequest("POST", "/widgets", body={"data": {"attributes": {"name": "x"}}})
        )

        assert response.status_code == 201
        assert response.data == {"data": {"id": "w1"}}
        assert response.attempts == 3

    @pytest.mark.asyncio
    async def test_network_errors_are_transient(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = ApiClient(BASE_URL, "k", transport=httpx.MockTransport(handler))
        dispatcher = Dispatcher(client, policy=RetryPolicy(max_retries=2), sleep=no_sleep)

        with pytest.raises(TransientTransportError):
            await dispatcher.dispatch(APIRequest("GET", "/widgets"))
        assert len(calls) == 3


class TestIdempotencyKey:
    @pytest.mark.asyncio
    async def test_same_key_across_retries(self):
        recorder = Recorder(httpx.Response(503), httpx.Response(503), httpx.Response(201, json={}))

        await _dispatcher(recorder).dispatch(APIRequest("POST", "/widgets", body={}))

        keys = {request.headers[IDEMPOTENCY_HEADER] for request in recorder.requests}
        assert len(recorder.requests) == 3
        assert len(keys) == 1

    @pytest.mark.asyncio
    async def test_new_key_per_invocation(self):
        recorder = Recorder(httpx.Response(201, json={}))
        dispatcher = _dispatcher(recorder)

        await dispatcher.dispatch(APIRequest("POST", "/widgets", body={}))
        await dispatcher.dispatch(APIRequest("POST", "/widgets", body={}))

        first, second = (request.headers[IDEMPOTENCY_HEADER] for request in recorder.requests)
        assert first != second

    @pytest.mark.asyncio
    async def test_reads_carry_no_key(self):
        recorder = Recorder(httpx.Response(200, json=[]))

        await _dispatcher(recorder).dispatch(APIRequest("GET", "/widgets"))

        assert IDEMPOTENCY_HEADER not in recorder.requests[0].headers


class TestReadCache:
    @pytest.mark.asyncio
    async def test_get_with_key_is_cached(self):
        recorder = Recorder(httpx.Response(200, json={"data": []}))
        dispatcher = _dispatcher(recorder, cache=ResponseCache())

        first = await dispatcher.dispatch(APIRequest("GET", "/widgets"), cache_key="list:{}")
        second = await dispatcher.dispatch(APIRequest("GET", "/widgets"), cache_key="list:{}")

        assert len(recorder.requests) == 1
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.data == {"data": []}

    @pytest.mark.asyncio
    async def test_writes_are_never_cached(self):
        recorder = Recorder(httpx.Response(201, json={}))
        cache = ResponseCache()
        dispatcher = _dispatcher(recorder, cache=cache)

        await dispatcher.dispatch(APIRequest("POST", "/widgets", body={}), cache_key="k")
        await dispatcher.dispatch(APIRequest("POST", "/widgets", body={}), cache_key="k")

        assert len(recorder.requests) == 2
        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        recorder = Recorder(httpx.Response(404, json={"message": "gone"}), httpx.Response(200, json={}))
        cache = ResponseCache()
        dispatcher = _dispatcher(recorder, cache=cache)

        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(APIRequest("GET", "/widgets/w1"), cache_key="w1")
        response = await dispatcher.dispatch(APIRequest("GET", "/widgets/w1"), cache_key="w1")

        assert response.status_code == 200
        assert len(recorder.requests) == 2


class TestApiClient:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        recorder = Recorder(httpx.Response(200, json={"ok": True}))
        client = ApiClient(
            BASE_URL, "secret", extra_headers={"X-Org": "acme"}, transport=recorder.transport
        )

        response = await client.request(
            "GET", "/widgets", query={"ids": ["a", "b"], "archived": False, "skip": None}
        )

        sent = recorder.requests[0]
        assert str(sent.url).startswith(f"{BASE_URL}/widgets?")
        assert sent.url.params["ids"] == "a,b"
        assert sent.url.params["archived"] == "false"
        assert "skip" not in sent.url.params
        assert sent.headers["Authorization"] == "Bearer secret"
        assert sent.headers["X-Org"] == "acme"
        assert sent.headers["Accept"] == "application/json"
        assert response.data == {"ok": True}

    @pytest.mark.asyncio
    async def test_empty_success_body(self):
        recorder = Recorder(httpx.Response(204))
        client = ApiClient(BASE_URL, "k", transport=recorder.transport)

        response = await client.request("DELETE", "/widgets/w1")

        assert response.status_code == 204
        assert response.data == {"status": "ok"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_type",
        [
            (400, InvalidArgumentError),
            (403, AuthorizationError),
            (404, NotFoundError),
            (408, TransientTransportError),
            (409, UnknownRemoteError),
        ],
    )
    async def test_status_mapping(self, status, error_type):
        recorder = Recorder(httpx.Response(status, text="not json"))
        client = ApiClient(BASE_URL, "k", transport=recorder.transport)

        with pytest.raises(error_type) as excinfo:
            await client.request("GET", "/widgets")

        assert excinfo.value.status_code == status
        assert excinfo.value.message == "not json"

    @pytest.mark.asyncio
    async def test_json_api_error_names_field(self):
        recorder = Recorder(
            httpx.Response(
                422,
                json={
                    "errors": [
                        {"detail": "Name is too long", "source": {"pointer": "/data/attributes/name"}}
                    ]
                },
            )
        )
        client = ApiClient(BASE_URL, "k", transport=recorder.transport)

        with pytest.raises(InvalidArgumentError) as excinfo:
            await client.request("POST", "/widgets", body={})

        assert excinfo.value.field == "name"
        assert excinfo.value.message == "Name is too long"

    @pytest.mark.asyncio
    async def test_empty_error_body_still_has_message(self):
        recorder = Recorder(httpx.Response(502))
        client = ApiClient(BASE_URL, "k", transport=recorder.transport)

        with pytest.raises(TransientTransportError) as excinfo:
            await client.request("GET", "/widgets")

        assert excinfo.value.message == "HTTP 502 error"
        assert excinfo.value.to_dict()["kind"] == "transient_transport"
