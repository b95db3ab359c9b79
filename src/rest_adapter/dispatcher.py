"""Executes API requests with retries, idempotency keys and read caching."""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from dataclasses import replace
from typing import Awaitable, Callable, Optional

from .api_client import ApiClient
from .cache import ResponseCache
from .models import STATE_CHANGING_METHODS, APIRequest, APIResponse
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


class Dispatcher:
    def __init__(
        self,
        client: ApiClient,
        policy: Optional[RetryPolicy] = None,
        cache: Optional[ResponseCache[APIResponse]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.client = client
        self.policy = policy or RetryPolicy()
        self.cache = cache
        self._sleep = sleep
        self._rng = rng

    async def dispatch(self, request: APIRequest, cache_key: Optional[str] = None) -> APIResponse:
        cacheable = self.cache is not None and cache_key is not None and request.method == "GET"
        if cacheable:
            cached = self.cache.get(cache_key)  # type: ignore[union-attr]
            if cached is not None:
                logger.debug("Serving %s %s from cache", request.method, request.path)
                return replace(cached, from_cache=True)

        headers = dict(request.headers)
        if request.method.lower() in STATE_CHANGING_METHODS:
            # Shared by every retry of this invocation.
            headers.setdefault(IDEMPOTENCY_HEADER, str(uuid.uuid4()))

        async def attempt() -> APIResponse:
            return await self.client.request(
                request.method,
                request.path,
                query=request.query,
                body=request.body,
                headers=headers,
            )

        started = time.perf_counter()
        response, attempts = await retry_async(
            attempt,
            self.policy,
            sleep=self._sleep,
            rng=self._rng,
            label=f"{request.method} {request.path}",
        )
        response = replace(
            response,
            attempts=attempts,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )

        if cacheable:
            self.cache.set(cache_key, response)  # type: ignore[union-attr]
        return response
