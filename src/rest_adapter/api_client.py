"""Uniform HTTP client for the upstream REST API."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from .errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    InvalidArgumentError,
    NotFoundError,
    RateLimitedError,
    TransientTransportError,
    UnknownRemoteError,
)
from .logging import redact_headers
from .models import APIResponse

logger = logging.getLogger(__name__)


class ApiClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30,
        verify_ssl: bool = True,
        extra_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.verify_ssl = verify_ssl
        self.extra_headers = dict(extra_headers or {})
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        query: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        request_headers = {**self._headers(), **(headers or {})}
        params = _query_params(query or {})
        url = f"{self.base_url}/{path.lstrip('/')}"

        logger.debug(
            "API request %s %s params=%s headers=%s",
            method,
            url,
            params,
            redact_headers(request_headers),
        )
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                verify=self.verify_ssl,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    url,
                    headers=request_headers,
                    params=params,
                    json=body,
                )
        except httpx.HTTPError as exc:
            raise error_from_exception(exc) from exc

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "API response %s %s status=%s duration_ms=%s",
            method,
            url,
            response.status_code,
            duration_ms,
        )
        if response.is_error:
            raise error_from_response(response)

        return APIResponse(
            status_code=response.status_code,
            data=_payload(response),
            headers=dict(response.headers),
            duration_ms=duration_ms,
        )


def _query_params(query: Dict[str, Any]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, value in query.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            params[key] = ",".join(str(item) for item in value)
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(value)
    return params


def _payload(response: httpx.Response) -> Any:
    if not response.content:
        return {"status": "ok"}
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_details(payload: Any) -> tuple[Optional[str], Optional[str]]:
    """Pull a message and offending field out of an error payload."""
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            message = first.get("detail") or first.get("title") or first.get("code")
            source = first.get("source") if isinstance(first.get("source"), dict) else {}
            field = source.get("parameter") or source.get("pointer")
            if isinstance(field, str) and field.startswith("/"):
                field = field.rstrip("/").rsplit("/", 1)[-1]
            return (str(message) if message else None), field
        for key in ("message", "error", "detail"):
            if isinstance(payload.get(key), str):
                return payload[key], None
    if isinstance(payload, str) and payload.strip():
        return payload.strip()[:500], None
    return None, None


def error_from_response(response: httpx.Response) -> AdapterError:
    status = response.status_code
    try:
        payload: Any = response.json()
    except ValueError:
        payload = response.text
    message, field = _error_details(payload)
    message = message or f"HTTP {status} error"
    kwargs: Dict[str, Any] = {"status_code": status, "detail": payload or None}

    if status in (400, 422):
        return InvalidArgumentError(message, field=field, **kwargs)
    if status == 401:
        return AuthenticationError(message, **kwargs)
    if status == 403:
        return AuthorizationError(message, **kwargs)
    if status == 404:
        return NotFoundError(message, **kwargs)
    if status == 429:
        return RateLimitedError(
            message, retry_after=_retry_after(response.headers.get("Retry-After")), **kwargs
        )
    if status == 408 or status >= 500:
        return TransientTransportError(message, **kwargs)
    return UnknownRemoteError(message, **kwargs)


def error_from_exception(exc: Exception) -> AdapterError:
    if isinstance(exc, httpx.TimeoutException):
        return TransientTransportError(f"Request timed out: {exc}")
    if isinstance(exc, httpx.TransportError):
        return TransientTransportError(f"Network error: {exc}")
    return UnknownRemoteError(f"Request error: {exc}", detail=repr(exc))


def _retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
