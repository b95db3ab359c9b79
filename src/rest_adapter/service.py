"""Core adapter service logic: validate, build, dispatch, format."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from .dispatcher import Dispatcher
from .errors import AdapterError, InvalidArgumentError, InvocationTimeout, UnknownRemoteError
from .logging import redact_payload
from .models import FieldSpec, Operation
from .request_builder import RequestBuilder

logger = logging.getLogger(__name__)


class AdapterService:
    """
    Runs one tool invocation end to end.

    Failures never escape ``execute``; they are returned as structured error
    results carrying the failure kind, a message and the elapsed time.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        builder: Optional[RequestBuilder] = None,
        invocation_timeout_seconds: float = 60,
    ) -> None:
        self.dispatcher = dispatcher
        self.builder = builder or RequestBuilder()
        self.invocation_timeout_seconds = invocation_timeout_seconds

    async def execute(
        self,
        tool_name: str,
        operation: Operation,
        input_model: Type[BaseModel],
        fields: Mapping[str, FieldSpec],
        payload: Mapping[str, Any],
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        logger.info("Executing tool=%s payload=%s", tool_name, redact_payload(payload))

        try:
            arguments = validate_arguments(input_model, payload)
            request = self.builder.build(operation, arguments, fields)
            response = await asyncio.wait_for(
                self.dispatcher.dispatch(request),
                timeout=self.invocation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            duration = _elapsed_ms(started)
            logger.error("Tool %s timed out after %sms", tool_name, duration)
            return format_error(
                InvocationTimeout(
                    f"Invocation timed out after {self.invocation_timeout_seconds}s"
                ),
                duration,
            )
        except AdapterError as exc:
            duration = _elapsed_ms(started)
            log = logger.warning if isinstance(exc, InvalidArgumentError) else logger.error
            log("Tool %s failed (%s): %s", tool_name, exc.kind, exc.message)
            return format_error(exc, duration)
        except Exception as exc:
            duration = _elapsed_ms(started)
            logger.exception("Tool %s failed unexpectedly", tool_name)
            return format_error(UnknownRemoteError(str(exc) or type(exc).__name__, detail=repr(exc)), duration)

        duration = _elapsed_ms(started)
        logger.info(
            "Tool %s succeeded status=%s attempts=%s duration_ms=%s",
            tool_name,
            response.status_code,
            response.attempts,
            duration,
        )
        return format_result(response.data, duration, status_code=response.status_code)


def validate_arguments(input_model: Type[BaseModel], payload: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        validated = input_model.model_validate(dict(payload))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "invalid value")
        raise InvalidArgumentError(
            f"Invalid argument '{field}': {message}" if field else f"Invalid arguments: {message}",
            field=field,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    return validated.model_dump(mode="json", by_alias=True, exclude_unset=True)


def format_result(result: Any, duration_ms: float, status_code: Optional[int] = None) -> Dict[str, Any]:
    formatted: Dict[str, Any] = {
        "content": [{"type": "json", "json": result}],
        "duration_ms": duration_ms,
    }
    if status_code is not None:
        formatted["status_code"] = status_code
    return formatted


def format_error(error: AdapterError, duration_ms: float) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": f"{error.kind}: {error.message}"}],
        "is_error": True,
        "error": error.to_dict(duration_ms),
    }


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
