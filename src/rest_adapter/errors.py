"""Error taxonomy for the REST adapter."""

from __future__ import annotations

from typing import Any, Dict, Optional


class AdapterError(Exception):
    kind = "unknown_remote"
    retryable = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail
        self.context = context or {}

    def to_dict(self, duration_ms: Optional[float] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if duration_ms is not None:
            data["duration_ms"] = duration_ms
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.detail is not None:
            data["detail"] = self.detail
        return data


class SpecificationLoadError(AdapterError):
    kind = "specification_load"


class ToolGenerationError(AdapterError):
    kind = "tool_generation"


class InvalidArgumentError(AdapterError):
    kind = "invalid_argument"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self, duration_ms: Optional[float] = None) -> Dict[str, Any]:
        data = super().to_dict(duration_ms)
        if self.field:
            data["field"] = self.field
        return data


class MissingPathParameter(InvalidArgumentError):
    def __init__(self, field: str, path: str) -> None:
        super().__init__(f"Missing path parameter '{field}' for {path}", field=field)
        self.path = path


class UnknownToolError(InvalidArgumentError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}", field="name")


class TransientTransportError(AdapterError):
    kind = "transient_transport"
    retryable = True


class InvocationTimeout(TransientTransportError):
    # Raised after the invocation deadline; never retried.
    retryable = False


class AuthenticationError(AdapterError):
    kind = "authentication"


class AuthorizationError(AdapterError):
    kind = "authorization"


class RateLimitedError(AdapterError):
    kind = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_dict(self, duration_ms: Optional[float] = None) -> Dict[str, Any]:
        data = super().to_dict(duration_ms)
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class NotFoundError(AdapterError):
    kind = "not_found"


class UnknownRemoteError(AdapterError):
    kind = "unknown_remote"
    retryable = True
