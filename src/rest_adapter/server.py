"""MCP server setup for the REST adapter."""

import hmac
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from fastmcp import FastMCP

from .api_client import ApiClient
from .cache import ResponseCache
from .config import Settings
from .dispatcher import Dispatcher
from .errors import SpecificationLoadError
from .models import ApiDescription, APIResponse, GeneratedTool
from .openapi import load_api_description
from .request_builder import RequestBuilder
from .resources import ResourceRegistry, ResourceTemplate
from .retry import RetryPolicy
from .service import AdapterService
from .shapes import ShapeBuilder
from .tool_registry import ToolCatalog, ToolRegistry

logger = logging.getLogger(__name__)

CATALOG_URI = "openapi://tools"


class Adapter:
    """Everything built from one API description, shared by tools and resources."""

    def __init__(
        self,
        api: ApiDescription,
        catalog: ToolCatalog,
        resources: ResourceRegistry,
        cache: ResponseCache[APIResponse],
    ) -> None:
        self.api = api
        self.catalog = catalog
        self.resources = resources
        self.cache = cache


def build_adapter(settings: Settings, api: ApiDescription, transport: Any = None) -> Adapter:
    base_url = settings.api_base_url or (api.servers[0] if api.servers else None)
    if not base_url:
        raise SpecificationLoadError(
            "No API base URL configured and the OpenAPI document declares no servers"
        )

    client = ApiClient(
        base_url=base_url,
        api_key=settings.api_key,
        timeout_seconds=settings.api_timeout_seconds,
        verify_ssl=settings.api_verify_ssl,
        extra_headers=settings.api_extra_headers,
        transport=transport,
    )
    cache: ResponseCache[APIResponse] = ResponseCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_size=settings.cache_max_size,
        enabled=settings.cache_enabled,
    )
    policy = RetryPolicy(
        max_retries=settings.api_max_retries,
        base_delay=settings.api_retry_base_delay_seconds,
        max_delay=settings.api_retry_max_delay_seconds,
        jitter=settings.api_retry_jitter_seconds,
    )
    dispatcher = Dispatcher(client, policy=policy, cache=cache)
    builder = RequestBuilder()
    service = AdapterService(
        dispatcher,
        builder=builder,
        invocation_timeout_seconds=settings.adapter_invocation_timeout_seconds,
    )
    registry = ToolRegistry(
        service,
        shape_builder=ShapeBuilder(include_optional=settings.adapter_include_optional_params),
        tool_allowlist=settings.tool_allowlist(),
        operation_allowlist=settings.operation_allowlist(),
        tag_allowlist=settings.tag_allowlist(),
    )
    catalog = registry.build_catalog(api)
    resources = ResourceRegistry(
        api, dispatcher, builder=builder, scheme=settings.adapter_resource_scheme
    )
    logger.info(
        "Adapter ready for %s %s at %s: %s tools, %s resources",
        api.title,
        api.version,
        base_url,
        len(catalog),
        len(resources.definitions()),
    )
    return Adapter(api, catalog, resources, cache)


async def build_server(settings: Settings) -> tuple[FastMCP, Optional[Any]]:
    try:
        api = load_api_description(
            settings.openapi_spec_source, timeout_seconds=settings.api_timeout_seconds
        )
        adapter = build_adapter(settings, api)
    except SpecificationLoadError as exc:
        logger.critical("Cannot start adapter: %s", exc.message)
        raise

    mcp = FastMCP(settings.service_name, instructions=_instructions(adapter.api))
    app = _get_http_app(mcp, settings)
    _attach_auth(app, settings)
    _attach_healthcheck(app)

    for tool in adapter.catalog:
        handler = _tool_handler(adapter.catalog, tool)
        mcp.tool(
            name=tool.name,
            description=tool.description,
            annotations=tool.annotations.as_mcp(),
        )(handler)
        logger.info("Registered tool: %s", tool.name)

    _register_resources(mcp, adapter, settings.adapter_resource_scheme)
    adapter.cache.start_sweeper(settings.cache_sweep_interval_seconds)

    return mcp, app


def _tool_handler(
    catalog: ToolCatalog, tool: GeneratedTool
) -> Callable[[Any], Awaitable[Dict[str, Any]]]:
    async def handler(payload: tool.input_model) -> Dict[str, Any]:
        return await catalog.invoke(
            tool.name, payload.model_dump(mode="json", by_alias=True, exclude_unset=True)
        )

    handler.__name__ = tool.name
    return handler


def _register_resources(mcp: FastMCP, adapter: Adapter, scheme: str) -> None:
    for template in adapter.resources.static_resources():
        mcp.resource(
            template.uri_template,
            name=template.name,
            description=template.description,
            mime_type="application/json",
        )(_static_reader(adapter.resources, template))
        logger.info("Registered resource: %s", template.uri_template)

    resources = adapter.resources

    async def read_api_resource(path: str) -> Any:
        return await resources.read(f"{scheme}://{path}")

    mcp.resource(
        f"{scheme}://{{path*}}",
        name="api_resource",
        description="Read any GET endpoint of the API; see openapi://tools for templates.",
        mime_type="application/json",
    )(read_api_resource)

    catalog = adapter.catalog

    async def read_catalog() -> Dict[str, Any]:
        return {
            "tools": catalog.definitions(),
            "resources": resources.definitions(),
        }

    mcp.resource(
        CATALOG_URI,
        name="tool_catalog",
        description="Generated tool definitions and resource templates.",
        mime_type="application/json",
    )(read_catalog)


def _static_reader(
    resources: ResourceRegistry, template: ResourceTemplate
) -> Callable[[], Awaitable[Any]]:
    async def reader() -> Any:
        return await resources.read(template.uri_template)

    reader.__name__ = template.name
    return reader


def _attach_auth(app, settings: Settings) -> None:  # type: ignore[no-untyped-def]
    if not app:
        logger.warning("FastMCP app not available; auth middleware disabled")
        return
    if not settings.adapter_auth_token:
        logger.warning("ADAPTER_AUTH_TOKEN is not set; HTTP transport is unauthenticated")
        return

    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import JSONResponse

    expected = settings.adapter_auth_token.encode()

    async def require_token(request, call_next):  # type: ignore[no-untyped-def]
        if request.method == "OPTIONS" or request.url.path.endswith("/health"):
            return await call_next(request)
        if hmac.compare_digest(_bearer_token(request.headers).encode(), expected):
            return await call_next(request)
        logger.warning(
            "Rejected %s %s: missing or invalid bearer token", request.method, request.url.path
        )
        return JSONResponse(
            {"error": "Unauthorized"},
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )

    app.add_middleware(BaseHTTPMiddleware, dispatch=require_token)


def _bearer_token(headers: Mapping[str, str]) -> str:
    scheme, _, token = headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def _attach_healthcheck(app) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return

    async def healthcheck(_request):  # type: ignore[no-untyped-def]
        from starlette.responses import JSONResponse

        return JSONResponse({"status": "ok"})

    app.add_route("/health", healthcheck, methods=["GET"])


def _instructions(api: ApiDescription) -> str:
    return (
        f"REST adapter for {api.title} {api.version}. "
        "Tools perform state-changing API operations; read endpoints are exposed as resources."
    )


def _get_http_app(mcp: FastMCP, settings: Settings):  # type: ignore[no-untyped-def]
    transport = settings.adapter_transport.lower()
    if transport in {"http"}:
        app = mcp.http_app(transport="http", stateless_http=True, json_response=True)
        _attach_cors(app)
        return app
    if transport in {"streamable-http", "streamablehttp"}:
        app = mcp.http_app(
            transport="streamable-http", stateless_http=True, json_response=True
        )
        _attach_cors(app)
        return app
    if transport in {"sse"}:
        app = mcp.http_app(transport="sse")
        _attach_cors(app)
        return app
    return None


def _attach_cors(app) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return
    from starlette.middleware.cors import CORSMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
