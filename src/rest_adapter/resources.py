"""Read-only resources backed by the API's GET operations."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import parse_qs, unquote

from .cache import make_cache_key
from .dispatcher import Dispatcher
from .errors import NotFoundError
from .models import APIResponse, ApiDescription, FieldSpec, Operation
from .naming import derive_tool_name, path_placeholders, to_caller_name
from .request_builder import RequestBuilder
from .shapes import ShapeBuilder


logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^}]+)\}")


@dataclass(frozen=True)
class ResourceTemplate:
    uri_template: str
    name: str
    description: str
    operation: Operation
    pattern: Pattern[str]
    parameters: Tuple[str, ...] = ()
    fields: Optional[Dict[str, FieldSpec]] = None

    @property
    def is_static(self) -> bool:
        return not self.parameters

    def match(self, uri: str) -> Optional[Dict[str, str]]:
        found = self.pattern.fullmatch(uri)
        if found is None:
            return None
        return {name: unquote(value) for name, value in zip(self.parameters, found.groups())}

    def definition(self) -> Dict[str, Any]:
        key = "uriTemplate" if self.parameters else "uri"
        return {
            key: self.uri_template,
            "name": self.name,
            "description": self.description,
            "mimeType": "application/json",
        }


class ResourceRegistry:
    """
    Maps resource URIs onto GET operations.

    ``/widgets/{widget_id}`` is exposed as ``api://widgets/{widgetId}``; a URI
    query string becomes the request's query parameters. Reads go through the
    shared dispatcher with a cache key, so repeated reads are served from the
    response cache.
    """

    def __init__(
        self,
        api: ApiDescription,
        dispatcher: Dispatcher,
        builder: Optional[RequestBuilder] = None,
        scheme: str = "api",
    ) -> None:
        self.dispatcher = dispatcher
        self.builder = builder or RequestBuilder()
        self.scheme = scheme
        self._shapes = ShapeBuilder(include_optional=True)
        self._templates: List[ResourceTemplate] = []
        for operation in api.operations:
            if operation.method != "get":
                continue
            self._templates.append(self._template_for(operation))
        # Literal paths first so /widgets/search never matches /widgets/{id}.
        self._templates.sort(key=lambda template: len(template.parameters))
        logger.info("Registered %s resource templates", len(self._templates))

    def templates(self) -> List[ResourceTemplate]:
        return [template for template in self._templates if not template.is_static]

    def static_resources(self) -> List[ResourceTemplate]:
        return [template for template in self._templates if template.is_static]

    def definitions(self) -> List[Dict[str, Any]]:
        return [template.definition() for template in self._templates]

    def resolve(self, uri: str) -> Tuple[ResourceTemplate, Dict[str, Any]]:
        location, _, query_string = uri.partition("?")
        for template in self._templates:
            path_values = template.match(location)
            if path_values is None:
                continue
            arguments: Dict[str, Any] = dict(path_values)
            arguments.update(_query_arguments(query_string, template.fields or {}))
            return template, arguments
        raise NotFoundError(f"No resource matches {uri}", context={"uri": uri})

    async def read(self, uri: str) -> Any:
        response = await self.read_response(uri)
        return response.data

    async def read_response(self, uri: str) -> APIResponse:
        template, arguments = self.resolve(uri)
        request = self.builder.build(template.operation, arguments, template.fields)
        cache_key = make_cache_key(template.operation.operation_id, arguments)
        response = await self.dispatcher.dispatch(request, cache_key=cache_key)
        logger.info(
            "Read resource %s status=%s cached=%s",
            uri,
            response.status_code,
            response.from_cache,
        )
        return response

    def _template_for(self, operation: Operation) -> ResourceTemplate:
        placeholders = path_placeholders(operation.path)
        caller_names = tuple(to_caller_name(name) for name in placeholders)
        relative = operation.path.lstrip("/")

        uri_template = f"{self.scheme}://" + _PLACEHOLDER.sub(
            lambda found: "{" + to_caller_name(found.group(1)) + "}", relative
        )
        pattern_parts = [re.escape(part) for part in _PLACEHOLDER.split(relative)[::2]]
        pattern = re.escape(f"{self.scheme}://") + "([^/]+)".join(pattern_parts)

        return ResourceTemplate(
            uri_template=uri_template,
            name=derive_tool_name(operation.operation_id),
            description=operation.summary or operation.description or f"GET {operation.path}",
            operation=operation,
            pattern=re.compile(pattern),
            parameters=caller_names,
            fields=self._shapes.field_specs(operation),
        )


def _query_arguments(query_string: str, fields: Mapping[str, FieldSpec]) -> Dict[str, Any]:
    if not query_string:
        return {}
    by_wire_name = {spec.wire_name: name for name, spec in fields.items()}
    arguments: Dict[str, Any] = {}
    for key, values in parse_qs(query_string, keep_blank_values=False).items():
        name = key if key in fields else by_wire_name.get(key, key)
        arguments[name] = values[0] if len(values) == 1 else values
    return arguments
