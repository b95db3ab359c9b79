"""OpenAPI spec loader and operation normalizer."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import httpx
import yaml

from .errors import SpecificationLoadError
from .models import (
    CIRCULAR_SCHEMA,
    UNKNOWN_SCHEMA,
    ApiDescription,
    Operation,
    Parameter,
    RequestBody,
    ResponseSchema,
    SchemaNode,
)


logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")
_SCHEMA_KINDS = {"string", "integer", "number", "boolean", "array", "object"}


class SpecLoader:
    def __init__(self, timeout_seconds: float = 30) -> None:
        self.timeout_seconds = timeout_seconds

    def load(self, source: str) -> Dict[str, Any]:
        """Load, parse and dereference a spec from a file path or URL."""
        try:
            if source.startswith(("http://", "https://")):
                text = self._fetch(source)
            else:
                text = Path(source).read_text(encoding="utf-8")
            document = yaml.safe_load(text)
        except (OSError, httpx.HTTPError, yaml.YAMLError) as exc:
            raise SpecificationLoadError(
                f"Failed to load OpenAPI spec from {source}: {exc}"
            ) from exc

        if not isinstance(document, dict) or not isinstance(document.get("paths"), dict):
            raise SpecificationLoadError(f"OpenAPI spec at {source} has no paths object")

        logger.info(
            "Loaded OpenAPI spec: %s (%s paths)", source, len(document["paths"])
        )
        return dereference(document)

    def _fetch(self, url: str) -> str:
        with httpx.Client(timeout=self.timeout_seconds) as client:
            response = client.get(url)
            response.raise_for_status()
            return response.text


def dereference(document: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve local ``#/...`` references in place of their ``$ref`` objects.

    Every reference to the same pointer resolves to the same object, so a
    self-referencing schema becomes a cyclic object graph. Remote or broken
    references are left untouched.
    """
    resolved: Dict[str, Any] = {}
    pending: Set[str] = set()

    def lookup(pointer: str) -> Any:
        node: Any = document
        for token in pointer[2:].split("/"):
            token = token.replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                return None
        return node

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            if not ref.startswith("#/"):
                return node
            if ref in resolved:
                return resolved[ref]
            if ref in pending:
                return node
            target = lookup(ref)
            if target is None:
                logger.warning("Unresolvable reference: %s", ref)
                return node
            if isinstance(target, dict) and "$ref" not in target:
                copy: Dict[str, Any] = {}
                resolved[ref] = copy
                for key, value in target.items():
                    copy[key] = walk(value)
                return copy
            pending.add(ref)
            try:
                result = walk(target)
            finally:
                pending.discard(ref)
            resolved[ref] = result
            return result

        return {key: walk(value) for key, value in node.items()}

    return walk(document)


def parse_schema(schema: Any, visited: Optional[Set[int]] = None) -> SchemaNode:
    """Translate a raw schema into a :class:`SchemaNode`.

    ``visited`` holds the ids of the schemas currently being parsed above this
    one; meeting one of them again yields the circular sentinel.
    """
    if not isinstance(schema, dict):
        return UNKNOWN_SCHEMA
    if "$ref" in schema:
        return SchemaNode(kind="unknown", ref=str(schema["$ref"]))

    if visited is None:
        visited = set()
    marker = id(schema)
    if marker in visited:
        return CIRCULAR_SCHEMA
    visited.add(marker)
    try:
        return _parse_schema_node(schema, visited)
    finally:
        visited.discard(marker)


def _parse_schema_node(schema: Dict[str, Any], visited: Set[int]) -> SchemaNode:
    properties: Dict[str, SchemaNode] = {}
    required: List[str] = list(schema.get("required") or [])

    for member in schema.get("allOf") or []:
        merged = parse_schema(member, visited)
        properties.update(merged.properties)
        required.extend(name for name in merged.required if name not in required)

    for name, prop in (schema.get("properties") or {}).items():
        properties[name] = parse_schema(prop, visited)

    items = parse_schema(schema["items"], visited) if "items" in schema else None

    kind, nullable = _schema_kind(schema)
    if kind == "unknown":
        if properties:
            kind = "object"
        elif items is not None:
            kind = "array"

    enum = schema.get("enum")
    return SchemaNode(
        kind=kind,
        properties=properties,
        required=tuple(required),
        items=items,
        enum=tuple(enum) if isinstance(enum, list) and enum else None,
        format=schema.get("format"),
        pattern=schema.get("pattern"),
        min_length=schema.get("minLength"),
        max_length=schema.get("maxLength"),
        minimum=schema.get("minimum"),
        maximum=schema.get("maximum"),
        exclusive_minimum=_exclusive_bound(schema, "exclusiveMinimum", "minimum"),
        exclusive_maximum=_exclusive_bound(schema, "exclusiveMaximum", "maximum"),
        min_items=schema.get("minItems"),
        max_items=schema.get("maxItems"),
        nullable=nullable,
        description=schema.get("description"),
        default=schema.get("default"),
        example=schema.get("example"),
        one_of=tuple(parse_schema(s, visited) for s in schema.get("oneOf") or []),
        any_of=tuple(parse_schema(s, visited) for s in schema.get("anyOf") or []),
    )


def _schema_kind(schema: Dict[str, Any]) -> Tuple[str, bool]:
    raw = schema.get("type")
    nullable = bool(schema.get("nullable", False))
    if isinstance(raw, list):
        # OpenAPI 3.1 style: ["string", "null"]
        nullable = nullable or "null" in raw
        candidates = [item for item in raw if item != "null"]
        raw = candidates[0] if len(candidates) == 1 else None
    if raw in _SCHEMA_KINDS:
        return raw, nullable
    return "unknown", nullable


def _exclusive_bound(schema: Dict[str, Any], key: str, base: str) -> Optional[float]:
    value = schema.get(key)
    if isinstance(value, bool):
        # OpenAPI 3.0 flags the plain bound as exclusive.
        return schema.get(base) if value else None
    return value


class OperationNormalizer:
    def normalize(self, document: Dict[str, Any]) -> ApiDescription:
        info = document.get("info") or {}
        operations = list(self.extract_operations(document))
        logger.info(
            "Normalized %s operations from %s %s",
            len(operations),
            info.get("title", "API"),
            info.get("version", ""),
        )
        return ApiDescription(
            title=str(info.get("title") or "API"),
            version=str(info.get("version") or ""),
            servers=tuple(
                server["url"]
                for server in document.get("servers") or []
                if isinstance(server, dict) and server.get("url")
            ),
            operations=tuple(operations),
        )

    def extract_operations(self, document: Dict[str, Any]) -> Iterable[Operation]:
        paths = document.get("paths") or {}

        for path, methods in paths.items():
            if not isinstance(methods, dict):
                continue
            shared_parameters = methods.get("parameters") or []
            for method in HTTP_METHODS:
                operation = methods.get(method)
                if not isinstance(operation, dict):
                    continue
                operation_id = operation.get("operationId")
                if not operation_id:
                    logger.warning(
                        "Skipping operation without operationId: %s %s", method.upper(), path
                    )
                    continue
                yield self._build_operation(path, method, operation, shared_parameters)

    def _build_operation(
        self,
        path: str,
        method: str,
        operation: Dict[str, Any],
        shared_parameters: List[Any],
    ) -> Operation:
        return Operation(
            operation_id=str(operation["operationId"]),
            method=method,
            path=path,
            tags=tuple(operation.get("tags") or ()),
            summary=operation.get("summary"),
            description=operation.get("description"),
            parameters=tuple(
                self._parse_parameters([*shared_parameters, *(operation.get("parameters") or [])])
            ),
            request_body=self._parse_request_body(operation.get("requestBody")),
            responses=self._parse_responses(operation.get("responses") or {}),
        )

    def _parse_parameters(self, raw_parameters: List[Any]) -> List[Parameter]:
        merged: Dict[Tuple[str, str], Parameter] = {}
        for raw in raw_parameters:
            if not isinstance(raw, dict) or "$ref" in raw:
                logger.warning("Skipping unresolved parameter: %s", raw)
                continue
            name = raw.get("name")
            location = raw.get("in")
            if not name or location not in {"path", "query"}:
                continue
            merged[(name, location)] = Parameter(
                name=name,
                location=location,
                required=bool(raw.get("required", location == "path")),
                schema=parse_schema(raw.get("schema")),
                description=raw.get("description"),
                example=raw.get("example"),
            )
        return list(merged.values())

    def _parse_request_body(self, raw: Any) -> Optional[RequestBody]:
        if not isinstance(raw, dict) or "$ref" in raw:
            return None
        content = raw.get("content") or {}
        if not content:
            return None
        content_type = _preferred_media_type(content)
        media = content.get(content_type) or {}
        return RequestBody(
            schema=parse_schema(media.get("schema")),
            content_type=content_type,
            required=bool(raw.get("required", False)),
        )

    def _parse_responses(self, raw: Dict[str, Any]) -> Dict[str, ResponseSchema]:
        responses: Dict[str, ResponseSchema] = {}
        for status, response in raw.items():
            if not isinstance(response, dict) or "$ref" in response:
                continue
            content = response.get("content") or {}
            schema = None
            if content:
                media = content.get(_preferred_media_type(content)) or {}
                schema = parse_schema(media.get("schema")) if "schema" in media else None
            responses[str(status)] = ResponseSchema(
                description=response.get("description") or "", schema=schema
            )
        return responses


def _preferred_media_type(content: Dict[str, Any]) -> str:
    if "application/json" in content:
        return "application/json"
    for media_type in content:
        if media_type.endswith("+json"):
            return media_type
    return next(iter(content))


def operations_by_tag(api: ApiDescription, tag: str) -> List[Operation]:
    return [op for op in api.operations if tag in op.tags]


def operation_by_id(api: ApiDescription, operation_id: str) -> Optional[Operation]:
    for op in api.operations:
        if op.operation_id == operation_id:
            return op
    return None


def load_api_description(source: str, timeout_seconds: float = 30) -> ApiDescription:
    document = SpecLoader(timeout_seconds=timeout_seconds).load(source)
    return OperationNormalizer().normalize(document)
