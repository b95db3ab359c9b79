"""Maps validated tool input onto a concrete HTTP request."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from .errors import MissingPathParameter
from .models import APIRequest, FieldSpec, Operation, SchemaNode
from .naming import convert_keys, path_placeholders, singularize
from .shapes import ShapeBuilder


logger = logging.getLogger(__name__)

_QUERY_ONLY_METHODS = frozenset({"get", "head", "options", "delete"})


def is_action_path(path: str) -> bool:
    """True for paths like ``/accounts/{id}/add-tag`` whose last segment is a verb."""
    segments = [segment for segment in path.split("/") if segment]
    if len(segments) < 2:
        return False
    last, previous = segments[-1], segments[-2]
    return not _is_placeholder(last) and _is_placeholder(previous)


def infer_resource_type(path: str) -> Optional[str]:
    for segment in path.split("/"):
        if segment and not _is_placeholder(segment):
            return singularize(segment)
    return None


def _is_placeholder(segment: str) -> bool:
    return segment.startswith("{") and segment.endswith("}")


class RequestBuilder:
    def __init__(self) -> None:
        self._shapes = ShapeBuilder(include_optional=True)

    def build(
        self,
        operation: Operation,
        arguments: Mapping[str, Any],
        fields: Optional[Mapping[str, FieldSpec]] = None,
    ) -> APIRequest:
        fields = fields if fields is not None else self._shapes.field_specs(operation)
        remaining = {key: value for key, value in arguments.items() if value is not None}

        path = operation.path
        for placeholder in path_placeholders(operation.path):
            spec = fields.get(_caller_key(placeholder, fields))
            key = spec.name if spec else placeholder
            value = remaining.pop(key, None)
            if value is None or value == "":
                raise MissingPathParameter(key, operation.path)
            path = path.replace(f"{{{placeholder}}}", quote(str(value), safe=""))

        query: Dict[str, Any] = {}
        for param in operation.parameters_in("query"):
            spec = fields.get(_caller_key(param.name, fields))
            key = spec.name if spec else param.name
            if key in remaining:
                query[param.name] = remaining.pop(key)

        if operation.request_body is None and operation.method in _QUERY_ONLY_METHODS:
            # GET/DELETE without a declared body: leftovers travel as query params.
            query.update(remaining)
            remaining = {}

        body = self._build_body(operation, remaining, fields)
        return APIRequest(
            method=operation.method.upper(),
            path=path,
            query=query,
            body=body,
            operation_id=operation.operation_id,
        )

    def _build_body(
        self,
        operation: Operation,
        remaining: Dict[str, Any],
        fields: Mapping[str, FieldSpec],
    ) -> Optional[Dict[str, Any]]:
        if not remaining:
            return None

        schema = operation.request_body.schema if operation.request_body else None
        declares_meta_only = (
            schema is not None and "meta" in schema.properties and "data" not in schema.properties
        )
        default_envelope = (
            "meta" if declares_meta_only or is_action_path(operation.path) else "attributes"
        )

        grouped: Dict[str, Dict[str, Any]] = {"attributes": {}, "meta": {}, "root": {}}
        names: Dict[str, str] = {}
        schemas: Dict[str, Optional[SchemaNode]] = {}
        for key, value in remaining.items():
            spec = fields.get(key)
            envelope = spec.envelope if spec else "auto"
            if envelope == "auto":
                envelope = default_envelope
            if spec:
                names[key] = spec.wire_name
                schemas[key] = spec.schema
            grouped[envelope][key] = value

        body: Dict[str, Any] = convert_keys(grouped["root"], names, schemas)
        if grouped["attributes"]:
            data: Dict[str, Any] = {}
            if schema is not None and schema.lookup("data", "type") is not None:
                resource_type = infer_resource_type(operation.path)
                if resource_type:
                    data["type"] = resource_type
            data["attributes"] = convert_keys(grouped["attributes"], names, schemas)
            body["data"] = data
        if grouped["meta"]:
            body["meta"] = convert_keys(grouped["meta"], names, schemas)

        logger.debug(
            "Built %s body for %s", default_envelope, operation.operation_id
        )
        return body


def _caller_key(wire_name: str, fields: Mapping[str, FieldSpec]) -> str:
    for name, spec in fields.items():
        if spec.wire_name == wire_name and spec.location in {"path", "query"}:
            return name
    return wire_name
