"""Input shape synthesis: schema nodes to pydantic models."""

from __future__ import annotations

import datetime as dt
import keyword
import logging
import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    create_model,
)

from .models import (
    STATE_CHANGING_METHODS,
    FieldSpec,
    InputShape,
    Operation,
    SchemaNode,
    ToolAnnotations,
)
from .naming import path_placeholders, to_caller_name


logger = logging.getLogger(__name__)

_URL_ADAPTER = TypeAdapter(AnyUrl)
_DATETIME_ADAPTER = TypeAdapter(dt.datetime)
_DATE_ADAPTER = TypeAdapter(dt.date)
_RESERVED_NAMES = frozenset(dir(BaseModel))
_CONTROL_CHARS = re.compile(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _clean_text(value: str) -> str:
    if "\x00" in value:
        raise ValueError("NUL bytes are not allowed")
    return _CONTROL_CHARS.sub("", value)


def _check_url(value: str) -> str:
    _URL_ADAPTER.validate_python(value)
    return value


def _check_datetime(value: str) -> str:
    try:
        _DATETIME_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise ValueError(f"invalid date-time: {value!r}") from exc
    return value


def _check_date(value: str) -> str:
    try:
        _DATE_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise ValueError(f"invalid date: {value!r}") from exc
    return value


SafeString = Annotated[str, AfterValidator(_clean_text)]

_FORMAT_CHECKS = {
    "uri": _check_url,
    "url": _check_url,
    "date-time": _check_datetime,
    "date": _check_date,
}


def annotations_for(method: str) -> ToolAnnotations:
    method = method.lower()
    return ToolAnnotations(
        read_only=method == "get",
        destructive=method in STATE_CHANGING_METHODS,
        idempotent=method in {"get", "delete"},
    )


def python_field_name(name: str) -> str:
    """Return an identifier usable as a model field for ``name``."""
    candidate = re.sub(r"\W", "_", name)
    if not candidate or candidate[0].isdigit():
        candidate = f"f_{candidate}"
    if (
        candidate.startswith("_")
        or candidate.startswith("model_")
        or candidate in _RESERVED_NAMES
        or keyword.iskeyword(candidate)
    ):
        candidate = f"field_{candidate.lstrip('_')}"
    return candidate


class ShapeBuilder:
    """Derives the caller-facing input shape of an operation."""

    def __init__(self, include_optional: bool = True) -> None:
        self.include_optional = include_optional

    def build(self, operation: Operation) -> InputShape:
        specs = self.field_specs(operation)
        definitions: Dict[str, Tuple[Any, Any]] = {}
        for spec in specs.values():
            definitions[python_field_name(spec.name)] = self._field_definition(
                spec, f"{_model_prefix(operation.operation_id)}_{spec.name}"
            )

        model = create_model(
            f"{_model_prefix(operation.operation_id)}Input",
            __config__=ConfigDict(
                extra="forbid", populate_by_name=True, regex_engine="python-re"
            ),
            **definitions,
        )
        return InputShape(model=model, fields=specs)

    def field_specs(self, operation: Operation) -> Dict[str, FieldSpec]:
        specs: Dict[str, FieldSpec] = {}

        declared_path = {param.name: param for param in operation.parameters_in("path")}
        for placeholder in path_placeholders(operation.path):
            param = declared_path.get(placeholder)
            if param is not None and not param.required:
                logger.warning(
                    "Path parameter %s of %s is declared optional; treating as required",
                    placeholder,
                    operation.operation_id,
                )
            if param is None:
                logger.warning(
                    "Path placeholder %s of %s has no declared parameter",
                    placeholder,
                    operation.operation_id,
                )
            self._add(
                specs,
                FieldSpec(
                    name=to_caller_name(placeholder),
                    wire_name=placeholder,
                    location="path",
                    required=True,
                    schema=param.schema if param else None,
                ),
                operation,
            )

        for param in operation.parameters_in("query"):
            if not param.required and not self.include_optional:
                continue
            self._add(
                specs,
                FieldSpec(
                    name=to_caller_name(param.name),
                    wire_name=param.name,
                    location="query",
                    required=param.required,
                    schema=param.schema,
                ),
                operation,
            )

        for spec in self._body_specs(operation):
            self._add(specs, spec, operation)

        return specs

    def _body_specs(self, operation: Operation) -> List[FieldSpec]:
        body = operation.request_body
        if body is None or not body.schema.is_object:
            return []
        schema = body.schema
        specs: List[FieldSpec] = []

        attributes = schema.lookup("data", "attributes")
        if attributes is not None and attributes.properties:
            specs.extend(self._object_fields(attributes, "attributes"))

        meta = schema.lookup("meta")
        if meta is not None and meta.properties:
            specs.extend(self._object_fields(meta, "meta"))

        enveloped = "data" in schema.properties or "meta" in schema.properties
        for name, prop in schema.properties.items():
            if name in {"data", "meta"}:
                continue
            specs.append(
                FieldSpec(
                    name=to_caller_name(name),
                    wire_name=name,
                    location="body",
                    required=name in schema.required,
                    envelope="root" if enveloped else "auto",
                    schema=prop,
                )
            )
        return specs

    def _object_fields(self, node: SchemaNode, envelope: str) -> List[FieldSpec]:
        return [
            FieldSpec(
                name=to_caller_name(name),
                wire_name=name,
                location="body",
                required=name in node.required,
                envelope=envelope,
                schema=prop,
            )
            for name, prop in node.properties.items()
        ]

    def _add(self, specs: Dict[str, FieldSpec], spec: FieldSpec, operation: Operation) -> None:
        if spec.name in specs:
            logger.warning(
                "Field %s of %s is already claimed by the %s; ignoring %s field",
                spec.name,
                operation.operation_id,
                specs[spec.name].location,
                spec.location,
            )
            return
        specs[spec.name] = spec

    def _field_definition(self, spec: FieldSpec, model_name: str) -> Tuple[Any, Any]:
        schema = spec.schema
        annotation = schema_to_type(schema, model_name) if schema else SafeString
        if spec.location == "path" and annotation is Any:
            annotation = SafeString
        description = (schema.description if schema else None) or (
            f"{spec.wire_name} {spec.location} parameter"
        )
        if spec.required:
            return annotation, Field(..., alias=spec.name, description=description)
        return Optional[annotation], Field(None, alias=spec.name, description=description)


def schema_to_type(node: SchemaNode, model_name: str = "Nested") -> Any:
    """Translate a schema node into a type pydantic can validate.

    Unsupported shapes (unknown, circular, ``oneOf``/``anyOf`` unions) accept
    anything.
    """
    annotation = _base_type(node, model_name)
    if node.nullable and annotation is not Any:
        return Optional[annotation]
    return annotation


def _base_type(node: SchemaNode, model_name: str) -> Any:
    if node.enum:
        try:
            return Literal[node.enum]
        except TypeError:
            return Any

    if node.kind == "string":
        constraints = _constraints(
            min_length=node.min_length,
            max_length=node.max_length,
            pattern=_usable_pattern(node.pattern, model_name),
        )
        if node.format == "email":
            return Annotated[EmailStr, Field(**constraints)] if constraints else EmailStr
        metadata: List[Any] = [Field(**constraints)] if constraints else []
        metadata.append(AfterValidator(_clean_text))
        check = _FORMAT_CHECKS.get(node.format or "")
        if check is not None:
            metadata.append(AfterValidator(check))
        return Annotated[(str, *metadata)]

    if node.kind in {"integer", "number"}:
        base = int if node.kind == "integer" else float
        constraints = _constraints(
            ge=node.minimum if node.exclusive_minimum is None else None,
            le=node.maximum if node.exclusive_maximum is None else None,
            gt=node.exclusive_minimum,
            lt=node.exclusive_maximum,
        )
        return Annotated[base, Field(**constraints)] if constraints else base

    if node.kind == "boolean":
        return bool

    if node.kind == "array":
        item = schema_to_type(node.items, f"{model_name}Item") if node.items else Any
        constraints = _constraints(min_length=node.min_items, max_length=node.max_items)
        return Annotated[List[item], Field(**constraints)] if constraints else List[item]

    if node.kind == "object":
        if not node.properties:
            return Dict[str, Any]
        return _nested_model(node, model_name)

    return Any


def _nested_model(node: SchemaNode, model_name: str) -> Type[BaseModel]:
    definitions: Dict[str, Tuple[Any, Any]] = {}
    for name, prop in node.properties.items():
        caller = to_caller_name(name)
        annotation = schema_to_type(prop, f"{model_name}_{caller}")
        if name in node.required:
            definitions[python_field_name(caller)] = (
                annotation,
                Field(..., alias=caller, description=prop.description),
            )
        else:
            definitions[python_field_name(caller)] = (
                Optional[annotation],
                Field(None, alias=caller, description=prop.description),
            )
    return create_model(
        _model_prefix(model_name),
        __config__=ConfigDict(extra="allow", populate_by_name=True, regex_engine="python-re"),
        **definitions,
    )


def _constraints(**values: Any) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _model_prefix(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"\W+|_", name) if part)


def _usable_pattern(pattern: Optional[str], model_name: str) -> Optional[str]:
    if pattern is None:
        return None
    try:
        re.compile(pattern)
    except re.error as exc:
        logger.warning("Ignoring invalid pattern %r on %s: %s", pattern, model_name, exc)
        return None
    return pattern
