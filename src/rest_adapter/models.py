"""Internal models for operations, schemas and generated tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel


SAFE_METHODS = frozenset({"get", "head", "options"})
STATE_CHANGING_METHODS = frozenset({"post", "put", "patch", "delete"})


@dataclass(frozen=True, eq=False)
class SchemaNode:
    kind: str
    properties: Dict[str, "SchemaNode"] = field(default_factory=dict)
    required: Tuple[str, ...] = ()
    items: Optional["SchemaNode"] = None
    enum: Optional[Tuple[Any, ...]] = None
    format: Optional[str] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    exclusive_minimum: Optional[float] = None
    exclusive_maximum: Optional[float] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    nullable: bool = False
    description: Optional[str] = None
    default: Any = None
    example: Any = None
    ref: Optional[str] = None
    one_of: Tuple["SchemaNode", ...] = ()
    any_of: Tuple["SchemaNode", ...] = ()

    @property
    def is_object(self) -> bool:
        return self.kind == "object"

    def lookup(self, *names: str) -> Optional["SchemaNode"]:
        node: Optional[SchemaNode] = self
        for name in names:
            if node is None:
                return None
            node = node.properties.get(name)
        return node


UNKNOWN_SCHEMA = SchemaNode(kind="unknown")
CIRCULAR_SCHEMA = SchemaNode(kind="circular")


@dataclass(frozen=True)
class Parameter:
    name: str
    location: str
    required: bool
    schema: SchemaNode
    description: Optional[str] = None
    example: Any = None


@dataclass(frozen=True)
class RequestBody:
    schema: SchemaNode
    content_type: str = "application/json"
    required: bool = False


@dataclass(frozen=True)
class ResponseSchema:
    description: str
    schema: Optional[SchemaNode] = None


@dataclass(frozen=True)
class Operation:
    operation_id: str
    method: str
    path: str
    tags: Tuple[str, ...] = ()
    summary: Optional[str] = None
    description: Optional[str] = None
    parameters: Tuple[Parameter, ...] = ()
    request_body: Optional[RequestBody] = None
    responses: Dict[str, ResponseSchema] = field(default_factory=dict)

    def parameters_in(self, location: str) -> List[Parameter]:
        return [param for param in self.parameters if param.location == location]

    @property
    def is_read_only(self) -> bool:
        return self.method in SAFE_METHODS


@dataclass(frozen=True)
class ApiDescription:
    title: str
    version: str
    servers: Tuple[str, ...] = ()
    operations: Tuple[Operation, ...] = ()


@dataclass(frozen=True)
class ToolAnnotations:
    read_only: bool
    destructive: bool
    idempotent: bool

    def as_mcp(self) -> Dict[str, bool]:
        return {
            "readOnlyHint": self.read_only,
            "destructiveHint": self.destructive,
            "idempotentHint": self.idempotent,
        }


@dataclass(frozen=True)
class FieldSpec:
    name: str
    wire_name: str
    location: str
    required: bool
    envelope: str = "root"
    schema: Optional[SchemaNode] = None


@dataclass(frozen=True)
class InputShape:
    model: Type[BaseModel]
    fields: Dict[str, FieldSpec]

    @property
    def required(self) -> List[str]:
        return [name for name, spec in self.fields.items() if spec.required]

    def json_schema(self) -> Dict[str, Any]:
        return self.model.model_json_schema(by_alias=True)


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class GeneratedTool:
    name: str
    description: str
    operation: Operation
    input_shape: InputShape
    annotations: ToolAnnotations
    handler: ToolHandler

    @property
    def input_model(self) -> Type[BaseModel]:
        return self.input_shape.model

    def definition(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_shape.json_schema(),
            "annotations": self.annotations.as_mcp(),
        }


@dataclass(frozen=True)
class APIRequest:
    method: str
    path: str
    query: Dict[str, Any] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    operation_id: Optional[str] = None


@dataclass(frozen=True)
class APIResponse:
    status_code: int
    data: Any
    headers: Dict[str, str] = field(default_factory=dict)
    attempts: int = 1
    duration_ms: float = 0.0
    from_cache: bool = False
