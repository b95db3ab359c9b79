"""Tool registry for the REST adapter."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from .errors import AdapterError, ToolGenerationError, UnknownToolError
from .models import ApiDescription, GeneratedTool, InputShape, Operation, ToolHandler
from .naming import derive_tool_name
from .service import AdapterService, format_error
from .shapes import ShapeBuilder, annotations_for


logger = logging.getLogger(__name__)


class ToolCatalog:
    """Read-only, ordered mapping of tool name to generated tool."""

    def __init__(self, tools: Mapping[str, GeneratedTool]) -> None:
        self._tools = MappingProxyType(dict(tools))

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[GeneratedTool]:
        return iter(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    @property
    def tools(self) -> Mapping[str, GeneratedTool]:
        return self._tools

    def get(self, name: str) -> Optional[GeneratedTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    async def invoke(self, name: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Invocation of unknown tool: %s", name)
            return format_error(UnknownToolError(name), 0.0)
        return await tool.handler(dict(payload))


class ToolRegistry:
    def __init__(
        self,
        service: AdapterService,
        shape_builder: Optional[ShapeBuilder] = None,
        tool_allowlist: Optional[Set[str]] = None,
        operation_allowlist: Optional[Set[str]] = None,
        tag_allowlist: Optional[Set[str]] = None,
    ) -> None:
        self.service = service
        self.shape_builder = shape_builder or ShapeBuilder()
        self.tool_allowlist = tool_allowlist or set()
        self.operation_allowlist = operation_allowlist or set()
        self.tag_allowlist = tag_allowlist or set()

    def build_catalog(self, api: ApiDescription) -> ToolCatalog:
        tools: Dict[str, GeneratedTool] = {}
        for operation in api.operations:
            if operation.is_read_only:
                continue
            if not self._operation_allowed(operation):
                continue

            try:
                tool = self._build_tool(operation)
            except ToolGenerationError as exc:
                logger.error("Skipping operation %s: %s", operation.operation_id, exc.message)
                continue

            if self.tool_allowlist and tool.name not in self.tool_allowlist:
                continue
            if tool.name in tools:
                logger.warning(
                    "Tool name collision: %s (operation %s already registered as %s)",
                    tool.name,
                    operation.operation_id,
                    tools[tool.name].operation.operation_id,
                )
                continue

            tools[tool.name] = tool
            logger.info("Generated tool %s from %s %s", tool.name, operation.method.upper(), operation.path)

        logger.info("Tool catalog ready with %s tools", len(tools))
        return ToolCatalog(tools)

    def _operation_allowed(self, operation: Operation) -> bool:
        if self.operation_allowlist and operation.operation_id not in self.operation_allowlist:
            return False
        if self.tag_allowlist and not self.tag_allowlist.intersection(operation.tags):
            return False
        return True

    def _build_tool(self, operation: Operation) -> GeneratedTool:
        try:
            name = derive_tool_name(operation.operation_id)
            shape = self.shape_builder.build(operation)
        except AdapterError as exc:
            raise ToolGenerationError(exc.message, context={"operation_id": operation.operation_id}) from exc
        except Exception as exc:
            # pydantic raises SchemaError for schemas it cannot compile.
            raise ToolGenerationError(
                f"{type(exc).__name__}: {exc}", context={"operation_id": operation.operation_id}
            ) from exc

        return GeneratedTool(
            name=name,
            description=_description(operation),
            operation=operation,
            input_shape=shape,
            annotations=annotations_for(operation.method),
            handler=self._handler(name, operation, shape),
        )

    def _handler(self, name: str, operation: Operation, shape: InputShape) -> ToolHandler:
        service = self.service

        async def handler(payload: Dict[str, Any]) -> Dict[str, Any]:
            return await service.execute(name, operation, shape.model, shape.fields, payload)

        handler.__name__ = name
        return handler


def _description(operation: Operation) -> str:
    return (
        operation.summary
        or operation.description
        or f"{operation.method.upper()} {operation.path}"
    )
