from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
import yaml

from rest_adapter.config import Settings
from rest_adapter.models import ApiDescription, Operation
from rest_adapter.openapi import OperationNormalizer, dereference, operation_by_id


WIDGET_SPEC: Dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Widget API", "version": "1.0"},
    "servers": [{"url": "https://api.example.test/v1"}],
    "paths": {
        "/widgets": {
            "get": {
                "operationId": "list-all-widgets",
                "tags": ["widgets"],
                "summary": "List widgets",
                "parameters": [
                    {"name": "status", "in": "query", "required": True, "schema": {"type": "string"}},
                    {"name": "page", "in": "query", "schema": {"type": "integer", "minimum": 1}},
                ],
                "responses": {"200": {"description": "ok"}},
            },
            "post": {
                "operationId": "create-a-widget",
                "tags": ["widgets"],
                "summary": "Create a widget",
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/WidgetInput"}}
                    },
                },
                "responses": {"201": {"description": "created"}},
            },
        },
        "/widgets/{widget_id}": {
            "parameters": [
                {
                    "name": "widget_id",
                    "in": "path",
                    "required": True,
                    "description": "shared",
                    "schema": {"type": "string"},
                }
            ],
            "get": {
                "operationId": "retrieve-a-widget",
                "tags": ["widgets"],
                "responses": {"200": {"description": "ok"}},
            },
            "patch": {
                "operationId": "update-a-widget",
                "tags": ["widgets"],
                "description": "Update a widget's attributes",
                "requestBody": {
                    "content": {
                        "application/vnd.api+json": {
                            "schema": {
                                "type": "object",
                                "properties": {
                                    "data": {
                                        "type": "object",
                                        "properties": {
                                            "type": {"type": "string", "enum": ["widget"]},
                                            "attributes": {
                                                "type": "object",
                                                "properties": {
                                                    "name": {"type": "string"},
                                                    "color": {"type": "string", "enum": ["red", "blue"]},
                                                },
                                            },
                                        },
                                    }
                                },
                            }
                        }
                    }
                },
                "responses": {"200": {"description": "ok"}},
            },
            "delete": {
                "operationId": "widgets-delete",
                "tags": ["admin"],
                "parameters": [
                    {"name": "widget_id", "in": "path", "required": True, "description": "override", "schema": {"type": "string"}},
                    {"name": "force", "in": "query", "schema": {"type": "boolean"}},
                    {"name": "X-Trace", "in": "header", "schema": {"type": "string"}},
                ],
                "responses": {"204": {"description": "deleted"}},
            },
        },
        "/widgets/{widget_id}/add-tag": {
            "post": {
                "operationId": "widgets-add-tag",
                "tags": ["widgets"],
                "parameters": [
                    {"name": "widget_id", "in": "path", "required": True, "schema": {"type": "string"}}
                ],
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {
                                "type": "object",
                                "required": ["tag_name"],
                                "properties": {"tag_name": {"type": "string"}},
                            }
                        }
                    }
                },
                "responses": {"200": {"description": "ok"}},
            }
        },
        "/nodes": {
            "post": {
                "operationId": "create-a-node",
                "requestBody": {
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/Node"}}
                    }
                },
                "responses": {"201": {"description": "created"}},
            }
        },
        "/reports": {
            "post": {"summary": "No identifier", "responses": {"200": {"description": "ok"}}}
        },
    },
    "components": {
        "schemas": {
            "WidgetInput": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "color": {"type": "string", "enum": ["red", "blue"]},
                    "weight_grams": {"type": "integer", "minimum": 0},
                    "contact_email": {"type": "string", "format": "email"},
                    "owner": {"$ref": "#/components/schemas/Missing"},
                },
            },
            "Node": {
                "type": "object",
                "properties": {
                    "label": {"type": "string"},
                    "children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}},
                },
            },
        }
    },
}

BASE_URL = "https://api.example.test/v1"


@pytest.fixture
def spec_document() -> Dict[str, Any]:
    return json.loads(json.dumps(WIDGET_SPEC))


@pytest.fixture
def spec_file(tmp_path, spec_document):
    path = tmp_path / "openapi.yaml"
    path.write_text(yaml.safe_dump(spec_document), encoding="utf-8")
    return path


@pytest.fixture
def api(spec_document) -> ApiDescription:
    return OperationNormalizer().normalize(dereference(spec_document))


@pytest.fixture
def operation(api) -> Callable[[str], Operation]:
    def lookup(operation_id: str) -> Operation:
        found = operation_by_id(api, operation_id)
        assert found is not None, operation_id
        return found

    return lookup


class Recorder:
    """Scripted upstream: replies are consumed in order, the last one repeats."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses: List[httpx.Response] = list(responses) or [httpx.Response(200, json={})]
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int = -1) -> Any:
        content = self.requests[index].content
        return json.loads(content) if content else None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        api_base_url=BASE_URL,
        api_key="test-key",
        api_retry_base_delay_seconds=0,
        api_retry_max_delay_seconds=0,
        api_retry_jitter_seconds=0,
    )


async def no_sleep(_delay: float) -> None:
    return None
