from __future__ import annotations

import pytest

from rest_adapter.errors import MissingPathParameter
from rest_adapter.models import Operation, Parameter, RequestBody, SchemaNode
from rest_adapter.request_builder import RequestBuilder, infer_resource_type, is_action_path
from rest_adapter.service import validate_arguments
from rest_adapter.shapes import ShapeBuilder


def _widget_operation() -> Operation:
    return Operation(
        operation_id="retrieve-a-widget",
        method="get",
        path="/widgets/{widgetId}",
        parameters=(Parameter("widgetId", "path", True, SchemaNode(kind="string")),),
    )


class TestPathSubstitution:
    def test_missing_path_argument_fails(self):
        with pytest.raises(MissingPathParameter) as excinfo:
            RequestBuilder().build(_widget_operation(), {})

        assert excinfo.value.field == "widgetId"
        assert excinfo.value.kind == "invalid_argument"

    def test_supplied_path_argument_is_substituted(self):
        request = RequestBuilder().build(_widget_operation(), {"widgetId": "wid_1"})

        assert request.path == "/widgets/wid_1"
        assert "{" not in request.path
        assert request.method == "GET"
        assert request.body is None

    def test_empty_path_argument_fails(self):
        with pytest.raises(MissingPathParameter):
            RequestBuilder().build(_widget_operation(), {"widgetId": ""})

    def test_values_are_url_quoted(self, operation):
        request = RequestBuilder().build(operation("update-a-widget"), {"widgetId": "a b/c"})
        assert request.path == "/widgets/a%20b%2Fc"

    def test_snake_case_placeholder_uses_caller_name(self, operation):
        request = RequestBuilder().build(operation("retrieve-a-widget"), {"widgetId": "w1"})
        assert request.path == "/widgets/w1"


class TestQuery:
    def test_declared_query_parameters_use_wire_names(self, operation):
        request = RequestBuilder().build(
            operation("list-all-widgets"), {"status": "active", "page": 2}
        )

        assert request.query == {"status": "active", "page": 2}
        assert request.body is None

    def test_none_values_are_skipped(self, operation):
        request = RequestBuilder().build(
            operation("list-all-widgets"), {"status": "active", "page": None}
        )
        assert request.query == {"status": "active"}

    def test_delete_leftovers_travel_as_query(self, operation):
        request = RequestBuilder().build(
            operation("widgets-delete"), {"widgetId": "w1", "force": True}
        )

        assert request.method == "DELETE"
        assert request.path == "/widgets/w1"
        assert request.query == {"force": True}
        assert request.body is None


class TestBody:
    def test_create_wraps_attributes(self, operation):
        request = RequestBuilder().build(operation("create-a-widget"), {"name": "x"})

        assert request.method == "POST"
        assert request.path == "/widgets"
        assert request.body == {"data": {"attributes": {"name": "x"}}}

    def test_body_keys_use_declared_wire_names(self, operation):
        request = RequestBuilder().build(
            operation("create-a-widget"), {"name": "x", "weightGrams": 5}
        )
        assert request.body == {"data": {"attributes": {"name": "x", "weight_grams": 5}}}

    def test_declared_data_type_is_added(self, operation):
        request = RequestBuilder().build(
            operation("update-a-widget"), {"widgetId": "w1", "color": "red"}
        )

        assert request.path == "/widgets/w1"
        assert request.body == {"data": {"type": "widget", "attributes": {"color": "red"}}}

    def test_action_path_wraps_meta(self, operation):
        request = RequestBuilder().build(
            operation("widgets-add-tag"), {"widgetId": "w1", "tagName": "vip"}
        )

        assert request.path == "/widgets/w1/add-tag"
        assert request.body == {"meta": {"tag_name": "vip"}}

    def test_meta_only_schema_wraps_meta(self):
        op = Operation(
            operation_id="create-an-import",
            method="post",
            path="/imports",
            request_body=RequestBody(
                schema=SchemaNode(kind="object", properties={"meta": SchemaNode(kind="object")})
            ),
        )

        request = RequestBuilder().build(op, {"sourceUrl": "https://example.test/a.csv"})

        assert request.body == {"meta": {"source_url": "https://example.test/a.csv"}}

    def test_nested_values_are_converted(self, operation):
        request = RequestBuilder().build(
            operation("create-a-widget"), {"name": "x", "owner": {"displayName": "Ada"}}
        )
        assert request.body["data"]["attributes"]["owner"] == {"display_name": "Ada"}

    def test_nested_keys_keep_declared_names(self):
        settings = SchemaNode(
            kind="object",
            properties={
                "maxCount": SchemaNode(kind="integer"),
                "name-first": SchemaNode(kind="string"),
            },
        )
        op = Operation(
            operation_id="create-a-report",
            method="post",
            path="/reports",
            request_body=RequestBody(
                schema=SchemaNode(kind="object", properties={"settings": settings})
            ),
        )
        shape = ShapeBuilder().build(op)
        arguments = validate_arguments(
            shape.model, {"settings": {"maxCount": 3, "nameFirst": "a"}}
        )

        request = RequestBuilder().build(op, arguments, shape.fields)

        assert request.body == {
            "data": {"attributes": {"settings": {"maxCount": 3, "name-first": "a"}}}
        }

    def test_nested_array_items_keep_declared_names(self):
        line = SchemaNode(kind="object", properties={"unit_price": SchemaNode(kind="number")})
        op = Operation(
            operation_id="create-an-order",
            method="post",
            path="/orders",
            request_body=RequestBody(
                schema=SchemaNode(
                    kind="object",
                    properties={"line_items": SchemaNode(kind="array", items=line)},
                )
            ),
        )
        shape = ShapeBuilder().build(op)

        request = RequestBuilder().build(
            op, {"lineItems": [{"unitPrice": 2.5, "giftNote": "hi"}]}, shape.fields
        )

        assert request.body == {
            "data": {"attributes": {"line_items": [{"unit_price": 2.5, "gift_note": "hi"}]}}
        }

    def test_no_body_without_fields(self, operation):
        request = RequestBuilder().build(operation("update-a-widget"), {"widgetId": "w1"})
        assert request.body is None


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/accounts/{account_id}/add-tag", True),
        ("/accounts/{account_id}", False),
        ("/accounts", False),
        ("/accounts/search", False),
        ("/accounts/{account_id}/tags/{tag_id}", False),
    ],
)
def test_is_action_path(path, expected):
    assert is_action_path(path) is expected


def test_infer_resource_type():
    assert infer_resource_type("/inquiry-templates/{id}") == "inquiry-template"
    assert infer_resource_type("/{id}") is None
