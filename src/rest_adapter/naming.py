"""Tool name derivation and field-name conventions."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import SchemaNode


_IRREGULAR_PLURALS: Dict[str, str] = {
    "people": "person",
    "children": "child",
    "data": "data",
    "media": "media",
    "series": "series",
    "news": "news",
    "analyses": "analysis",
    "criteria": "criterion",
}

# Ordered: longer suffixes first.
_PLURAL_SUFFIXES: Tuple[Tuple[str, str], ...] = (
    ("ies", "y"),
    ("sses", "ss"),
    ("xes", "x"),
    ("ches", "ch"),
    ("shes", "sh"),
    ("uses", "us"),
)

_CRUD_PATTERNS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("list-all-",), "list"),
    (("create-an-", "create-a-"), "create"),
    (("retrieve-an-", "retrieve-a-"), "retrieve"),
    (("update-an-", "update-a-"), "update"),
    (("redact-an-", "redact-a-"), "redact"),
)

_CRUD_VERBS = frozenset(verb for _, verb in _CRUD_PATTERNS) | {"delete", "get", "process"}
_SINGULAR_ENDINGS = ("ss", "us", "is")

_SEPARATORS = re.compile(r"[-\s.]+")
_CALLER_BOUNDARY = re.compile(r"[-_]([a-z])")
_WIRE_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def singularize(word: str) -> str:
    """Singularize ``word``; multi-word resources only change their last word."""
    if not word:
        return word
    for separator in ("-", "_"):
        if separator in word:
            head, _, tail = word.rpartition(separator)
            return f"{head}{separator}{singularize(tail)}"

    lowered = word.lower()
    if lowered in _IRREGULAR_PLURALS:
        return _IRREGULAR_PLURALS[lowered]
    for suffix, replacement in _PLURAL_SUFFIXES:
        if lowered.endswith(suffix) and len(lowered) > len(suffix):
            return word[: -len(suffix)] + replacement
    if lowered.endswith("s") and not lowered.endswith(_SINGULAR_ENDINGS) and len(lowered) > 1:
        return word[:-1]
    return word


def _looks_plural(word: str) -> bool:
    lowered = word.lower()
    if lowered in _IRREGULAR_PLURALS:
        return True
    return (
        lowered.endswith("s")
        and not lowered.endswith(_SINGULAR_ENDINGS)
        and lowered not in _CRUD_VERBS
    )


def _underscore(value: str) -> str:
    return _SEPARATORS.sub("_", value).strip("_")


def derive_tool_name(operation_id: str) -> str:
    """Convert an operation identifier into a tool name.

    Rules are tried in order and the first match wins:

    * ``accounts-add-tag``  -> ``account_add_tag`` (plural resource, then action)
    * ``list-all-accounts`` -> ``account_list`` (CRUD phrasing)
    * anything else         -> separators replaced by underscores
    """
    name = operation_id.strip().lower()

    resource, sep, action = name.partition("-")
    if sep and action and _looks_plural(resource):
        return f"{_underscore(singularize(resource))}_{_underscore(action)}"

    for prefixes, verb in _CRUD_PATTERNS:
        for prefix in prefixes:
            if prefix in name:
                subject = name.replace(prefix, "", 1)
                return f"{_underscore(singularize(subject))}_{verb}"

    return _underscore(name)


def to_caller_name(name: str) -> str:
    """``inquiry_template_id`` / ``inquiry-template-id`` -> ``inquiryTemplateId``."""
    return _CALLER_BOUNDARY.sub(lambda match: match.group(1).upper(), name)


def to_wire_name(name: str) -> str:
    """``inquiryTemplateId`` -> ``inquiry_template_id``."""
    return _WIRE_BOUNDARY.sub(r"_\1", name).lower()


def convert_keys(
    value: Any,
    names: Optional[Dict[str, str]] = None,
    schemas: Optional[Mapping[str, Optional[SchemaNode]]] = None,
) -> Any:
    """Recursively rename mapping keys to the wire convention.

    ``names`` maps caller names to declared wire names and ``schemas`` maps
    them to the schema of each value, so nested keys keep the names their
    schema declares. Anything undeclared goes through :func:`to_wire_name`.
    """
    if isinstance(value, dict):
        converted: Dict[str, Any] = {}
        for key, item in value.items():
            wire = (names or {}).get(key) or to_wire_name(key)
            converted[wire] = _convert_declared(item, (schemas or {}).get(key))
        return converted
    if isinstance(value, list):
        items: List[Any] = [convert_keys(item) for item in value]
        return items
    return value


def _convert_declared(value: Any, node: Optional[SchemaNode]) -> Any:
    if node is None:
        return convert_keys(value)
    if isinstance(value, list):
        return [_convert_declared(item, node.items) for item in value]
    names = {to_caller_name(name): name for name in node.properties}
    schemas = {to_caller_name(name): prop for name, prop in node.properties.items()}
    return convert_keys(value, names, schemas)


def path_placeholders(path: str) -> List[str]:
    return re.findall(r"\{([^{}]+)\}", path)
