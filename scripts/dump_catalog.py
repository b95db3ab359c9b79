"""Print the tool catalog and resource templates generated from an OpenAPI document."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any, Dict

from rest_adapter.config import Settings
from rest_adapter.errors import SpecificationLoadError
from rest_adapter.openapi import load_api_description
from rest_adapter.server import build_adapter


def _build_report(source: str, include_optional: bool, base_url: str) -> Dict[str, Any]:
    settings = Settings(
        openapi_spec_source=source,
        adapter_include_optional_params=include_optional,
        api_base_url=base_url or None,
        cache_enabled=False,
    )
    api = load_api_description(source, timeout_seconds=settings.api_timeout_seconds)
    adapter = build_adapter(settings, api)
    return {
        "title": api.title,
        "version": api.version,
        "operations": len(api.operations),
        "tools": adapter.catalog.definitions(),
        "resources": adapter.resources.definitions(),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Dump the generated MCP catalog for an OpenAPI document")
    parser.add_argument(
        "--spec",
        default=os.getenv("OPENAPI_SPEC_SOURCE", ""),
        help="Path or URL of the OpenAPI document",
    )
    parser.add_argument(
        "--base-url",
        default=os.getenv("API_BASE_URL", ""),
        help="Override the API base URL (defaults to the document's first server)",
    )
    parser.add_argument(
        "--required-only",
        action="store_true",
        help="Only expose required query parameters as tool inputs",
    )
    parser.add_argument(
        "--output",
        default="",
        help="Write the catalog to this file instead of stdout",
    )

    args = parser.parse_args()
    if not args.spec:
        raise SystemExit("Specification missing. Set --spec or OPENAPI_SPEC_SOURCE.")

    try:
        report = _build_report(args.spec, not args.required_only, args.base_url)
    except SpecificationLoadError as exc:
        raise SystemExit(f"Cannot load {args.spec}: {exc.message}") from exc

    rendered = json.dumps(report, indent=2, sort_keys=False)
    if args.output:
        Path(args.output).expanduser().write_text(rendered + "\n", encoding="utf-8")
        print(f"Wrote {len(report['tools'])} tools and {len(report['resources'])} resources to {args.output}")
        return
    print(rendered)


if __name__ == "__main__":
    main()
