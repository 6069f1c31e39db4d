"""Render a JSON Schema as plain indented text for inclusion in prompts.

The rendering is deterministic: properties keep their declaration order and
every line states the field name, whether it is required, its type, and any
enum, const or numeric bound. ``$ref`` pointers into ``$defs`` are inlined.
"""

from __future__ import annotations

import json
from typing import Any

_INDENT = "  "
_MAX_REF_DEPTH = 8


def render_schema_text(schema: dict[str, Any]) -> str:
    lines: list[str] = []
    title = schema.get("title")
    header = f"{title}: " if title else ""
    lines.append(f"{header}{_describe(schema, schema)}")
    _render_children(schema, schema, depth=1, lines=lines, ref_depth=0)
    return "\n".join(lines)


def _render_children(
    node: dict[str, Any],
    root: dict[str, Any],
    *,
    depth: int,
    lines: list[str],
    ref_depth: int,
) -> None:
    node = _resolve(node, root)
    if ref_depth > _MAX_REF_DEPTH:
        return

    indent = _INDENT * depth
    properties = node.get("properties")
    if isinstance(properties, dict):
        required = set(node.get("required") or [])
        for name, child in properties.items():
            resolved = _resolve(child, root)
            flag = "required" if name in required else "optional"
            lines.append(f"{indent}- {name} ({flag}): {_describe(resolved, root)}")
            _render_children(
                resolved, root, depth=depth + 1, lines=lines, ref_depth=ref_depth + 1
            )

    additional = node.get("additionalProperties")
    if isinstance(additional, dict):
        resolved = _resolve(additional, root)
        lines.append(f"{indent}- <any key>: {_describe(resolved, root)}")
        _render_children(
            resolved, root, depth=depth + 1, lines=lines, ref_depth=ref_depth + 1
        )

    items = node.get("items")
    if isinstance(items, dict):
        resolved = _resolve(items, root)
        if _has_children(resolved, root):
            lines.append(f"{indent}- <each item>: {_describe(resolved, root)}")
            _render_children(
                resolved, root, depth=depth + 1, lines=lines, ref_depth=ref_depth + 1
            )


def _describe(node: dict[str, Any], root: dict[str, Any]) -> str:
    node = _resolve(node, root)
    parts: list[str] = []

    if "const" in node:
        parts.append(f"exactly {json.dumps(node['const'])}")
    else:
        parts.append(_type_name(node, root))

    if "enum" in node:
        values = ", ".join(json.dumps(value) for value in node["enum"])
        parts.append(f"one of [{values}]")
    if "minimum" in node:
        parts.append(f">= {node['minimum']}")
    if "exclusiveMinimum" in node:
        parts.append(f"> {node['exclusiveMinimum']}")
    if "maximum" in node:
        parts.append(f"<= {node['maximum']}")
    if "exclusiveMaximum" in node:
        parts.append(f"< {node['exclusiveMaximum']}")
    if "format" in node:
        parts.append(f"format {node['format']}")

    text = ", ".join(parts)
    description = node.get("description")
    if description:
        text = f"{text} ({description})"
    return text


def _type_name(node: dict[str, Any], root: dict[str, Any]) -> str:
    declared = node.get("type")
    if isinstance(declared, list):
        return " or ".join(str(item) for item in declared)

    if declared == "array":
        items = node.get("items")
        if isinstance(items, dict):
            resolved = _resolve(items, root)
            if _has_children(resolved, root):
                return "array of objects"
            return f"array of {_describe(resolved, root)}"
        return "array"

    if declared == "object" or "properties" in node:
        additional = node.get("additionalProperties")
        if isinstance(additional, dict) and "properties" not in node:
            return "object mapping string keys to values"
        return "object"

    if isinstance(declared, str):
        return declared
    if "enum" in node:
        return "string"
    return "any"


def _has_children(node: dict[str, Any], root: dict[str, Any]) -> bool:
    node = _resolve(node, root)
    return isinstance(node.get("properties"), dict) or isinstance(
        node.get("additionalProperties"), dict
    )


def _resolve(node: dict[str, Any], root: dict[str, Any]) -> dict[str, Any]:
    ref = node.get("$ref")
    if not isinstance(ref, str):
        return node
    if not ref.startswith("#/"):
        raise ValueError(f"Only local schema references are supported: {ref}")

    target: Any = root
    for part in ref[2:].split("/"):
        if not isinstance(target, dict) or part not in target:
            raise ValueError(f"Unresolvable schema reference: {ref}")
        target = target[part]
    if not isinstance(target, dict):
        raise ValueError(f"Schema reference does not point to an object: {ref}")
    return _resolve(target, root)
