"""
Schema normalization for strict function-calling providers.

Several LLM providers reject tool declarations that contain `anyOf`,
`oneOf`, `allOf` or `additionalProperties`, and some silently drop every
declaration in the request when one of them is present. `sanitize()`
rewrites a JSON Schema into the subset those providers accept:

- `additionalProperties` is removed at every depth
- `anyOf` / `oneOf` collapse to the first non-null branch, merged into the
  enclosing node (alternative types are lost; a `string | string[]` field
  becomes `string`)
- `allOf` branches are merged into the enclosing node in order
- `properties` values and `items` are sanitized recursively

The raw dict is first parsed into a `SchemaNode`, an ordered tuple of typed
entries, so every construct the sanitizer knows about is handled by an
explicit branch rather than by string matching during the walk.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


# --- Schema Entries ---


@dataclass(frozen=True)
class Keyword:
    """Any key the sanitizer passes through untouched."""

    key: str
    value: Any


@dataclass(frozen=True)
class Properties:
    """`properties`: name -> sub-schema (non-dict values kept verbatim)."""

    properties: tuple[tuple[str, SchemaNode | Any], ...]


@dataclass(frozen=True)
class Items:
    """`items`: a single schema, or a tuple-form list of schemas."""

    schema: SchemaNode | tuple[SchemaNode | Any, ...]


@dataclass(frozen=True)
class UnionOf:
    """`anyOf` / `oneOf`."""

    kind: str
    branches: tuple[SchemaNode | Any, ...]


@dataclass(frozen=True)
class AllOf:
    """`allOf`."""

    branches: tuple[SchemaNode | Any, ...]


@dataclass(frozen=True)
class AdditionalProperties:
    value: Any


SchemaEntry = Union[Keyword, Properties, Items, UnionOf, AllOf, AdditionalProperties]

UNION_KEYS = ("anyOf", "oneOf")


@dataclass(frozen=True)
class SchemaNode:
    """One JSON Schema object, entries kept in their original key order."""

    entries: tuple[SchemaEntry, ...]

    @classmethod
    def parse(cls, raw: dict[str, Any]) -> SchemaNode:
        """Build a node from a plain dict."""
        entries: list[SchemaEntry] = []
        for key, value in raw.items():
            if key == "additionalProperties":
                entries.append(AdditionalProperties(value))
            elif key in UNION_KEYS and isinstance(value, list):
                entries.append(UnionOf(key, tuple(_parse_child(v) for v in value)))
            elif key == "allOf" and isinstance(value, list):
                entries.append(AllOf(tuple(_parse_child(v) for v in value)))
            elif key == "properties" and isinstance(value, dict):
                entries.append(
                    Properties(tuple((name, _parse_child(v)) for name, v in value.items()))
                )
            elif key == "items" and isinstance(value, dict):
                entries.append(Items(cls.parse(value)))
            elif key == "items" and isinstance(value, list):
                entries.append(Items(tuple(_parse_child(v) for v in value)))
            else:
                entries.append(Keyword(key, value))
        return cls(tuple(entries))

    def to_dict(self) -> dict[str, Any]:
        """Render back to a plain dict (no normalization)."""
        result: dict[str, Any] = {}
        for entry in self.entries:
            if isinstance(entry, Keyword):
                result[entry.key] = entry.value
            elif isinstance(entry, AdditionalProperties):
                result["additionalProperties"] = entry.value
            elif isinstance(entry, UnionOf):
                result[entry.kind] = [_render_child(b) for b in entry.branches]
            elif isinstance(entry, AllOf):
                result["allOf"] = [_render_child(b) for b in entry.branches]
            elif isinstance(entry, Properties):
                result["properties"] = {
                    name: _render_child(v) for name, v in entry.properties
                }
            elif isinstance(entry, Items):
                result["items"] = _render_items(entry.schema)
            else:
                raise TypeError(f"Unknown schema entry: {entry!r}")
        return result


def _parse_child(value: Any) -> SchemaNode | Any:
    return SchemaNode.parse(value) if isinstance(value, dict) else value


def _render_child(value: SchemaNode | Any) -> Any:
    return value.to_dict() if isinstance(value, SchemaNode) else value


def _render_items(schema: SchemaNode | tuple[SchemaNode | Any, ...]) -> Any:
    if isinstance(schema, SchemaNode):
        return schema.to_dict()
    return [_render_child(s) for s in schema]


# --- Sanitization ---


def _is_null_branch(branch: SchemaNode | Any) -> bool:
    if not isinstance(branch, SchemaNode):
        return False
    return any(
        isinstance(e, Keyword) and e.key == "type" and e.value == "null"
        for e in branch.entries
    )


def _merge_into(target: dict[str, Any], source: dict[str, Any]) -> None:
    """Shallow merge; `properties` maps are merged key by key."""
    for key, value in source.items():
        existing = target.get(key)
        if key == "properties" and isinstance(existing, dict) and isinstance(value, dict):
            target[key] = {**existing, **value}
        else:
            target[key] = value


def _sanitize_child(value: SchemaNode | Any) -> Any:
    return _sanitize_node(value) if isinstance(value, SchemaNode) else value


def _sanitize_node(node: SchemaNode) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for entry in node.entries:
        if isinstance(entry, AdditionalProperties):
            continue
        if isinstance(entry, UnionOf):
            non_null = [b for b in entry.branches if not _is_null_branch(b)]
            if non_null and isinstance(non_null[0], SchemaNode):
                _merge_into(result, _sanitize_node(non_null[0]))
        elif isinstance(entry, AllOf):
            for branch in entry.branches:
                if isinstance(branch, SchemaNode):
                    _merge_into(result, _sanitize_node(branch))
        elif isinstance(entry, Properties):
            _merge_into(result, {
                "properties": {name: _sanitize_child(value) for name, value in entry.properties}
            })
        elif isinstance(entry, Items):
            if isinstance(entry.schema, SchemaNode):
                result["items"] = _sanitize_node(entry.schema)
            else:
                result["items"] = [_sanitize_child(s) for s in entry.schema]
        elif isinstance(entry, Keyword):
            result[entry.key] = entry.value
        else:
            raise TypeError(f"Unknown schema entry: {entry!r}")
    return result


def sanitize(schema: Any) -> Any:
    """
    Normalize a JSON Schema for cross-provider function calling.

    Pure and idempotent. Anything that is not a dict (None included) is
    returned unchanged.
    """
    if not isinstance(schema, dict):
        return schema
    return _sanitize_node(SchemaNode.parse(schema))
