"""Canonical tool definitions and their two native renderings.

A tool is declared once as a :class:`ToolDefinition`.  ``to_hosted()``
renders a Gemini ``functionDeclaration``; ``to_compatible()`` renders an
OpenAI ``{"type": "function", ...}`` tool.  Both conversions are pure and
total: any missing or unrecognised type tag becomes ``object``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable


class SchemaType(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"

    @classmethod
    def parse(cls, tag: Any) -> "SchemaType":
        """Accept ``"string"``, ``"STRING"``, etc.; default to OBJECT."""
        if isinstance(tag, SchemaType):
            return tag
        if isinstance(tag, str):
            try:
                return cls(tag.lower())
            except ValueError:
                pass
        return cls.OBJECT


@dataclass(frozen=True)
class ParameterSchema:
    """Definition of a tool parameter (or of the whole argument object)."""

    type: SchemaType = SchemaType.OBJECT
    description: str = ""
    properties: dict[str, "ParameterSchema"] = field(default_factory=dict)
    items: "ParameterSchema | None" = None
    required: tuple[str, ...] = ()
    enum: tuple[Any, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "ParameterSchema":
        """Build the canonical form from a JSON-schema-like dict."""
        if not raw:
            return cls()
        properties = {
            key: cls.from_dict(value)
            for key, value in (raw.get("properties") or {}).items()
        }
        items_raw = raw.get("items")
        return cls(
            type=SchemaType.parse(raw.get("type")),
            description=raw.get("description", "") or "",
            properties=properties,
            items=cls.from_dict(items_raw) if isinstance(items_raw, dict) else None,
            required=tuple(raw.get("required") or ()),
            enum=tuple(raw.get("enum") or ()),
        )

    def _render(self, upper: bool) -> dict[str, Any]:
        tag = self.type.value.upper() if upper else self.type.value
        out: dict[str, Any] = {"type": tag}
        if self.description:
            out["description"] = self.description
        if self.properties or (self.type is SchemaType.OBJECT and not upper):
            out["properties"] = {
                key: prop._render(upper) for key, prop in self.properties.items()
            }
        if self.items is not None:
            out["items"] = self.items._render(upper)
        if self.required:
            out["required"] = list(self.required)
        if self.enum:
            out["enum"] = list(self.enum)
        return out

    def to_hosted(self) -> dict[str, Any]:
        """Gemini OpenAPI-subset schema (uppercase type tags)."""
        return self._render(upper=True)

    def to_compatible(self) -> dict[str, Any]:
        """JSON schema for OpenAI-compatible ``parameters``."""
        return self._render(upper=False)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str = ""
    parameters: ParameterSchema = field(default_factory=ParameterSchema)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ToolDefinition":
        """Accept ``{"name", "description", "parameters"}`` or an OpenAI tool."""
        if raw.get("type") == "function" and "function" in raw:
            raw = raw["function"]
        return cls(
            name=raw["name"],
            description=raw.get("description", "") or "",
            parameters=ParameterSchema.from_dict(raw.get("parameters")),
        )

    def to_hosted(self) -> dict[str, Any]:
        decl: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.parameters.properties:
            decl["parameters"] = self.parameters.to_hosted()
        return decl

    def to_compatible(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.to_compatible(),
            },
        }


def build_tool_set(
    tools: Iterable[ToolDefinition | dict[str, Any]],
    allowed: Iterable[str] | None = None,
) -> tuple[ToolDefinition, ...]:
    """Normalize *tools* and apply an optional allow-list.

    Raises ``ValueError`` on duplicate names.
    """
    allow = set(allowed) if allowed is not None else None
    seen: set[str] = set()
    result: list[ToolDefinition] = []
    for tool in tools:
        definition = tool if isinstance(tool, ToolDefinition) else ToolDefinition.from_dict(tool)
        if allow is not None and definition.name not in allow:
            continue
        if definition.name in seen:
            raise ValueError(f"Duplicate tool name: {definition.name}")
        seen.add(definition.name)
        result.append(definition)
    return tuple(result)


def hosted_tools(tools: Iterable[ToolDefinition]) -> list[dict[str, Any]]:
    """Gemini ``tools`` request field; empty list when there are no tools."""
    declarations = [t.to_hosted() for t in tools]
    if not declarations:
        return []
    return [{"functionDeclarations": declarations}]


def compatible_tools(tools: Iterable[ToolDefinition]) -> list[dict[str, Any]]:
    return [t.to_compatible() for t in tools]
