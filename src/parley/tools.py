"""Tool registry: the only way the core knows about tools.

The core never imports tool implementations. It sees declared names and
schemas through `ToolRegistry.list()` and calls tools through
`ToolRegistry.invoke()`. A registry is passed into each turn explicitly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
import inspect
import logging
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from parley.errors import ConfigurationError, ToolNotFoundError

logger = logging.getLogger(__name__)

ToolFunction = Callable[..., Any]


@dataclass(frozen=True)
class ToolDeclaration:
    """Name, description and JSON schema of a tool, as shown to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @property
    def required(self) -> list[str]:
        raw = self.parameters.get("required", [])
        return list(raw) if isinstance(raw, list) else []

    @property
    def properties(self) -> dict[str, Any]:
        raw = self.parameters.get("properties", {})
        return raw if isinstance(raw, dict) else {}


@runtime_checkable
class ToolRegistry(Protocol):
    """Minimal registry protocol: list declarations, invoke by name."""

    def list(self) -> list[ToolDeclaration]:
        """Return the declarations of every available tool."""
        ...

    async def invoke(self, name: str, args: dict[str, Any]) -> Any:
        """Run the tool *name* with *args* and return its JSON-able result."""
        ...


def _schema_from(parameters: dict[str, Any] | type[BaseModel] | None) -> dict[str, Any]:
    if parameters is None:
        return {"type": "object", "properties": {}}
    if isinstance(parameters, dict):
        return parameters
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        return parameters.model_json_schema()
    raise ConfigurationError(
        "Tool parameters must be a JSON schema dict or a Pydantic model class",
        hint="Pass parameters={'type': 'object', 'properties': {...}}.",
    )


class FunctionToolRegistry:
    """Registry backed by plain Python callables (sync or async).

    Example:
        registry = FunctionToolRegistry()

        @registry.tool(description="Current weather for a city")
        def get_weather(city: str) -> dict:
            return {"city": city, "forecast": "sunny"}
    """

    def __init__(self) -> None:
        self._tools: dict[str, tuple[ToolDeclaration, ToolFunction]] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(
        self,
        fn: ToolFunction,
        *,
        name: str | None = None,
        description: str | None = None,
        parameters: dict[str, Any] | type[BaseModel] | None = None,
    ) -> ToolDeclaration:
        """Register *fn* and return its declaration."""
        tool_name = name or getattr(fn, "__name__", None)
        if not tool_name:
            raise ConfigurationError(
                "Tool name could not be derived", hint="Pass name='my_tool'."
            )
        if tool_name in self._tools:
            raise ConfigurationError(f"Tool already registered: {tool_name!r}")
        doc = inspect.getdoc(fn) or ""
        declaration = ToolDeclaration(
            name=tool_name,
            description=description if description is not None else doc,
            parameters=_schema_from(parameters),
        )
        self._tools[tool_name] = (declaration, fn)
        logger.debug("Registered tool %s", tool_name)
        return declaration

    def tool(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        parameters: dict[str, Any] | type[BaseModel] | None = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """Decorator form of `register`."""

        def decorator(fn: ToolFunction) -> ToolFunction:
            self.register(fn, name=name, description=description, parameters=parameters)
            return fn

        return decorator

    def list(self) -> list[ToolDeclaration]:
        return [declaration for declaration, _ in self._tools.values()]

    async def invoke(self, name: str, args: dict[str, Any]) -> Any:
        entry = self._tools.get(name)
        if entry is None:
            raise ToolNotFoundError(f"Unknown tool: {name!r}", tool_name=name)
        _, fn = entry
        result = fn(**args)
        if asyncio.iscoroutine(result) or inspect.isawaitable(result):
            result = await result
        return result
