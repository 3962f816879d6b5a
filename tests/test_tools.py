"""Function tool registry."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from parley.errors import ConfigurationError, ToolNotFoundError
from parley.tools import FunctionToolRegistry, ToolDeclaration, ToolRegistry

pytestmark = pytest.mark.unit


class WeatherArgs(BaseModel):
    city: str
    unit: str = "celsius"


def test_registry_satisfies_protocol() -> None:
    """FunctionToolRegistry is a ToolRegistry."""
    assert isinstance(FunctionToolRegistry(), ToolRegistry)


def test_decorator_registers_with_docstring_description() -> None:
    """The docstring becomes the description when none is given."""
    registry = FunctionToolRegistry()

    @registry.tool(parameters={"type": "object", "properties": {"city": {"type": "string"}}})
    def get_weather(city: str) -> dict:
        """Current weather for a city."""
        return {"city": city}

    [declaration] = registry.list()
    assert declaration.name == "get_weather"
    assert declaration.description == "Current weather for a city."
    assert "get_weather" in registry
    assert len(registry) == 1


def test_pydantic_model_becomes_json_schema() -> None:
    """Parameter models are converted with model_json_schema()."""
    registry = FunctionToolRegistry()

    declaration = registry.register(lambda **kw: kw, name="weather", parameters=WeatherArgs)

    assert declaration.properties.keys() == {"city", "unit"}
    assert declaration.required == ["city"]


def test_duplicate_names_are_rejected() -> None:
    """One name, one tool."""
    registry = FunctionToolRegistry()
    registry.register(lambda: 1, name="t")

    with pytest.raises(ConfigurationError, match="already registered"):
        registry.register(lambda: 2, name="t")


def test_invalid_parameter_schema_is_rejected() -> None:
    """Only dicts and pydantic models describe parameters."""
    with pytest.raises(ConfigurationError):
        FunctionToolRegistry().register(lambda: 1, name="t", parameters="city")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_invoke_runs_sync_and_async_tools() -> None:
    """Sync results are returned; coroutines are awaited."""
    registry = FunctionToolRegistry()
    registry.register(lambda a, b: a + b, name="add")

    async def shout(text: str) -> str:
        return text.upper()

    registry.register(shout)

    assert await registry.invoke("add", {"a": 2, "b": 3}) == 5
    assert await registry.invoke("shout", {"text": "hi"}) == "HI"


@pytest.mark.asyncio
async def test_invoke_unknown_tool_raises_not_found() -> None:
    """Unknown names raise ToolNotFoundError carrying the name."""
    with pytest.raises(ToolNotFoundError) as exc:
        await FunctionToolRegistry().invoke("missing", {})

    assert exc.value.tool_name == "missing"


def test_declaration_defaults_to_empty_object_schema() -> None:
    """A tool without parameters still declares an object schema."""
    declaration = ToolDeclaration(name="ping")

    assert declaration.parameters == {"type": "object", "properties": {}}
    assert declaration.required == []
    assert declaration.properties == {}
