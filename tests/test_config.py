"""Config and CompletionOptions validation."""

from __future__ import annotations

import pytest

from parley.config import Config
from parley.errors import ConfigurationError
from parley.options import CompletionOptions

pytestmark = pytest.mark.unit


# =============================================================================
# Config
# =============================================================================


@pytest.mark.parametrize(
    ("provider", "env_var"),
    [
        ("openai", "OPENAI_API_KEY"),
        ("openrouter", "OPENROUTER_API_KEY"),
        ("gemini", "GEMINI_API_KEY"),
        ("anthropic", "ANTHROPIC_API_KEY"),
    ],
)
def test_config_resolves_api_key_from_provider_env_var(
    monkeypatch: pytest.MonkeyPatch, provider: str, env_var: str
) -> None:
    """Each provider reads its own standard environment variable."""
    monkeypatch.setenv(env_var, "env-key")

    config = Config(provider=provider, model="m")  # type: ignore[arg-type]

    assert config.api_key == "env-key"


def test_config_explicit_key_wins_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """An explicit api_key is never replaced."""
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    assert Config(provider="openai", model="m", api_key="mine").api_key == "mine"


def test_config_missing_key_names_the_env_var() -> None:
    """A missing key fails fast with the variable to set."""
    with pytest.raises(ConfigurationError) as exc:
        Config(provider="anthropic", model="claude-sonnet-4-5")

    assert exc.value.hint is not None
    assert "ANTHROPIC_API_KEY" in exc.value.hint


def test_config_mock_mode_needs_no_key() -> None:
    """Mock mode runs without credentials."""
    config = Config(provider="gemini", model="gemini-2.0-flash", use_mock=True)

    assert config.api_key is None


def test_config_rejects_unknown_provider() -> None:
    """Only the supported backends are accepted."""
    with pytest.raises(ConfigurationError, match="Unknown provider"):
        Config(provider="cohere", model="m", use_mock=True)  # type: ignore[arg-type]


def test_config_rejects_non_positive_hop_limit() -> None:
    """At least one tool hop must be allowed."""
    with pytest.raises(ConfigurationError, match="max_tool_hops"):
        Config(provider="openai", model="m", use_mock=True, max_tool_hops=0)


def test_config_rejects_base_url_for_non_openai_backends() -> None:
    """base_url only makes sense for OpenAI-compatible endpoints."""
    with pytest.raises(ConfigurationError, match="base_url"):
        Config(provider="gemini", model="m", use_mock=True, base_url="http://x")

    config = Config(provider="openai", model="m", use_mock=True, base_url="http://x")
    assert config.base_url == "http://x"


def test_config_normalizes_vision_models_to_tuple() -> None:
    """Lists of vision patterns are frozen into a tuple."""
    config = Config(
        provider="openrouter",
        model="m",
        use_mock=True,
        vision_models=["openai/gpt-4o*"],  # type: ignore[arg-type]
    )

    assert config.vision_models == ("openai/gpt-4o*",)


def test_config_repr_redacts_key() -> None:
    """Secrets never show up in logs or tracebacks."""
    config = Config(provider="openai", model="m", api_key="sk-secret")

    assert "sk-secret" not in repr(config)
    assert "[REDACTED]" in str(config)


# =============================================================================
# CompletionOptions
# =============================================================================


def test_options_tools_tristate() -> None:
    """Explicit flags win; auto mode follows top_k."""
    assert CompletionOptions(tools=True).wants_tools() is True
    assert CompletionOptions(tools=False, top_k=5).wants_tools() is False
    assert CompletionOptions().wants_tools() is False
    assert CompletionOptions(top_k=5).wants_tools() is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_tokens": 0},
        {"temperature": -0.1},
        {"top_p": 1.5},
        {"top_k": 0},
        {"tools": "yes"},
        {"custom_overrides": ["seed", 1]},
    ],
)
def test_options_reject_invalid_values(kwargs: dict) -> None:
    """Malformed options fail at construction, not at request time."""
    with pytest.raises(ConfigurationError):
        CompletionOptions(**kwargs)
