"""Model specifier parsing.

Handles:

- ``provider::model`` (e.g. ``lmstudio::qwen3-4b@q4_k_m:latest``); only the
  first ``::`` separates, so model names may contain colons
- bare names (e.g. ``flash`` -> ``gemini::gemini-2.5-flash``), resolved
  through the hosted alias table; unknown names pass through unchanged
"""

from __future__ import annotations

from dataclasses import dataclass, field

from model_relay.errors import SpecifierError, UnknownProvider
from model_relay.types import Provider

SEPARATOR = "::"

HOSTED_ALIASES: dict[str, str] = {
    "pro": "gemini-2.5-pro",
    "flash": "gemini-2.5-flash",
    "flash-lite": "gemini-2.5-flash-lite",
    "flash-002": "gemini-2.0-flash-002",
    "flash-thinking": "gemini-2.0-flash-thinking-exp-1219",
}


@dataclass(frozen=True)
class ModelSpecifier:
    """An immutable provider + model pair.

    ``raw`` keeps the user's input for messages; it does not take part in
    equality, so ``flash`` and ``gemini::gemini-2.5-flash`` compare equal.
    """

    provider: Provider
    model: str
    raw: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.model:
            raise SpecifierError("Model name must not be empty")

    def __str__(self) -> str:
        return format_specifier(self)


def resolve_hosted_alias(name: str) -> str:
    """Map a short hosted alias to its full model id (case-insensitive)."""
    return HOSTED_ALIASES.get(name.lower(), name)


def parse_specifier(raw: str) -> ModelSpecifier:
    """Parse *raw* into a :class:`ModelSpecifier`.

    Raises
    ------
    UnknownProvider
        The provider token is not one of :class:`Provider`.
    SpecifierError
        The input or the model token is empty.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise SpecifierError("Model specifier must be a non-empty string")
    text = raw.strip()

    if SEPARATOR in text:
        token, model = text.split(SEPARATOR, 1)
        token = token.strip().lower()
        try:
            provider = Provider(token)
        except ValueError:
            raise UnknownProvider(token, Provider.names()) from None
        if not model:
            raise SpecifierError(
                "Empty model name after provider separator. "
                "Expected format: provider::model"
            )
        return ModelSpecifier(provider=provider, model=model, raw=raw)

    return ModelSpecifier(
        provider=Provider.GEMINI,
        model=resolve_hosted_alias(text),
        raw=raw,
    )


def format_specifier(spec: ModelSpecifier) -> str:
    """Serialize back to ``provider::model``."""
    return f"{spec.provider.value}{SEPARATOR}{spec.model}"


def is_valid_specifier(raw: str) -> bool:
    try:
        parse_specifier(raw)
    except SpecifierError:
        return False
    return True
