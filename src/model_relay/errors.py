"""Exception taxonomy for Model Relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all Model Relay errors."""


class SpecifierError(RelayError, ValueError):
    """A model specifier string could not be parsed."""


class UnknownProvider(SpecifierError):
    """The provider token of a specifier is not a known provider."""

    def __init__(self, token: str, known: list[str]) -> None:
        self.token = token
        self.known = known
        super().__init__(
            f"Unknown provider '{token}'. Valid providers: {', '.join(known)}"
        )


class ProviderConnectionError(RelayError, ConnectionError):
    """A backend failed the reachability check when a session was opened."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"Cannot connect to {provider}: {message}")


class NoProviderAvailable(RelayError):
    """Fallback selection found no live provider serving the requested model.

    ``attempts`` maps every provider tried to its last known error.
    """

    def __init__(self, requested: str, attempts: dict[str, str]) -> None:
        self.requested = requested
        self.attempts = dict(attempts)
        tried = "; ".join(f"{p}: {err}" for p, err in self.attempts.items())
        super().__init__(
            f"No provider available for '{requested}'. Tried: {tried or 'none'}"
        )


class ToolExecutionError(RelayError):
    """The external tool executor failed for one call."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}")


class MalformedStream(RelayError):
    """A streamed chunk could not be decoded."""
