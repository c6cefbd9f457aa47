"""Exception hierarchy for wavfx.

Every error carries enough context (effect name, argument name, value) to fix
the input without reading the source.
"""

from __future__ import annotations


class WavfxError(Exception):
    """Base class for all wavfx errors."""


class ValidationError(WavfxError, ValueError):
    """An effect or its arguments were rejected before any processing."""

    def __init__(
        self,
        message: str,
        effect: str | None = None,
        argument: str | None = None,
    ):
        self.effect = effect
        self.argument = argument
        self.detail = message
        if effect is not None:
            message = f"{effect} -> {message}"
        super().__init__(message)


class UnknownEffectError(ValidationError):
    """The chain references an effect name that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown effect {name!r}")
        self.name = name


class ChainSyntaxError(ValidationError):
    """An effect token does not follow ``name:key=value:...``."""


class ProcessingError(WavfxError, RuntimeError):
    """An effect failed while mutating the buffer."""

    def __init__(self, message: str, effect: str | None = None):
        self.effect = effect
        if effect is not None:
            message = f"{effect} -> {message}"
        super().__init__(message)


class DecodeError(WavfxError, ValueError):
    """The input container or sample format is not supported."""


class EncodeError(WavfxError, ValueError):
    """The buffer could not be written in its original format."""
