"""Effect registry and chain runner.

A chain is an ordered list of ``ChainEntry`` (effect name + argument map).
``validate_chain`` resolves and checks every entry before anything is
touched; ``apply_chain`` then runs the effects strictly in order, checking
the buffer after each one.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.delay import Delay, check_tail_length
from wavfx.effects import Effect, Gain, Normalize, Softclip
from wavfx.eq import BandPass, HighShelf, LowShelf, Peaking
from wavfx.errors import ProcessingError, UnknownEffectError, WavfxError

logger = logging.getLogger(__name__)

EFFECT_TYPES: tuple[type[Effect], ...] = (
    Gain,
    Softclip,
    Normalize,
    Delay,
    Peaking,
    BandPass,
    LowShelf,
    HighShelf,
)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: dict[str, Effect] = {}


def register(effect: Effect) -> None:
    """Register *effect* under its name and aliases."""
    for key in (effect.name, *effect.aliases):
        existing = _REGISTRY.get(key)
        if existing is not None and existing is not effect:
            raise ValueError(f"Effect name {key!r} already registered by {existing!r}")
        _REGISTRY[key] = effect


def _build_registry() -> None:
    if _REGISTRY:
        return
    for cls in EFFECT_TYPES:
        register(cls())


def get_registry() -> dict[str, Effect]:
    """Return the name -> effect map (aliases included), building it on first call."""
    _build_registry()
    return _REGISTRY


def get_effect(name: str) -> Effect:
    """Look up an effect by name or alias. Raises UnknownEffectError."""
    reg = get_registry()
    effect = reg.get(name.strip().lower())
    if effect is None:
        raise UnknownEffectError(name)
    return effect


def list_effects() -> list[Effect]:
    """Registered effects, one per effect (aliases collapsed), sorted by name."""
    seen: dict[str, Effect] = {}
    for effect in get_registry().values():
        seen.setdefault(effect.name, effect)
    return [seen[k] for k in sorted(seen)]


# ---------------------------------------------------------------------------
# Chain entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainEntry:
    """One ``name:key=value:...`` step; names and keys are lowercased."""

    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "name", self.name.strip().lower())
        object.__setattr__(
            self,
            "arguments",
            {str(k).strip().lower(): v for k, v in self.arguments.items()},
        )

    def __str__(self) -> str:
        parts = [self.name]
        for key, value in self.arguments.items():
            if isinstance(value, float):
                parts.append(f"{key}={value:g}")
            else:
                parts.append(f"{key}={value}")
        return ":".join(parts)


@dataclass(frozen=True)
class BoundEffect:
    """A validated chain step: the resolved effect and its typed parameters."""

    entry: ChainEntry
    effect: Effect
    params: Any


def _as_entry(step) -> ChainEntry:
    if isinstance(step, ChainEntry):
        return step
    name, arguments = step
    return ChainEntry(name, arguments)


def validate_chain(
    steps,
    tail_length: float | None = None,
    fmt: SampleFormat | None = None,
) -> list[BoundEffect]:
    """Resolve and validate every step before any processing.

    *steps* holds ``ChainEntry`` objects or ``(name, arguments)`` pairs.
    The first problem raises ValidationError (UnknownEffectError for an
    unregistered name); nothing is mutated.
    """
    check_tail_length(tail_length, "tail")
    bound: list[BoundEffect] = []
    for step in steps:
        entry = _as_entry(step)
        effect = get_effect(entry.name)
        effect.validate(entry.arguments, tail_length, fmt=fmt)
        bound.append(BoundEffect(entry, effect, effect.parse(entry.arguments)))
    return bound


def check_chain_format(steps: list[BoundEffect], fmt: SampleFormat) -> None:
    """Run only the format-dependent checks of already validated steps."""
    for step in steps:
        step.effect.check_format(step.params, fmt)


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


def sanitize(buffer: SampleBuffer, effect_name: str) -> None:
    """Reject a buffer an effect left non-finite or off a frame boundary."""
    bad = np.count_nonzero(~np.isfinite(buffer.samples))
    if bad:
        raise ProcessingError(f"produced {bad} non-finite samples", effect_name)
    if not buffer.is_frame_aligned():
        raise ProcessingError(
            f"left {len(buffer)} samples, not a multiple of {buffer.channels} channels",
            effect_name,
        )


def apply_step(
    buffer: SampleBuffer,
    step: BoundEffect,
    tail_length: float | None = None,
) -> str | None:
    """Apply one validated step in place and sanitize the result."""
    name = step.entry.name
    try:
        note = step.effect.apply(buffer, step.params, tail_length)
    except WavfxError:
        raise
    except (ArithmeticError, ValueError, MemoryError) as e:
        raise ProcessingError(str(e), name) from e
    sanitize(buffer, name)
    if note:
        logger.debug("%s: %s", name, note)
    return note


def apply_chain(
    buffer: SampleBuffer,
    steps: list[BoundEffect],
    tail_length: float | None = None,
) -> SampleBuffer:
    """Apply validated steps in order; the first failure aborts the chain."""
    for step in steps:
        logger.debug("applying %s", step.entry)
        apply_step(buffer, step, tail_length)
    return buffer


def process(
    buffer: SampleBuffer,
    steps,
    tail_length: float | None = None,
) -> SampleBuffer:
    """Validate the whole chain against *buffer*'s format, then apply it."""
    bound = validate_chain(steps, tail_length, fmt=buffer.format)
    return apply_chain(buffer, bound, tail_length)
