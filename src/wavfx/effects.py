"""Effect base class and the stateless per-sample effects (gain, softclip, normalize)."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.errors import ValidationError

# Largest float64 strictly below 1.0; tanh saturates to exactly 1.0 otherwise.
_BELOW_ONE = float(np.nextafter(1.0, 0.0))


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _lookup(arguments: Mapping[str, Any], key: str, aliases: tuple[str, ...]):
    for k in (key, *aliases):
        if k in arguments:
            return arguments[k]
    return None


def _to_float(effect: str, key: str, raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Argument '{key}' must be a number, got {raw!r}", effect, key
        ) from None
    if not math.isfinite(value):
        raise ValidationError(
            f"Argument '{key}' must be finite, got {value}", effect, key
        )
    return value


def require(
    effect: str,
    arguments: Mapping[str, Any],
    key: str,
    aliases: tuple[str, ...] = (),
) -> float:
    """Return the finite float value of a required argument."""
    raw = _lookup(arguments, key, aliases)
    if raw is None:
        raise ValidationError(
            f"Missing argument '{key}' (add '{key}=x' to '{effect}:')", effect, key
        )
    return _to_float(effect, key, raw)


def optional(
    effect: str,
    arguments: Mapping[str, Any],
    key: str,
    default: float,
    aliases: tuple[str, ...] = (),
) -> float:
    """Return the finite float value of an optional argument, or *default*."""
    raw = _lookup(arguments, key, aliases)
    if raw is None:
        return default
    return _to_float(effect, key, raw)


def db_to_linear(db: float) -> float:
    return 10.0 ** (db / 20.0)


def check_db_range(
    effect: str,
    db: float,
    key: str = "db",
    power: float = 1.0,
) -> float:
    """Reject *db* when ``db_to_linear(|db|) ** power`` is not a finite float."""
    try:
        scale = 10.0 ** (abs(db) * power / 20.0)
    except OverflowError:
        scale = math.inf
    if not math.isfinite(scale):
        raise ValidationError(
            f"Argument '{key}' is out of range: {db} dB does not fit a linear gain",
            effect,
            key,
        )
    return db


# ---------------------------------------------------------------------------
# Effect base
# ---------------------------------------------------------------------------


class Effect:
    """Uniform effect capability: name, validate, apply.

    Subclasses set ``name`` (and optionally ``aliases``), describe their
    argument keys in ``arguments``, and implement ``parse`` and ``process``.
    """

    name: str = ""
    aliases: tuple[str, ...] = ()
    arguments: tuple[str, ...] = ()
    description: str = ""

    def parse(self, arguments: Mapping[str, Any]):
        """Convert a raw argument map into this effect's typed parameters.

        Raises ValidationError for missing, non-numeric or out-of-range values.
        """
        raise NotImplementedError

    def validate(
        self,
        arguments: Mapping[str, Any],
        tail_length: float | None = None,
        fmt: SampleFormat | None = None,
    ) -> None:
        """Check *arguments* without touching any buffer.

        Checks that depend on the stream (e.g. Nyquist) run only when *fmt*
        is given.
        """
        params = self.parse(arguments)
        if fmt is not None:
            self.check_format(params, fmt)

    def check_format(self, params, fmt: SampleFormat) -> None:
        """Checks that need the decoded stream format; none by default."""

    def apply(
        self,
        buffer: SampleBuffer,
        arguments,
        tail_length: float | None = None,
    ) -> str | None:
        """Rewrite ``buffer.samples`` in place.

        *arguments* is either a raw mapping or the struct returned by
        ``parse``.  Returns an optional short note for the caller to log.
        """
        params = self.parse(arguments) if isinstance(arguments, Mapping) else arguments
        return self.process(buffer, params, tail_length)

    def process(self, buffer: SampleBuffer, params, tail_length: float | None):
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


# ---------------------------------------------------------------------------
# Gain
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GainParams:
    db: float

    @property
    def factor(self) -> float:
        return db_to_linear(self.db)


class Gain(Effect):
    """Linear gain: every sample is multiplied by ``10**(db/20)``."""

    name = "gain"
    arguments = ("db",)
    description = "Scale amplitude by db decibels"

    def parse(self, arguments: Mapping[str, Any]) -> GainParams:
        db = require(self.name, arguments, "db")
        return GainParams(db=check_db_range(self.name, db))

    def process(self, buffer, params: GainParams, tail_length=None):
        buffer.samples *= params.factor
        return None


# ---------------------------------------------------------------------------
# Softclip
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SoftclipParams:
    db: float

    @property
    def factor(self) -> float:
        return db_to_linear(self.db)


class Softclip(Effect):
    """Saturating distortion: ``tanh(sample * 10**(db/20))``.

    Output stays strictly inside (-1, 1) whatever the input level.
    """

    name = "softclip"
    aliases = ("distortion",)
    arguments = ("db",)
    description = "tanh soft clipping with db of drive"

    def parse(self, arguments: Mapping[str, Any]) -> SoftclipParams:
        db = require(self.name, arguments, "db")
        return SoftclipParams(db=check_db_range(self.name, db))

    def process(self, buffer, params: SoftclipParams, tail_length=None):
        samples = buffer.samples
        samples *= params.factor
        np.tanh(samples, out=samples)
        np.clip(samples, -_BELOW_ONE, _BELOW_ONE, out=samples)
        return None


# ---------------------------------------------------------------------------
# Normalize
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizeParams:
    db: float = 0.0

    @property
    def ceiling(self) -> float:
        return db_to_linear(self.db)


class Normalize(Effect):
    """Peak normalization to a ceiling of ``db`` dBFS (default 0 dBFS)."""

    name = "normalize"
    arguments = ("db?",)
    description = "Scale so the peak sample hits db dBFS (default 0)"

    def parse(self, arguments: Mapping[str, Any]) -> NormalizeParams:
        db = optional(self.name, arguments, "db", 0.0)
        return NormalizeParams(db=check_db_range(self.name, db))

    def process(self, buffer, params: NormalizeParams, tail_length=None):
        peak = buffer.peak
        if peak == 0.0:
            return "silent input, unchanged"
        scale = params.ceiling / peak
        buffer.samples *= scale
        return f"peak {20.0 * math.log10(peak):.1f} dBFS -> {params.db:.1f} dBFS"
