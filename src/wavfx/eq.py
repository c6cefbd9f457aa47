"""Second-order IIR (biquad) equalizers: peaking, band-pass, low and high shelf.

Coefficients follow the RBJ audio-EQ cookbook.  Every variant runs through the
same ``scipy.signal.lfilter`` call; only the coefficient derivation differs.

The filter history runs across the whole interleaved stream, so multichannel
input is filtered as one sequence rather than one filter per channel.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import signal

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.effects import Effect, check_db_range, optional, require
from wavfx.errors import ProcessingError, ValidationError


@dataclass(frozen=True)
class EqParams:
    freq: float
    db: float
    q: float


@dataclass(frozen=True)
class BiquadCoefficients:
    """Raw (un-normalized) biquad coefficients."""

    b0: float
    b1: float
    b2: float
    a0: float
    a1: float
    a2: float

    def normalized(self) -> tuple[float, float, float, float, float]:
        """Return ``(b0, b1, b2, a1, a2)`` divided by ``a0``."""
        a0 = self.a0
        return (self.b0 / a0, self.b1 / a0, self.b2 / a0, self.a1 / a0, self.a2 / a0)


class BiquadState:
    """Two samples of input and output history, fresh for every apply call."""

    __slots__ = ("x1", "x2", "y1", "y2")

    def __init__(self):
        self.x1 = 0.0
        self.x2 = 0.0
        self.y1 = 0.0
        self.y2 = 0.0


def _intermediates(params: EqParams, sample_rate: float) -> tuple[float, float, float]:
    """Return ``(A, cos(w0), alpha)`` for the cookbook formulas."""
    a = 10.0 ** (params.db / 40.0)
    w0 = 2.0 * math.pi * params.freq / sample_rate
    alpha = math.sin(w0) / (2.0 * params.q)
    return a, math.cos(w0), alpha


def peaking_coefficients(params: EqParams, sample_rate: float) -> BiquadCoefficients:
    a, cosw0, alpha = _intermediates(params, sample_rate)
    return BiquadCoefficients(
        b0=1.0 + alpha * a,
        b1=-2.0 * cosw0,
        b2=1.0 - alpha * a,
        a0=1.0 + alpha / a,
        a1=-2.0 * cosw0,
        a2=1.0 - alpha / a,
    )


def bandpass_coefficients(params: EqParams, sample_rate: float) -> BiquadCoefficients:
    """Constant 0 dB peak gain band-pass, scaled by ``db`` of output gain."""
    _, cosw0, alpha = _intermediates(params, sample_rate)
    gain = 10.0 ** (params.db / 20.0)
    return BiquadCoefficients(
        b0=alpha * gain,
        b1=0.0,
        b2=-alpha * gain,
        a0=1.0 + alpha,
        a1=-2.0 * cosw0,
        a2=1.0 - alpha,
    )


def low_shelf_coefficients(params: EqParams, sample_rate: float) -> BiquadCoefficients:
    a, cosw0, alpha = _intermediates(params, sample_rate)
    k = 2.0 * math.sqrt(a) * alpha
    return BiquadCoefficients(
        b0=a * ((a + 1.0) - (a - 1.0) * cosw0 + k),
        b1=2.0 * a * ((a - 1.0) - (a + 1.0) * cosw0),
        b2=a * ((a + 1.0) - (a - 1.0) * cosw0 - k),
        a0=(a + 1.0) + (a - 1.0) * cosw0 + k,
        a1=-2.0 * ((a - 1.0) + (a + 1.0) * cosw0),
        a2=(a + 1.0) + (a - 1.0) * cosw0 - k,
    )


def high_shelf_coefficients(params: EqParams, sample_rate: float) -> BiquadCoefficients:
    a, cosw0, alpha = _intermediates(params, sample_rate)
    k = 2.0 * math.sqrt(a) * alpha
    return BiquadCoefficients(
        b0=a * ((a + 1.0) + (a - 1.0) * cosw0 + k),
        b1=-2.0 * a * ((a - 1.0) + (a + 1.0) * cosw0),
        b2=a * ((a + 1.0) + (a - 1.0) * cosw0 - k),
        a0=(a + 1.0) - (a - 1.0) * cosw0 + k,
        a1=2.0 * ((a - 1.0) - (a + 1.0) * cosw0),
        a2=(a + 1.0) - (a - 1.0) * cosw0 - k,
    )


def run_biquad(samples: np.ndarray, coeffs: BiquadCoefficients) -> BiquadState:
    """Filter *samples* (1D float64 array) in place with fresh history.

    Returns the history left after the last sample.
    """
    b0, b1, b2, a1, a2 = coeffs.normalized()
    state = BiquadState()
    n = len(samples)
    if n == 0:
        return state
    x = samples.copy()
    samples[:] = signal.lfilter([b0, b1, b2], [1.0, a1, a2], x)
    state.x1 = float(x[-1])
    state.y1 = float(samples[-1])
    if n > 1:
        state.x2 = float(x[-2])
        state.y2 = float(samples[-2])
    return state


# ---------------------------------------------------------------------------
# EQ effects
# ---------------------------------------------------------------------------


class BiquadEffect(Effect):
    """Shared validation and apply loop for the biquad family."""

    arguments = ("freq", "db", "q")
    db_required = True

    def coefficients(self, params: EqParams, sample_rate: float) -> BiquadCoefficients:
        raise NotImplementedError

    def parse(self, arguments: Mapping[str, Any]) -> EqParams:
        freq = require(self.name, arguments, "freq")
        if self.db_required:
            db = require(self.name, arguments, "db")
        else:
            db = optional(self.name, arguments, "db", 0.0)
        q = require(self.name, arguments, "q")
        if freq <= 0.0:
            raise ValidationError(
                f"Frequency must be > 0 Hz, got {freq}", self.name, "freq"
            )
        if q <= 0.0:
            raise ValidationError(f"Q must be > 0, got {q}", self.name, "q")
        # Shelf coefficients scale with A**4, the squared linear gain
        check_db_range(self.name, db, power=2.0)
        return EqParams(freq=freq, db=db, q=q)

    def check_format(self, params: EqParams, fmt: SampleFormat) -> None:
        if params.freq >= fmt.nyquist:
            raise ValidationError(
                f"Frequency {params.freq} Hz >= Nyquist ({fmt.nyquist} Hz)",
                self.name,
                "freq",
            )

    def process(self, buffer: SampleBuffer, params: EqParams, tail_length=None):
        if params.freq >= buffer.format.nyquist:
            raise ProcessingError(
                f"Frequency {params.freq} Hz >= Nyquist ({buffer.format.nyquist} Hz)",
                self.name,
            )
        coeffs = self.coefficients(params, buffer.sample_rate)
        if not all(math.isfinite(c) for c in coeffs.normalized()):
            raise ProcessingError(f"Unstable filter design for {params}", self.name)
        run_biquad(buffer.samples, coeffs)
        return None


class Peaking(BiquadEffect):
    """Peaking EQ: boost or cut ``db`` around ``freq`` with bandwidth ``q``."""

    name = "eq"
    aliases = ("peak", "eqband")
    description = "Peaking EQ band (freq Hz, db gain, q)"

    def coefficients(self, params, sample_rate):
        return peaking_coefficients(params, sample_rate)


class BandPass(BiquadEffect):
    name = "bandpass"
    arguments = ("freq", "q", "db?")
    db_required = False
    description = "Band-pass around freq Hz with width q (db = output gain)"

    def coefficients(self, params, sample_rate):
        return bandpass_coefficients(params, sample_rate)


class LowShelf(BiquadEffect):
    name = "lowshelf"
    description = "Low shelf below freq Hz by db (q = slope)"

    def coefficients(self, params, sample_rate):
        return low_shelf_coefficients(params, sample_rate)


class HighShelf(BiquadEffect):
    name = "highshelf"
    description = "High shelf above freq Hz by db (q = slope)"

    def coefficients(self, params, sample_rate):
        return high_shelf_coefficients(params, sample_rate)
