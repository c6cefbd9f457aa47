"""Feedback delay: ring-buffer delay line, fixed and energy-driven tails."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.effects import Effect, require
from wavfx.errors import ProcessingError, ValidationError

logger = logging.getLogger(__name__)

# -80 dB relative amplitude: the auto tail stops once the line's RMS drops here.
ENERGY_THRESHOLD = 1e-4

# Feedback above this (and below 1) without a fixed tail gets a warning.
NEAR_UNITY_FEEDBACK = 0.9


# ---------------------------------------------------------------------------
# Delay line
# ---------------------------------------------------------------------------


class DelayLine:
    """Fixed-capacity circular buffer of float64 values.

    Each step reads the oldest value (``delayed``) and overwrites it with
    ``input + delayed * feedback``, so a value written now is read back
    exactly ``capacity`` steps later.  The line starts out full of zeros.

    Parameters
    ----------
    capacity : int
        Delay length in samples (across all interleaved channels).
    """

    __slots__ = ("_line", "_pos", "_capacity")

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._line = np.zeros(capacity, dtype=np.float64)
        self._pos = 0
        self._capacity = capacity

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def position(self) -> int:
        """Index of the oldest value (the next one to be read)."""
        return self._pos

    def contents(self) -> np.ndarray:
        """Copy of the line, oldest value first."""
        return np.roll(self._line, -self._pos)

    def energy(self) -> float:
        """Sum of squared values, correctly rounded."""
        return math.fsum((self._line * self._line).tolist())

    def rms(self) -> float:
        return math.sqrt(self.energy() / self._capacity)

    def process(self, x: np.ndarray, feedback: float) -> np.ndarray:
        """Push *x* through the line; return the delayed value read per sample."""
        x = np.asarray(x, dtype=np.float64)
        out = np.empty_like(x)
        n = len(x)
        cap = self._capacity
        i = 0
        while i < n:
            # Segment from the read position up to the end of the storage
            take = min(n - i, cap - self._pos)
            seg = slice(self._pos, self._pos + take)
            delayed = self._line[seg].copy()
            out[i : i + take] = delayed
            self._line[seg] = x[i : i + take] + delayed * feedback
            self._pos = (self._pos + take) % cap
            i += take
        return out

    def drain(
        self,
        feedback: float,
        threshold: float = ENERGY_THRESHOLD,
    ) -> tuple[np.ndarray, bool]:
        """Rotate the line with silent input until its RMS is <= *threshold*.

        The squared-value sum is updated incrementally as values leave and
        enter the line, and resynchronised exactly at every wrap.  Two guards
        bound the loop when rounding keeps the decay hovering above the
        threshold:

        * the running RMS failing to decrease for ``capacity`` consecutive
          steps;
        * the exact energy failing to decrease over a whole revolution.

        Returns the delayed values read (one per step) and whether a guard
        stopped the loop before the threshold was reached.
        """
        line = self._line.tolist()
        cap = self._capacity
        pos = self._pos
        square_sum = math.fsum(v * v for v in line)
        revolution_energy = None
        prev_rms = math.inf
        stalled = 0
        stagnated = False
        out: list[float] = []

        while True:
            rms = math.sqrt(max(square_sum, 0.0) / cap)
            if rms <= threshold:
                break
            if rms < prev_rms:
                stalled = 0
            else:
                stalled += 1
                if stalled >= cap:
                    stagnated = True
                    break
            prev_rms = rms

            delayed = line[pos]
            entering = delayed * feedback
            line[pos] = entering
            square_sum -= delayed * delayed
            square_sum += entering * entering
            out.append(delayed)

            pos += 1
            if pos == cap:
                pos = 0
                square_sum = math.fsum(v * v for v in line)
                if revolution_energy is not None and square_sum >= revolution_energy:
                    stagnated = True
                    break
                revolution_energy = square_sum

        self._line = np.asarray(line, dtype=np.float64)
        self._pos = pos
        return np.asarray(out, dtype=np.float64), stagnated


def line_capacity(fmt: SampleFormat, time_ms: float) -> int:
    """Delay-line length in samples for *time_ms* at *fmt*.

    Rounded to whole frames so every echo lands on its own channel.
    """
    frames = max(1, round(time_ms / 1000.0 * fmt.sample_rate))
    return frames * fmt.channels


def tail_samples(fmt: SampleFormat, tail_length: float) -> int:
    """Number of samples in a fixed tail of *tail_length* seconds."""
    return round(tail_length * fmt.sample_rate) * fmt.channels


# ---------------------------------------------------------------------------
# Delay effect
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DelayParams:
    mix: float
    feedback: float
    time: float


def check_tail_length(tail_length: float | None, effect: str) -> None:
    if tail_length is None:
        return
    if not math.isfinite(tail_length) or tail_length < 0:
        raise ValidationError(
            f"Tail length must be a finite number of seconds >= 0, got {tail_length}",
            effect,
            "tail",
        )


class Delay(Effect):
    """Feedback delay (comb filter) with an automatic or fixed-length tail.

    ``mix`` is the wet level, ``fb`` the feedback gain and ``time`` the delay
    in milliseconds.  Without a tail length the echoes are rendered until the
    delay line decays below -80 dB; with one, exactly that many seconds are
    appended.
    """

    name = "delay"
    arguments = ("mix", "fb", "time")
    description = "Feedback delay; time in ms, tail until -80 dB or --tail seconds"

    def parse(self, arguments: Mapping[str, Any]) -> DelayParams:
        mix = require(self.name, arguments, "mix")
        feedback = require(self.name, arguments, "fb", aliases=("feedback",))
        time = require(self.name, arguments, "time")
        if time < 1.0:
            raise ValidationError(
                f"Delay time must be >= 1 ms, got {time}", self.name, "time"
            )
        if mix < 0.0:
            raise ValidationError(
                f"Delay mix must be >= 0, got {mix}", self.name, "mix"
            )
        if feedback < 0.0:
            raise ValidationError(
                f"Delay feedback must be >= 0, got {feedback}", self.name, "fb"
            )
        return DelayParams(mix=mix, feedback=feedback, time=time)

    def validate(self, arguments, tail_length=None, fmt=None) -> None:
        params = self.parse(arguments)
        check_tail_length(tail_length, self.name)
        if tail_length is None:
            if params.feedback >= 1.0:
                raise ValidationError(
                    "Tail length (--tail, -t) is required for delay feedback >= 1 "
                    "to avoid infinite feedback cycles",
                    self.name,
                    "fb",
                )
            if params.feedback > NEAR_UNITY_FEEDBACK:
                logger.warning(
                    "delay feedback %.3g is close to 1: processing may take a while "
                    "and the output may be quite large",
                    params.feedback,
                )
        if fmt is not None:
            self.check_format(params, fmt)

    def process(self, buffer: SampleBuffer, params: DelayParams, tail_length=None):
        if tail_length is None and params.feedback >= 1.0:
            raise ProcessingError(
                "feedback >= 1 without a tail length would never terminate",
                self.name,
            )
        fmt = buffer.format
        line = DelayLine(line_capacity(fmt, params.time))

        samples = buffer.samples
        delayed = line.process(samples, params.feedback)
        samples += delayed * params.mix

        stagnated = False
        if tail_length is not None:
            tail = line.process(np.zeros(tail_samples(fmt, tail_length)), params.feedback)
        elif params.feedback > 0.0:
            tail, stagnated = line.drain(params.feedback)
        else:
            # Without feedback nothing recirculates: no automatic tail
            tail = np.zeros(0, dtype=np.float64)

        tail *= params.mix
        np.clip(tail, -1.0, 1.0, out=tail)
        buffer.samples = np.concatenate([samples, tail])
        padded = buffer.pad_to_frame()

        note = f"tail {(len(tail) + padded) / fmt.channels / fmt.sample_rate:.2f}s"
        if stagnated:
            note += ", decay stalled above -80 dB and was cut"
            logger.info("delay: energy stopped decreasing, tail cut early")
        return note
