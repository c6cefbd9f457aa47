"""Tests for wavfx.delay (DelayLine, tails, Delay effect)."""

import logging
import math

import numpy as np
import pytest

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.delay import (
    ENERGY_THRESHOLD,
    Delay,
    DelayLine,
    line_capacity,
    tail_samples,
)
from wavfx.errors import ProcessingError, ValidationError


def _rms(x):
    return math.sqrt(float(np.mean(np.square(x))))


# ---------------------------------------------------------------------------
# DelayLine
# ---------------------------------------------------------------------------


class TestDelayLine:
    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError, match="capacity"):
            DelayLine(0)

    def test_starts_silent(self):
        line = DelayLine(5)
        np.testing.assert_array_equal(line.contents(), np.zeros(5))
        assert line.energy() == 0.0

    def test_pure_delay(self):
        line = DelayLine(4)
        out = line.process(np.arange(1.0, 9.0), 0.0)
        np.testing.assert_array_equal(out, [0, 0, 0, 0, 1, 2, 3, 4])

    def test_feedback_recirculates(self):
        line = DelayLine(2)
        out = line.process(np.array([1.0, 0, 0, 0, 0, 0]), 0.5)
        np.testing.assert_array_equal(out, [0, 0, 1.0, 0, 0.5, 0])

    def test_chunked_matches_whole(self):
        rng = np.random.default_rng(1)
        x = rng.uniform(-1, 1, 37)
        whole = DelayLine(5).process(x, 0.6)
        line = DelayLine(5)
        parts = [line.process(x[i : i + 3], 0.6) for i in range(0, len(x), 3)]
        np.testing.assert_array_equal(np.concatenate(parts), whole)

    def test_contents_oldest_first(self):
        line = DelayLine(3)
        line.process(np.array([1.0, 2.0, 3.0, 4.0]), 0.0)
        assert line.position == 1
        np.testing.assert_array_equal(line.contents(), [2.0, 3.0, 4.0])

    def test_drain_reaches_threshold(self):
        line = DelayLine(8)
        line.process(np.full(8, 0.5), 0.0)
        out, stagnated = line.drain(0.5)
        assert not stagnated
        assert line.rms() <= ENERGY_THRESHOLD
        assert len(out) > 0

    def test_drain_stops_when_energy_cannot_fall(self):
        line = DelayLine(8)
        line.process(np.full(8, 0.5), 0.0)
        out, stagnated = line.drain(1.0)
        assert stagnated
        assert len(out) <= 2 * line.capacity

    def test_drain_silent_line_is_empty(self):
        out, stagnated = DelayLine(16).drain(0.9)
        assert len(out) == 0
        assert not stagnated


class TestSizing:
    def test_capacity_mono(self):
        assert line_capacity(SampleFormat(44100, 1), 10) == 441

    def test_capacity_is_whole_frames(self):
        fmt = SampleFormat(44100, 2)
        assert line_capacity(fmt, 10) == 882
        assert line_capacity(fmt, 10.01) % 2 == 0

    def test_capacity_at_least_one_frame(self):
        assert line_capacity(SampleFormat(100, 3), 1) == 3

    def test_tail_samples(self):
        assert tail_samples(SampleFormat(44100, 2), 0.5) == 44100
        assert tail_samples(SampleFormat(8000, 1), 0.0) == 0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestDelayValidation:
    def test_valid(self):
        Delay().validate({"mix": 0.5, "fb": 0.5, "time": 100})

    def test_feedback_alias(self):
        params = Delay().parse({"mix": 0.5, "feedback": 0.3, "time": 100})
        assert params.feedback == 0.3

    @pytest.mark.parametrize("missing", ["mix", "fb", "time"])
    def test_missing_argument(self, missing):
        args = {"mix": 0.5, "fb": 0.5, "time": 100}
        del args[missing]
        with pytest.raises(ValidationError, match=f"Missing argument '{missing}'"):
            Delay().validate(args)

    def test_time_below_one_ms(self):
        with pytest.raises(ValidationError, match="time"):
            Delay().validate({"mix": 0.5, "fb": 0.5, "time": 0.5})

    def test_negative_mix(self):
        with pytest.raises(ValidationError, match="mix"):
            Delay().validate({"mix": -0.1, "fb": 0.5, "time": 10})

    def test_negative_feedback(self):
        with pytest.raises(ValidationError, match="feedback"):
            Delay().validate({"mix": 0.5, "fb": -0.1, "time": 10})

    def test_unit_feedback_requires_tail(self):
        with pytest.raises(ValidationError, match="Tail length") as exc:
            Delay().validate({"mix": 0.5, "fb": 1.0, "time": 10})
        assert exc.value.argument == "fb"

    def test_unit_feedback_with_tail(self):
        Delay().validate({"mix": 0.5, "fb": 1.5, "time": 10}, tail_length=1.0)

    def test_negative_tail(self):
        with pytest.raises(ValidationError, match="Tail length"):
            Delay().validate({"mix": 0.5, "fb": 0.5, "time": 10}, tail_length=-1.0)

    def test_near_unity_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="wavfx.delay"):
            Delay().validate({"mix": 0.5, "fb": 0.95, "time": 10})
        assert "close to 1" in caplog.text

    def test_near_unity_with_tail_is_quiet(self, caplog):
        with caplog.at_level(logging.WARNING, logger="wavfx.delay"):
            Delay().validate({"mix": 0.5, "fb": 0.95, "time": 10}, tail_length=0.5)
        assert caplog.text == ""


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class TestDelayProcess:
    def test_no_feedback_no_tail_keeps_length(self):
        buf = SampleBuffer.noise(1, 1000, 44100, seed=0)
        Delay().apply(buf, {"mix": 0.5, "fb": 0, "time": 5})
        assert len(buf) == 1000

    def test_no_feedback_fixed_tail(self):
        buf = SampleBuffer.noise(1, 1000, 44100, seed=0)
        Delay().apply(buf, {"mix": 0.5, "fb": 0, "time": 5}, tail_length=0.02)
        assert len(buf) == 1000 + 882

    def test_zero_mix_leaves_input(self):
        buf = SampleBuffer.noise(2, 500, 44100, seed=2)
        before = buf.samples.copy()
        Delay().apply(buf, {"mix": 0, "fb": 0.5, "time": 3})
        np.testing.assert_array_equal(buf.samples[: len(before)], before)
        assert np.all(buf.samples[len(before) :] == 0.0)

    def test_impulse_echoes_halve(self):
        buf = SampleBuffer.impulse(1, 100, 44100)
        Delay().apply(buf, {"mix": 0.5, "fb": 0.5, "time": 10})
        out = buf.samples
        assert out[0] == 1.0
        for k in range(1, 10):
            assert out[441 * k] == 0.5**k
        # impulse plus nine echoes, nothing in between
        assert np.count_nonzero(out) == 10
        assert len(out) == 3970

    def test_auto_tail_ends_below_threshold(self):
        buf = SampleBuffer.impulse(1, 100, 44100)
        Delay().apply(buf, {"mix": 0.5, "fb": 0.5, "time": 10})
        assert _rms(buf.samples[-441:]) <= ENERGY_THRESHOLD

    @pytest.mark.parametrize("fb", [0.3, 0.5, 0.9, 0.99, 0.999])
    def test_auto_tail_terminates(self, fb):
        buf = SampleBuffer.noise(1, 64, 8000, seed=4)
        # mix == fb: the last window of output equals the line's contents
        note = Delay().apply(buf, {"mix": fb, "fb": fb, "time": 1})
        assert "stalled" not in note
        assert len(buf) % 2 == 0
        assert _rms(buf.samples[-8:]) <= ENERGY_THRESHOLD * 1.001

    def test_stereo_echo_stays_in_channel(self):
        buf = SampleBuffer.zeros(2, 64, 8000)
        buf.samples[0] = 1.0
        Delay().apply(buf, {"mix": 0.5, "fb": 0, "time": 1}, tail_length=0.0)
        assert buf.samples[16] == 0.5
        assert np.all(buf.samples[1::2] == 0.0)

    def test_stereo_tail_is_whole_frames(self):
        buf = SampleBuffer.noise(2, 501, 44100, seed=5)
        Delay().apply(buf, {"mix": 0.4, "fb": 0.6, "time": 7})
        assert len(buf) % 2 == 0

    def test_mono_padded_to_even(self):
        buf = SampleBuffer.noise(1, 101, 8000, seed=6)
        Delay().apply(buf, {"mix": 0.5, "fb": 0.5, "time": 1}, tail_length=0.000125)
        # 101 + 1 tail sample, already even
        assert len(buf) == 102
        buf = SampleBuffer.noise(1, 100, 8000, seed=6)
        Delay().apply(buf, {"mix": 0.5, "fb": 0.5, "time": 1}, tail_length=0.000125)
        assert len(buf) == 102
        assert buf.samples[-1] == 0.0

    def test_unit_feedback_fixed_tail_length(self):
        buf = SampleBuffer.noise(2, 500, 8000, seed=7)
        Delay().apply(buf, {"mix": 0.5, "fb": 1.0, "time": 10}, tail_length=0.1)
        assert len(buf) == 1000 + 1600

    def test_tail_is_clamped(self):
        buf = SampleBuffer(np.full(80, 0.9), SampleFormat(8000, 1))
        Delay().apply(buf, {"mix": 1.0, "fb": 1.5, "time": 10}, tail_length=0.1)
        tail = buf.samples[80:]
        assert np.all(np.abs(tail) <= 1.0)
        assert tail.max() == 1.0

    def test_unit_feedback_without_tail_refuses(self):
        buf = SampleBuffer.impulse(1, 16, 8000)
        with pytest.raises(ProcessingError, match="never terminate"):
            Delay().apply(buf, {"mix": 0.5, "fb": 1.0, "time": 1})

    def test_silent_input_no_auto_tail(self):
        buf = SampleBuffer.zeros(1, 256, 8000)
        Delay().apply(buf, {"mix": 0.5, "fb": 0.8, "time": 5})
        assert len(buf) == 256
        assert np.all(buf.samples == 0.0)

    def test_note_reports_tail(self):
        buf = SampleBuffer.noise(1, 100, 8000, seed=8)
        note = Delay().apply(buf, {"mix": 0.5, "fb": 0, "time": 1}, tail_length=0.5)
        assert note == "tail 0.50s"
