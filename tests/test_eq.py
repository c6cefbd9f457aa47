"""Tests for wavfx.eq (biquad coefficients and EQ effects)."""

import numpy as np
import pytest

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.eq import (
    BandPass,
    EqParams,
    HighShelf,
    LowShelf,
    Peaking,
    low_shelf_coefficients,
    peaking_coefficients,
    run_biquad,
)
from wavfx.errors import ProcessingError, ValidationError

SR = 44100
SETTLE = 2000  # samples skipped while the filter settles


def _power_ratio(effect, freq, arguments, sample_rate=SR):
    """Steady-state output/input power for a sine at *freq*."""
    buf = SampleBuffer.sine(freq, frames=16384, sample_rate=sample_rate, amplitude=0.25)
    before = buf.samples.copy()
    effect.apply(buf, arguments)
    num = np.mean(np.square(buf.samples[SETTLE:]))
    den = np.mean(np.square(before[SETTLE:]))
    return num / den


def _direct_form_1(x, coeffs):
    """Reference sample-by-sample biquad with zero initial history."""
    b0, b1, b2, a1, a2 = coeffs.normalized()
    x1 = x2 = y1 = y2 = 0.0
    out = []
    for v in x:
        y = b0 * v + b1 * x1 + b2 * x2 - a1 * y1 - a2 * y2
        x2, x1 = x1, v
        y2, y1 = y1, y
        out.append(y)
    return np.array(out)


# ---------------------------------------------------------------------------
# Coefficients and filter loop
# ---------------------------------------------------------------------------


class TestBiquad:
    def test_flat_peaking_coefficients(self):
        c = peaking_coefficients(EqParams(freq=1000, db=0, q=1), SR)
        assert c.b0 == c.a0
        assert c.b1 == c.a1
        assert c.b2 == c.a2

    def test_normalized_divides_by_a0(self):
        c = peaking_coefficients(EqParams(freq=1000, db=6, q=1), SR)
        b0, b1, b2, a1, a2 = c.normalized()
        assert b0 == pytest.approx(c.b0 / c.a0)
        assert a2 == pytest.approx(c.a2 / c.a0)

    def test_run_biquad_in_place(self):
        samples = np.array([1.0, 0.0, 0.0, 0.0])
        c = peaking_coefficients(EqParams(freq=1000, db=6, q=1), SR)
        b0, b1, b2, a1, a2 = c.normalized()
        state = run_biquad(samples, c)
        assert samples[0] == pytest.approx(b0)
        assert samples[1] == pytest.approx(b1 - a1 * b0)
        assert state.x1 == 0.0
        assert state.x2 == 0.0
        assert state.y1 == samples[3]

    @pytest.mark.parametrize(
        "coeff_fn, db", [(peaking_coefficients, 9), (low_shelf_coefficients, -12)]
    )
    def test_matches_direct_form_1(self, coeff_fn, db):
        x = SampleBuffer.noise(1, 3000, SR, seed=7).samples
        c = coeff_fn(EqParams(freq=500, db=db, q=0.9), SR)
        expected = _direct_form_1(x, c)
        samples = x.copy()
        state = run_biquad(samples, c)
        np.testing.assert_allclose(samples, expected, rtol=1e-9, atol=1e-12)
        assert state.x1 == x[-1]
        assert state.x2 == x[-2]
        assert state.y1 == samples[-1]
        assert state.y2 == samples[-2]

    def test_empty_input(self):
        samples = np.zeros(0)
        state = run_biquad(samples, peaking_coefficients(EqParams(1000, 6, 1), SR))
        assert len(samples) == 0
        assert (state.x1, state.x2, state.y1, state.y2) == (0.0, 0.0, 0.0, 0.0)

    def test_single_sample(self):
        c = peaking_coefficients(EqParams(freq=1000, db=6, q=1), SR)
        samples = np.array([0.5])
        state = run_biquad(samples, c)
        assert samples[0] == pytest.approx(0.5 * c.normalized()[0])
        assert state.x1 == 0.5
        assert state.x2 == 0.0
        assert state.y2 == 0.0

    def test_long_stream(self):
        buf = SampleBuffer.noise(2, 200_000, SR, seed=8)
        Peaking().apply(buf, {"freq": 1000, "db": 6, "q": 1})
        assert np.all(np.isfinite(buf.samples))
        assert len(buf) == 400_000

    def test_fresh_state_per_apply(self):
        buf = SampleBuffer.noise(1, 512, SR, seed=1)
        a, b = buf.copy(), buf.copy()
        Peaking().apply(a, {"freq": 2000, "db": 6, "q": 2})
        Peaking().apply(b, {"freq": 2000, "db": 6, "q": 2})
        np.testing.assert_array_equal(a.samples, b.samples)

    def test_history_spans_interleaved_stream(self):
        stereo = SampleBuffer.noise(2, 256, SR, seed=2)
        mono = SampleBuffer(stereo.samples.copy(), SampleFormat(SR, 1))
        args = {"freq": 3000, "db": -4, "q": 0.7}
        Peaking().apply(stereo, args)
        Peaking().apply(mono, args)
        np.testing.assert_array_equal(stereo.samples, mono.samples)


# ---------------------------------------------------------------------------
# Frequency response
# ---------------------------------------------------------------------------


class TestPeaking:
    def test_zero_db_is_identity(self):
        buf = SampleBuffer.noise(2, 1024, SR, seed=3)
        before = buf.samples.copy()
        Peaking().apply(buf, {"freq": 1000, "db": 0, "q": 1})
        np.testing.assert_allclose(buf.samples, before, atol=1e-12)

    def test_boost_at_center(self):
        ratio = _power_ratio(Peaking(), 1000, {"freq": 1000, "db": 12, "q": 1})
        assert ratio == pytest.approx(10 ** (12 / 10), rel=0.05)

    def test_cut_at_center(self):
        ratio = _power_ratio(Peaking(), 1000, {"freq": 1000, "db": -12, "q": 1})
        assert ratio == pytest.approx(10 ** (-12 / 10), rel=0.05)

    def test_far_from_center_untouched(self):
        ratio = _power_ratio(Peaking(), 100, {"freq": 10000, "db": 12, "q": 2})
        assert ratio == pytest.approx(1.0, abs=0.05)


class TestBandPass:
    def test_passes_center(self):
        ratio = _power_ratio(BandPass(), 1000, {"freq": 1000, "q": 1})
        assert ratio == pytest.approx(1.0, rel=0.05)

    def test_rejects_far_band(self):
        ratio = _power_ratio(BandPass(), 100, {"freq": 5000, "q": 2})
        assert ratio < 0.01

    def test_output_gain(self):
        ratio = _power_ratio(BandPass(), 1000, {"freq": 1000, "q": 1, "db": 6})
        assert ratio == pytest.approx(10 ** (6 / 10), rel=0.05)

    def test_db_optional(self):
        assert BandPass().parse({"freq": 1000, "q": 1}).db == 0.0


class TestShelves:
    def test_low_shelf_boosts_lows(self):
        ratio = _power_ratio(LowShelf(), 50, {"freq": 500, "db": 6, "q": 0.7})
        assert ratio == pytest.approx(10 ** (6 / 10), rel=0.1)

    def test_low_shelf_leaves_highs(self):
        ratio = _power_ratio(LowShelf(), 10000, {"freq": 500, "db": 6, "q": 0.7})
        assert ratio == pytest.approx(1.0, abs=0.05)

    def test_high_shelf_boosts_highs(self):
        ratio = _power_ratio(HighShelf(), 15000, {"freq": 2000, "db": 6, "q": 0.7})
        assert ratio == pytest.approx(10 ** (6 / 10), rel=0.1)

    def test_high_shelf_leaves_lows(self):
        ratio = _power_ratio(HighShelf(), 50, {"freq": 2000, "db": 6, "q": 0.7})
        assert ratio == pytest.approx(1.0, abs=0.05)

    @pytest.mark.parametrize("effect", [LowShelf(), HighShelf()])
    def test_flat_shelf_is_identity(self, effect):
        buf = SampleBuffer.noise(1, 1024, SR, seed=4)
        before = buf.samples.copy()
        effect.apply(buf, {"freq": 800, "db": 0, "q": 0.7})
        np.testing.assert_allclose(buf.samples, before, atol=1e-12)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestEqValidation:
    def test_missing_q(self):
        with pytest.raises(ValidationError, match="Missing argument 'q'"):
            Peaking().validate({"freq": 1000, "db": 3})

    def test_missing_db(self):
        with pytest.raises(ValidationError, match="Missing argument 'db'"):
            LowShelf().validate({"freq": 1000, "q": 1})

    def test_q_must_be_positive(self):
        with pytest.raises(ValidationError, match="Q must be > 0"):
            Peaking().validate({"freq": 1000, "db": 3, "q": 0})

    def test_freq_must_be_positive(self):
        with pytest.raises(ValidationError, match="Frequency must be > 0"):
            HighShelf().validate({"freq": -5, "db": 3, "q": 1})

    def test_nyquist_with_format(self):
        with pytest.raises(ValidationError, match="Nyquist"):
            Peaking().validate(
                {"freq": 22050, "db": 3, "q": 1}, fmt=SampleFormat(44100, 2)
            )

    @pytest.mark.parametrize(
        "effect, db",
        [(Peaking(), 20000), (BandPass(), 20000), (LowShelf(), 4000), (HighShelf(), -4000)],
    )
    def test_db_overflowing_linear_gain(self, effect, db):
        with pytest.raises(ValidationError, match="out of range") as exc:
            effect.validate({"freq": 1000, "db": db, "q": 1})
        assert exc.value.argument == "db"

    def test_db_overflow_caught_before_apply(self):
        buf = SampleBuffer.noise(1, 64, SR, seed=6)
        before = buf.samples.copy()
        with pytest.raises(ValidationError):
            LowShelf().apply(buf, {"freq": 1000, "db": 4000, "q": 1})
        np.testing.assert_array_equal(buf.samples, before)

    def test_large_finite_db_accepted(self):
        Peaking().validate({"freq": 1000, "db": 300, "q": 1})

    def test_nyquist_unknown_without_format(self):
        Peaking().validate({"freq": 30000, "db": 3, "q": 1})

    def test_apply_above_nyquist(self):
        buf = SampleBuffer.noise(1, 64, 8000, seed=5)
        before = buf.samples.copy()
        with pytest.raises(ProcessingError, match="Nyquist"):
            Peaking().apply(buf, {"freq": 4000, "db": 3, "q": 1})
        np.testing.assert_array_equal(buf.samples, before)

    def test_aliases(self):
        assert set(Peaking.aliases) == {"peak", "eqband"}
