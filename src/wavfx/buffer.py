"""SampleBuffer -- interleaved float64 sample stream plus its format descriptor.

The decoder builds a ``SampleBuffer``, every effect in a chain reads and
rewrites it in place, and the encoder consumes it again using the untouched
``SampleFormat``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

SUPPORTED_BIT_DEPTHS = (16, 32)
ENCODINGS = ("int", "float")


@dataclass(frozen=True)
class SampleFormat:
    """Format descriptor fixed at decode time.

    Parameters
    ----------
    sample_rate : int
        Sample rate in Hz.
    channels : int
        Number of interleaved channels.
    bits_per_sample : int
        16 or 32.
    encoding : str
        ``'int'`` for integer PCM, ``'float'`` for IEEE float (32-bit only).
    """

    sample_rate: int
    channels: int
    bits_per_sample: int = 16
    encoding: str = "int"

    def __post_init__(self):
        if int(self.sample_rate) != self.sample_rate or self.sample_rate <= 0:
            raise ValueError(
                f"sample_rate must be a positive integer, got {self.sample_rate}"
            )
        if int(self.channels) != self.channels or self.channels < 1:
            raise ValueError(f"channels must be >= 1, got {self.channels}")
        if self.bits_per_sample not in SUPPORTED_BIT_DEPTHS:
            raise ValueError(
                f"Unsupported bits_per_sample: {self.bits_per_sample} (use 16 or 32)"
            )
        if self.encoding not in ENCODINGS:
            raise ValueError(f"Unknown encoding: {self.encoding!r}")
        if self.encoding == "float" and self.bits_per_sample != 32:
            raise ValueError("Float encoding requires bits_per_sample=32")
        object.__setattr__(self, "sample_rate", int(self.sample_rate))
        object.__setattr__(self, "channels", int(self.channels))

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    def describe(self) -> str:
        kind = "float" if self.encoding == "float" else "int"
        return f"{self.channels}ch, {self.sample_rate} Hz, {self.bits_per_sample}-bit {kind}"


class SampleBuffer:
    """A 1D channel-interleaved float64 sample stream with its format.

    Samples are normalized so integer full scale maps to [-1, 1], but values
    outside that range are kept as-is: clipping is counted at encode time,
    never silently applied.

    Parameters
    ----------
    samples : array-like
        Interleaved samples ``[L0, R0, L1, R1, ...]``.
    format : SampleFormat
        Format descriptor.
    """

    __slots__ = ("_samples", "_format")

    def __init__(self, samples, format: SampleFormat):
        self._format = format
        self._samples = np.empty(0, dtype=np.float64)
        self.samples = samples

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def samples(self) -> np.ndarray:
        """Interleaved float64 samples."""
        return self._samples

    @samples.setter
    def samples(self, value) -> None:
        arr = np.asarray(value, dtype=np.float64)
        if arr.ndim != 1:
            raise ValueError(f"samples must be 1D interleaved, got {arr.ndim}D")
        if not arr.flags["C_CONTIGUOUS"]:
            arr = np.ascontiguousarray(arr)
        self._samples = arr

    @property
    def format(self) -> SampleFormat:
        return self._format

    @property
    def sample_rate(self) -> int:
        return self._format.sample_rate

    @property
    def channels(self) -> int:
        return self._format.channels

    @property
    def frames(self) -> int:
        """Number of whole frames (a trailing partial frame is not counted)."""
        return len(self._samples) // self._format.channels

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.frames / self._format.sample_rate

    @property
    def peak(self) -> float:
        """Largest absolute sample value, 0.0 for an empty buffer."""
        if len(self._samples) == 0:
            return 0.0
        return float(np.max(np.abs(self._samples)))

    @property
    def planar(self) -> np.ndarray:
        """``[channels, frames]`` copy of the whole frames."""
        ch = self._format.channels
        n = self.frames * ch
        return self._samples[:n].reshape(-1, ch).T.copy()

    def __len__(self) -> int:
        """Number of samples (not frames)."""
        return len(self._samples)

    def __repr__(self) -> str:
        return (
            f"SampleBuffer(samples={len(self._samples)}, "
            f"format='{self._format.describe()}')"
        )

    # ------------------------------------------------------------------
    # Frame alignment / clipping
    # ------------------------------------------------------------------

    def is_frame_aligned(self) -> bool:
        return len(self._samples) % self._format.channels == 0

    def pad_to_frame(self) -> int:
        """Append trailing zeros so the stream ends on a frame boundary.

        Mono streams are padded to an even sample count.  Returns the number
        of zeros appended.
        """
        block = self._format.channels if self._format.channels > 1 else 2
        missing = -len(self._samples) % block
        if missing:
            self._samples = np.concatenate(
                [self._samples, np.zeros(missing, dtype=np.float64)]
            )
        return missing

    def clip_count(self) -> int:
        """Number of samples whose magnitude exceeds full scale."""
        return int(np.count_nonzero(np.abs(self._samples) > 1.0))

    def copy(self) -> SampleBuffer:
        """Deep copy with independent numpy storage."""
        return SampleBuffer(self._samples.copy(), self._format)

    # ------------------------------------------------------------------
    # Factory methods
    # ------------------------------------------------------------------

    @classmethod
    def zeros(
        cls,
        channels: int,
        frames: int,
        sample_rate: int = 44100,
        bits_per_sample: int = 16,
        encoding: str = "int",
    ) -> SampleBuffer:
        fmt = SampleFormat(sample_rate, channels, bits_per_sample, encoding)
        return cls(np.zeros(channels * frames, dtype=np.float64), fmt)

    @classmethod
    def impulse(
        cls,
        channels: int = 1,
        frames: int = 1024,
        sample_rate: int = 44100,
        **kw,
    ) -> SampleBuffer:
        """Unit impulse at frame 0 in every channel."""
        buf = cls.zeros(channels, frames, sample_rate, **kw)
        buf.samples[:channels] = 1.0
        return buf

    @classmethod
    def sine(
        cls,
        freq: float,
        channels: int = 1,
        frames: int = 4096,
        sample_rate: int = 44100,
        amplitude: float = 1.0,
        **kw,
    ) -> SampleBuffer:
        t = np.arange(frames, dtype=np.float64) / sample_rate
        row = amplitude * np.sin(2.0 * np.pi * freq * t)
        planar = np.tile(row, (channels, 1))
        return cls.from_frames(planar, sample_rate, **kw)

    @classmethod
    def noise(
        cls,
        channels: int = 1,
        frames: int = 4096,
        sample_rate: int = 44100,
        seed: int | None = None,
        amplitude: float = 0.5,
        **kw,
    ) -> SampleBuffer:
        rng = np.random.default_rng(seed)
        planar = rng.uniform(-amplitude, amplitude, (channels, frames))
        return cls.from_frames(planar, sample_rate, **kw)

    @classmethod
    def from_frames(
        cls,
        planar,
        sample_rate: int = 44100,
        bits_per_sample: int = 16,
        encoding: str = "int",
    ) -> SampleBuffer:
        """Build from a ``[channels, frames]`` (or 1D mono) array."""
        arr = np.asarray(planar, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        elif arr.ndim != 2:
            raise ValueError(f"from_frames requires 1D or 2D data, got {arr.ndim}D")
        fmt = SampleFormat(sample_rate, arr.shape[0], bits_per_sample, encoding)
        return cls(arr.T.reshape(-1), fmt)
