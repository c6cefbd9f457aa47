"""WAV file I/O for SampleBuffer.

Supported sample formats:
  16-bit and 32-bit integer PCM  -- read/write with stdlib ``wave``
  32-bit IEEE float              -- read/write with ``soundfile``

Integer samples are normalized by the type's maximum (32767 / 2147483647);
float samples pass through unchanged.  Writing re-quantizes to the buffer's
own format and reports how many samples clipped.
"""

from __future__ import annotations

import logging
import os
import wave
from pathlib import Path

import numpy as np
import soundfile as sf

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.errors import DecodeError, EncodeError

logger = logging.getLogger(__name__)

_INT_FORMATS: dict[int, tuple[str, float]] = {
    16: ("<i2", 32767.0),
    32: ("<i4", 2147483647.0),
}

# soundfile subtype -> (bits_per_sample, encoding)
_SUBTYPES: dict[str, tuple[int, str]] = {
    "PCM_16": (16, "int"),
    "PCM_32": (32, "int"),
    "FLOAT": (32, "float"),
}


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def probe(path: str | Path) -> SampleFormat:
    """Return the SampleFormat of a WAV file without reading its samples."""
    path = Path(path)
    try:
        info = sf.info(str(path))
    except (RuntimeError, OSError) as e:
        raise DecodeError(f"Cannot open {path}: {e}") from e
    if info.format not in ("WAV", "WAVEX"):
        raise DecodeError(f"{path} is not a WAV file (found {info.format})")
    if info.subtype not in _SUBTYPES:
        raise DecodeError(
            f"Unsupported .wav format: {info.subtype_info or info.subtype} "
            "(supported: 16-bit int, 32-bit int, 32-bit float)"
        )
    bits, encoding = _SUBTYPES[info.subtype]
    return SampleFormat(info.samplerate, info.channels, bits, encoding)


def _read_pcm(path: Path, fmt: SampleFormat) -> np.ndarray:
    dtype, full_scale = _INT_FORMATS[fmt.bits_per_sample]
    try:
        with wave.open(str(path), "rb") as wf:
            sampwidth = wf.getsampwidth()
            raw_bytes = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise DecodeError(f"Cannot read {path}: {e}") from e

    if sampwidth * 8 != fmt.bits_per_sample:
        raise DecodeError(
            f"Sample width mismatch in {path}: {sampwidth * 8}-bit data, "
            f"{fmt.bits_per_sample}-bit header"
        )
    ints = np.frombuffer(raw_bytes, dtype=dtype)
    return ints.astype(np.float64) / full_scale


def _read_float(path: Path) -> np.ndarray:
    try:
        data, _ = sf.read(str(path), dtype="float32", always_2d=True)
    except (RuntimeError, OSError) as e:
        raise DecodeError(f"Cannot read {path}: {e}") from e
    # [frames, channels] row-major is already interleaved
    return data.reshape(-1).astype(np.float64)


def read_wav(path: str | Path) -> SampleBuffer:
    """Read a WAV file into a SampleBuffer of normalized interleaved samples."""
    path = Path(path)
    fmt = probe(path)
    if fmt.encoding == "float":
        samples = _read_float(path)
    else:
        samples = _read_pcm(path, fmt)
    if len(samples) % fmt.channels:
        raise DecodeError(
            f"{path} holds {len(samples)} samples, not a multiple of "
            f"{fmt.channels} channels"
        )
    return SampleBuffer(samples, fmt)


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------


def quantize(samples: np.ndarray, bits_per_sample: int) -> np.ndarray:
    """Scale normalized samples to integers, rounding and saturating."""
    dtype, full_scale = _INT_FORMATS[bits_per_sample]
    info = np.iinfo(np.dtype(dtype))
    scaled = np.round(samples * full_scale)
    np.clip(scaled, info.min, info.max, out=scaled)
    return scaled.astype(dtype)


def write_wav(path: str | Path, buf: SampleBuffer) -> int:
    """Write *buf* to a WAV file in its own format.

    Returns the number of samples whose magnitude exceeded 1.0 (clipped in
    integer formats, kept as-is in float).
    """
    path = Path(path)
    fmt = buf.format
    if not buf.is_frame_aligned():
        raise EncodeError(
            f"Cannot encode {len(buf)} samples as {fmt.channels}-channel frames"
        )
    if fmt.encoding != "float" and fmt.bits_per_sample not in _INT_FORMATS:
        raise EncodeError(f"Cannot encode unsupported format: {fmt.describe()}")
    clipped = buf.clip_count()

    # Encoded into a sibling file, then swapped in; the target is untouched on failure
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        if fmt.encoding == "float":
            frames = buf.samples.reshape(-1, fmt.channels).astype(np.float32)
            sf.write(str(tmp_path), frames, fmt.sample_rate, subtype="FLOAT", format="WAV")
        else:
            raw_bytes = quantize(buf.samples, fmt.bits_per_sample).tobytes()
            with wave.open(str(tmp_path), "wb") as wf:
                wf.setnchannels(fmt.channels)
                wf.setsampwidth(fmt.bits_per_sample // 8)
                wf.setframerate(fmt.sample_rate)
                wf.writeframes(raw_bytes)
        os.replace(tmp_path, path)
    except (wave.Error, RuntimeError, OSError) as e:
        tmp_path.unlink(missing_ok=True)
        raise EncodeError(f"Cannot write {path}: {e}") from e

    if clipped:
        logger.warning(
            "Clipping: %d samples exceed 0 dBFS. Consider normalizing the audio "
            "or decreasing the gain.",
            clipped,
        )
    return clipped


# ---------------------------------------------------------------------------
# Dispatch by extension
# ---------------------------------------------------------------------------

_FORMAT_READERS = {
    ".wav": read_wav,
}

_FORMAT_WRITERS = {
    ".wav": write_wav,
}


def read(path: str | Path) -> SampleBuffer:
    """Read an audio file and return a SampleBuffer (format by extension)."""
    path = Path(path)
    ext = path.suffix.lower()
    reader = _FORMAT_READERS.get(ext)
    if reader is None:
        supported = ", ".join(sorted(_FORMAT_READERS))
        raise DecodeError(f"Unsupported audio format '{ext}'. Supported: {supported}")
    return reader(path)


def write(path: str | Path, buf: SampleBuffer) -> int:
    """Write a SampleBuffer (format by extension). Returns the clip count."""
    path = Path(path)
    ext = path.suffix.lower()
    writer = _FORMAT_WRITERS.get(ext)
    if writer is None:
        supported = ", ".join(sorted(_FORMAT_WRITERS))
        raise EncodeError(f"Unsupported audio format '{ext}'. Supported: {supported}")
    return writer(path, buf)


def describe(buf: SampleBuffer) -> dict:
    """Metadata summary used by ``info`` and verbose ``process`` output."""
    fmt = buf.format
    peak = buf.peak
    return {
        "sample_rate": fmt.sample_rate,
        "duration": f"{buf.duration:.2f}s",
        "bit_depth": fmt.bits_per_sample,
        "sample_format": fmt.encoding,
        "channels": fmt.channels,
        "frames": buf.frames,
        "peak_db": f"{20.0 * np.log10(peak):.1f}" if peak > 0 else "-inf",
    }
