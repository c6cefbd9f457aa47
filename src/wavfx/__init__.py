"""
wavfx - offline effect chains for WAV audio.

Submodules:
    wavfx.buffer  - SampleFormat / SampleBuffer (interleaved float64 samples)
    wavfx.effects - Effect base class, gain, softclip, normalize
    wavfx.delay   - Feedback delay with automatic or fixed tail
    wavfx.eq      - Biquad EQ family (peaking, band-pass, shelves)
    wavfx.chain   - Effect registry and validate-then-apply chain runner
    wavfx.io      - WAV file I/O
"""

from wavfx.buffer import SampleBuffer, SampleFormat
from wavfx.chain import ChainEntry, get_effect, process, validate_chain
from wavfx.errors import (
    ChainSyntaxError,
    DecodeError,
    EncodeError,
    ProcessingError,
    UnknownEffectError,
    ValidationError,
    WavfxError,
)
from wavfx import chain, io

__all__ = [
    "SampleBuffer",
    "SampleFormat",
    "ChainEntry",
    "get_effect",
    "process",
    "validate_chain",
    "WavfxError",
    "ValidationError",
    "UnknownEffectError",
    "ChainSyntaxError",
    "ProcessingError",
    "DecodeError",
    "EncodeError",
    "chain",
    "io",
]
__version__ = "0.1.0"
