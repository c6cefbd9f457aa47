"""Effect-chain token parser, preset registry, and listing helpers for the CLI."""

from __future__ import annotations

import math
from typing import Any

from wavfx.chain import ChainEntry, get_registry, list_effects
from wavfx.effects import Effect
from wavfx.errors import ChainSyntaxError


# ---------------------------------------------------------------------------
# FX token parsing
# ---------------------------------------------------------------------------


def parse_fx_token(token: str) -> ChainEntry:
    """Parse ``'name:key=value:key=value'`` into a ChainEntry.

    Case-insensitive and whitespace-tolerant.  Every argument must be a
    ``key=value`` pair with a numeric value; bare flags are rejected.
    """
    parts = token.split(":")
    name = parts[0].strip().lower()
    if not name:
        raise ChainSyntaxError(f"Empty effect name in {token!r}")

    arguments: dict[str, float] = {}
    for arg in parts[1:]:
        if not arg.strip():
            raise ChainSyntaxError(f"Malformed arguments for effect '{name}'")
        pair = arg.split("=")
        if len(pair) != 2:
            raise ChainSyntaxError(
                f"Malformed argument '{arg}' for effect '{name}' (expected key=value)"
            )
        key = pair[0].strip().lower()
        raw = pair[1].strip()
        if not key:
            raise ChainSyntaxError(f"Missing argument name in '{arg}' for effect '{name}'")
        arguments[key] = coerce_value(raw, name, key)
    return ChainEntry(name, arguments)


def coerce_value(value: str, effect: str, key: str) -> float:
    """Parse an argument value as a finite float."""
    try:
        number = float(value)
    except ValueError:
        raise ChainSyntaxError(
            f"Invalid value {value!r} for argument '{key}' of effect '{effect}'"
        ) from None
    if not math.isfinite(number):
        raise ChainSyntaxError(
            f"Value for argument '{key}' of effect '{effect}' must be finite, got {value!r}"
        )
    return number


def parse_chain(tokens: list[str]) -> list[ChainEntry]:
    """Parse every token, preserving order."""
    return [parse_fx_token(token) for token in tokens]


# ---------------------------------------------------------------------------
# Effect listing
# ---------------------------------------------------------------------------


def format_signature(effect: Effect) -> str:
    """Compact argument list, e.g. ``(mix, fb, time)``; optional keys end in '?'."""
    return f"({', '.join(effect.arguments)})"


def get_categories() -> dict[str, list[str]]:
    """Group effect names: dynamics/level, time, filters."""
    cats: dict[str, list[str]] = {"level": [], "time": [], "filters": []}
    for effect in list_effects():
        if effect.name == "delay":
            cats["time"].append(effect.name)
        elif effect.name in ("gain", "softclip", "normalize"):
            cats["level"].append(effect.name)
        else:
            cats["filters"].append(effect.name)
    return cats


def get_aliases() -> dict[str, str]:
    """Map alias -> canonical effect name."""
    return {k: e.name for k, e in get_registry().items() if k != e.name}


# ---------------------------------------------------------------------------
# Preset registry
# ---------------------------------------------------------------------------

PRESETS: dict[str, dict[str, Any]] = {
    # --- Time ---
    "slapback": {
        "category": "time",
        "description": "Single short echo (120 ms, no feedback)",
        "chain": ["delay:mix=0.4:fb=0:time=120"],
    },
    "echo": {
        "category": "time",
        "description": "Repeating echo (350 ms, feedback 0.45)",
        "chain": ["delay:mix=0.5:fb=0.45:time=350"],
    },
    "dub": {
        "category": "time",
        "description": "Dark dub echo (band-limited, long feedback)",
        "chain": [
            "delay:mix=0.6:fb=0.7:time=480",
            "highshelf:freq=3000:db=-9:q=0.7",
            "normalize:db=-1",
        ],
    },
    # --- Tone ---
    "warm": {
        "category": "tone",
        "description": "Low shelf lift, gentle top cut",
        "chain": [
            "lowshelf:freq=200:db=3:q=0.7",
            "highshelf:freq=8000:db=-2:q=0.7",
        ],
    },
    "presence": {
        "category": "tone",
        "description": "Peaking boost at 3 kHz",
        "chain": ["eq:freq=3000:db=4:q=1"],
    },
    "telephone": {
        "category": "tone",
        "description": "Narrow band-pass around 1.2 kHz",
        "chain": ["bandpass:freq=1200:q=0.8:db=6", "normalize:db=-3"],
    },
    # --- Drive ---
    "crunch": {
        "category": "drive",
        "description": "Soft clipping with 12 dB drive, level restored",
        "chain": ["softclip:db=12", "normalize:db=-1"],
    },
    # --- Level ---
    "master": {
        "category": "level",
        "description": "Peak normalize to -1 dBFS",
        "chain": ["normalize:db=-1"],
    },
}


def get_preset_categories() -> dict[str, list[str]]:
    """Return presets grouped by category."""
    cats: dict[str, list[str]] = {}
    for name, info in PRESETS.items():
        cats.setdefault(info.get("category", "other"), []).append(name)
    return cats


def expand_preset(name: str) -> list[ChainEntry]:
    """Return the chain entries of a named preset. Raises KeyError if unknown."""
    if name not in PRESETS:
        raise KeyError(f"Unknown preset: {name!r}")
    return parse_chain(PRESETS[name]["chain"])
