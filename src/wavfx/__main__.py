"""wavfx CLI -- apply effect chains to WAV files, inspect files, list effects and presets."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from wavfx import __version__
from wavfx.buffer import SampleBuffer
from wavfx.errors import WavfxError


# ---------------------------------------------------------------------------
# Verbosity levels
# ---------------------------------------------------------------------------

QUIET = 0
NORMAL = 1
VERBOSE = 2

_LOG_LEVELS = {
    QUIET: logging.ERROR,
    NORMAL: logging.WARNING,
    VERBOSE: logging.DEBUG,
}


def _verbosity(args: argparse.Namespace) -> int:
    """Return verbosity level from parsed args."""
    if getattr(args, "quiet", False):
        return QUIET
    if getattr(args, "verbose", False):
        return VERBOSE
    return NORMAL


def _log(args: argparse.Namespace, msg: str, level: int = NORMAL) -> None:
    """Print *msg* if verbosity >= *level*."""
    if _verbosity(args) >= level:
        print(msg)


def _log_verbose(args: argparse.Namespace, msg: str) -> None:
    """Print only when --verbose."""
    _log(args, msg, level=VERBOSE)


def _configure_logging(args: argparse.Namespace) -> None:
    """Route library log records (warnings, clip counts) to stderr.

    Leaves logging alone when the host application already configured it.
    """
    logging.basicConfig(
        level=_LOG_LEVELS[_verbosity(args)],
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(msg: str) -> None:
    print(f"Error: {msg}", file=sys.stderr)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_input(path: str, args: argparse.Namespace | None = None) -> SampleBuffer:
    """Read an audio file, exit on error."""
    from wavfx.io import read

    if args:
        _log(args, f"Reading file {path}")
    try:
        buf = read(path)
    except WavfxError as e:
        _fail(f"reading {path}: {e}")
    if args:
        _log_verbose(args, f"  Loaded: {len(buf)} samples, {buf.format.describe()}")
    return buf


def _write_output(
    path: str,
    buf: SampleBuffer,
    args: argparse.Namespace | None = None,
) -> int:
    """Write an audio file, exit on error. Returns the clip count."""
    from wavfx.io import write

    if args:
        _log(args, f"Writing to {path}")
    try:
        return write(path, buf)
    except WavfxError as e:
        _fail(f"writing {path}: {e}")
    return 0


def _print_info(info: dict, as_json: bool = False) -> None:
    if as_json:
        print(json.dumps(info, indent=2))
    else:
        for k, v in info.items():
            print(f"  {k}: {v}")


# ---------------------------------------------------------------------------
# Subcommand: info
# ---------------------------------------------------------------------------


def cmd_info(args: argparse.Namespace) -> None:
    """Print audio file metadata."""
    from wavfx.io import describe

    buf = _read_input(args.file)
    info = {"path": str(args.file), **describe(buf)}
    _print_info(info, args.json)


# ---------------------------------------------------------------------------
# Subcommand: process
# ---------------------------------------------------------------------------


def _build_chain(args: argparse.Namespace) -> list:
    """Build the ordered list of chain entries from EFFECT tokens and --preset args."""
    from wavfx._cli import expand_preset, parse_chain

    entries = []
    try:
        entries.extend(parse_chain(args.effects or []))
    except WavfxError as e:
        _fail(str(e))

    for preset_name in args.preset or []:
        try:
            entries.extend(expand_preset(preset_name))
        except KeyError:
            _fail(f"Unknown preset: {preset_name!r}")
    return entries


def _format_chain(steps: list) -> str:
    """Format validated steps as a numbered, human-readable list."""
    return "\n".join(f"  {i}. {step.entry}" for i, step in enumerate(steps, 1))


def _validate(entries: list, args: argparse.Namespace) -> list:
    from wavfx.chain import validate_chain

    try:
        return validate_chain(entries, args.tail)
    except WavfxError as e:
        _fail(str(e))
    return []


def _check_format(steps: list, fmt) -> None:
    from wavfx.chain import check_chain_format

    try:
        check_chain_format(steps, fmt)
    except WavfxError as e:
        _fail(str(e))


def _apply_chain(
    buf: SampleBuffer,
    steps: list,
    args: argparse.Namespace,
) -> SampleBuffer:
    """Apply validated steps, printing one progress line per effect."""
    from wavfx.chain import apply_step

    for step in steps:
        label = f"Applying effect '{step.entry.name}'"
        _log_verbose(args, f"  {step.entry}")
        try:
            note = apply_step(buf, step, args.tail)
        except WavfxError as e:
            _log(args, f"{label} ... failed")
            _fail(str(e))
        if note:
            _log(args, f"{label} ... done ({note})")
        else:
            _log(args, f"{label} ... done")
    return buf


def _resolve_output_path(args: argparse.Namespace) -> str:
    """--overwrite writes back to the input path, otherwise -o/--output."""
    if args.overwrite:
        return args.input
    return args.output


def cmd_process(args: argparse.Namespace) -> None:
    """Apply an effect chain to an audio file."""
    start = time.perf_counter()
    entries = _build_chain(args)
    steps = _validate(entries, args)

    # Dry run: show chain and exit
    if getattr(args, "dry_run", False):
        if not steps:
            print("Chain: (empty -- no effects or presets specified)")
        else:
            print(f"Chain ({len(steps)} steps):")
            print(_format_chain(steps))
        print()
        print(f"Input: {args.input}")
        print(f"Output: {_resolve_output_path(args) or '(not set)'}")
        if args.tail is not None:
            print(f"Tail: {args.tail}s")
        return

    buf = _read_input(args.input, args)
    for key, value in _describe_format(buf).items():
        _log(args, f"   {key}: {value}")
    _log(args, "")

    # Stream-dependent checks (e.g. Nyquist) need the decoded format
    _check_format(steps, buf.format)
    buf = _apply_chain(buf, steps, args)

    output_path = _resolve_output_path(args)
    clipped = _write_output(output_path, buf, args)
    if clipped:
        _log(
            args,
            f"   Clipping: {clipped} samples. Consider normalizing the audio "
            "or decreasing the gain.",
        )
    _log(args, f"   Output duration: {buf.duration:.2f}s")
    _log(args, f"Total processing time: {time.perf_counter() - start:.2f}s")


def _describe_format(buf: SampleBuffer) -> dict:
    fmt = buf.format
    return {
        "Sample rate": fmt.sample_rate,
        "Duration": f"{buf.duration:.2f}s",
        "Bit depth": fmt.bits_per_sample,
        "Sample format": fmt.encoding,
        "Channels": fmt.channels,
    }


# ---------------------------------------------------------------------------
# Subcommand: preset
# ---------------------------------------------------------------------------


def cmd_preset(args: argparse.Namespace) -> None:
    """List and inspect presets."""
    from wavfx._cli import PRESETS, get_preset_categories

    subcmd = args.preset_action

    if subcmd == "list":
        cats = get_preset_categories()
        filter_cat = getattr(args, "category", None)
        if filter_cat:
            names = cats.get(filter_cat, [])
            if not names:
                print(f"No presets in category: {filter_cat!r}")
                return
            cats = {filter_cat: names}
        for cat in sorted(cats):
            print(f"\n  {cat}:")
            for name in sorted(cats[cat]):
                desc = PRESETS[name].get("description", "")
                print(f"    {name:20s} {desc}")
        print()

    elif subcmd == "info":
        name = args.name
        if name not in PRESETS:
            _fail(f"Unknown preset: {name!r}")
        preset = PRESETS[name]
        print(f"\n  {name}")
        print(f"  Category: {preset.get('category', 'other')}")
        print(f"  Description: {preset.get('description', '')}")
        print("  Chain:")
        for token in preset["chain"]:
            print(f"    {token}")
        print()

    else:
        _fail(f"Unknown preset action: {subcmd!r}")


# ---------------------------------------------------------------------------
# Subcommand: list
# ---------------------------------------------------------------------------


def cmd_list(args: argparse.Namespace) -> None:
    """List available effects by category."""
    from wavfx._cli import format_signature, get_aliases, get_categories
    from wavfx.chain import get_effect

    cats = get_categories()
    aliases: dict[str, list[str]] = {}
    for alias, name in get_aliases().items():
        aliases.setdefault(name, []).append(alias)

    for cat in sorted(cats):
        names = cats[cat]
        if not names:
            continue
        print(f"\n  {cat} ({len(names)} effects):")
        for name in sorted(names):
            effect = get_effect(name)
            line = f"    {name}{format_signature(effect)}"
            if name in aliases:
                line += f"  [aliases: {', '.join(sorted(aliases[name]))}]"
            print(line)
            if effect.description:
                print(f"        {effect.description}")
    print()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _tail_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid tail length: {value!r}") from None
    if not seconds >= 0.0 or seconds == float("inf"):
        raise argparse.ArgumentTypeError(f"tail length must be >= 0, got {value!r}")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser."""
    parser = argparse.ArgumentParser(
        prog="wavfx",
        description="wavfx - offline effect chains for WAV files",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"wavfx {__version__}",
    )

    # Global verbosity flags (mutually exclusive)
    verb_group = parser.add_mutually_exclusive_group()
    verb_group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output (show details about each step)",
    )
    verb_group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress all non-essential output",
    )

    sub = parser.add_subparsers(dest="command")

    # --- info ---
    p_info = sub.add_parser("info", help="Show audio file metadata")
    p_info.add_argument("file", help="Input .wav file")
    p_info.add_argument("--json", action="store_true", help="Output as JSON")

    # --- process ---
    p_proc = sub.add_parser("process", help="Apply an effect chain to a .wav file")
    p_proc.add_argument("input", help="Input .wav file")
    p_proc.add_argument(
        "effects",
        nargs="*",
        metavar="NAME:K=V:...",
        help="Effects to apply in order, e.g. delay:mix=0.5:fb=0.4:time=250",
    )
    p_proc.add_argument("-o", "--output", help="Output .wav file")
    p_proc.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace the input file instead of writing -o/--output",
    )
    p_proc.add_argument(
        "-t",
        "--tail",
        type=_tail_seconds,
        metavar="SECONDS",
        help="Fixed tail length for feedback effects (required for delay fb >= 1)",
    )
    p_proc.add_argument(
        "-p",
        "--preset",
        action="append",
        metavar="NAME",
        help="Append a named preset chain (repeatable)",
    )
    p_proc.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Validate and show the chain without reading or writing files",
    )

    # --- preset ---
    p_preset = sub.add_parser("preset", help="List and inspect presets")
    p_preset_sub = p_preset.add_subparsers(dest="preset_action")

    p_plist = p_preset_sub.add_parser("list", help="List presets")
    p_plist.add_argument("category", nargs="?", help="Filter by category")

    p_pinfo = p_preset_sub.add_parser("info", help="Show preset details")
    p_pinfo.add_argument("name", help="Preset name")

    # --- list ---
    sub.add_parser("list", help="List available effects")

    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    _configure_logging(args)

    # Validate process subcommand output args
    if args.command == "process" and not getattr(args, "dry_run", False):
        if args.output and args.overwrite:
            _fail("Cannot use output (-o) and overwrite (--overwrite) at the same time")
        if not args.output and not args.overwrite:
            _fail("No output specified (use --overwrite to replace the original file)")

    dispatch = {
        "info": cmd_info,
        "process": cmd_process,
        "preset": cmd_preset,
        "list": cmd_list,
    }

    handler = dispatch.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    handler(args)


if __name__ == "__main__":
    main()
