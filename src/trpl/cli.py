from __future__ import annotations

import logging
from itertools import islice
from pathlib import Path
from typing import NoReturn

import typer

from .errors import ReplayError

app = typer.Typer(add_completion=False)

_MODE_CHOICES = ("auto", "relative", "absolute")


def _fail(message: str) -> NoReturn:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _read(path: Path) -> bytes:
    path = Path(path)
    if not path.is_file():
        _fail(f"file not found: {path}")
    return path.read_bytes()


def _parse_mode(mode: str):
    from .techmino import InputParseMode

    if mode not in _MODE_CHOICES:
        _fail(f"unknown timing mode {mode!r} (expected one of: {', '.join(_MODE_CHOICES)})")
    return None if mode == "auto" else InputParseMode(mode)


@app.callback()
def cmd_root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="log codec debug messages to stderr"),
) -> None:
    """Inspect and convert falling-block game replays."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


@app.command("info")
def cmd_info(
    replay_file: Path = typer.Argument(..., help="replay file path (.trpl)"),
) -> None:
    """Print the header of a replay."""
    from .decoder import ReplayReader

    try:
        reader = ReplayReader(_read(replay_file))
    except ReplayError as exc:
        _fail(f"cannot read replay: {exc}")
    header = reader.header
    typer.echo(f"format_version: {reader.source_version}")
    typer.echo(f"checksum: {reader.checksum.hex()}")
    typer.echo(f"mode_id: {header.mode_id}")
    if header.mode_name:
        typer.echo(f"mode_name: {header.mode_name}")
    typer.echo(f"seed: {header.seed}")
    typer.echo(f"player: {header.player}")
    typer.echo(f"game_version: {header.game_version}")
    typer.echo(f"recorded_at: {header.recorded_at}")
    typer.echo(f"duration: {header.duration}")
    typer.echo(f"score: {header.score}")
    typer.echo(f"tas_used: {header.tas_used}")
    typer.echo(f"events: {header.event_count}")


@app.command("events")
def cmd_events(
    replay_file: Path = typer.Argument(..., help="replay file path (.trpl)"),
    limit: int | None = typer.Option(None, help="stop after N events (default: all)"),
) -> None:
    """List the input events of a replay, one per line."""
    from .decoder import ReplayReader

    try:
        reader = ReplayReader(_read(replay_file))
        for event in islice(reader, limit):
            state = "up" if event.released else "down"
            typer.echo(f"{event.frame}\t{event.action.name}\t{state}")
    except ReplayError as exc:
        _fail(f"cannot read replay: {exc}")


@app.command("verify")
def cmd_verify(
    replay_file: Path = typer.Argument(..., help="replay file path (.trpl)"),
) -> None:
    """Fully decode a replay and report whether it is intact."""
    from .decoder import decode

    try:
        replay = decode(_read(replay_file))
    except ReplayError as exc:
        _fail(f"replay verification failed: {exc}")
    typer.echo(f"ok: format v{replay.format_version}, {len(replay.events)} events, checksum {replay.checksum.hex()}")


@app.command("normalize")
def cmd_normalize(
    replay_file: Path = typer.Argument(..., help="replay file path (.trpl)"),
    output_file: Path = typer.Argument(..., help="output path"),
) -> None:
    """Re-encode a replay in the current format version."""
    from .decoder import decode
    from .encoder import encode

    try:
        replay = decode(_read(replay_file))
        blob = encode(replay)
    except ReplayError as exc:
        _fail(f"cannot normalize replay: {exc}")
    Path(output_file).write_bytes(blob)
    typer.echo(f"wrote format v{replay.format_version} -> current ({len(replay.events)} events) to {output_file}")


@app.command("import-techmino")
def cmd_import_techmino(
    source_file: Path = typer.Argument(..., help="game replay export (.rep file or base64 text)"),
    output_file: Path = typer.Argument(..., help="output replay path (.trpl)"),
    mode: str = typer.Option("auto", help="input timing: auto, relative or absolute"),
) -> None:
    """Convert a replay exported by the game into the binary format."""
    from .encoder import encode
    from .techmino import parse_base64, parse_compressed_bytes

    parse_mode = _parse_mode(mode)
    data = _read(source_file)
    try:
        if data[:1] == b"\x78":
            replay = parse_compressed_bytes(data, parse_mode)
        else:
            replay = parse_base64(data.decode("ascii", errors="replace"), parse_mode)
        blob = encode(replay)
    except ReplayError as exc:
        _fail(f"cannot import replay: {exc}")
    Path(output_file).write_bytes(blob)
    typer.echo(f"wrote replay ({len(replay.events)} events) to {output_file}")


@app.command("export-techmino")
def cmd_export_techmino(
    replay_file: Path = typer.Argument(..., help="replay file path (.trpl)"),
    output_file: Path | None = typer.Argument(None, help="output .rep path (default: print base64)"),
    mode: str = typer.Option("auto", help="input timing: auto, relative or absolute"),
) -> None:
    """Convert a replay back into the game's own export format."""
    from .decoder import decode
    from .techmino import dump_base64, dump_compressed_bytes

    parse_mode = _parse_mode(mode)
    try:
        replay = decode(_read(replay_file))
        if output_file is None:
            typer.echo(dump_base64(replay, parse_mode))
            return
        blob = dump_compressed_bytes(replay, parse_mode)
    except ReplayError as exc:
        _fail(f"cannot export replay: {exc}")
    Path(output_file).write_bytes(blob)
    typer.echo(f"wrote {len(blob)} bytes to {output_file}")


def main(argv: list[str] | None = None) -> None:
    app(prog_name="trpl", args=argv)


if __name__ == "__main__":
    main()
