"""Reader and writer for the game's own replay export.

Techmino saves replays (and shares them as text) as base64 of a zlib
stream. Inflated, the data is one line of JSON metadata, a newline, then
a flat run of VLQ numbers taken pairwise as `(time, key)`:

  - `key` is the input key code, with 0x20 set for a key release;
  - `time` is the frame of the input. Game versions before 0.17.22 store
    it relative to the previous input, later ones as an absolute frame.

A trailing unpaired number is ignored, as the game does.
"""

from __future__ import annotations

import base64
import binascii
import zlib
from enum import Enum
from typing import Any, Final

import msgspec

from .errors import InvalidModel, MalformedKeyCode, TechminoFormatError
from .primitives import encode_vlq
from .types import (
    ACTION_MASK,
    RELEASE_FLAG,
    InputAction,
    InputEvent,
    InputKind,
    Replay,
    ReplayHeader,
    SessionExtras,
    validate_replay,
)

METADATA_SEPARATOR: Final[int] = 0x0A
ABSOLUTE_TIMING_START: Final[tuple[int, int, int]] = (0, 17, 22)


class InputParseMode(Enum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"


class TechminoMetadata(msgspec.Struct, rename="camel"):
    player: str
    seed: int
    version: str
    date: str
    mode: str
    tas_used: bool | None = None
    private: Any = None
    mods: list[tuple[int, Any]] | None = None
    setting: dict[str, Any] = msgspec.field(default_factory=dict)


_KNOWN_KEYS: Final[frozenset[str]] = frozenset(f.encode_name for f in msgspec.structs.fields(TechminoMetadata))

# Keys the game may leave out, with the value an absent key stands for.
_OPTIONAL_KEYS: Final[dict[str, Any]] = {"tasUsed": False, "private": None, "mods": [], "setting": {}}


def infer_input_parse_mode(game_version: str) -> InputParseMode | None:
    """Guess input timing from a game version string such as `"Alpha v0.15.1"`.

    Returns None if no `major.minor.patch` triple can be read from it.
    """

    filtered = "".join(ch for ch in str(game_version) if ch.isdigit() or ch == ".")
    parts = filtered.split(".")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        return None
    if tuple(int(part) for part in parts) < ABSOLUTE_TIMING_START:
        return InputParseMode.RELATIVE
    return InputParseMode.ABSOLUTE


def extract_vlqs(data: bytes) -> list[int]:
    values: list[int] = []
    current = 0
    for byte in data:
        current = (current << 7) | (byte & 0x7F)
        if byte < 0x80:
            values.append(current)
            current = 0
    return values


def unpack_game_key(key: int) -> tuple[InputAction, InputKind]:
    """Split a key value from a game export into `(action, kind)`.

    Looser than the binary format: anything above 0x20 is a release and
    only the low five bits name the key, so stray high bits are ignored.
    Raises ValueError when those bits name no key.
    """

    key = int(key)
    kind = InputKind.RELEASE if key > RELEASE_FLAG else InputKind.PRESS
    return InputAction(key & 0xFF & ACTION_MASK), kind


def _resolve_mode(mode: InputParseMode | None, game_version: str) -> InputParseMode:
    resolved = mode if mode is not None else infer_input_parse_mode(game_version)
    if resolved is None:
        raise TechminoFormatError(
            f"cannot infer input timing from game version {game_version!r}; pass the parse mode explicitly"
        )
    return resolved


def _parse_metadata(raw: bytes) -> tuple[TechminoMetadata, dict[str, Any], list[str]]:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise TechminoFormatError(f"replay metadata is not valid UTF-8: {exc.reason}") from exc
    try:
        obj = msgspec.json.decode(text)
    except msgspec.DecodeError as exc:
        raise TechminoFormatError(f"replay metadata is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise TechminoFormatError("replay metadata must be a JSON object")
    try:
        metadata = msgspec.convert(obj, type=TechminoMetadata)
    except msgspec.ValidationError as exc:
        raise TechminoFormatError(f"invalid replay metadata: {exc}") from exc
    nonstandard = {key: value for key, value in obj.items() if key not in _KNOWN_KEYS}
    missing = [key for key in _OPTIONAL_KEYS if key not in obj]
    return metadata, nonstandard, missing


def _parse_inputs(data: bytes, mode: InputParseMode) -> list[InputEvent]:
    values = extract_vlqs(data)
    events: list[InputEvent] = []
    prev_frame = 0
    for pair_index in range(len(values) // 2):
        time, key = values[2 * pair_index], values[2 * pair_index + 1]
        frame = prev_frame + time if mode is InputParseMode.RELATIVE else time
        try:
            action, kind = unpack_game_key(key)
        except ValueError as exc:
            raise MalformedKeyCode(position=2 * pair_index, frame=frame, value=key) from exc
        if frame < prev_frame:
            raise TechminoFormatError(
                f"input at value index {2 * pair_index} goes back in time (frame {frame} after {prev_frame})"
            )
        events.append(InputEvent(frame=frame, action=action, kind=kind))
        prev_frame = frame
    return events


def parse_raw_bytes(data: bytes, mode: InputParseMode | None = None) -> Replay:
    """Parse the inflated form of a replay export.

    Usually you want `parse_base64` or `parse_compressed_bytes`; the game
    never writes this form to disk.
    """

    data = bytes(data)
    split = data.find(bytes([METADATA_SEPARATOR]))
    if split < 0:
        raise TechminoFormatError("metadata separator (newline) not found")
    metadata, nonstandard, missing = _parse_metadata(data[:split])
    events = _parse_inputs(data[split + 1 :], _resolve_mode(mode, metadata.version))

    header = ReplayHeader(
        mode_id=0,
        seed=int(metadata.seed),
        event_count=len(events),
        player=metadata.player,
        game_version=metadata.version,
        duration=events[-1].frame if events else 0,
        mode_name=metadata.mode,
        recorded_at=metadata.date,
        tas_used=bool(metadata.tas_used),
        extras=SessionExtras(
            mods=list(metadata.mods or []),
            settings=dict(metadata.setting),
            private=metadata.private,
            nonstandard=nonstandard,
            missing_keys=missing,
        ),
    )
    replay = Replay(header=header, events=events)
    try:
        validate_replay(replay)
    except InvalidModel as exc:
        raise TechminoFormatError(f"replay does not fit the replay model: {exc}") from exc
    return replay


def parse_compressed_bytes(data: bytes, mode: InputParseMode | None = None) -> Replay:
    """Parse the contents of a `.rep` file from the game's replay folder."""

    try:
        raw = zlib.decompress(bytes(data))
    except zlib.error as exc:
        raise TechminoFormatError(f"replay data is not a zlib stream: {exc}") from exc
    return parse_raw_bytes(raw, mode)


def parse_base64(text: str, mode: InputParseMode | None = None) -> Replay:
    """Parse a replay string as copied from the game's share dialog."""

    try:
        data = base64.b64decode("".join(str(text).split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TechminoFormatError(f"replay string is not valid base64: {exc}") from exc
    return parse_compressed_bytes(data, mode)


def _metadata_obj(header: ReplayHeader) -> dict[str, Any]:
    extras = header.extras
    obj: dict[str, Any] = dict(extras.nonstandard)
    obj.update(
        {
            "tasUsed": bool(header.tas_used),
            "private": extras.private,
            "player": header.player,
            "seed": int(header.seed),
            "version": header.game_version,
            "date": header.recorded_at,
            "mods": [list(mod) for mod in extras.mods],
            "mode": header.mode_name,
            "setting": dict(extras.settings),
        }
    )
    for key in extras.missing_keys:
        # Only left out while still at the value its absence stands for.
        if key in _OPTIONAL_KEYS and obj.get(key) == _OPTIONAL_KEYS[key]:
            del obj[key]
    return obj


def dump_raw_bytes(replay: Replay, mode: InputParseMode | None = None) -> bytes:
    validate_replay(replay)
    resolved = _resolve_mode(mode, replay.header.game_version)
    try:
        metadata = msgspec.json.encode(_metadata_obj(replay.header))
    except (TypeError, msgspec.EncodeError) as exc:
        raise TechminoFormatError(f"cannot encode replay metadata: {exc}") from exc

    out = bytearray(metadata)
    out.append(METADATA_SEPARATOR)
    prev_frame = 0
    for event in replay.events:
        time = event.frame - prev_frame if resolved is InputParseMode.RELATIVE else event.frame
        out += encode_vlq(time)
        out += encode_vlq(event.code)
        prev_frame = event.frame
    return bytes(out)


def dump_compressed_bytes(replay: Replay, mode: InputParseMode | None = None) -> bytes:
    return zlib.compress(dump_raw_bytes(replay, mode), level=9)


def dump_base64(replay: Replay, mode: InputParseMode | None = None) -> str:
    return base64.b64encode(dump_compressed_bytes(replay, mode)).decode("ascii")
