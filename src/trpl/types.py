from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Final, Iterator, Literal, TypeAlias

import msgspec

from .errors import InvalidModel
from .primitives import U64_MAX

ReplayFormatVersion: TypeAlias = Literal[1, 2, 3]

MIN_FORMAT_VERSION: Final[int] = 1
CURRENT_FORMAT_VERSION: Final[int] = 3

U16_MAX: Final[int] = 0xFFFF

RELEASE_FLAG: Final[int] = 0x20
ACTION_MASK: Final[int] = 0x1F

TAS_USED_FLAG: Final[int] = 1 << 0


class InputAction(IntEnum):
    """Input keys as numbered by the game's replay recorder."""

    LEFT = 1
    RIGHT = 2
    ROTATE_CW = 3
    ROTATE_CCW = 4
    ROTATE_180 = 5
    HARD_DROP = 6
    SOFT_DROP = 7
    HOLD = 8
    FUNCTION_1 = 9
    FUNCTION_2 = 10
    INSTANT_LEFT = 11
    INSTANT_RIGHT = 12
    SONIC_DROP = 13
    DOWN_1 = 14
    DOWN_4 = 15
    DOWN_10 = 16
    LEFT_DROP = 17
    RIGHT_DROP = 18
    LEFT_ZANGI = 19
    RIGHT_ZANGI = 20


class InputKind(IntEnum):
    PRESS = 0
    RELEASE = 1


def pack_action_code(action: InputAction | int, kind: InputKind | int = InputKind.PRESS) -> int:
    code = int(InputAction(int(action)))
    if InputKind(int(kind)) is InputKind.RELEASE:
        code |= RELEASE_FLAG
    return code


def unpack_action_code(code: int) -> tuple[InputAction, InputKind]:
    """Split an on-disk action byte into `(action, kind)`.

    Raises ValueError for bytes that name no known key or carry stray bits.
    """

    code = int(code)
    if code & ~(ACTION_MASK | RELEASE_FLAG):
        raise ValueError(f"unknown action code: {code:#04x}")
    try:
        action = InputAction(code & ACTION_MASK)
    except ValueError:
        raise ValueError(f"unknown action code: {code:#04x}") from None
    kind = InputKind.RELEASE if code & RELEASE_FLAG else InputKind.PRESS
    return action, kind


@dataclass(frozen=True, slots=True)
class InputEvent:
    frame: int
    action: InputAction
    kind: InputKind = InputKind.PRESS

    @property
    def released(self) -> bool:
        return self.kind is InputKind.RELEASE

    @property
    def code(self) -> int:
        return pack_action_code(self.action, self.kind)


class SessionExtras(msgspec.Struct, omit_defaults=True):
    """Free-form session metadata carried as a JSON block.

    `mods` holds `[mod_id, value]` pairs; `settings` the player's game
    settings; `private` mode specific data (custom puzzle boards and the
    like); `nonstandard` any metadata key the game wrote that has no field
    of its own; `missing_keys` the optional export keys the game did not
    write, so an export of the replay leaves them out again.

    Values must survive a JSON round trip unchanged: tuples only as mod
    pairs, string dict keys, no NaN.
    """

    mods: list[tuple[int, Any]] = msgspec.field(default_factory=list)
    settings: dict[str, Any] = msgspec.field(default_factory=dict)
    private: Any = None
    nonstandard: dict[str, Any] = msgspec.field(default_factory=dict)
    missing_keys: list[str] = msgspec.field(default_factory=list)


@dataclass(frozen=True, slots=True)
class HeaderV1:
    mode_id: int
    seed: int
    event_count: int = 0


@dataclass(frozen=True, slots=True)
class HeaderV2:
    mode_id: int
    seed: int
    player: str = ""
    game_version: str = ""
    duration: int = 0
    score: int = 0
    event_count: int = 0


@dataclass(frozen=True, slots=True)
class ReplayHeader:
    mode_id: int
    seed: int
    event_count: int = 0
    player: str = ""
    game_version: str = ""
    # Declared total length of the session, in frames. 0 means unknown.
    duration: int = 0
    score: int = 0
    mode_name: str = ""
    recorded_at: str = ""
    tas_used: bool = False
    extras: SessionExtras = field(default_factory=SessionExtras)


VersionedHeader: TypeAlias = HeaderV1 | HeaderV2 | ReplayHeader


@dataclass(slots=True)
class Replay:
    header: ReplayHeader
    events: list[InputEvent] = field(default_factory=list)
    format_version: int = CURRENT_FORMAT_VERSION
    checksum: bytes | None = field(default=None, compare=False)

    @classmethod
    def from_events(cls, header: ReplayHeader, events: list[InputEvent]) -> "Replay":
        """Build a replay whose declared event count matches `events`."""

        events = list(events)
        return cls(header=replace(header, event_count=len(events)), events=events)

    @property
    def mode_id(self) -> int:
        return self.header.mode_id

    @property
    def seed(self) -> int:
        return self.header.seed

    @property
    def player(self) -> str:
        return self.header.player

    @property
    def duration(self) -> int:
        return self.header.duration

    @property
    def score(self) -> int:
        return self.header.score

    @property
    def event_count(self) -> int:
        return self.header.event_count

    def iter_events(self) -> Iterator[InputEvent]:
        return iter(self.events)


def _check_uint(name: str, value: object, maximum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidModel("must be an integer", field=name, expected="int", actual=value)
    if not (0 <= value <= maximum):
        raise InvalidModel("out of range", field=name, expected=f"0..{maximum}", actual=value)


def _check_text(name: str, value: object) -> None:
    if not isinstance(value, str):
        raise InvalidModel("must be a string", field=name, expected="str", actual=value)
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidModel("not encodable as UTF-8", field=name, actual=value) from exc


def validate_header(header: ReplayHeader) -> None:
    if not isinstance(header, ReplayHeader):
        raise InvalidModel("must be a ReplayHeader", field="header", actual=type(header).__name__)
    _check_uint("header.mode_id", header.mode_id, U16_MAX)
    _check_uint("header.seed", header.seed, U64_MAX)
    _check_uint("header.event_count", header.event_count, U64_MAX)
    _check_uint("header.duration", header.duration, U64_MAX)
    _check_uint("header.score", header.score, U64_MAX)
    for name in ("player", "game_version", "mode_name", "recorded_at"):
        _check_text(f"header.{name}", getattr(header, name))
    if not isinstance(header.tas_used, bool):
        raise InvalidModel("must be a bool", field="header.tas_used", actual=header.tas_used)
    if not isinstance(header.extras, SessionExtras):
        raise InvalidModel("must be SessionExtras", field="header.extras", actual=type(header.extras).__name__)
    try:
        encoded = msgspec.json.encode(header.extras)
    except (TypeError, ValueError, msgspec.EncodeError) as exc:
        raise InvalidModel(f"not JSON encodable: {exc}", field="header.extras") from exc
    # Must read back from its JSON form unchanged.
    try:
        decoded = msgspec.json.decode(encoded, type=SessionExtras)
    except msgspec.DecodeError as exc:
        raise InvalidModel(f"does not read back as SessionExtras: {exc}", field="header.extras") from exc
    if decoded != header.extras:
        raise InvalidModel(
            "changes when stored as JSON",
            field="header.extras",
            expected=decoded,
            actual=header.extras,
        )


def validate_replay(replay: Replay) -> None:
    """Check every invariant of an in-memory replay; raises `InvalidModel`."""

    validate_header(replay.header)
    events = replay.events
    if replay.header.event_count != len(events):
        raise InvalidModel(
            "declared event count does not match the event list",
            field="header.event_count",
            expected=len(events),
            actual=replay.header.event_count,
        )
    prev_frame = 0
    for index, event in enumerate(events):
        if not isinstance(event, InputEvent):
            raise InvalidModel("must be an InputEvent", field=f"events[{index}]", actual=type(event).__name__)
        _check_uint(f"events[{index}].frame", event.frame, U64_MAX)
        if event.frame < prev_frame:
            raise InvalidModel(
                "frames must be non-decreasing",
                field=f"events[{index}].frame",
                expected=f">= {prev_frame}",
                actual=event.frame,
            )
        if not isinstance(event.action, InputAction):
            try:
                InputAction(event.action)
            except ValueError as exc:
                raise InvalidModel("unknown action", field=f"events[{index}].action", actual=event.action) from exc
        if not isinstance(event.kind, InputKind):
            try:
                InputKind(event.kind)
            except ValueError as exc:
                raise InvalidModel("unknown input kind", field=f"events[{index}].kind", actual=event.kind) from exc
        prev_frame = event.frame
