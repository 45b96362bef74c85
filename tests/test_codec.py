from __future__ import annotations

from dataclasses import replace

import pytest

from trpl import (
    CURRENT_FORMAT_VERSION,
    DIGEST_SIZE,
    InputAction,
    InputEvent,
    InputKind,
    IntegrityError,
    InvalidModel,
    MalformedInput,
    Replay,
    ReplayHeader,
    ReplayReader,
    SessionExtras,
    TruncatedInput,
    UnsupportedVersion,
    decode,
    encode,
    iter_events,
)
from trpl.encoder import write_body
from trpl.integrity import ENVELOPE_SIZE, seal
from trpl.primitives import U64_MAX, ByteWriter
from trpl.types import HeaderV1, HeaderV2
from trpl.versioning import strategy_for


def _legacy_blob(version: int, header, events: list[InputEvent]) -> bytes:
    writer = ByteWriter()
    write_body(writer, strategy_for(version), header, events)
    return seal(writer.getvalue())


def _v1_body(count: int, payload: bytes) -> bytes:
    writer = ByteWriter()
    writer.write_varint(1)
    writer.write_u16(0)
    writer.write_u64(42)
    writer.write_varint(count)
    writer.write_bytes(payload)
    return writer.getvalue()


def test_roundtrip(sample_replay: Replay) -> None:
    blob = encode(sample_replay)
    replay = decode(blob)

    assert replay == sample_replay
    assert replay.format_version == CURRENT_FORMAT_VERSION
    assert replay.header.extras.mods == [(1, 2), (4, True)]
    assert replay.header.extras.private == {"board": [[0, 1], [1, 0]]}
    assert replay.events[-1] == InputEvent(frame=70_000, action=InputAction.RIGHT_ZANGI)


def test_encode_is_deterministic(sample_replay: Replay) -> None:
    assert encode(sample_replay) == encode(sample_replay)


def test_roundtrip_without_events() -> None:
    replay = Replay(header=ReplayHeader(mode_id=0, seed=0))
    decoded = decode(encode(replay))
    assert decoded == replay
    assert decoded.events == []


def test_roundtrip_extreme_values() -> None:
    header = ReplayHeader(mode_id=0xFFFF, seed=U64_MAX, duration=U64_MAX, score=U64_MAX, tas_used=True)
    events = [InputEvent(frame=U64_MAX, action=InputAction.HOLD, kind=InputKind.RELEASE)]
    replay = Replay.from_events(header, events)
    assert decode(encode(replay)) == replay


def test_body_starts_with_current_version(sample_replay: Replay) -> None:
    blob = encode(sample_replay)
    assert blob[ENVELOPE_SIZE] == CURRENT_FORMAT_VERSION


def test_decode_hand_built_v1_replay() -> None:
    blob = seal(_v1_body(2, b"\x00\x01" + b"\x05\x03"))

    replay = decode(blob)
    assert replay.format_version == 1
    assert replay.seed == 42
    assert replay.mode_id == 0
    assert replay.events == [
        InputEvent(frame=0, action=InputAction.LEFT),
        InputEvent(frame=5, action=InputAction.ROTATE_CW),
    ]

    corrupted = blob[:-1] + bytes([blob[-1] ^ 0xFF])
    with pytest.raises(IntegrityError):
        decode(corrupted)


def test_every_flipped_byte_is_an_integrity_error(sample_replay: Replay) -> None:
    blob = encode(sample_replay)
    for index in range(len(b"TRPL"), len(blob)):
        damaged = bytearray(blob)
        damaged[index] ^= 0x01
        with pytest.raises(IntegrityError):
            decode(bytes(damaged))


def test_every_prefix_is_truncated(sample_replay: Replay) -> None:
    blob = encode(sample_replay)
    for size in range(len(blob)):
        with pytest.raises(TruncatedInput):
            decode(blob[:size])


@pytest.mark.parametrize("version", [0, 4])
def test_unknown_version_tag(version: int) -> None:
    blob = seal(bytes([version]) + b"\x00" * 16)
    with pytest.raises(UnsupportedVersion) as excinfo:
        decode(blob)
    assert excinfo.value.version == version


def test_decode_v1_migrates_and_accumulates_frames() -> None:
    events = [
        InputEvent(frame=3, action=InputAction.LEFT),
        InputEvent(frame=3, action=InputAction.LEFT, kind=InputKind.RELEASE),
        InputEvent(frame=500, action=InputAction.HARD_DROP),
    ]
    blob = _legacy_blob(1, HeaderV1(mode_id=2, seed=77, event_count=3), events)

    replay = decode(blob)
    assert replay.format_version == 1
    assert replay.header == ReplayHeader(mode_id=2, seed=77, event_count=3)
    assert replay.events == events


def test_decode_v2_migrates() -> None:
    events = [InputEvent(frame=10, action=InputAction.ROTATE_180)]
    header = HeaderV2(mode_id=4, seed=5, player="Ann", game_version="0.16.0", duration=60, score=7, event_count=1)
    replay = decode(_legacy_blob(2, header, events))

    assert replay.format_version == 2
    assert (replay.player, replay.duration, replay.score) == ("Ann", 60, 7)
    assert replay.header.mode_name == ""
    assert replay.header.extras == SessionExtras()
    assert replay.events == events


def test_normalizing_a_legacy_replay() -> None:
    events = [InputEvent(frame=1, action=InputAction.RIGHT)]
    old = decode(_legacy_blob(1, HeaderV1(mode_id=9, seed=8, event_count=1), events))
    new = decode(encode(old))
    assert new.format_version == CURRENT_FORMAT_VERSION
    assert new.header == old.header
    assert new.events == old.events


def test_checksum_is_trailing_digest_and_ignored_by_equality(sample_replay: Replay) -> None:
    blob = encode(sample_replay)
    replay = decode(blob)
    assert replay.checksum == blob[-DIGEST_SIZE:]
    assert sample_replay.checksum is None
    assert replay == sample_replay


def test_reader_is_lazy_and_owns_its_input(sample_replay: Replay) -> None:
    buffer = bytearray(encode(sample_replay))
    reader = ReplayReader(buffer)
    assert reader.header == sample_replay.header
    assert reader.remaining == len(sample_replay.events)

    buffer[:] = b"\x00" * len(buffer)

    first = next(reader)
    assert first == sample_replay.events[0]
    assert reader.remaining == len(sample_replay.events) - 1
    assert list(reader) == sample_replay.events[1:]
    assert list(reader) == []


def test_iter_events(sample_replay: Replay) -> None:
    assert list(iter_events(encode(sample_replay))) == sample_replay.events


def test_to_replay_after_iteration_is_rejected(sample_replay: Replay) -> None:
    reader = ReplayReader(encode(sample_replay))
    next(reader)
    with pytest.raises(ValueError, match="not been iterated"):
        reader.to_replay()


def test_bad_action_code_is_malformed() -> None:
    blob = seal(_v1_body(1, b"\x00\x00"))
    with pytest.raises(MalformedInput, match="action"):
        decode(blob)

    blob = seal(_v1_body(1, b"\x00\x41"))
    with pytest.raises(MalformedInput):
        decode(blob)


def test_unread_body_bytes_are_malformed() -> None:
    blob = seal(_v1_body(1, b"\x00\x01\x00\x02"))
    reader = ReplayReader(blob)
    assert next(reader) == InputEvent(frame=0, action=InputAction.LEFT)
    with pytest.raises(MalformedInput, match="unread"):
        next(reader)


def test_decreasing_absolute_frames_are_malformed() -> None:
    events = [InputEvent(frame=5, action=InputAction.LEFT), InputEvent(frame=3, action=InputAction.RIGHT)]
    blob = _legacy_blob(2, HeaderV2(mode_id=0, seed=0, event_count=2), events)
    with pytest.raises(MalformedInput, match="before previous frame"):
        decode(blob)


def test_relative_frame_overflow_is_malformed() -> None:
    writer = ByteWriter()
    writer.write_varint(U64_MAX)
    writer.write_u8(1)
    writer.write_varint(1)
    writer.write_u8(1)
    blob = seal(_v1_body(2, writer.getvalue()))
    with pytest.raises(MalformedInput, match="overflows"):
        decode(blob)


def test_declared_event_count_larger_than_body() -> None:
    blob = seal(_v1_body(100, b"\x00\x01\x05\x03"))
    with pytest.raises(TruncatedInput) as excinfo:
        ReplayReader(blob)
    assert excinfo.value.requested == 200
    assert excinfo.value.available == 4


def test_event_cut_inside_record_is_truncated() -> None:
    blob = seal(_v1_body(2, b"\x00\x01\x85\x80"))
    with pytest.raises(TruncatedInput):
        decode(blob)


def test_invalid_extras_json_is_malformed() -> None:
    writer = ByteWriter()
    writer.write_varint(3)
    writer.build(
        strategy_for(3).layout,
        {
            "mode_id": 0,
            "seed": 0,
            "player": "",
            "game_version": "",
            "mode_name": "",
            "recorded_at": "",
            "flags": 0,
            "duration": 0,
            "score": 0,
            "extras": b"{not json",
            "event_count": 0,
        },
    )
    with pytest.raises(MalformedInput, match="extras"):
        decode(seal(writer.getvalue()))


def test_unknown_header_flags_are_malformed() -> None:
    writer = ByteWriter()
    writer.write_varint(3)
    writer.build(
        strategy_for(3).layout,
        {
            "mode_id": 0,
            "seed": 0,
            "player": "",
            "game_version": "",
            "mode_name": "",
            "recorded_at": "",
            "flags": 0x80,
            "duration": 0,
            "score": 0,
            "extras": b"{}",
            "event_count": 0,
        },
    )
    with pytest.raises(MalformedInput, match="flags"):
        decode(seal(writer.getvalue()))


def test_encode_rejects_event_count_mismatch(sample_replay: Replay) -> None:
    bad = replace(sample_replay, header=replace(sample_replay.header, event_count=3))
    with pytest.raises(InvalidModel) as excinfo:
        encode(bad)
    assert excinfo.value.field == "header.event_count"


def test_encode_rejects_decreasing_frames() -> None:
    events = [InputEvent(frame=10, action=InputAction.LEFT), InputEvent(frame=9, action=InputAction.LEFT)]
    with pytest.raises(InvalidModel, match="non-decreasing"):
        encode(Replay.from_events(ReplayHeader(mode_id=0, seed=0), events))


@pytest.mark.parametrize(
    ("changes", "field"),
    [
        ({"mode_id": 0x1_0000}, "header.mode_id"),
        ({"seed": -1}, "header.seed"),
        ({"seed": U64_MAX + 1}, "header.seed"),
        ({"score": True}, "header.score"),
        ({"player": "\ud800"}, "header.player"),
        ({"tas_used": 1}, "header.tas_used"),
        ({"extras": SessionExtras(private=object())}, "header.extras"),
    ],
)
def test_encode_rejects_bad_header_fields(changes: dict, field: str) -> None:
    replay = Replay(header=replace(ReplayHeader(mode_id=0, seed=0), **changes))
    with pytest.raises(InvalidModel) as excinfo:
        encode(replay)
    assert excinfo.value.field == field


def test_encode_rejects_unknown_action() -> None:
    replay = Replay.from_events(ReplayHeader(mode_id=0, seed=0), [InputEvent(frame=0, action=31)])
    with pytest.raises(InvalidModel, match="unknown action"):
        encode(replay)


@pytest.mark.parametrize(
    "extras",
    [
        SessionExtras(mods=[("x", 1)]),
        SessionExtras(mods=[(1, 2, 3)]),
        SessionExtras(mods=[[1, 2]]),
        SessionExtras(settings={1: 2}),
        SessionExtras(private=float("nan")),
        SessionExtras(private=(1, 2)),
    ],
)
def test_encode_rejects_extras_that_change_when_stored(extras: SessionExtras) -> None:
    replay = Replay(header=ReplayHeader(mode_id=0, seed=0, extras=extras))
    with pytest.raises(InvalidModel) as excinfo:
        encode(replay)
    assert excinfo.value.field == "header.extras"


def test_extras_that_pass_validation_roundtrip() -> None:
    extras = SessionExtras(
        mods=[(1, 2), (3, [1, 2]), (4, {"x": None})],
        settings={"das": 8.5, "skin": [1, 2, 3]},
        private={"board": [[0, 1]], "ratio": 0.25},
        nonstandard={"customRule": "hard"},
        missing_keys=["tasUsed"],
    )
    replay = Replay(header=ReplayHeader(mode_id=0, seed=0, extras=extras))
    assert decode(encode(replay)) == replay
