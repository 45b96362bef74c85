from __future__ import annotations

from typing import Iterable

from .integrity import seal
from .primitives import ByteWriter
from .types import InputEvent, Replay, VersionedHeader, validate_replay
from .versioning import VersionDescriptor, current_strategy


def write_events(writer: ByteWriter, events: Iterable[InputEvent], *, relative_frames: bool = False) -> None:
    prev_frame = 0
    for event in events:
        frame = int(event.frame)
        writer.write_varint(frame - prev_frame if relative_frames else frame)
        writer.write_u8(event.code)
        prev_frame = frame


def write_body(
    writer: ByteWriter,
    descriptor: VersionDescriptor,
    header: VersionedHeader,
    events: Iterable[InputEvent],
) -> None:
    """Write version tag, header and events using `descriptor`'s layout.

    `encode()` always passes the current descriptor; older descriptors are
    only useful for producing fixtures in the legacy layouts.
    """

    writer.write_varint(descriptor.version)
    descriptor.write_header(writer, header)
    write_events(writer, events, relative_frames=descriptor.relative_frames)


def encode(replay: Replay) -> bytes:
    """Serialize `replay` in the current format version.

    Raises `InvalidModel` if the replay breaks one of its invariants.
    """

    validate_replay(replay)
    body = ByteWriter()
    write_body(body, current_strategy(), replay.header, replay.events)
    return seal(body.getvalue())
