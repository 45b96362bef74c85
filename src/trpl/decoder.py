from __future__ import annotations

import logging
from typing import Iterator

from .errors import MalformedInput, TruncatedInput
from .integrity import unseal
from .primitives import U64_MAX, ByteReader
from .types import InputEvent, Replay, ReplayHeader, unpack_action_code
from .versioning import migrate_header, strategy_for

logger = logging.getLogger(__name__)

# Smallest possible event record: a one byte frame varint plus the action byte.
MIN_EVENT_SIZE = 2


class ReplayReader:
    """One-pass cursor over the events of an encoded replay.

    Construction checks the envelope and digest, resolves the format version
    and decodes (and migrates) the header. Events are then decoded one at a
    time as the caller iterates; the reader cannot be rewound, open a new
    one to start over.

    The reader keeps its own immutable copy of the input, so the buffer it
    was given can be reused or mutated while iteration is in progress.
    """

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)
        envelope = unseal(self._data)
        self._checksum = envelope.digest
        self._reader = ByteReader(self._data, envelope.body_start, envelope.body_end)

        self._source_version = self._reader.read_varint()
        descriptor = strategy_for(self._source_version)
        logger.debug("decoding replay format v%d (%d body bytes)", descriptor.version, self._reader.remaining)
        raw_header = descriptor.read_header(self._reader)
        self._relative_frames = descriptor.relative_frames
        self._header = migrate_header(raw_header, descriptor.version)

        count = self._header.event_count
        if count * MIN_EVENT_SIZE > self._reader.remaining:
            raise TruncatedInput(
                offset=self._reader.offset,
                requested=count * MIN_EVENT_SIZE,
                available=self._reader.remaining,
                what=f"{count} events",
            )
        self._remaining = count
        self._index = 0
        self._prev_frame = 0
        self._done = False

    @property
    def header(self) -> ReplayHeader:
        return self._header

    @property
    def source_version(self) -> int:
        return self._source_version

    @property
    def checksum(self) -> bytes:
        return self._checksum

    @property
    def remaining(self) -> int:
        """Number of events not yet produced."""

        return self._remaining

    def __iter__(self) -> Iterator[InputEvent]:
        return self

    def __next__(self) -> InputEvent:
        if self._remaining == 0:
            self._finish()
            raise StopIteration
        event = self._read_event()
        self._remaining -= 1
        self._index += 1
        return event

    def _read_event(self) -> InputEvent:
        reader = self._reader
        offset = reader.offset
        value = reader.read_varint()
        if self._relative_frames:
            frame = self._prev_frame + value
            if frame > U64_MAX:
                raise MalformedInput(f"event {self._index} frame overflows 64 bits", offset=offset)
        else:
            frame = value
            if frame < self._prev_frame:
                raise MalformedInput(
                    f"event {self._index} frame {frame} is before previous frame {self._prev_frame}",
                    offset=offset,
                )
        code_offset = reader.offset
        code = reader.read_u8()
        try:
            action, kind = unpack_action_code(code)
        except ValueError as exc:
            raise MalformedInput(f"event {self._index}: {exc}", offset=code_offset) from exc
        self._prev_frame = frame
        return InputEvent(frame=frame, action=action, kind=kind)

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        if not self._reader.at_end():
            raise MalformedInput(
                f"{self._reader.remaining} unread bytes after the last event",
                offset=self._reader.offset,
            )

    def read_all(self) -> list[InputEvent]:
        return list(self)

    def to_replay(self) -> Replay:
        """Drain the remaining events into a finished `Replay`."""

        events = self.read_all()
        if len(events) != self._header.event_count:
            raise ValueError("to_replay() needs a reader that has not been iterated yet")
        return Replay(
            header=self._header,
            events=events,
            format_version=self._source_version,
            checksum=self._checksum,
        )


def iter_events(data: bytes | bytearray | memoryview) -> Iterator[InputEvent]:
    """Lazily yield the events of an encoded replay."""

    return ReplayReader(data)


def decode(data: bytes | bytearray | memoryview) -> Replay:
    """Decode a complete replay buffer.

    Raises a `DecodeError` subclass; never returns a partially decoded replay.
    """

    return ReplayReader(data).to_replay()
