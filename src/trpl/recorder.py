from __future__ import annotations

from dataclasses import replace

from .types import InputAction, InputEvent, InputKind, Replay, ReplayHeader


class ReplayRecorder:
    def __init__(self, header: ReplayHeader) -> None:
        self._header = header
        self._frame = 0
        self._events: list[InputEvent] = []

    @property
    def header(self) -> ReplayHeader:
        return self._header

    @property
    def frame(self) -> int:
        """Frame of the most recently recorded event (0 before any)."""

        return int(self._frame)

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: InputEvent) -> int:
        """Append one input event.

        Returns the index of the recorded event.
        """

        frame = int(event.frame)
        if frame < 0:
            raise ValueError(f"frame must be non-negative, got {frame}")
        if frame < self._frame:
            raise ValueError(f"event at frame {frame} recorded after frame {self._frame}")
        self._events.append(event)
        self._frame = frame
        return len(self._events) - 1

    def press(self, action: InputAction, frame: int | None = None) -> int:
        if frame is None:
            frame = self._frame
        return self.record(InputEvent(frame=int(frame), action=InputAction(action), kind=InputKind.PRESS))

    def release(self, action: InputAction, frame: int | None = None) -> int:
        if frame is None:
            frame = self._frame
        return self.record(InputEvent(frame=int(frame), action=InputAction(action), kind=InputKind.RELEASE))

    def finish(self) -> Replay:
        header = replace(
            self._header,
            event_count=len(self._events),
            duration=max(int(self._header.duration), int(self._frame)),
        )
        return Replay(header=header, events=list(self._events))
