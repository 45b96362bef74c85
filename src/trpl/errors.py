from __future__ import annotations


class ReplayError(ValueError):
    """Base class for every error raised by the replay codec."""


class DecodeError(ReplayError):
    """Raised when an encoded buffer cannot be turned into a valid replay."""


class BadMagic(DecodeError):
    def __init__(self, *, expected: bytes, actual: bytes) -> None:
        self.expected = bytes(expected)
        self.actual = bytes(actual)
        super().__init__(f"bad magic: expected {self.expected!r}, got {self.actual!r}")


class UnsupportedVersion(DecodeError):
    def __init__(self, version: int, *, min_version: int, max_version: int) -> None:
        self.version = int(version)
        self.min_version = int(min_version)
        self.max_version = int(max_version)
        if self.version > self.max_version:
            reason = "newer than the newest known version"
        else:
            reason = "older than the oldest retained version"
        super().__init__(
            f"unsupported replay format version {self.version} ({reason}; "
            f"supported range is {self.min_version}..{self.max_version})"
        )


class TruncatedInput(DecodeError):
    def __init__(self, *, offset: int, requested: int, available: int, what: str = "") -> None:
        self.offset = int(offset)
        self.requested = int(requested)
        self.available = int(available)
        self.what = str(what)
        label = f" reading {what}" if what else ""
        super().__init__(
            f"unexpected end of input{label} at offset {self.offset}: "
            f"requested {self.requested} bytes, {self.available} available"
        )


class IntegrityError(DecodeError):
    def __init__(self, message: str, *, offset: int, expected: str, actual: str) -> None:
        self.offset = int(offset)
        self.expected = str(expected)
        self.actual = str(actual)
        super().__init__(f"{message} at offset {self.offset}: expected {self.expected}, got {self.actual}")


class MalformedInput(DecodeError):
    """Structurally invalid data inside a buffer whose digest checks out."""

    def __init__(self, message: str, *, offset: int) -> None:
        self.offset = int(offset)
        super().__init__(f"{message} (offset {self.offset})")


class InvalidModel(ReplayError):
    """The in-memory replay violates one of its invariants."""

    def __init__(self, message: str, *, field: str, expected: object = None, actual: object = None) -> None:
        self.field = str(field)
        self.expected = expected
        self.actual = actual
        detail = ""
        if expected is not None or actual is not None:
            detail = f" (expected {expected}, got {actual!r})"
        super().__init__(f"{self.field}: {message}{detail}")


class TechminoFormatError(ReplayError):
    """The game's native replay export could not be read or written."""


class MalformedKeyCode(TechminoFormatError):
    def __init__(self, *, position: int, frame: int, value: int) -> None:
        self.position = int(position)
        self.frame = int(frame)
        self.value = int(value)
        super().__init__(f"malformed key code {self.value} at value index {self.position} (frame {self.frame})")
