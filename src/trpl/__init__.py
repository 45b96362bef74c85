from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("trpl")
except PackageNotFoundError:  # pragma: no cover
    # Allow running from source (e.g. `PYTHONPATH=src`) without installed package metadata.
    __version__ = "0.0.0+dev"

from .decoder import ReplayReader, decode, iter_events
from .encoder import encode
from .errors import (
    BadMagic,
    DecodeError,
    IntegrityError,
    InvalidModel,
    MalformedInput,
    MalformedKeyCode,
    ReplayError,
    TechminoFormatError,
    TruncatedInput,
    UnsupportedVersion,
)
from .integrity import DIGEST_SIZE, MAGIC, compute_digest, verify, verify_bytes
from .recorder import ReplayRecorder
from .types import (
    CURRENT_FORMAT_VERSION,
    MIN_FORMAT_VERSION,
    InputAction,
    InputEvent,
    InputKind,
    Replay,
    ReplayHeader,
    SessionExtras,
    pack_action_code,
    unpack_action_code,
    validate_replay,
)
from .versioning import VersionDescriptor, known_versions, migrate_header, strategy_for

__all__ = [
    "BadMagic",
    "CURRENT_FORMAT_VERSION",
    "DIGEST_SIZE",
    "DecodeError",
    "InputAction",
    "InputEvent",
    "InputKind",
    "IntegrityError",
    "InvalidModel",
    "MAGIC",
    "MIN_FORMAT_VERSION",
    "MalformedInput",
    "MalformedKeyCode",
    "Replay",
    "ReplayError",
    "ReplayHeader",
    "ReplayReader",
    "ReplayRecorder",
    "SessionExtras",
    "TechminoFormatError",
    "TruncatedInput",
    "UnsupportedVersion",
    "VersionDescriptor",
    "compute_digest",
    "decode",
    "encode",
    "iter_events",
    "known_versions",
    "migrate_header",
    "pack_action_code",
    "strategy_for",
    "unpack_action_code",
    "validate_replay",
    "verify",
    "verify_bytes",
]
