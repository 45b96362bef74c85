"""Known on-disk layouts and the migrations between them.

Every format version is one `VersionDescriptor`: the header dataclass it
decodes to, its construct layout, how event frames are stored, and the
step that upgrades its header to the next version. Adding a version
means adding a header variant, a descriptor, and the upgrade step on the
previous descriptor; existing descriptors stay as they are.

Fields a newer version adds take these values when migrating up:

    v1 -> v2   player ""  game_version ""  duration 0 (unknown)  score 0
    v2 -> v3   mode_name ""  recorded_at ""  tas_used False  extras {}

Only headers go through these steps. Events decode to the same
`InputEvent` in every version: the reader turns v1 frame deltas into
absolute frames as it goes, so no event needs migrating.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping

import msgspec
from construct import Construct, GreedyBytes, Int8ul, Int16ul, Int64ul, PascalString, Prefixed, Struct

from .errors import MalformedInput, UnsupportedVersion
from .primitives import ByteReader, ByteWriter, Vlq
from .types import (
    CURRENT_FORMAT_VERSION,
    MIN_FORMAT_VERSION,
    TAS_USED_FLAG,
    HeaderV1,
    HeaderV2,
    ReplayHeader,
    SessionExtras,
    VersionedHeader,
)

logger = logging.getLogger(__name__)

_TEXT = PascalString(Vlq, "utf8")

HEADER_V1 = Struct(
    "mode_id" / Int16ul,
    "seed" / Int64ul,
    "event_count" / Vlq,
)

HEADER_V2 = Struct(
    "mode_id" / Int16ul,
    "seed" / Int64ul,
    "player" / _TEXT,
    "game_version" / _TEXT,
    "duration" / Vlq,
    "score" / Vlq,
    "event_count" / Vlq,
)

HEADER_V3 = Struct(
    "mode_id" / Int16ul,
    "seed" / Int64ul,
    "player" / _TEXT,
    "game_version" / _TEXT,
    "mode_name" / _TEXT,
    "recorded_at" / _TEXT,
    "flags" / Int8ul,
    "duration" / Vlq,
    "score" / Vlq,
    "extras" / Prefixed(Vlq, GreedyBytes),
    "event_count" / Vlq,
)


def _plain_from_raw(header_type: type) -> Callable[[Mapping[str, Any], int], VersionedHeader]:
    names = tuple(header_type.__dataclass_fields__)

    def _from_raw(raw: Mapping[str, Any], offset: int) -> VersionedHeader:
        return header_type(**{name: raw[name] for name in names})

    return _from_raw


def _plain_to_raw(header: VersionedHeader) -> dict[str, Any]:
    return asdict(header)


def _v3_from_raw(raw: Mapping[str, Any], offset: int) -> ReplayHeader:
    flags = int(raw["flags"])
    if flags & ~TAS_USED_FLAG:
        raise MalformedInput(f"unknown header flags: {flags:#04x}", offset=offset)
    try:
        extras = msgspec.json.decode(raw["extras"], type=SessionExtras) if raw["extras"] else SessionExtras()
    except msgspec.DecodeError as exc:
        raise MalformedInput(f"invalid extras block: {exc}", offset=offset) from exc
    return ReplayHeader(
        mode_id=int(raw["mode_id"]),
        seed=int(raw["seed"]),
        event_count=int(raw["event_count"]),
        player=str(raw["player"]),
        game_version=str(raw["game_version"]),
        duration=int(raw["duration"]),
        score=int(raw["score"]),
        mode_name=str(raw["mode_name"]),
        recorded_at=str(raw["recorded_at"]),
        tas_used=bool(flags & TAS_USED_FLAG),
        extras=extras,
    )


def _v3_to_raw(header: ReplayHeader) -> dict[str, Any]:
    return {
        "mode_id": header.mode_id,
        "seed": header.seed,
        "player": header.player,
        "game_version": header.game_version,
        "mode_name": header.mode_name,
        "recorded_at": header.recorded_at,
        "flags": TAS_USED_FLAG if header.tas_used else 0,
        "duration": header.duration,
        "score": header.score,
        "extras": msgspec.json.encode(header.extras),
        "event_count": header.event_count,
    }


def _upgrade_v1(header: HeaderV1) -> HeaderV2:
    return HeaderV2(mode_id=header.mode_id, seed=header.seed, event_count=header.event_count)


def _upgrade_v2(header: HeaderV2) -> ReplayHeader:
    return ReplayHeader(
        mode_id=header.mode_id,
        seed=header.seed,
        event_count=header.event_count,
        player=header.player,
        game_version=header.game_version,
        duration=header.duration,
        score=header.score,
    )


@dataclass(frozen=True, slots=True)
class VersionDescriptor:
    version: int
    header_type: type
    layout: Construct
    # v1 stores each frame as a delta from the previous event.
    relative_frames: bool
    header_from_raw: Callable[[Mapping[str, Any], int], VersionedHeader]
    header_to_raw: Callable[[Any], dict[str, Any]]
    upgrade: Callable[[Any], VersionedHeader] | None = None

    def read_header(self, reader: ByteReader) -> VersionedHeader:
        offset = reader.offset
        raw = reader.parse(self.layout)
        return self.header_from_raw(raw, offset)

    def write_header(self, writer: ByteWriter, header: VersionedHeader) -> None:
        if not isinstance(header, self.header_type):
            raise TypeError(f"format v{self.version} writes {self.header_type.__name__}, got {type(header).__name__}")
        writer.build(self.layout, self.header_to_raw(header), what="header")


_REGISTRY: Mapping[int, VersionDescriptor] = MappingProxyType(
    {
        1: VersionDescriptor(
            version=1,
            header_type=HeaderV1,
            layout=HEADER_V1,
            relative_frames=True,
            header_from_raw=_plain_from_raw(HeaderV1),
            header_to_raw=_plain_to_raw,
            upgrade=_upgrade_v1,
        ),
        2: VersionDescriptor(
            version=2,
            header_type=HeaderV2,
            layout=HEADER_V2,
            relative_frames=False,
            header_from_raw=_plain_from_raw(HeaderV2),
            header_to_raw=_plain_to_raw,
            upgrade=_upgrade_v2,
        ),
        3: VersionDescriptor(
            version=3,
            header_type=ReplayHeader,
            layout=HEADER_V3,
            relative_frames=False,
            header_from_raw=_v3_from_raw,
            header_to_raw=_v3_to_raw,
        ),
    }
)


def known_versions() -> tuple[int, ...]:
    return tuple(sorted(_REGISTRY))


def strategy_for(version: int) -> VersionDescriptor:
    descriptor = _REGISTRY.get(int(version))
    if descriptor is None:
        raise UnsupportedVersion(version, min_version=MIN_FORMAT_VERSION, max_version=CURRENT_FORMAT_VERSION)
    return descriptor


def current_strategy() -> VersionDescriptor:
    return _REGISTRY[CURRENT_FORMAT_VERSION]


def migrate_header(header: VersionedHeader, from_version: int) -> ReplayHeader:
    """Run the upgrade chain from `from_version` up to the current schema."""

    version = int(from_version)
    descriptor = strategy_for(version)
    if not isinstance(header, descriptor.header_type):
        raise TypeError(f"format v{version} header must be {descriptor.header_type.__name__}, got {type(header).__name__}")
    while descriptor.upgrade is not None:
        header = descriptor.upgrade(header)
        version += 1
        logger.debug("migrated replay header to format v%d", version)
        descriptor = _REGISTRY[version]
    if not isinstance(header, ReplayHeader):
        raise TypeError(f"upgrade chain ended at {type(header).__name__}, expected ReplayHeader")
    return header
