"""Digest and envelope of an encoded replay.

Layout of every encoded buffer:

    magic          4 bytes   b"TRPL"
    body_length    u32       number of body bytes
    body_check     u32       body_length ^ 0xFFFFFFFF
    body           ...       version varint, header, events
    digest         8 bytes   blake2b(magic .. end of body)

The format version varint is the first body byte, at offset 12 rather
than right after the magic.

The length/complement pair lets a reader tell a cut-short buffer apart
from a damaged one: a strict prefix of a valid buffer keeps the pair
consistent and comes up short, while a flipped byte either breaks the
pair or the digest.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Final

from construct import Const, Int32ul, Struct

from .errors import BadMagic, IntegrityError, MalformedInput, TruncatedInput
from .primitives import ByteReader, ByteWriter

MAGIC: Final[bytes] = b"TRPL"
DIGEST_SIZE: Final[int] = 8
LENGTH_CHECK_MASK: Final[int] = 0xFFFF_FFFF

ENVELOPE = Struct(
    "magic" / Const(MAGIC),
    "body_length" / Int32ul,
    "body_check" / Int32ul,
)
ENVELOPE_SIZE: Final[int] = ENVELOPE.sizeof()


def compute_digest(data: bytes | memoryview) -> bytes:
    return hashlib.blake2b(data, digest_size=DIGEST_SIZE).digest()


def verify(data: bytes | memoryview, expected: bytes) -> bool:
    return hmac.compare_digest(compute_digest(data), bytes(expected))


@dataclass(frozen=True, slots=True)
class Envelope:
    body_start: int
    body_end: int
    digest: bytes


def seal(body: bytes) -> bytes:
    """Wrap an encoded body in the envelope and append its digest."""

    out = ByteWriter()
    out.build(
        ENVELOPE,
        {"body_length": len(body), "body_check": len(body) ^ LENGTH_CHECK_MASK},
        what="body_length",
    )
    out.write_bytes(body)
    data = out.getvalue()
    return data + compute_digest(data)


def unseal(data: bytes) -> Envelope:
    """Check magic, declared length and digest of an encoded buffer.

    Nothing inside the body is interpreted here.
    """

    head = bytes(data[: len(MAGIC)])
    if head != MAGIC[: len(head)]:
        raise BadMagic(expected=MAGIC, actual=head)

    reader = ByteReader(data)
    raw = reader.parse(ENVELOPE)
    body_length = int(raw["body_length"])
    body_check = int(raw["body_check"])
    if body_length ^ body_check != LENGTH_CHECK_MASK:
        raise IntegrityError(
            "body length check failed",
            offset=len(MAGIC),
            expected=f"{body_length ^ LENGTH_CHECK_MASK:#010x}",
            actual=f"{body_check:#010x}",
        )

    body_start = reader.offset
    body_end = body_start + body_length
    total = body_end + DIGEST_SIZE
    if len(data) < total:
        raise TruncatedInput(
            offset=body_start,
            requested=body_length + DIGEST_SIZE,
            available=len(data) - body_start,
            what="replay body and digest",
        )
    if len(data) > total:
        raise MalformedInput(f"{len(data) - total} trailing bytes after digest", offset=total)

    digest = bytes(data[body_end:total])
    actual = compute_digest(memoryview(data)[:body_end])
    if not hmac.compare_digest(actual, digest):
        raise IntegrityError("digest mismatch", offset=body_end, expected=digest.hex(), actual=actual.hex())
    return Envelope(body_start=body_start, body_end=body_end, digest=digest)


def verify_bytes(data: bytes) -> None:
    """Integrity-only check of an encoded replay; raises `DecodeError` on failure."""

    unseal(bytes(data))
