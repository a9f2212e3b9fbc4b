"""
Deterministic account addressing.

Accounts are never looked up by name. Each address is a SHA-256 digest over a
namespace tag and the seed values, so any party can recompute where an
organization or voucher lives:

    sha256("organization" || le64(org_external_id))
    sha256("voucher" || utf8(voucher_id))

A deployment may scope its addresses by configuring a program id, in which case
``program_id || "ProgramDerivedAddress"`` is appended to the hashed input.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Union

from .errors import AddressMismatchError, InvalidSeedError

PDA_MARKER = b"ProgramDerivedAddress"

ORGANIZATION_NAMESPACE = b"organization"
VOUCHER_NAMESPACE = b"voucher"

MAX_SEED_LEN = 64
MAX_SEEDS = 16
U64_MAX = 2**64 - 1

Seed = Union[bytes, bytearray]


def derive_address(namespace: bytes, *seeds: Seed, program_id: Optional[str] = None) -> str:
    parts = [namespace, *seeds]
    if len(parts) > MAX_SEEDS:
        raise InvalidSeedError(f"at most {MAX_SEEDS} seeds are allowed, got {len(parts)}")

    digest = hashlib.sha256()
    for part in parts:
        if not isinstance(part, (bytes, bytearray)):
            raise InvalidSeedError(f"seed must be bytes, got {type(part).__name__}")
        if len(part) > MAX_SEED_LEN:
            raise InvalidSeedError(f"seed is {len(part)} bytes, max is {MAX_SEED_LEN}")
        digest.update(part)
    if program_id:
        digest.update(encode_utf8(program_id, "program id"))
        digest.update(PDA_MARKER)
    return digest.hexdigest()


def encode_u64(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise InvalidSeedError(f"{value} is not an unsigned 64-bit integer")
    return value.to_bytes(8, "little")


def encode_utf8(value: str, what: str) -> bytes:
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidSeedError(f"{what} is not valid UTF-8 text: {e.reason} at position {e.start}") from e


def organization_address(org_external_id: int, program_id: Optional[str] = None) -> str:
    return derive_address(ORGANIZATION_NAMESPACE, encode_u64(org_external_id), program_id=program_id)


def voucher_address(voucher_id: str, program_id: Optional[str] = None) -> str:
    return derive_address(VOUCHER_NAMESPACE, encode_utf8(voucher_id, "voucher id"), program_id=program_id)


def require_address(slot: str, supplied: str, expected: str) -> None:
    """Reject a caller-supplied account that is not the one the seeds point to."""
    if supplied != expected:
        raise AddressMismatchError(
            f"{slot} account {supplied} does not match derived address {expected}"
        )
