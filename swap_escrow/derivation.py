"""
derivation.py - Deterministic Address Derivation

Addresses for program-owned accounts are derived from seeds instead of keys:

    address = sha256(seed_0 || ... || seed_n || program_id || "ProgramDerivedAddress")

A derived address must NOT be a valid Ed25519 public key, otherwise someone
could hold its private key and sign for it. find_program_address() appends a
one-byte bump seed, trying 255 down to 0, and returns the first off-curve
result. That first bump is the canonical one; records store it so later
instructions can re-derive their own address with create_program_address().

All functions here are pure.
"""

from __future__ import annotations
import hashlib
import struct
from typing import Iterable, List, Tuple

from .core import (
    Address, InvalidSeeds, LedgerError, U8_MAX,
    address_bytes, address_from_bytes, check_u64,
)


MAX_SEEDS = 16
MAX_SEED_LEN = 32
PDA_MARKER = b"ProgramDerivedAddress"

# Edwards25519 curve parameters
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def program_id_from_label(label: str) -> Address:
    """
    Derive a stable program identifier from a human-readable label.

    Example:
        program_id_from_label("escrow")  # same 64-char hex on every run
    """
    return hashlib.sha256(label.encode()).hexdigest()


def u64_seed(value: int) -> bytes:
    """Encode an integer as the 8-byte little-endian seed used in derivations."""
    return struct.pack("<Q", check_u64("seed", value))


def is_on_curve(point: bytes) -> bool:
    """
    Return True if 32 bytes decompress to a point on the Ed25519 curve.

    Decompression recovers x from y via x^2 = (y^2 - 1) / (d*y^2 + 1); the
    encoding is a curve point exactly when that ratio is a square mod p.
    """
    if len(point) != 32:
        return False
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y %= _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    if v == 0:
        return False
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    # Euler's criterion
    return pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: List[bytes]) -> None:
    if len(seeds) > MAX_SEEDS:
        raise InvalidSeeds(f"At most {MAX_SEEDS} seeds allowed, got {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InvalidSeeds(f"Seed exceeds {MAX_SEED_LEN} bytes: {len(seed)}")


def create_program_address(seeds: Iterable[bytes], program_id: Address) -> Address:
    """
    Derive the address for a full seed list (bump included).

    Args:
        seeds: Seed byte strings, each at most 32 bytes, at most 16 of them
        program_id: Program the address belongs to

    Returns:
        The derived address

    Raises:
        InvalidSeeds: If the seeds are malformed or the result lies on the curve
    """
    seeds = [bytes(s) for s in seeds]
    _check_seeds(seeds)
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(address_bytes(program_id))
    hasher.update(PDA_MARKER)
    digest = hasher.digest()
    if is_on_curve(digest):
        raise InvalidSeeds("Derived address lies on the Ed25519 curve")
    return address_from_bytes(digest)


def find_program_address(seeds: Iterable[bytes], program_id: Address) -> Tuple[Address, int]:
    """
    Find the canonical derived address and bump for a seed list.

    Args:
        seeds: Seed byte strings, without the bump
        program_id: Program the address belongs to

    Returns:
        (address, bump) for the highest bump yielding an off-curve address

    Raises:
        InvalidSeeds: If the seeds themselves are malformed
        LedgerError: If no bump in 0..255 works
    """
    seeds = [bytes(s) for s in seeds]
    # Room for the bump seed
    _check_seeds(seeds + [b"\x00"])
    for bump in range(U8_MAX, -1, -1):
        try:
            return create_program_address(seeds + [bytes([bump])], program_id), bump
        except InvalidSeeds:
            continue
    raise LedgerError("Unable to find a viable program address bump seed")


# Programs that own token custody and associated token accounts.
TOKEN_PROGRAM_ID = program_id_from_label("token-program")
ASSOCIATED_TOKEN_PROGRAM_ID = program_id_from_label("associated-token-program")


def get_associated_token_address(owner: Address, mint: Address) -> Address:
    """
    Return the canonical token account address for (owner, mint).

    The owner may itself be a derived address, as for escrow vaults.
    """
    address, _bump = find_program_address(
        [address_bytes(owner), address_bytes(TOKEN_PROGRAM_ID), address_bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address
