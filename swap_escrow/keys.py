"""
Ed25519 identities and signature checks.

Every party on the ledger is identified by the hex encoding of its 32-byte
Ed25519 public key. Requests carry one signature per signing identity over
the request message; verify_signers() turns those into the set of identities
a transition may treat as having authorized it.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .core import Address, address_bytes


class CryptoError(Exception):
    """Base exception for crypto errors."""

    pass


class SignatureError(CryptoError):
    """Signature verification failed."""

    pass


@dataclass(frozen=True)
class Keypair:
    """Ed25519 key pair.

    Attributes:
        private_key: The signing key
    """

    private_key: Ed25519PrivateKey

    @classmethod
    def generate(cls) -> "Keypair":
        """Generate a new random key pair."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        """Rebuild a key pair from its 32-byte private seed.

        Raises:
            CryptoError: If the seed is not 32 bytes
        """
        if len(seed) != 32:
            raise CryptoError(f"Seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @property
    def pubkey(self) -> Address:
        """Public key as a hex address."""
        return self.private_key.public_key().public_bytes_raw().hex()

    def seed(self) -> bytes:
        """Raw 32-byte private seed."""
        return self.private_key.private_bytes_raw()

    def sign(self, message: bytes) -> bytes:
        """Sign a message, returning the 64-byte signature."""
        return self.private_key.sign(message)

    def __repr__(self) -> str:
        return f"Keypair({self.pubkey})"


def verify_signature(message: bytes, signature: bytes, pubkey: Address) -> None:
    """Verify a message signature against a hex public key.

    Args:
        message: Original message bytes
        signature: 64-byte signature
        pubkey: Hex address of the claimed signer

    Raises:
        SignatureError: If the key is malformed or the signature is invalid
    """
    try:
        public_key = Ed25519PublicKey.from_public_bytes(address_bytes(pubkey))
    except ValueError as e:
        raise SignatureError(f"Invalid public key {pubkey!r}: {e}") from e
    try:
        public_key.verify(signature, message)
    except InvalidSignature as e:
        raise SignatureError(f"Invalid signature for {pubkey}") from e


def sign_message(message: bytes, keypairs: Iterable[Keypair]) -> Dict[Address, bytes]:
    """Sign a message with every key pair, keyed by signer address."""
    return {kp.pubkey: kp.sign(message) for kp in keypairs}


def verify_signers(
    message: bytes,
    signatures: Optional[Mapping[Address, bytes]],
) -> FrozenSet[Address]:
    """Verify all signatures over a message.

    Returns:
        The identities whose signatures verified

    Raises:
        SignatureError: If any supplied signature is invalid
    """
    verified = set()
    for pubkey, signature in (signatures or {}).items():
        verify_signature(message, signature, pubkey)
        verified.add(pubkey)
    return frozenset(verified)
