"""
instruction.py - Escrow Instruction Encoding and Dispatch

Clients submit signed instructions; the ledger verifies the signatures and hands
the instruction to the escrow program's processor, which decodes the data,
checks the named accounts and runs the matching transition.

Wire format of instruction data (little-endian):
    make_offer: discriminator(8) | id u64 | token_a_offered_amount u64 | token_b_wanted_amount u64
    take_offer: discriminator(8)

The discriminator is the first 8 bytes of sha256("global:<instruction name>").
Accounts travel alongside the data as named addresses; the signed message
covers program id, data and every named account.
"""

from __future__ import annotations
from dataclasses import dataclass
import hashlib
import struct
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from .core import (
    Address, LedgerError, LedgerView, PendingTransaction, Transaction,
    AccountMismatch, ConstraintSeeds, check_u64,
)
from .derivation import get_associated_token_address
from .keys import Keypair, sign_message
from .ledger import Ledger
from .programs.escrow import (
    ESCROW_PROGRAM_ID,
    find_offer_address, find_vault_address, make_offer, take_offer,
)


MAKE_OFFER = "make_offer"
TAKE_OFFER = "take_offer"

_MAKE_OFFER_ARGS = struct.Struct("<QQQ")


class InvalidInstructionData(LedgerError):
    """Raised when instruction data does not decode to a known instruction."""
    pass


def instruction_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


_INSTRUCTIONS = {
    instruction_discriminator(MAKE_OFFER): MAKE_OFFER,
    instruction_discriminator(TAKE_OFFER): TAKE_OFFER,
}


@dataclass(frozen=True, slots=True)
class Instruction:
    """
    A request to run one escrow instruction.

    Attributes:
        program_id: Program the instruction is addressed to
        data: Encoded instruction (discriminator plus arguments)
        accounts: (role, address) pairs naming every account involved
    """
    program_id: Address
    data: bytes
    accounts: Tuple[Tuple[str, Address], ...]

    def account(self, role: str) -> Address:
        """Return the address supplied for a role."""
        for name, address in self.accounts:
            if name == role:
                return address
        raise InvalidInstructionData(f"Instruction is missing the {role!r} account")

    def message(self) -> bytes:
        """Bytes every signer signs."""
        parts = [self.program_id, self.data.hex()]
        parts.extend(f"{name}={address}" for name, address in sorted(self.accounts))
        return "|".join(parts).encode()


# ============================================================================
# ENCODING
# ============================================================================

def encode_make_offer(offer_id: int, token_a_offered_amount: int, token_b_wanted_amount: int) -> bytes:
    return instruction_discriminator(MAKE_OFFER) + _MAKE_OFFER_ARGS.pack(
        check_u64("offer_id", offer_id),
        check_u64("token_a_offered_amount", token_a_offered_amount),
        check_u64("token_b_wanted_amount", token_b_wanted_amount),
    )


def encode_take_offer() -> bytes:
    return instruction_discriminator(TAKE_OFFER)


def decode_instruction(data: bytes) -> Tuple[str, Dict[str, int]]:
    """
    Decode instruction data into its name and arguments.

    Raises:
        InvalidInstructionData: On an unknown discriminator or a bad length
    """
    name = _INSTRUCTIONS.get(bytes(data[:8]))
    if name is None:
        raise InvalidInstructionData("Unknown instruction discriminator")
    body = bytes(data[8:])
    if name == MAKE_OFFER:
        if len(body) != _MAKE_OFFER_ARGS.size:
            raise InvalidInstructionData(
                f"make_offer expects {_MAKE_OFFER_ARGS.size} argument bytes, got {len(body)}"
            )
        offer_id, offered, wanted = _MAKE_OFFER_ARGS.unpack(body)
        return name, {
            "id": offer_id,
            "token_a_offered_amount": offered,
            "token_b_wanted_amount": wanted,
        }
    if body:
        raise InvalidInstructionData(f"take_offer takes no arguments, got {len(body)} bytes")
    return name, {}


# ============================================================================
# CLIENT BUILDERS
# ============================================================================

def make_offer_instruction(
    maker: Address,
    offer_id: int,
    token_mint_a: Address,
    token_mint_b: Address,
    token_a_offered_amount: int,
    token_b_wanted_amount: int,
    program_id: Address = ESCROW_PROGRAM_ID,
) -> Instruction:
    """Build a make_offer instruction, deriving the offer and vault addresses."""
    offer, _bump = find_offer_address(maker, offer_id, program_id)
    return Instruction(
        program_id=program_id,
        data=encode_make_offer(offer_id, token_a_offered_amount, token_b_wanted_amount),
        accounts=(
            ("maker", maker),
            ("token_mint_a", token_mint_a),
            ("token_mint_b", token_mint_b),
            ("maker_token_account_a", get_associated_token_address(maker, token_mint_a)),
            ("offer", offer),
            ("vault", find_vault_address(offer, token_mint_a)),
        ),
    )


def take_offer_instruction(
    taker: Address,
    maker: Address,
    offer_id: int,
    token_mint_a: Address,
    token_mint_b: Address,
    program_id: Address = ESCROW_PROGRAM_ID,
) -> Instruction:
    """Build a take_offer instruction for the offer (maker, offer_id)."""
    offer, _bump = find_offer_address(maker, offer_id, program_id)
    return Instruction(
        program_id=program_id,
        data=encode_take_offer(),
        accounts=(
            ("taker", taker),
            ("maker", maker),
            ("token_mint_a", token_mint_a),
            ("token_mint_b", token_mint_b),
            ("taker_token_account_a", get_associated_token_address(taker, token_mint_a)),
            ("taker_token_account_b", get_associated_token_address(taker, token_mint_b)),
            ("maker_token_account_b", get_associated_token_address(maker, token_mint_b)),
            ("offer", offer),
            ("vault", find_vault_address(offer, token_mint_a)),
        ),
    )


def sign_instruction(instruction: Instruction, keypairs: Iterable[Keypair]) -> Dict[Address, bytes]:
    """Sign an instruction's message with each key pair."""
    return sign_message(instruction.message(), keypairs)


# ============================================================================
# DISPATCH
# ============================================================================

def process_escrow_instruction(
    view: LedgerView,
    instruction: Instruction,
    signers: FrozenSet[Address],
) -> PendingTransaction:
    """
    Escrow program entrypoint: decode an instruction and run its transition.

    Registered on a ledger with register_escrow_program(); the ledger calls it
    from Ledger.invoke() with the identities whose signatures verified. Every
    named account must be the one the instruction's own arguments derive.

    Raises:
        InvalidInstructionData: If the data or accounts are malformed
        ConstraintSeeds: If the offer account is not the derived one
        AccountMismatch: If the vault or a token account is not the expected one
        EscrowError / LedgerError: Whatever the transition raises
    """
    name, args = decode_instruction(instruction.data)
    program_id = instruction.program_id
    offer = instruction.account("offer")
    token_mint_a = instruction.account("token_mint_a")
    token_mint_b = instruction.account("token_mint_b")
    maker = instruction.account("maker")

    if name == MAKE_OFFER:
        expected, _bump = find_offer_address(maker, args["id"], program_id)
        if offer != expected:
            raise ConstraintSeeds(f"Offer account {offer} is not derived from maker and id")
        _check_account(instruction, "vault", find_vault_address(offer, token_mint_a))
        _check_account(
            instruction, "maker_token_account_a", get_associated_token_address(maker, token_mint_a),
        )
        return make_offer(
            view,
            maker=maker,
            offer_id=args["id"],
            token_mint_a=token_mint_a,
            token_mint_b=token_mint_b,
            token_a_offered_amount=args["token_a_offered_amount"],
            token_b_wanted_amount=args["token_b_wanted_amount"],
            signers=signers,
            program_id=program_id,
        )

    taker = instruction.account("taker")
    _check_account(instruction, "vault", find_vault_address(offer, token_mint_a))
    for role, owner, mint in (
        ("taker_token_account_a", taker, token_mint_a),
        ("taker_token_account_b", taker, token_mint_b),
        ("maker_token_account_b", maker, token_mint_b),
    ):
        _check_account(instruction, role, get_associated_token_address(owner, mint))
    return take_offer(
        view,
        taker=taker,
        offer=offer,
        signers=signers,
        maker=maker,
        token_mint_a=token_mint_a,
        token_mint_b=token_mint_b,
        program_id=program_id,
    )


def _check_account(instruction: Instruction, role: str, expected: Address) -> None:
    supplied = instruction.account(role)
    if supplied != expected:
        raise AccountMismatch(f"{role} {supplied} is not the expected account {expected}")


def register_escrow_program(ledger: Ledger, program_id: Address = ESCROW_PROGRAM_ID) -> None:
    """Install the escrow program on a ledger so its instructions can run."""
    ledger.register_program(program_id, process_escrow_instruction)


def process_instruction(
    ledger: Ledger,
    instruction: Instruction,
    signatures: Optional[Mapping[Address, bytes]] = None,
) -> Optional[Transaction]:
    """
    Submit a signed instruction to the ledger.

    The ledger verifies the signatures, runs the program registered at
    instruction.program_id and applies its effects atomically.

    Raises:
        SignatureError: If any supplied signature does not verify
        ProgramNotRegistered: If the escrow program is not installed on the ledger
        Whatever process_escrow_instruction() or the ledger raises
    """
    return ledger.invoke(instruction, signatures)
