"""
escrow.py - Pure Functions for Two-Party Token Swap Escrow

A maker locks token A in a vault and names how much token B they want; any
taker who pays that much token B receives the whole vault. This module
provides:
1. Offer - the persistent record of an outstanding escrow and its byte layout
2. EscrowError family - the domain validation failures
3. Address helpers - offer and vault derivation
4. make_offer() - create the Offer record and vault, fund the vault
5. take_offer() - pay the maker, release the vault to the taker, retire both

Pattern:
    MakeOffer:
        Create Offer record at derive(["offer", maker, id])     (payer: maker)
        Create vault = token account of (offer, mint A)       (payer: maker)
        Move(source=maker's A account, dest=vault, quantity=offered)

    TakeOffer:
        Create taker's A account and maker's B account if missing (payer: taker)
        Move(source=taker's B account, dest=maker's B account, quantity=wanted)
        Move(source=vault, dest=taker's A account, quantity=vault balance)
        Close vault and Offer record, deposits back to maker

Every "account" of a party is its associated token account for that mint.

All functions take a LedgerView (read-only) and return a PendingTransaction.
Validation failures raise before any PendingTransaction exists; failures of
the custody ledger (insufficient funds, occupied address, missing account)
are raised when the ledger applies the result and are never caught here.
"""

from __future__ import annotations
from dataclasses import dataclass
import hashlib
import secrets
import struct
from typing import ClassVar, Collection, List, Optional, Tuple

from ..core import (
    LedgerView, Move, Account, AccountClosure, PendingTransaction, ProgramSigner,
    TransactionOrigin, OriginType, Address,
    ACCOUNT_TYPE_DATA, U8_MAX,
    AccountMismatch, ConstraintSeeds, InsufficientFunds, InvalidAccountData, InvalidSeeds,
    MissingRequiredSignature,
    address_bytes, address_from_bytes, build_transaction, check_u64,
)
from ..derivation import (
    create_program_address, find_program_address, get_associated_token_address,
    program_id_from_label, u64_seed,
)
from .token import (
    associated_token_account_if_needed, close_account, create_associated_token_account,
    deposit_moves, transfer,
)


ESCROW_PROGRAM_ID = program_id_from_label("escrow")

OFFER_SEED = b"offer"


# ============================================================================
# ERRORS
# ============================================================================

class EscrowError(Exception):
    """
    Base class of the escrow's validation failures.

    Each subclass carries a stable numeric code and a fixed message.
    """
    code: ClassVar[int] = 6000
    message: ClassVar[str] = "Escrow validation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class SameTokenMints(EscrowError):
    """Raised when an offer would escrow a token against itself."""
    code = 6000
    message = "Token mints must be different"


class ZeroOfferedAmount(EscrowError):
    """Raised when an offer would lock nothing in its vault."""
    code = 6001
    message = "Offered amount must be greater than zero"


class ZeroWantedAmount(EscrowError):
    """Raised when an offer would release its vault for nothing."""
    code = 6002
    message = "Wanted amount must be greater than zero"


# ============================================================================
# OFFER RECORD
# ============================================================================

def _account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


@dataclass(frozen=True, slots=True)
class Offer:
    """
    Persistent record of one outstanding escrow.

    Attributes:
        id: Caller-chosen identifier, unique per maker through address derivation
        maker: Creator of the offer; receives the token B payment
        token_mint_a: Mint locked in the vault
        token_mint_b: Mint wanted in return
        token_b_wanted_amount: Exact amount of token B that releases the vault
        bump: Canonical bump of the record's derived address

    Stored as a fixed 121-byte layout: 8-byte discriminator, then
    id (u64), maker (32), token_mint_a (32), token_mint_b (32),
    token_b_wanted_amount (u64) and bump (u8), little-endian.
    """
    id: int
    maker: Address
    token_mint_a: Address
    token_mint_b: Address
    token_b_wanted_amount: int
    bump: int

    DISCRIMINATOR: ClassVar[bytes] = _account_discriminator("Offer")
    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<Q32s32s32sQB")
    INIT_SPACE: ClassVar[int] = 113
    SPACE: ClassVar[int] = 8 + 113

    def __post_init__(self):
        check_u64("id", self.id)
        check_u64("token_b_wanted_amount", self.token_b_wanted_amount)
        if isinstance(self.bump, bool) or not isinstance(self.bump, int) or not 0 <= self.bump <= U8_MAX:
            raise ValueError(f"bump must be a u8, got {self.bump!r}")
        for name in ("maker", "token_mint_a", "token_mint_b"):
            address_bytes(getattr(self, name))

    def to_bytes(self) -> bytes:
        """Serialize to the fixed on-ledger layout."""
        return self.DISCRIMINATOR + self.LAYOUT.pack(
            self.id,
            address_bytes(self.maker),
            address_bytes(self.token_mint_a),
            address_bytes(self.token_mint_b),
            self.token_b_wanted_amount,
            self.bump,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Offer:
        """
        Decode an Offer from its on-ledger layout.

        Raises:
            InvalidAccountData: On a wrong length or discriminator
        """
        if len(data) != cls.SPACE:
            raise InvalidAccountData(f"Offer data must be {cls.SPACE} bytes, got {len(data)}")
        if data[:8] != cls.DISCRIMINATOR:
            raise InvalidAccountData("Account discriminator does not match Offer")
        offer_id, maker, mint_a, mint_b, wanted, bump = cls.LAYOUT.unpack(data[8:])
        return cls(
            id=offer_id,
            maker=address_from_bytes(maker),
            token_mint_a=address_from_bytes(mint_a),
            token_mint_b=address_from_bytes(mint_b),
            token_b_wanted_amount=wanted,
            bump=bump,
        )


# ============================================================================
# ADDRESSES
# ============================================================================

def offer_seeds(maker: Address, offer_id: int) -> List[bytes]:
    """Seeds of an offer's address, without the bump."""
    return [OFFER_SEED, address_bytes(maker), u64_seed(offer_id)]


def find_offer_address(
    maker: Address,
    offer_id: int,
    program_id: Address = ESCROW_PROGRAM_ID,
) -> Tuple[Address, int]:
    """
    Derive the Offer record address and its canonical bump.

    The same (maker, offer_id) always yields the same address, which is how a
    second offer with a reused id is refused: its record would be created at
    an occupied address.
    """
    return find_program_address(offer_seeds(maker, offer_id), program_id)


def find_vault_address(offer: Address, token_mint_a: Address) -> Address:
    """Derive the vault: the token account of (offer, token_mint_a)."""
    return get_associated_token_address(offer, token_mint_a)


def generate_offer_id() -> int:
    """Pick a random u64 offer id."""
    return secrets.randbits(64)


def fetch_offer(view: LedgerView, offer: Address, program_id: Address = ESCROW_PROGRAM_ID) -> Offer:
    """
    Load the Offer record stored at an address.

    Raises:
        AccountNotFound: If nothing lives at the address
        InvalidAccountData: If the account is not an Offer owned by the program
    """
    account = view.get_account(offer)
    if account.account_type != ACCOUNT_TYPE_DATA or account.owner != program_id:
        raise InvalidAccountData(f"Account {offer} is not owned by program {program_id}")
    return Offer.from_bytes(account.data)


def _require_signer(identity: Address, signers: Collection[Address], role: str) -> None:
    if identity not in signers:
        raise MissingRequiredSignature(f"{role} {identity} must sign")


# ============================================================================
# TRANSITIONS
# ============================================================================

def make_offer(
    view: LedgerView,
    maker: Address,
    offer_id: int,
    token_mint_a: Address,
    token_mint_b: Address,
    token_a_offered_amount: int,
    token_b_wanted_amount: int,
    signers: Collection[Address],
    program_id: Address = ESCROW_PROGRAM_ID,
) -> PendingTransaction:
    """
    Build the transaction that opens an offer.

    Args:
        view: Read-only view of the ledger state
        maker: Identity creating the offer; must be among signers
        offer_id: Caller-chosen u64, unique per maker
        token_mint_a: Mint the maker locks up
        token_mint_b: Mint the maker wants
        token_a_offered_amount: Amount of token A moved into the vault
        token_b_wanted_amount: Amount of token B that releases the vault
        signers: Identities whose signatures were verified
        program_id: Escrow program owning the record

    Returns:
        PendingTransaction that creates the Offer record and the vault, funds
        their deposits and moves the offered amount from the maker's token A
        account to the vault.

    Raises:
        ValueError: If an integer argument is not a u64
        MissingRequiredSignature: If the maker did not sign
        MintNotRegistered: If either mint is unknown
        SameTokenMints: If token_mint_a == token_mint_b
        ZeroOfferedAmount: If token_a_offered_amount == 0
        ZeroWantedAmount: If token_b_wanted_amount == 0

    The maker's balance is checked by the ledger at execution, which raises
    InsufficientFunds (or AccountNotFound when the maker has no token A
    account); a reused (maker, offer_id) raises AccountAlreadyExists.
    """
    check_u64("offer_id", offer_id)
    check_u64("token_a_offered_amount", token_a_offered_amount)
    check_u64("token_b_wanted_amount", token_b_wanted_amount)
    _require_signer(maker, signers, "maker")
    view.get_mint(token_mint_a)
    view.get_mint(token_mint_b)

    if token_mint_a == token_mint_b:
        raise SameTokenMints()
    if token_a_offered_amount == 0:
        raise ZeroOfferedAmount()
    if token_b_wanted_amount == 0:
        raise ZeroWantedAmount()

    offer_address, bump = find_offer_address(maker, offer_id, program_id)
    offer = Offer(
        id=offer_id,
        maker=maker,
        token_mint_a=token_mint_a,
        token_mint_b=token_mint_b,
        token_b_wanted_amount=token_b_wanted_amount,
        bump=bump,
    )
    record = Account(
        address=offer_address,
        owner=program_id,
        account_type=ACCOUNT_TYPE_DATA,
        data=offer.to_bytes(),
        payer=maker,
    )
    vault, vault_deposit = create_associated_token_account(view, offer_address, token_mint_a, payer=maker)

    maker_token_account_a = get_associated_token_address(maker, token_mint_a)

    moves = deposit_moves(view, record) + vault_deposit
    moves.append(transfer(
        maker_token_account_a, vault.address, token_mint_a, token_a_offered_amount,
        contract_id=f"make_offer_{offer_id}",
    ))

    origin = TransactionOrigin(OriginType.PROGRAM, program_id, event_type="MAKE_OFFER")
    seeds = offer_seeds(maker, offer_id) + [bytes([bump])]
    return build_transaction(
        view,
        moves,
        origin=origin,
        accounts_to_create=[record, vault],
        signers=signers,
        program_signers=[ProgramSigner(program_id, tuple(seeds))],
        invoking_program=program_id,
    )


def _release_vault(
    view: LedgerView,
    offer_address: Address,
    offer: Offer,
    recipient: Address,
) -> Tuple[List[Move], List[AccountClosure]]:
    """
    Empty an offer's vault into recipient and close it.

    The vault's whole balance is released, and its deposit goes back to
    whoever funded it.

    Raises:
        InsufficientFunds: If the vault holds nothing to release
    """
    vault = find_vault_address(offer_address, offer.token_mint_a)
    held = view.get_balance(vault, offer.token_mint_a)
    if held == 0:
        raise InsufficientFunds(f"Vault {vault} of offer {offer_address} is empty")
    move = transfer(
        vault, recipient, offer.token_mint_a, held,
        contract_id=f"release_vault_{offer.id}",
    )
    return [move], [close_account(view, vault)]


def take_offer(
    view: LedgerView,
    taker: Address,
    offer: Address,
    signers: Collection[Address],
    maker: Optional[Address] = None,
    token_mint_a: Optional[Address] = None,
    token_mint_b: Optional[Address] = None,
    program_id: Address = ESCROW_PROGRAM_ID,
) -> PendingTransaction:
    """
    Build the transaction that settles an offer.

    Args:
        view: Read-only view of the ledger state
        taker: Identity paying token B; must be among signers
        offer: Address of the Offer record
        signers: Identities whose signatures were verified
        maker: Expected maker, checked against the record when given
        token_mint_a: Expected offered mint, checked when given
        token_mint_b: Expected wanted mint, checked when given
        program_id: Escrow program owning the record

    Returns:
        PendingTransaction that:
            1. creates the taker's token A account and the maker's token B
               account when missing, deposits paid by the taker
            2. moves token B: taker → maker (token_b_wanted_amount)
            3. moves token A: vault → taker (entire vault balance)
            4. closes the vault, then the Offer record, deposits back to their payer

    Raises:
        MissingRequiredSignature: If the taker did not sign
        AccountNotFound: If no record (or no vault) exists for the offer
        InvalidAccountData: If the address does not hold this program's Offer
        ConstraintSeeds: If the address does not re-derive from the record
        AccountMismatch: If an expected maker or mint differs from the record,
            or a party's token account address is occupied by another account
        InsufficientFunds: If the vault is empty
        ValueError: If the taker is the maker

    The taker's token B balance is checked by the ledger at execution, which
    raises InsufficientFunds and leaves the offer untouched.
    """
    _require_signer(taker, signers, "taker")
    record = fetch_offer(view, offer, program_id)

    seeds = offer_seeds(record.maker, record.id) + [bytes([record.bump])]
    try:
        derived = create_program_address(seeds, program_id)
    except InvalidSeeds as e:
        raise ConstraintSeeds(f"Offer {offer} seeds do not derive a valid address") from e
    if derived != offer:
        raise ConstraintSeeds(
            f"Offer {offer} does not match address {derived} derived for "
            f"maker {record.maker}, id {record.id}"
        )

    for name, supplied, stored in (
        ("maker", maker, record.maker),
        ("token_mint_a", token_mint_a, record.token_mint_a),
        ("token_mint_b", token_mint_b, record.token_mint_b),
    ):
        if supplied is not None and supplied != stored:
            raise AccountMismatch(f"{name} {supplied} does not match offer's {stored}")

    if taker == record.maker:
        raise ValueError(f"taker and maker must be different, got {taker}")

    taker_token_account_a, created_a, deposits_a = associated_token_account_if_needed(
        view, taker, record.token_mint_a, payer=taker,
    )
    maker_token_account_b, created_b, deposits_b = associated_token_account_if_needed(
        view, record.maker, record.token_mint_b, payer=taker,
    )
    taker_token_account_b = get_associated_token_address(taker, record.token_mint_b)

    moves = deposits_a + deposits_b
    moves.append(transfer(
        taker_token_account_b, maker_token_account_b, record.token_mint_b,
        record.token_b_wanted_amount, contract_id=f"take_offer_{record.id}",
    ))
    release_moves, closures = _release_vault(view, offer, record, recipient=taker_token_account_a)
    moves.extend(release_moves)
    closures.append(close_account(view, offer))

    origin = TransactionOrigin(OriginType.PROGRAM, program_id, event_type="TAKE_OFFER")
    return build_transaction(
        view,
        moves,
        origin=origin,
        accounts_to_create=created_a + created_b,
        accounts_to_close=closures,
        signers=signers,
        program_signers=[ProgramSigner(program_id, tuple(seeds))],
        invoking_program=program_id,
    )


def take_offer_by_id(
    view: LedgerView,
    taker: Address,
    maker: Address,
    offer_id: int,
    signers: Collection[Address],
    program_id: Address = ESCROW_PROGRAM_ID,
) -> PendingTransaction:
    """Settle the offer identified by (maker, offer_id) instead of its address."""
    offer, _bump = find_offer_address(maker, offer_id, program_id)
    return take_offer(view, taker, offer, signers, maker=maker, program_id=program_id)
