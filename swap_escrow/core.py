"""
Core types and pure functions for the escrow host ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, Account, AccountClosure, ProgramSigner,
   PendingTransaction, Transaction, Mint
3. Exceptions: LedgerError and the collaborator error types
4. Type aliases: Address, BalanceMap, Positions
5. Mint factories: Functions to create the native deposit unit and token mints

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import hashlib
from typing import (
    Callable, Dict, List, Optional, Any, Protocol,
    Tuple, FrozenSet, Iterable, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Identifier of the native unit that pays account deposits.
NATIVE_MINT = "native"

# Account type constants (strings, not enum, matching the unit type constants
# this module has always used).
ACCOUNT_TYPE_WALLET = "WALLET"
ACCOUNT_TYPE_TOKEN = "TOKEN"
ACCOUNT_TYPE_DATA = "DATA"

U8_MAX = 2**8 - 1
U64_MAX = 2**64 - 1

# Addresses are 32-byte public keys rendered as lowercase hex.
ADDRESS_LENGTH = 32

# Bytes of on-ledger storage occupied by a token account.
TOKEN_ACCOUNT_SIZE = 165

# Per-account bookkeeping overhead charged on top of the payload size.
ACCOUNT_STORAGE_OVERHEAD = 128

DEFAULT_LAMPORTS_PER_BYTE_YEAR = 3480
DEFAULT_EXEMPTION_THRESHOLD = 2


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Hex-encoded 32-byte public key, or SYSTEM_WALLET.
Address = str

# Mapping from account address to quantity held for a specific mint.
Positions = Dict[Address, int]

# Mapping from mint identifier to quantity held in a single account.
BalanceMap = Dict[str, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would cause an account balance to fall below the mint's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would push an account balance above the mint's maximum."""
    pass


class MintNotRegistered(LedgerError):
    """Raised when attempting to operate on a mint that has not been registered with the ledger."""
    pass


class AccountNotFound(LedgerError):
    """Raised when a transaction references an account that does not exist."""
    pass


class AccountAlreadyExists(LedgerError):
    """Raised when an account is created at an address that is already occupied."""
    pass


class AccountNotEmpty(LedgerError):
    """Raised when closing an account that still holds tokens."""
    pass


class MintMismatch(LedgerError):
    """Raised when a token account is asked to hold a mint it is not bound to."""
    pass


class MissingRequiredSignature(LedgerError):
    """Raised when an account is debited or closed without its owner's authority."""
    pass


class InvalidSeeds(LedgerError):
    """Raised when seeds cannot produce a valid program-derived address."""
    pass


class ConstraintSeeds(LedgerError):
    """Raised when an account does not match the address re-derived from its seeds."""
    pass


class AccountMismatch(LedgerError):
    """Raised when an account supplied by the caller differs from the one a record names."""
    pass


class InvalidAccountData(LedgerError):
    """Raised when an account's payload cannot be decoded as the expected record."""
    pass


class ProgramNotRegistered(LedgerError):
    """Raised when an instruction is addressed to a program the ledger does not run."""
    pass


class DuplicateTransaction(LedgerError):
    """Raised when a signed transaction that was already applied is submitted again."""
    pass


# ============================================================================
# ADDRESS HELPERS
# ============================================================================

def address_bytes(address: Address) -> bytes:
    """
    Decode a hex address into its 32 raw bytes.

    Raises:
        ValueError: If the address is not 64 hex characters.
    """
    try:
        raw = bytes.fromhex(address)
    except (TypeError, ValueError):
        raise ValueError(f"Address must be hex-encoded, got {address!r}")
    if len(raw) != ADDRESS_LENGTH:
        raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(raw)}")
    return raw


def address_from_bytes(raw: bytes) -> Address:
    """Encode 32 raw bytes as a hex address."""
    if len(raw) != ADDRESS_LENGTH:
        raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(raw)}")
    return raw.hex()


def check_u64(name: str, value: int) -> int:
    """Validate that value fits an unsigned 64-bit integer and return it."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"{name} must be a u64, got {value}")
    return value


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Transitions receive a LedgerView and return a PendingTransaction; they
    cannot mutate state. The Ledger class implements this protocol and also
    provides mutation methods. For testing, FakeView provides a truly
    immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, address: Address, mint: str) -> int:
        """
        Return the balance of a mint held by an account.

        Returns 0 if the account holds none of the mint.
        """
        ...

    def get_account(self, address: Address) -> 'Account':
        """Return the Account at address, raising AccountNotFound if there is none."""
        ...

    def account_exists(self, address: Address) -> bool:
        """Return True if an account lives at address."""
        ...

    def get_mint(self, mint: str) -> 'Mint':
        """Return the Mint for an identifier, raising MintNotRegistered if unknown."""
        ...

    def minimum_balance(self, space: int) -> int:
        """Return the native deposit an account of `space` bytes must hold."""
        ...


class InstructionView(Protocol):
    """
    What the ledger needs from an instruction to dispatch it.

    The ledger verifies signatures over message() and hands the instruction
    to the processor registered for program_id.
    """
    program_id: Address

    def message(self) -> bytes:
        """Return the bytes every signer signs."""
        ...


# A program's entrypoint: (view, instruction, verified signers) -> PendingTransaction.
ProgramProcessor = Callable[[LedgerView, Any, FrozenSet[Address]], 'PendingTransaction']


# ============================================================================
# ENUMS
# ============================================================================

class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Manual user-initiated transaction
    PROGRAM = "program"                   # Program instruction (make/take offer)
    SYSTEM = "system"                     # System operations (issuance, initial setup)


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (program id, user, etc.)
        event_type: Specific event within the source (e.g., "MAKE_OFFER")
    """
    origin_type: OriginType
    source_id: str
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two accounts.

    Attributes:
        quantity: The amount to transfer, in base units (positive u64).
        mint: Identifier of the mint being transferred.
        source: The account address debited.
        dest: The account address credited.
        contract_id: Identifier of the operation generating this move.

    This class is immutable (frozen=True) and memory-optimized (slots=True).
    All fields are validated in __post_init__.
    """
    quantity: int
    mint: str
    source: Address
    dest: Address
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.mint or not self.mint.strip():
            raise ValueError("Move mint cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.quantity > U64_MAX:
            raise ValueError(f"Move quantity exceeds u64, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {_short(self.mint)}: {_short(self.source)}→{_short(self.dest)})"


@dataclass(frozen=True, slots=True)
class Account:
    """
    An addressable account on the ledger.

    Attributes:
        address: Where the account lives.
        owner: The authority allowed to debit or close the account. Wallets own
               themselves; token vaults are owned by a derived address; data
               records are owned by the program that wrote them.
        account_type: One of WALLET, TOKEN or DATA.
        mint: The single mint a TOKEN account may hold (None otherwise).
        data: Fixed-layout payload of a DATA account.
        payer: Who funded the account's deposit; receives it back on close.
    """
    address: Address
    owner: Address
    account_type: str
    mint: Optional[str] = None
    data: bytes = b""
    payer: Optional[Address] = None

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ValueError("Account address cannot be empty")
        if not self.owner or not self.owner.strip():
            raise ValueError("Account owner cannot be empty")
        if self.account_type not in (ACCOUNT_TYPE_WALLET, ACCOUNT_TYPE_TOKEN, ACCOUNT_TYPE_DATA):
            raise ValueError(f"Unknown account type {self.account_type!r}")
        if self.account_type == ACCOUNT_TYPE_TOKEN and not self.mint:
            raise ValueError("Token account requires a mint")
        if self.account_type != ACCOUNT_TYPE_TOKEN and self.mint is not None:
            raise ValueError(f"{self.account_type} account cannot be bound to a mint")
        if self.account_type != ACCOUNT_TYPE_DATA and self.data:
            raise ValueError(f"{self.account_type} account cannot carry data")

    @property
    def space(self) -> int:
        """Bytes of storage the account occupies (drives its deposit)."""
        if self.account_type == ACCOUNT_TYPE_TOKEN:
            return TOKEN_ACCOUNT_SIZE
        if self.account_type == ACCOUNT_TYPE_DATA:
            return len(self.data)
        return 0

    def accepts(self, mint: str) -> bool:
        """Return True if this account may hold a balance of mint."""
        if mint == NATIVE_MINT:
            return True
        if self.account_type == ACCOUNT_TYPE_TOKEN:
            return mint == self.mint
        return self.account_type == ACCOUNT_TYPE_WALLET


@dataclass(frozen=True, slots=True)
class AccountClosure:
    """
    Request to close an account.

    The account must hold no tokens once the transaction's moves are applied;
    its native deposit is swept to `destination`.
    """
    address: Address
    destination: Address

    def __post_init__(self):
        if self.address == self.destination:
            raise ValueError("Closure destination must differ from the closed account")


@dataclass(frozen=True, slots=True)
class ProgramSigner:
    """
    Seeds a program presents to act for one of its derived addresses.

    The ledger re-derives the address from (seeds, program_id) and treats it as
    a signer of the transaction.
    """
    program_id: Address
    seeds: Tuple[bytes, ...]


def _short(value: str) -> str:
    """Abbreviate long hex addresses for display."""
    if len(value) > 12:
        return f"{value[:4]}…{value[-4:]}"
    return value


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    This function ensures deterministic serialization regardless of:
    - Dict insertion order
    - Set iteration order
    - Nested structure depth
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, bytes):
        return f"B:{value.hex()}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _intent_content(
    moves: Tuple[Move, ...],
    accounts_to_create: Tuple[Account, ...],
    accounts_to_close: Tuple[AccountClosure, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Canonical text of a transaction's intent.

    Covers moves, account creations, closures and origin, NOT timestamps or
    ledger-specific data. Same inputs always produce the same text.
    """
    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for acct in sorted(accounts_to_create, key=lambda a: a.address):
        content_parts.append(
            f"create:{acct.address}|{acct.owner}|{acct.account_type}|"
            f"{_canonicalize(acct.mint)}|{_canonicalize(acct.data)}|{_canonicalize(acct.payer)}"
        )

    for m in sorted(moves, key=lambda m: (m.quantity, m.mint, m.source, m.dest, m.contract_id)):
        content_parts.append(f"move:{m.quantity}|{m.mint}|{m.source}|{m.dest}|{m.contract_id}")

    for c in sorted(accounts_to_close, key=lambda c: c.address):
        content_parts.append(f"close:{c.address}|{c.destination}")

    return "|".join(content_parts)


def _compute_intent_id(
    moves: Tuple[Move, ...],
    accounts_to_create: Tuple[Account, ...],
    accounts_to_close: Tuple[AccountClosure, ...],
    origin: TransactionOrigin,
) -> str:
    """Deterministic content hash of a transaction's intent."""
    content = _intent_content(moves, accounts_to_create, accounts_to_close, origin)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by programs and submitted to the ledger for execution.

    Lifecycle:
    1. A transition builds a PendingTransaction from a read-only view
    2. intent_id is auto-computed from content (deterministic hash)
    3. Its signers sign signing_message()
    4. Ledger.execute() checks the signatures, validates everything, then
       applies everything. Program transactions go through Ledger.invoke(),
       which grants the program its authority instead

    Attributes:
        moves: Value transfers between accounts
        accounts_to_create: Accounts that must not exist yet and are created first
        accounts_to_close: Accounts closed after the moves are applied
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        signers: Identities that must sign for the transaction to apply
        program_signers: Seeds the invoking program presents for its derived addresses
        invoking_program: Program whose instruction built the transaction; it
                          may debit or close accounts it owns
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    accounts_to_create: Tuple[Account, ...] = ()
    accounts_to_close: Tuple[AccountClosure, ...] = ()
    signers: FrozenSet[Address] = frozenset()
    program_signers: Tuple[ProgramSigner, ...] = ()
    invoking_program: Optional[Address] = None
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.accounts_to_create, self.accounts_to_close, self.origin
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there is nothing to move, create or close."""
        return not self.moves and not self.accounts_to_create and not self.accounts_to_close

    def signing_message(self) -> bytes:
        """
        Bytes each signer signs to authorize this transaction directly.

        Binds the full intent, the creation time and the signer set.
        """
        content = _intent_content(
            self.moves, self.accounts_to_create, self.accounts_to_close, self.origin
        )
        parts = [
            "transaction",
            content,
            f"at:{self.timestamp.isoformat()}",
            "signers:" + ",".join(sorted(self.signers)),
        ]
        return "\n".join(parts).encode()

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.moves)} moves, {len(self.accounts_to_create)} creates, "
            f"{len(self.accounts_to_close)} closes, {self.origin})"
        )


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
    accounts_to_create: Optional[Iterable[Account]] = None,
    accounts_to_close: Optional[Iterable[AccountClosure]] = None,
    signers: Optional[Iterable[Address]] = None,
    program_signers: Optional[Iterable[ProgramSigner]] = None,
    invoking_program: Optional[Address] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and account changes.

    This is the standard way to create transactions.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        origin: Transaction origin (defaults to USER_ACTION origin)
        accounts_to_create: Accounts to create before the moves apply
        accounts_to_close: Accounts to close after the moves apply
        signers: Identities that must sign the transaction
        program_signers: Seeds for program-derived authorities
        invoking_program: Program building the transaction, if any

    Returns:
        A PendingTransaction ready for execution

    Example:
        tx = build_transaction(ledger, [
            Move(100, mint, alice, bob, "payment_001")
        ], signers={alice})
        ledger.execute(tx, sign_message(tx.signing_message(), [alice_keypair]))
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )

    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        timestamp=view.current_time,
        accounts_to_create=tuple(accounts_to_create or ()),
        accounts_to_close=tuple(accounts_to_close or ()),
        signers=frozenset(signers or ()),
        program_signers=tuple(program_signers or ()),
        invoking_program=invoking_program,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Created by the ledger when executing a PendingTransaction. `moves`
    includes the deposit sweeps performed by account closures.

    Attributes:
        moves: Value transfers between accounts (including closure sweeps)
        accounts_created: Addresses created by this transaction
        accounts_closed: Addresses closed by this transaction
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    accounts_created: Tuple[Address, ...]
    accounts_closed: Tuple[Address, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.accounts_created and not self.accounts_closed:
            raise ValueError("Transaction must have moves, created or closed accounts")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.accounts_created:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Accounts Created (' + str(len(self.accounts_created)) + '):')}│")
            for address in self.accounts_created:
                lines.append(f"│{pad('   ' + address)}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {_short(move.mint)}: {_short(move.source)} → {_short(move.dest)}"
            lines.append(f"│{pad(move_str)}│")
        if self.accounts_closed:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Accounts Closed (' + str(len(self.accounts_closed)) + '):')}│")
            for address in self.accounts_closed:
                lines.append(f"│{pad('   ' + address)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class Mint:
    """
    Definition of a token (asset type) on the ledger.

    Attributes:
        address: Identifier of the mint (hex address, or NATIVE_MINT).
        name: Human-readable name.
        decimals: Display precision; balances are always integer base units.
        min_balance: Minimum allowed balance in any account.
        max_balance: Maximum allowed balance in any account.
    """
    address: str
    name: str
    decimals: int = 9
    min_balance: int = 0
    max_balance: int = U64_MAX

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ValueError("Mint address cannot be empty")
        if not 0 <= self.decimals <= U8_MAX:
            raise ValueError(f"decimals must be a u8, got {self.decimals}")

    def ui_amount(self, amount: int) -> str:
        """Render a base-unit amount with the mint's decimal places."""
        if self.decimals == 0:
            return str(amount)
        whole, frac = divmod(amount, 10 ** self.decimals)
        return f"{whole}.{frac:0{self.decimals}d}"


# ============================================================================
# MINT FACTORIES
# ============================================================================

def native_mint(decimals: int = 9) -> Mint:
    """
    Create the native unit used for account deposits.

    Returns:
        A Mint with identifier NATIVE_MINT.
    """
    return Mint(address=NATIVE_MINT, name="Native", decimals=decimals)
