"""
ledger.py - Stateful Custody Ledger

The Ledger class is the host the escrow program runs against. It exclusively
owns balance bookkeeping and is the only module that mutates state.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes pending transactions atomically (every effect or none)
    - Maintains mints, accounts and their balances
    - Verifies signatures and grants program authority only to registered
      programs running an instruction
    - Enforces account ownership, insert-if-absent creation and deposits
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
import hashlib
from typing import Dict, FrozenSet, List, Mapping, Set, Optional, Tuple, Any

from .core import (
    # Types
    Move, Transaction, Mint, Account,
    PendingTransaction, LedgerView, InstructionView, ProgramProcessor,
    Address, Positions,
    # Constants
    SYSTEM_WALLET, NATIVE_MINT, ACCOUNT_TYPE_WALLET, ACCOUNT_TYPE_TOKEN, ACCOUNT_TYPE_DATA,
    ACCOUNT_STORAGE_OVERHEAD, DEFAULT_LAMPORTS_PER_BYTE_YEAR, DEFAULT_EXEMPTION_THRESHOLD,
    # Exceptions
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    MintNotRegistered, AccountNotFound, AccountAlreadyExists, AccountNotEmpty,
    MintMismatch, MissingRequiredSignature, ProgramNotRegistered, DuplicateTransaction,
)
from .derivation import create_program_address, get_associated_token_address
from .keys import CryptoError, verify_signers


def _is_associated(acct: Account) -> bool:
    """True if a token account sits at the associated address of (owner, mint)."""
    try:
        return acct.address == get_associated_token_address(acct.owner, acct.mint)
    except ValueError:
        return False


class Ledger:
    """
    Custody ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    transition functions that access only read-only methods.

    Design Principles:
        - Always authenticates: Signatures are verified by the ledger itself;
          a transaction's claimed signers are never taken on trust.
        - Always validates: Every transaction is checked for account existence,
          ownership, mint binding, balance limits and deposits before anything
          is written.
        - Always logs: Every applied transaction is recorded in the audit trail.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_mint(native_mint())
        ledger.register_wallet(alice.pubkey)
        ledger.register_wallet(bob.pubkey)

        tx = build_transaction(ledger, [
            Move(100, NATIVE_MINT, alice.pubkey, bob.pubkey, "payment_001")
        ], signers={alice.pubkey})
        ledger.execute(tx, sign_message(tx.signing_message(), [alice]))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False,
        lamports_per_byte_year: int = DEFAULT_LAMPORTS_PER_BYTE_YEAR,
        exemption_threshold: int = DEFAULT_EXEMPTION_THRESHOLD,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Enable debug output (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
            lamports_per_byte_year: Deposit rate per byte of account storage
            exemption_threshold: Multiplier applied to the yearly rate
        """
        if lamports_per_byte_year < 0 or exemption_threshold < 0:
            raise ValueError("Deposit parameters cannot be negative")
        self.name = name
        self.mints: Dict[str, Mint] = {}
        self.accounts: Dict[Address, Account] = {}
        self.balances: Dict[Address, Dict[str, int]] = {}
        self.transaction_log: List[Transaction] = []
        self.programs: Dict[Address, ProgramProcessor] = {}
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self.lamports_per_byte_year = lamports_per_byte_year
        self.exemption_threshold = exemption_threshold
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Digests of applied signed messages; a replay is rejected
        self._applied_messages: Set[str] = set()
        # Inverted index mapping mint -> {address -> quantity} for O(1) position lookups
        self._positions_by_mint: Dict[str, Dict[Address, int]] = defaultdict(dict)

        # Auto-register the system wallet (used for issuance/redemption)
        self.accounts[SYSTEM_WALLET] = Account(SYSTEM_WALLET, SYSTEM_WALLET, ACCOUNT_TYPE_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, address: Address, mint: str) -> int:
        """
        Get the balance of a mint held by an account.

        Args:
            address: Account address
            mint: Mint identifier

        Returns:
            Current balance (0 if the account holds none of this mint)

        Raises:
            AccountNotFound: If no account lives at address
            MintNotRegistered: If the mint is not registered
        """
        if address not in self.accounts:
            raise AccountNotFound(f"Account {address} not found")
        if mint not in self.mints:
            raise MintNotRegistered(f"Mint {mint} not registered")
        return self.balances[address].get(mint, 0)

    def balance_of(self, identity: Address, mint: str) -> int:
        """Alias of get_balance() named after the custody interface."""
        return self.get_balance(identity, mint)

    def get_account(self, address: Address) -> Account:
        """Return the Account at address."""
        if address not in self.accounts:
            raise AccountNotFound(f"Account {address} not found")
        return self.accounts[address]

    def account_exists(self, address: Address) -> bool:
        """Check if an account lives at address."""
        return address in self.accounts

    def get_mint(self, mint: str) -> Mint:
        """Return the Mint object for an identifier."""
        if mint not in self.mints:
            raise MintNotRegistered(f"Mint {mint} not registered")
        return self.mints[mint]

    def minimum_balance(self, space: int) -> int:
        """
        Native deposit an account of `space` payload bytes must hold.

        Computed as (overhead + space) * rate * threshold.
        """
        if space < 0:
            raise ValueError(f"space cannot be negative, got {space}")
        return (ACCOUNT_STORAGE_OVERHEAD + space) * self.lamports_per_byte_year * self.exemption_threshold

    def get_positions(self, mint: str) -> Positions:
        """
        Get all non-zero positions for a mint across all accounts.

        Uses an inverted index for O(1) lookup performance.
        """
        return dict(self._positions_by_mint.get(mint, {}))

    def list_mints(self) -> List[str]:
        """List all registered mint identifiers."""
        return sorted(self.mints.keys())

    def total_supply(self, mint: str) -> int:
        """
        Calculate total supply of a mint across all accounts.

        The system wallet holds the negative of everything issued, so the
        total of a mint that only moved through transactions is zero.

        Raises:
            MintNotRegistered: If mint is not registered
        """
        if mint not in self.mints:
            raise MintNotRegistered(f"Mint {mint} not registered")
        return sum(self.balances[a].get(mint, 0) for a in sorted(self.balances))

    def verify_double_entry(self, expected_supplies: Dict[str, int] = None) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all mints.

        Double-entry accounting requires that for every mint, the sum of all
        balances across all accounts equals a constant (the total supply).

        Args:
            expected_supplies: Optional dict mapping mints to expected totals.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Current total supply for each mint
            - 'discrepancies': List[Dict] - Details of any conservation violations

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []

        for mint in self.mints:
            current_supply = self.total_supply(mint)
            supplies[mint] = current_supply

            if expected_supplies and mint in expected_supplies:
                expected = expected_supplies[mint]
                if current_supply != expected:
                    discrepancies.append({
                        'mint': mint,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': current_supply - expected,
                    })

        if expected_supplies:
            for mint, expected in expected_supplies.items():
                if mint not in supplies:
                    discrepancies.append({
                        'mint': mint,
                        'expected': expected,
                        'actual': 0,
                        'difference': -expected,
                        'error': 'mint not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, address: Address) -> Address:
        """
        Register an identity wallet that owns itself and may hold any mint.

        Returns:
            The address that was registered

        Raises:
            AccountAlreadyExists: If an account already lives at address
        """
        if address in self.accounts:
            raise AccountAlreadyExists(f"Account {address} already in use")
        self.accounts[address] = Account(address, address, ACCOUNT_TYPE_WALLET)
        self.balances[address] = defaultdict(int)
        return address

    def register_mint(self, mint: Mint) -> None:
        """
        Register a new mint (asset type) in the ledger.

        Raises:
            ValueError: If the mint is already registered
        """
        if mint.address in self.mints:
            raise ValueError(f"Mint {mint.address} already registered")
        self.mints[mint.address] = mint
        if self.verbose:
            print(f"📝 Registered: {mint.name} [{mint.address}] decimals={mint.decimals}")

    def register_program(self, program_id: Address, processor: ProgramProcessor) -> None:
        """
        Register the processor that runs instructions addressed to program_id.

        Only registered programs are granted program authority, and only
        while running an instruction through invoke().

        Raises:
            ValueError: If a program is already registered at program_id
        """
        if program_id in self.programs:
            raise ValueError(f"Program {program_id} already registered")
        self.programs[program_id] = processor
        if self.verbose:
            print(f"📝 Registered program: [{program_id}]")

    def set_balance(self, address: Address, mint: str, quantity: int) -> None:
        """
        Set an account's balance for a mint directly.

        WARNING: This method bypasses double-entry accounting and is only
        available in test mode. For production use, use build_transaction()
        and execute() instead.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if address not in self.accounts:
            raise AccountNotFound(f"Account {address} not found")
        if mint not in self.mints:
            raise MintNotRegistered(f"Mint {mint} not registered")
        if not self.accounts[address].accepts(mint):
            raise MintMismatch(f"Account {address} cannot hold {mint}")
        self.balances[address][mint] = int(quantity)
        self._update_position_index(address, mint, int(quantity))

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(
        self,
        pending: PendingTransaction,
        signatures: Optional[Mapping[Address, bytes]] = None,
    ) -> Optional[Transaction]:
        """
        Execute a directly signed PendingTransaction atomically.

        Every identity in pending.signers must supply a valid signature over
        pending.signing_message(). Program authority is never granted here:
        transactions that claim an invoking program or present program signer
        seeds are rejected.

        Every check runs before the first write, so a rejected transaction
        leaves the ledger exactly as it was.

        Args:
            pending: PendingTransaction to execute
            signatures: Signatures over pending.signing_message(), by signer

        Returns:
            The executed Transaction record, or None for an empty transaction

        Raises:
            SignatureError: If a supplied signature does not verify
            DuplicateTransaction: If the same signed transaction was applied before
            LedgerError: The specific subclass describing the first failed check
                (MissingRequiredSignature, InsufficientFunds, AccountAlreadyExists, ...)
        """
        if pending.is_empty():
            return None

        message = pending.signing_message()
        try:
            if pending.invoking_program is not None or pending.program_signers:
                raise MissingRequiredSignature(
                    "Program authority is only granted to instructions run through invoke()"
                )
            verified = verify_signers(message, signatures)
            self._require_signed(pending, verified)
            digest = hashlib.sha256(message).hexdigest()
            if pending.signers and digest in self._applied_messages:
                raise DuplicateTransaction(f"Transaction {pending.intent_id} was already applied")
        except (LedgerError, CryptoError) as e:
            self._print_rejection(e)
            raise

        tx = self._apply(pending, set(verified))
        if pending.signers:
            self._applied_messages.add(digest)
        return tx

    def invoke(
        self,
        instruction: InstructionView,
        signatures: Optional[Mapping[Address, bytes]] = None,
    ) -> Optional[Transaction]:
        """
        Run an instruction through the program registered for its program id.

        Signatures are verified over instruction.message() and the verified
        identities are handed to the program's processor, which returns the
        PendingTransaction to apply. The program may then debit and close
        accounts it owns and act for its derived addresses through the seeds
        it presents.

        Returns:
            The executed Transaction record, or None for an empty transaction

        Raises:
            SignatureError: If a supplied signature does not verify
            ProgramNotRegistered: If no program runs at instruction.program_id
            MissingRequiredSignature: If the program's transaction names an
                unsigned identity or claims another program
            Whatever the processor raises, and any LedgerError of execution
        """
        program_id = instruction.program_id
        try:
            verified = verify_signers(instruction.message(), signatures)
            processor = self.programs.get(program_id)
            if processor is None:
                raise ProgramNotRegistered(f"No program registered at {program_id}")
        except (LedgerError, CryptoError) as e:
            self._print_rejection(e)
            raise

        pending = processor(self, instruction, verified)
        if pending.is_empty():
            return None

        try:
            if pending.invoking_program != program_id:
                raise MissingRequiredSignature(
                    f"Program {program_id} returned a transaction for {pending.invoking_program}"
                )
            self._require_signed(pending, verified)
            authorities = self._authorities(pending, verified)
        except LedgerError as e:
            self._print_rejection(e)
            raise

        return self._apply(pending, authorities)

    def _require_signed(self, pending: PendingTransaction, verified: FrozenSet[Address]) -> None:
        unsigned = sorted(pending.signers - verified)
        if unsigned:
            raise MissingRequiredSignature(f"Missing signatures from {', '.join(unsigned)}")

    def _apply(self, pending: PendingTransaction, authorities: Set[Address]) -> Transaction:
        """Validate against the granted authorities, then apply every effect."""
        try:
            sweeps = self._validate_pending(pending, authorities)
        except LedgerError as e:
            self._print_rejection(e)
            raise

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves + tuple(sweeps),
            accounts_created=tuple(a.address for a in pending.accounts_to_create),
            accounts_closed=tuple(c.address for c in pending.accounts_to_close),
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        for acct in pending.accounts_to_create:
            self.accounts[acct.address] = acct
            self.balances[acct.address] = defaultdict(int)

        self._execute_moves(tx.moves)

        for closure in pending.accounts_to_close:
            del self.accounts[closure.address]
            for mint in self.balances.pop(closure.address):
                self._positions_by_mint[mint].pop(closure.address, None)

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_rejection(self, error: Exception) -> None:
        if self.verbose:
            print(f"✗ REJECTED: {type(error).__name__}: {error}")

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """
        Print transaction details and result.

        Uses Transaction.__repr__ and appends a result line.
        """
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _authorities(self, pending: PendingTransaction, signers: FrozenSet[Address]) -> Set[Address]:
        """
        Collect every identity that authorized a program's transaction.

        Verified signers, the invoking program (for accounts it owns) and each
        derived address whose seeds the invoking program presented.
        """
        authorities = set(signers)
        authorities.add(pending.invoking_program)
        for signer in pending.program_signers:
            if signer.program_id != pending.invoking_program:
                raise MissingRequiredSignature(
                    f"Program {signer.program_id} cannot sign outside its own instruction"
                )
            authorities.add(create_program_address(signer.seeds, signer.program_id))
        return authorities

    def _require_creation_authority(
        self,
        acct: Account,
        authorities: Set[Address],
        invoking_program: Optional[Address],
    ) -> None:
        """
        Check who may open an account at acct.address.

        Associated token accounts may be opened by any paying signer. Data
        records may only be written by the program that owns them. Any other
        address must itself authorize its creation.
        """
        if acct.account_type == ACCOUNT_TYPE_TOKEN and _is_associated(acct):
            return
        if acct.account_type == ACCOUNT_TYPE_DATA and acct.owner != invoking_program:
            raise MissingRequiredSignature(
                f"Account {acct.address} can only be created by its owning program {acct.owner}"
            )
        if acct.address not in authorities:
            raise MissingRequiredSignature(f"Account {acct.address} did not authorize its creation")

    def _validate_pending(self, pending: PendingTransaction, authorities: Set[Address]) -> List[Move]:
        """
        Validate pending transaction against all constraints.

        Checks performed, first failure raises:
        1. Timestamp validation (transaction must not be from the future)
        2. Account creation targets free addresses, is authorized for the
           address and is funded by a signing payer
        3. Moves reference registered mints and live accounts, are authorized
           by the source owner and respect token account mint binding
        4. Closures name live accounts and are authorized by their owner
        5. Balance limits (min/max) after all moves
        6. Closed accounts hold no tokens; created accounts hold their deposit

        Returns:
            Deposit sweep moves generated by the closures
        """
        if pending.timestamp > self._current_time:
            raise LedgerError("future timestamp")

        # Accounts as they will exist once creations apply
        accounts: Dict[Address, Account] = dict(self.accounts)
        for acct in pending.accounts_to_create:
            if acct.address in accounts:
                raise AccountAlreadyExists(f"Account {acct.address} already in use")
            self._require_creation_authority(acct, authorities, pending.invoking_program)
            if acct.mint is not None and acct.mint not in self.mints:
                raise MintNotRegistered(f"Mint {acct.mint} not registered")
            if acct.payer is not None:
                if acct.payer not in accounts:
                    raise AccountNotFound(f"Payer {acct.payer} not found")
                if acct.payer not in authorities:
                    raise MissingRequiredSignature(f"Payer {acct.payer} did not sign")
            accounts[acct.address] = acct

        for move in pending.moves:
            if move.mint not in self.mints:
                raise MintNotRegistered(f"Mint {move.mint} not registered")
            for address in (move.source, move.dest):
                if address not in accounts:
                    raise AccountNotFound(f"Account {address} not found")
                if not accounts[address].accepts(move.mint):
                    raise MintMismatch(f"Account {address} cannot hold {move.mint}")
            owner = accounts[move.source].owner
            if move.source != SYSTEM_WALLET and owner not in authorities:
                raise MissingRequiredSignature(
                    f"{move.source} debited without authority of its owner {owner}"
                )

        closing: Set[Address] = set()
        for closure in pending.accounts_to_close:
            if closure.address == SYSTEM_WALLET:
                raise LedgerError("The system wallet cannot be closed")
            if closure.address not in accounts or closure.address in closing:
                raise AccountNotFound(f"Account {closure.address} not found")
            owner = accounts[closure.address].owner
            if owner not in authorities:
                raise MissingRequiredSignature(
                    f"{closure.address} closed without authority of its owner {owner}"
                )
            closing.add(closure.address)
        for closure in pending.accounts_to_close:
            if closure.destination not in accounts or closure.destination in closing:
                raise AccountNotFound(f"Closure destination {closure.destination} not found")

        # Net balance changes
        net: Dict[Tuple[Address, str], int] = defaultdict(int)
        for move in pending.moves:
            net[(move.source, move.mint)] -= move.quantity
            net[(move.dest, move.mint)] += move.quantity

        proposed: Dict[Tuple[Address, str], int] = {}
        for (address, mint_id), delta in sorted(net.items()):
            current = self.balances.get(address, {}).get(mint_id, 0)
            value = current + delta
            proposed[(address, mint_id)] = value
            # SYSTEM_WALLET is exempt - it can hold any balance
            if address == SYSTEM_WALLET:
                continue
            mint = self.mints[mint_id]
            if value < mint.min_balance:
                raise InsufficientFunds(f"{address} {mint_id}: {value} < min {mint.min_balance}")
            if value > mint.max_balance:
                raise BalanceConstraintViolation(f"{address} {mint_id}: {value} > max {mint.max_balance}")

        def balance_after(address: Address, mint_id: str) -> int:
            if (address, mint_id) in proposed:
                return proposed[(address, mint_id)]
            return self.balances.get(address, {}).get(mint_id, 0)

        sweeps: List[Move] = []
        for closure in pending.accounts_to_close:
            held = set(self.balances.get(closure.address, {}))
            held.update(m for (a, m) in net if a == closure.address)
            for mint_id in sorted(held):
                if mint_id != NATIVE_MINT and balance_after(closure.address, mint_id) != 0:
                    raise AccountNotEmpty(
                        f"Account {closure.address} still holds "
                        f"{balance_after(closure.address, mint_id)} of {mint_id}"
                    )
            deposit = balance_after(closure.address, NATIVE_MINT)
            if deposit > 0:
                sweeps.append(Move(
                    quantity=deposit,
                    mint=NATIVE_MINT,
                    source=closure.address,
                    dest=closure.destination,
                    contract_id=f"close_{closure.address}",
                ))

        for acct in pending.accounts_to_create:
            if acct.address in closing:
                continue
            required = self.minimum_balance(acct.space)
            held = balance_after(acct.address, NATIVE_MINT)
            if held < required:
                raise InsufficientFunds(
                    f"Account {acct.address} holds {held}, below its deposit of {required}"
                )

        return sweeps

    def _update_position_index(self, address: Address, mint: str, quantity: int) -> None:
        """
        Update the inverted position index after a balance change.

        Zero balances are removed from the index to keep it compact.
        """
        if quantity != 0:
            self._positions_by_mint[mint][address] = quantity
        else:
            self._positions_by_mint[mint].pop(address, None)

    def _execute_moves(self, moves) -> None:
        """
        Apply all moves to account balances and update the position index.

        Args:
            moves: Iterable of Move objects to execute
        """
        for move in moves:
            new_src_balance = self.balances[move.source][move.mint] - move.quantity
            self.balances[move.source][move.mint] = new_src_balance
            self._update_position_index(move.source, move.mint, new_src_balance)
            new_dst_balance = self.balances[move.dest][move.mint] + move.quantity
            self.balances[move.dest][move.mint] = new_dst_balance
            self._update_position_index(move.dest, move.mint, new_dst_balance)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa. Mints and accounts are
        immutable, so the dictionaries holding them are copied shallowly.

        Returns:
            A new Ledger instance with identical state
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.lamports_per_byte_year = self.lamports_per_byte_year
        cloned.exemption_threshold = self.exemption_threshold

        cloned.mints = dict(self.mints)
        cloned.accounts = dict(self.accounts)
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        cloned.programs = dict(self.programs)
        cloned._applied_messages = set(self._applied_messages)

        cloned.balances = {}
        for address, bals in self.balances.items():
            cloned.balances[address] = defaultdict(int, bals)

        cloned._positions_by_mint = defaultdict(dict)
        for mint, positions in self._positions_by_mint.items():
            cloned._positions_by_mint[mint] = dict(positions)

        return cloned
