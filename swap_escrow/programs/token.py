"""
token.py - Pure Functions for Token Custody Operations

Building blocks that programs compose into a single PendingTransaction:
    - create_mint(): define a new token
    - mint_to(): issue tokens from the system wallet
    - transfer(): move tokens between accounts
    - create_account() / create_associated_token_account(): open a custody
      account, funding its deposit from a payer
    - associated_token_account_if_needed(): the same, only when the
      account is missing
    - open_associated_token_account(): a standalone transaction that opens
      an associated token account if it is missing
    - close_account(): close an emptied account, returning its deposit

None of these functions touch ledger state; failures such as insufficient
funds or an occupied address surface when the ledger executes the result.
"""

from __future__ import annotations
from typing import List, Optional, Tuple

from ..core import (
    LedgerView, Move, Mint, Account, AccountClosure, PendingTransaction,
    TransactionOrigin, OriginType, Address,
    ACCOUNT_TYPE_TOKEN, NATIVE_MINT, SYSTEM_WALLET,
    AccountMismatch, build_transaction, check_u64,
)
from ..derivation import get_associated_token_address
from ..keys import Keypair


def create_mint(name: str, decimals: int = 9, address: Optional[Address] = None) -> Mint:
    """
    Create a token mint definition.

    Args:
        name: Human-readable token name
        decimals: Display precision of the token
        address: Mint address; a fresh key pair's address when omitted

    Returns:
        A Mint ready for Ledger.register_mint()
    """
    if address is None:
        address = Keypair.generate().pubkey
    return Mint(address=address, name=name, decimals=decimals)


def transfer(
    source: Address,
    dest: Address,
    mint: str,
    amount: int,
    contract_id: str = "token_transfer",
) -> Move:
    """
    Build a transfer of `amount` base units of `mint` from source to dest.

    The ledger rejects the transfer with InsufficientFunds if the source
    cannot cover it once the whole transaction is applied.
    """
    return Move(
        quantity=check_u64("amount", amount),
        mint=mint,
        source=source,
        dest=dest,
        contract_id=contract_id,
    )


def mint_to(view: LedgerView, mint: str, dest: Address, amount: int) -> PendingTransaction:
    """
    Issue `amount` of a mint into dest from the system wallet.

    Returns:
        PendingTransaction with a single issuance move.
    """
    view.get_mint(mint)
    move = transfer(SYSTEM_WALLET, dest, mint, amount, contract_id=f"mint_to_{mint}")
    origin = TransactionOrigin(OriginType.SYSTEM, "issuance", event_type="MINT_TO")
    return build_transaction(view, [move], origin=origin)


def create_account(
    view: LedgerView,
    address: Address,
    owner: Address,
    mint: str,
    payer: Address,
) -> Tuple[Account, List[Move]]:
    """
    Describe a new token account and the deposit that funds it.

    Args:
        view: Read-only ledger view (provides the deposit size)
        address: Where the account will live
        owner: Authority allowed to debit and close the account
        mint: The only mint the account may hold
        payer: Who funds the deposit and receives it back on close

    Returns:
        (account, moves) to place in the same PendingTransaction. The ledger
        raises AccountAlreadyExists if address is occupied at execution.
    """
    view.get_mint(mint)
    account = Account(
        address=address,
        owner=owner,
        account_type=ACCOUNT_TYPE_TOKEN,
        mint=mint,
        payer=payer,
    )
    return account, deposit_moves(view, account)


def create_associated_token_account(
    view: LedgerView,
    owner: Address,
    mint: str,
    payer: Address,
) -> Tuple[Account, List[Move]]:
    """Create the canonical token account of (owner, mint) at its derived address."""
    return create_account(view, get_associated_token_address(owner, mint), owner, mint, payer)


def associated_token_account_if_needed(
    view: LedgerView,
    owner: Address,
    mint: str,
    payer: Address,
) -> Tuple[Address, List[Account], List[Move]]:
    """
    Resolve the associated token account of (owner, mint), creating it if absent.

    Returns:
        (address, accounts_to_create, moves). Both lists are empty when the
        account already exists.

    Raises:
        AccountMismatch: If the address holds something other than owner's
            token account for mint
    """
    address = get_associated_token_address(owner, mint)
    if view.account_exists(address):
        existing = view.get_account(address)
        if existing.account_type != ACCOUNT_TYPE_TOKEN or existing.owner != owner or existing.mint != mint:
            raise AccountMismatch(f"Account {address} is not the {mint} token account of {owner}")
        return address, [], []
    account, moves = create_account(view, address, owner, mint, payer)
    return address, [account], moves


def open_associated_token_account(
    view: LedgerView,
    owner: Address,
    mint: str,
    payer: Address,
) -> PendingTransaction:
    """
    Transaction that opens the associated token account of (owner, mint).

    Empty when the account already exists, so running it twice is harmless.
    The payer signs.
    """
    _address, accounts, moves = associated_token_account_if_needed(view, owner, mint, payer)
    origin = TransactionOrigin(OriginType.USER_ACTION, payer, event_type="OPEN_TOKEN_ACCOUNT")
    return build_transaction(view, moves, origin=origin, accounts_to_create=accounts, signers={payer})


def deposit_moves(view: LedgerView, account: Account) -> List[Move]:
    """Moves that fund the deposit of a new account from its payer."""
    deposit = view.minimum_balance(account.space)
    if deposit == 0:
        return []
    return [Move(
        quantity=deposit,
        mint=NATIVE_MINT,
        source=account.payer,
        dest=account.address,
        contract_id=f"deposit_{account.address}",
    )]


def close_account(view: LedgerView, address: Address, destination: Optional[Address] = None) -> AccountClosure:
    """
    Close an account, sending its deposit to destination.

    When destination is omitted the deposit goes back to whoever funded the
    account.

    Raises:
        AccountNotFound: If no account lives at address
        ValueError: If no destination is given and the account has no payer
    """
    account = view.get_account(address)
    if destination is None:
        destination = account.payer
    if destination is None:
        raise ValueError(f"Account {address} has no payer; pass a destination")
    return AccountClosure(address=address, destination=destination)
