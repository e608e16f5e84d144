"""
Programs module - Pure transition functions that run against the ledger.

- token: mints, token accounts, transfers and account closure
- escrow: the two-party swap escrow (make_offer / take_offer)

All programs take a LedgerView and return a PendingTransaction; the Ledger
applies the result atomically.
"""

# Token custody
from .token import (
    create_mint,
    mint_to,
    transfer,
    create_account,
    create_associated_token_account,
    associated_token_account_if_needed,
    open_associated_token_account,
    deposit_moves,
    close_account,
)

# Escrow
from .escrow import (
    ESCROW_PROGRAM_ID,
    OFFER_SEED,
    Offer,
    EscrowError,
    SameTokenMints,
    ZeroOfferedAmount,
    ZeroWantedAmount,
    offer_seeds,
    find_offer_address,
    find_vault_address,
    generate_offer_id,
    fetch_offer,
    make_offer,
    take_offer,
    take_offer_by_id,
)
