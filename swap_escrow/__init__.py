"""
swap_escrow - Two-Party Token Swap Escrow

A maker locks token A and names a price in token B; the first taker to pay
receives the locked tokens. Offers and vaults live at derived addresses on a
custody ledger that applies every instruction atomically.

Usage:
    from swap_escrow import (
        Ledger, Keypair, native_mint, create_mint, mint_to,
        open_associated_token_account, get_associated_token_address,
        register_escrow_program, make_offer_instruction, take_offer_instruction,
        sign_instruction, process_instruction, sign_message,
    )

    ledger = Ledger("main")
    register_escrow_program(ledger)
    ledger.register_mint(native_mint())
    usdc, wsol = create_mint("USDC", 6), create_mint("WSOL")
    ledger.register_mint(usdc)
    ledger.register_mint(wsol)

    alice, bob = Keypair.generate(), Keypair.generate()
    ledger.register_wallet(alice.pubkey)
    ledger.register_wallet(bob.pubkey)
    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.execute(mint_to(ledger, "native", alice.pubkey, 10**9))
    ledger.execute(mint_to(ledger, "native", bob.pubkey, 10**9))

    # Token balances live in associated token accounts, opened by their payer
    for owner, mint, amount in ((alice, usdc, 3), (bob, wsol, 2)):
        tx = open_associated_token_account(ledger, owner.pubkey, mint.address, owner.pubkey)
        ledger.execute(tx, sign_message(tx.signing_message(), [owner]))
        ata = get_associated_token_address(owner.pubkey, mint.address)
        ledger.execute(mint_to(ledger, mint.address, ata, amount))

    # Alice offers 3 USDC for 2 WSOL
    ix = make_offer_instruction(alice.pubkey, 1, usdc.address, wsol.address, 3, 2)
    process_instruction(ledger, ix, sign_instruction(ix, [alice]))

    # Bob takes it
    ix = take_offer_instruction(bob.pubkey, alice.pubkey, 1, usdc.address, wsol.address)
    process_instruction(ledger, ix, sign_instruction(ix, [bob]))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Account,
    AccountClosure,
    ProgramSigner,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Mint,
    native_mint,
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    MintNotRegistered,
    AccountNotFound,
    AccountAlreadyExists,
    AccountNotEmpty,
    MintMismatch,
    MissingRequiredSignature,
    InvalidSeeds,
    ConstraintSeeds,
    AccountMismatch,
    InvalidAccountData,
    ProgramNotRegistered,
    DuplicateTransaction,
    SYSTEM_WALLET,
    NATIVE_MINT,
    ACCOUNT_TYPE_WALLET,
    ACCOUNT_TYPE_TOKEN,
    ACCOUNT_TYPE_DATA,
    U64_MAX,
)

# Ledger
from .ledger import Ledger

# Address derivation
from .derivation import (
    create_program_address,
    find_program_address,
    get_associated_token_address,
    program_id_from_label,
    u64_seed,
    TOKEN_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
)

# Keys
from .keys import (
    Keypair,
    CryptoError,
    SignatureError,
    verify_signature,
    sign_message,
    verify_signers,
)

# Programs
from .programs.token import (
    create_mint,
    mint_to,
    transfer,
    create_account,
    create_associated_token_account,
    associated_token_account_if_needed,
    open_associated_token_account,
    close_account,
)
from .programs.escrow import (
    ESCROW_PROGRAM_ID,
    OFFER_SEED,
    Offer,
    EscrowError,
    SameTokenMints,
    ZeroOfferedAmount,
    ZeroWantedAmount,
    find_offer_address,
    find_vault_address,
    generate_offer_id,
    fetch_offer,
    make_offer,
    take_offer,
    take_offer_by_id,
)

# Instructions
from .instruction import (
    Instruction,
    InvalidInstructionData,
    instruction_discriminator,
    encode_make_offer,
    encode_take_offer,
    decode_instruction,
    make_offer_instruction,
    take_offer_instruction,
    sign_instruction,
    process_escrow_instruction,
    register_escrow_program,
    process_instruction,
)

__all__ = [
    # Core
    'LedgerView', 'Move', 'Account', 'AccountClosure', 'ProgramSigner',
    'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Mint', 'native_mint',
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'MintNotRegistered', 'AccountNotFound', 'AccountAlreadyExists', 'AccountNotEmpty',
    'MintMismatch', 'MissingRequiredSignature', 'InvalidSeeds', 'ConstraintSeeds',
    'AccountMismatch', 'InvalidAccountData', 'ProgramNotRegistered', 'DuplicateTransaction',
    'SYSTEM_WALLET', 'NATIVE_MINT',
    'ACCOUNT_TYPE_WALLET', 'ACCOUNT_TYPE_TOKEN', 'ACCOUNT_TYPE_DATA', 'U64_MAX',
    # Ledger
    'Ledger',
    # Derivation
    'create_program_address', 'find_program_address', 'get_associated_token_address',
    'program_id_from_label', 'u64_seed', 'TOKEN_PROGRAM_ID', 'ASSOCIATED_TOKEN_PROGRAM_ID',
    # Keys
    'Keypair', 'CryptoError', 'SignatureError',
    'verify_signature', 'sign_message', 'verify_signers',
    # Token program
    'create_mint', 'mint_to', 'transfer', 'create_account',
    'create_associated_token_account', 'associated_token_account_if_needed',
    'open_associated_token_account', 'close_account',
    # Escrow program
    'ESCROW_PROGRAM_ID', 'OFFER_SEED', 'Offer',
    'EscrowError', 'SameTokenMints', 'ZeroOfferedAmount', 'ZeroWantedAmount',
    'find_offer_address', 'find_vault_address', 'generate_offer_id', 'fetch_offer',
    'make_offer', 'take_offer', 'take_offer_by_id',
    # Instructions
    'Instruction', 'InvalidInstructionData', 'instruction_discriminator',
    'encode_make_offer', 'encode_take_offer', 'decode_instruction',
    'make_offer_instruction', 'take_offer_instruction',
    'sign_instruction', 'process_escrow_instruction', 'register_escrow_program',
    'process_instruction',
]

__version__ = '0.1.0'
