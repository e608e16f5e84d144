"""
escrow_example.py - Step-by-Step Token Swap Escrow Example

Demonstrates the complete lifecycle of an escrow offer:
1. Setup: Create ledger, install the escrow program, register mints, fund accounts
2. Make Offer: Alice locks 3 USDC in a vault and asks for 2 WSOL
3. Failed Take: Carol cannot pay, nothing changes
4. Take Offer: Bob pays 2 WSOL and receives the vault's 3 USDC
5. Rejections: validation errors, a duplicate offer id and a forged vault drain

Every instruction is signed with Ed25519 keys and executed atomically.

Run this file directly:
    python escrow_example.py
"""

from datetime import datetime
from swap_escrow import (
    # Core
    Ledger, Keypair, ProgramSigner, native_mint, build_transaction, NATIVE_MINT,

    # Keys
    sign_message,

    # Token program
    create_mint, mint_to, transfer, open_associated_token_account,
    get_associated_token_address,

    # Escrow program
    find_offer_address, find_vault_address, fetch_offer,
    EscrowError, LedgerError, ESCROW_PROGRAM_ID,

    # Instructions
    register_escrow_program, make_offer_instruction, take_offer_instruction,
    sign_instruction, process_instruction,
)
from swap_escrow.programs.escrow import offer_seeds


def show_balances(ledger: Ledger, parties: dict, mints: list) -> None:
    """Print each party's token account holdings of the given mints."""
    for name, owner in parties.items():
        holdings = []
        for m in mints:
            ata = get_associated_token_address(owner, m)
            amount = ledger.get_balance(ata, m) if ledger.account_exists(ata) else 0
            holdings.append(f"{ledger.get_mint(m).ui_amount(amount)} {ledger.get_mint(m).name}")
        print(f"  {name:<6} {', '.join(holdings)}")


def fund_tokens(ledger: Ledger, owner: Keypair, mint, amount: int) -> None:
    """Open owner's token account for mint (owner pays) and issue amount into it."""
    tx = open_associated_token_account(ledger, owner.pubkey, mint.address, owner.pubkey)
    ledger.execute(tx, sign_message(tx.signing_message(), [owner]))
    ata = get_associated_token_address(owner.pubkey, mint.address)
    ledger.execute(mint_to(ledger, mint.address, ata, amount))


def main():
    print("=" * 70)
    print("TOKEN SWAP ESCROW - COMPLETE LIFECYCLE EXAMPLE")
    print("=" * 70)

    # =========================================================================
    # STEP 1: SETUP
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 1: SETUP")
    print("=" * 70)
    print("""
    We create a ledger, install the escrow program and register:
    - the native unit (pays account deposits)
    - USDC and WSOL token mints
    - Three wallets: Alice (maker), Bob and Carol (takers)
    Token balances live in each party's associated token accounts.
    """)

    ledger = Ledger(
        name="escrow_demo",
        initial_time=datetime(2025, 6, 1, 9, 30),
        verbose=True,
    )
    register_escrow_program(ledger)

    print("--- Registering Mints ---")
    ledger.register_mint(native_mint())
    usdc = create_mint("USDC", decimals=6)
    wsol = create_mint("WSOL", decimals=9)
    ledger.register_mint(usdc)
    ledger.register_mint(wsol)

    print("\n--- Registering Wallets ---")
    alice, bob, carol = Keypair.generate(), Keypair.generate(), Keypair.generate()
    for kp in (alice, bob, carol):
        ledger.register_wallet(kp.pubkey)
    parties = {"Alice": alice.pubkey, "Bob": bob.pubkey, "Carol": carol.pubkey}

    # Fund via SYSTEM_WALLET (proper issuance)
    print("\n--- Funding Accounts ---")
    for kp in (alice, bob, carol):
        ledger.execute(mint_to(ledger, NATIVE_MINT, kp.pubkey, 10**9))
    fund_tokens(ledger, alice, usdc, 10 * 10**6)
    fund_tokens(ledger, bob, wsol, 5 * 10**9)
    fund_tokens(ledger, carol, wsol, 1 * 10**9)

    print("\n--- Initial Positions ---")
    show_balances(ledger, parties, [usdc.address, wsol.address])

    # =========================================================================
    # STEP 2: MAKE OFFER
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 2: MAKE OFFER")
    print("=" * 70)
    print("""
    Alice offers 3 USDC for 2 WSOL. The program:
    - creates the Offer record at derive(["offer", alice, id])
    - creates the vault, the token account of (offer, USDC)
    - moves 3 USDC from Alice's USDC account into the vault
    Alice pays both accounts' deposits and gets them back at settlement.
    """)

    offer_id = 1
    ix = make_offer_instruction(alice.pubkey, offer_id, usdc.address, wsol.address, 3 * 10**6, 2 * 10**9)
    process_instruction(ledger, ix, sign_instruction(ix, [alice]))

    offer, bump = find_offer_address(alice.pubkey, offer_id)
    vault = find_vault_address(offer, usdc.address)
    record = fetch_offer(ledger, offer)
    print(f"\nOffer {offer} (bump {bump})")
    print(f"  wants {wsol.ui_amount(record.token_b_wanted_amount)} WSOL")
    print(f"  vault holds {usdc.ui_amount(ledger.get_balance(vault, usdc.address))} USDC")

    # =========================================================================
    # STEP 3: FAILED TAKE
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 3: FAILED TAKE")
    print("=" * 70)
    print("""
    Carol holds only 1 WSOL. Her take fails as a whole: she pays nothing,
    receives nothing, no token account is opened and the offer stays open.
    """)

    ix = take_offer_instruction(carol.pubkey, alice.pubkey, offer_id, usdc.address, wsol.address)
    try:
        process_instruction(ledger, ix, sign_instruction(ix, [carol]))
    except LedgerError as e:
        print(f"Carol's take rejected: {type(e).__name__}")
    print(f"Offer still open: {ledger.account_exists(offer)}")

    # =========================================================================
    # STEP 4: TAKE OFFER
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 4: TAKE OFFER")
    print("=" * 70)
    print("""
    Bob pays 2 WSOL to Alice and receives the vault's 3 USDC in the same
    transaction. Bob's USDC account and Alice's WSOL account are opened on
    the way, at Bob's expense. The vault and the Offer record are closed.
    """)

    ix = take_offer_instruction(bob.pubkey, alice.pubkey, offer_id, usdc.address, wsol.address)
    process_instruction(ledger, ix, sign_instruction(ix, [bob]))

    print("\n--- Final Positions ---")
    show_balances(ledger, parties, [usdc.address, wsol.address])
    print(f"Offer open: {ledger.account_exists(offer)}, vault open: {ledger.account_exists(vault)}")
    print(f"Alice native after deposits returned: {ledger.get_balance(alice.pubkey, NATIVE_MINT)}")
    print(f"Bob native after opening two accounts: {ledger.get_balance(bob.pubkey, NATIVE_MINT)}")

    # =========================================================================
    # STEP 5: REJECTIONS
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 5: REJECTIONS")
    print("=" * 70)

    for label, offered, wanted, mint_b in (
        ("same mints", 1, 1, usdc.address),
        ("zero offered", 0, 1, wsol.address),
        ("zero wanted", 1, 0, wsol.address),
    ):
        ix = make_offer_instruction(alice.pubkey, 2, usdc.address, mint_b, offered, wanted)
        try:
            process_instruction(ledger, ix, sign_instruction(ix, [alice]))
        except EscrowError as e:
            print(f"{label:<13} -> {type(e).__name__} ({e.code}): {e}")

    ix = make_offer_instruction(alice.pubkey, 2, usdc.address, wsol.address, 1, 1)
    process_instruction(ledger, ix, sign_instruction(ix, [alice]))
    try:
        process_instruction(ledger, ix, sign_instruction(ix, [alice]))
    except LedgerError as e:
        print(f"duplicate id  -> {type(e).__name__}")

    # Carol presents the offer's seeds herself instead of going through the program
    offer, bump = find_offer_address(alice.pubkey, 2)
    drain = build_transaction(
        ledger,
        [transfer(find_vault_address(offer, usdc.address), carol.pubkey, usdc.address, 1)],
        signers={carol.pubkey},
        program_signers=[ProgramSigner(ESCROW_PROGRAM_ID, tuple(offer_seeds(alice.pubkey, 2) + [bytes([bump])]))],
        invoking_program=ESCROW_PROGRAM_ID,
    )
    try:
        ledger.execute(drain, sign_message(drain.signing_message(), [carol]))
    except LedgerError as e:
        print(f"forged drain  -> {type(e).__name__}")

    print("\n" + "=" * 70)
    print(f"Conservation holds: {ledger.verify_double_entry()['valid']}")
    print("=" * 70)


if __name__ == "__main__":
    main()
