"""
test_ledger.py - Unit tests for the custody Ledger

Tests:
- Registration of mints, wallets and programs
- Issuance and transfers (conservation, insufficient funds, authority)
- Signature checks on directly executed transactions
- Program authority is only granted to registered programs
- Account creation with deposits, creation authority, token account mint binding
- Account closure: emptiness, deposit sweep, authority
- Atomic rejection, audit log, clone independence
"""

import pytest
from datetime import datetime, timedelta

from swap_escrow import (
    Ledger, Account, AccountClosure, Instruction, Keypair, Mint, ProgramSigner,
    build_transaction, mint_to, transfer,
    create_account, create_associated_token_account, open_associated_token_account,
    associated_token_account_if_needed, close_account,
    fetch_offer, find_program_address, find_vault_address, program_id_from_label,
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    MintNotRegistered, AccountNotFound, AccountAlreadyExists, AccountNotEmpty,
    MintMismatch, MissingRequiredSignature, AccountMismatch, ProgramNotRegistered,
    DuplicateTransaction, SignatureError,
    ESCROW_PROGRAM_ID, SYSTEM_WALLET, NATIVE_MINT,
    ACCOUNT_TYPE_WALLET, ACCOUNT_TYPE_TOKEN, ACCOUNT_TYPE_DATA,
)
from swap_escrow.programs.escrow import offer_seeds
from swap_escrow.programs.token import deposit_moves
from tests.fake_view import FakeView
from tests.ledger_setup import (
    ALICE, BOB, CAROL, MINT_A, MINT_B, START, VAULT_DEPOSIT,
    ata, build_escrow_ledger, compare_ledger_states, run, signed_by, snapshot,
)


ROGUE_PROGRAM_ID = program_id_from_label("rogue")


def _alice_pays_bob(ledger, amount):
    return build_transaction(
        ledger, [transfer(ata(ALICE, MINT_A), BOB.pubkey, MINT_A.address, amount)],
        signers={ALICE.pubkey},
    )


class TestRegistration:

    def test_system_wallet_preregistered(self, empty_ledger):
        assert empty_ledger.account_exists(SYSTEM_WALLET)
        assert empty_ledger.get_account(SYSTEM_WALLET).account_type == ACCOUNT_TYPE_WALLET

    def test_register_wallet(self, empty_ledger):
        empty_ledger.register_wallet(ALICE.pubkey)
        account = empty_ledger.get_account(ALICE.pubkey)
        assert account.owner == ALICE.pubkey
        assert empty_ledger.get_balance(ALICE.pubkey, NATIVE_MINT) == 0

    def test_register_wallet_twice(self, empty_ledger):
        empty_ledger.register_wallet(ALICE.pubkey)
        with pytest.raises(AccountAlreadyExists):
            empty_ledger.register_wallet(ALICE.pubkey)

    def test_register_mint_twice(self, empty_ledger):
        empty_ledger.register_mint(MINT_A)
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_mint(MINT_A)

    def test_register_program_twice(self, escrow_ledger):
        assert ESCROW_PROGRAM_ID in escrow_ledger.programs
        with pytest.raises(ValueError, match="already registered"):
            escrow_ledger.register_program(ESCROW_PROGRAM_ID, lambda view, ix, signers: None)

    def test_list_mints_sorted(self, empty_ledger):
        empty_ledger.register_mint(MINT_B)
        empty_ledger.register_mint(MINT_A)
        assert empty_ledger.list_mints() == sorted([NATIVE_MINT, MINT_A.address, MINT_B.address])

    def test_unknown_account_and_mint(self, empty_ledger):
        with pytest.raises(AccountNotFound):
            empty_ledger.get_balance("nobody", NATIVE_MINT)
        with pytest.raises(MintNotRegistered):
            empty_ledger.get_balance(SYSTEM_WALLET, MINT_A.address)
        with pytest.raises(MintNotRegistered):
            empty_ledger.get_mint(MINT_A.address)

    def test_verbose_registration_prints(self, capsys):
        ledger = Ledger("loud", START, verbose=True)
        ledger.register_mint(MINT_A)
        assert "Registered: Token A" in capsys.readouterr().out

    def test_negative_deposit_rate(self):
        with pytest.raises(ValueError):
            Ledger("bad", lamports_per_byte_year=-1)


class TestSetBalance:

    def test_disabled_outside_test_mode(self):
        ledger = build_escrow_ledger()
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance(ALICE.pubkey, MINT_A.address, 5)

    def test_enabled_in_test_mode(self):
        ledger = build_escrow_ledger(test_mode=True)
        ledger.set_balance(ALICE.pubkey, MINT_A.address, 42)
        assert ledger.get_balance(ALICE.pubkey, MINT_A.address) == 42
        positions = ledger.get_positions(MINT_A.address)
        assert positions[ALICE.pubkey] == 42
        assert positions[ata(ALICE, MINT_A)] == 10
        assert positions[SYSTEM_WALLET] == -10


class TestIssuanceAndTransfers:

    def test_mint_to_conserves_supply(self, escrow_ledger):
        assert escrow_ledger.get_balance(ata(ALICE, MINT_A), MINT_A.address) == 10
        assert escrow_ledger.get_balance(SYSTEM_WALLET, MINT_A.address) == -10
        assert escrow_ledger.total_supply(MINT_A.address) == 0
        assert escrow_ledger.verify_double_entry()["valid"]

    def test_mint_to_unregistered_mint(self, escrow_ledger):
        with pytest.raises(MintNotRegistered):
            mint_to(escrow_ledger, "unknown", ALICE.pubkey, 1)

    def test_transfer(self, escrow_ledger):
        result = run(escrow_ledger, _alice_pays_bob(escrow_ledger, 4), ALICE)
        assert result.sequence_number == len(escrow_ledger.transaction_log) - 1
        assert escrow_ledger.balance_of(ata(ALICE, MINT_A), MINT_A.address) == 6
        assert escrow_ledger.balance_of(BOB.pubkey, MINT_A.address) == 4

    def test_insufficient_funds_changes_nothing(self, escrow_ledger):
        before = snapshot(escrow_ledger)
        with pytest.raises(InsufficientFunds):
            run(escrow_ledger, _alice_pays_bob(escrow_ledger, 11), ALICE)
        assert snapshot(escrow_ledger) == before

    def test_debit_requires_owner_signature(self, escrow_ledger):
        tx = build_transaction(
            escrow_ledger, [transfer(ata(ALICE, MINT_A), BOB.pubkey, MINT_A.address, 1)],
            signers={BOB.pubkey},
        )
        with pytest.raises(MissingRequiredSignature):
            run(escrow_ledger, tx, BOB)

    def test_transfer_to_unknown_account(self, escrow_ledger):
        tx = build_transaction(
            escrow_ledger, [transfer(ata(ALICE, MINT_A), "ab" * 32, MINT_A.address, 1)],
            signers={ALICE.pubkey},
        )
        with pytest.raises(AccountNotFound):
            run(escrow_ledger, tx, ALICE)

    def test_max_balance_enforced(self, empty_ledger):
        capped = Mint("cc" * 32, "Capped", decimals=0, max_balance=100)
        empty_ledger.register_mint(capped)
        empty_ledger.register_wallet(ALICE.pubkey)
        with pytest.raises(BalanceConstraintViolation):
            empty_ledger.execute(mint_to(empty_ledger, capped.address, ALICE.pubkey, 101))

    def test_empty_transaction_returns_none(self, escrow_ledger):
        assert escrow_ledger.execute(build_transaction(escrow_ledger, [])) is None
        assert escrow_ledger.transaction_log[-1].origin.event_type == "MINT_TO"

    def test_future_timestamp_rejected(self, escrow_ledger):
        later = escrow_ledger.clone()
        later.advance_time(START + timedelta(days=1))
        with pytest.raises(LedgerError, match="future"):
            run(escrow_ledger, _alice_pays_bob(later, 1), ALICE)

    def test_time_cannot_go_backwards(self, escrow_ledger):
        with pytest.raises(ValueError):
            escrow_ledger.advance_time(datetime(2000, 1, 1))

    def test_rejection_is_printed_when_verbose(self, escrow_ledger, capsys):
        escrow_ledger.verbose = True
        with pytest.raises(InsufficientFunds):
            run(escrow_ledger, _alice_pays_bob(escrow_ledger, 99), ALICE)
        assert "REJECTED: InsufficientFunds" in capsys.readouterr().out


class TestSignatures:

    def test_claimed_signer_without_signature(self, escrow_ledger):
        before = snapshot(escrow_ledger)
        with pytest.raises(MissingRequiredSignature, match="Missing signatures"):
            escrow_ledger.execute(_alice_pays_bob(escrow_ledger, 10))
        assert snapshot(escrow_ledger) == before

    def test_claimed_signer_signed_by_another_key(self, escrow_ledger):
        tx = _alice_pays_bob(escrow_ledger, 10)
        forged = {ALICE.pubkey: CAROL.sign(tx.signing_message())}
        with pytest.raises(SignatureError):
            escrow_ledger.execute(tx, forged)
        assert escrow_ledger.get_balance(ata(ALICE, MINT_A), MINT_A.address) == 10

    def test_signature_does_not_carry_to_other_content(self, escrow_ledger):
        small = _alice_pays_bob(escrow_ledger, 1)
        large = _alice_pays_bob(escrow_ledger, 10)
        with pytest.raises(SignatureError):
            escrow_ledger.execute(large, signed_by(small, ALICE))

    def test_signature_from_uninvolved_key_is_not_authority(self, escrow_ledger):
        tx = build_transaction(
            escrow_ledger, [transfer(ata(ALICE, MINT_A), BOB.pubkey, MINT_A.address, 1)],
        )
        with pytest.raises(MissingRequiredSignature):
            run(escrow_ledger, tx, BOB)

    def test_replayed_transaction_rejected(self, escrow_ledger):
        tx = _alice_pays_bob(escrow_ledger, 4)
        signatures = signed_by(tx, ALICE)
        escrow_ledger.execute(tx, signatures)
        with pytest.raises(DuplicateTransaction):
            escrow_ledger.execute(tx, signatures)
        assert escrow_ledger.get_balance(BOB.pubkey, MINT_A.address) == 4


class TestProgramAuthority:

    def _drain(self, view, offer, program_id=ESCROW_PROGRAM_ID, invoking_program=ESCROW_PROGRAM_ID):
        record = fetch_offer(view, offer)
        seeds = offer_seeds(record.maker, record.id)
        _address, bump = find_program_address(seeds, program_id)
        seeds.append(bytes([bump]))
        vault = find_vault_address(offer, MINT_A.address)
        return build_transaction(
            view, [transfer(vault, CAROL.pubkey, MINT_A.address, 3)],
            signers={CAROL.pubkey},
            program_signers=[ProgramSigner(program_id, tuple(seeds))],
            invoking_program=invoking_program,
        )

    def test_execute_refuses_claimed_program_authority(self, offer_ledger, offer_address):
        before = snapshot(offer_ledger)
        with pytest.raises(MissingRequiredSignature, match="invoke"):
            run(offer_ledger, self._drain(offer_ledger, offer_address), CAROL)
        assert snapshot(offer_ledger) == before
        assert offer_ledger.get_balance(find_vault_address(offer_address, MINT_A.address), MINT_A.address) == 3

    def test_execute_refuses_seeds_without_program(self, offer_ledger, offer_address):
        with pytest.raises(MissingRequiredSignature):
            run(offer_ledger, self._drain(offer_ledger, offer_address, invoking_program=None), CAROL)

    def test_execute_cannot_close_program_record(self, offer_ledger, offer_address):
        tx = build_transaction(
            offer_ledger, [], accounts_to_close=[AccountClosure(offer_address, CAROL.pubkey)],
            signers={CAROL.pubkey},
        )
        with pytest.raises(MissingRequiredSignature):
            run(offer_ledger, tx, CAROL)
        assert offer_ledger.account_exists(offer_address)

    def test_unregistered_program(self, escrow_ledger):
        ix = Instruction(ROGUE_PROGRAM_ID, b"", ())
        with pytest.raises(ProgramNotRegistered):
            escrow_ledger.invoke(ix)

    def test_program_cannot_act_for_another_program(self, offer_ledger, offer_address):
        offer_ledger.register_program(
            ROGUE_PROGRAM_ID, lambda view, ix, signers: self._drain(view, offer_address),
        )
        ix = Instruction(ROGUE_PROGRAM_ID, b"", ())
        with pytest.raises(MissingRequiredSignature, match="returned a transaction"):
            offer_ledger.invoke(ix, {CAROL.pubkey: CAROL.sign(ix.message())})
        assert offer_ledger.account_exists(offer_address)

    def test_program_cannot_present_another_programs_seeds(self, offer_ledger, offer_address):
        offer_ledger.register_program(
            ROGUE_PROGRAM_ID,
            lambda view, ix, signers: self._drain(view, offer_address, invoking_program=ROGUE_PROGRAM_ID),
        )
        ix = Instruction(ROGUE_PROGRAM_ID, b"", ())
        with pytest.raises(MissingRequiredSignature, match="outside its own instruction"):
            offer_ledger.invoke(ix, {CAROL.pubkey: CAROL.sign(ix.message())})

    def test_own_seeds_do_not_unlock_another_programs_vault(self, offer_ledger, offer_address):
        offer_ledger.register_program(
            ROGUE_PROGRAM_ID,
            lambda view, ix, signers: self._drain(
                view, offer_address, program_id=ROGUE_PROGRAM_ID, invoking_program=ROGUE_PROGRAM_ID,
            ),
        )
        ix = Instruction(ROGUE_PROGRAM_ID, b"", ())
        with pytest.raises(MissingRequiredSignature, match="without authority"):
            offer_ledger.invoke(ix, {CAROL.pubkey: CAROL.sign(ix.message())})

    def test_program_cannot_add_unsigned_signers(self, escrow_ledger):
        escrow_ledger.register_program(
            ROGUE_PROGRAM_ID,
            lambda view, ix, signers: build_transaction(
                view, [transfer(ata(ALICE, MINT_A), CAROL.pubkey, MINT_A.address, 10)],
                signers={ALICE.pubkey}, invoking_program=ROGUE_PROGRAM_ID,
            ),
        )
        ix = Instruction(ROGUE_PROGRAM_ID, b"", ())
        with pytest.raises(MissingRequiredSignature, match="Missing signatures"):
            escrow_ledger.invoke(ix, {CAROL.pubkey: CAROL.sign(ix.message())})
        assert escrow_ledger.get_balance(ata(ALICE, MINT_A), MINT_A.address) == 10


class TestAccountCreation:

    def test_minimum_balance(self, escrow_ledger):
        assert escrow_ledger.minimum_balance(165) == VAULT_DEPOSIT
        assert escrow_ledger.minimum_balance(0) == 128 * 3480 * 2

    def test_create_token_account_with_deposit(self, escrow_ledger):
        native_before = escrow_ledger.get_balance(ALICE.pubkey, NATIVE_MINT)
        account, moves = create_associated_token_account(
            escrow_ledger, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        tx = build_transaction(escrow_ledger, moves, accounts_to_create=[account], signers={ALICE.pubkey})
        result = run(escrow_ledger, tx, ALICE)

        assert result.accounts_created == (account.address,)
        assert escrow_ledger.get_account(account.address).account_type == ACCOUNT_TYPE_TOKEN
        assert escrow_ledger.get_balance(account.address, NATIVE_MINT) == VAULT_DEPOSIT
        assert escrow_ledger.get_balance(ALICE.pubkey, NATIVE_MINT) == native_before - VAULT_DEPOSIT

    def test_create_at_occupied_address(self, escrow_ledger):
        account, moves = create_account(
            escrow_ledger, BOB.pubkey, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        tx = build_transaction(escrow_ledger, moves, accounts_to_create=[account], signers={ALICE.pubkey})
        with pytest.raises(AccountAlreadyExists):
            run(escrow_ledger, tx, ALICE)

    def test_plain_address_must_authorize_its_creation(self, escrow_ledger):
        holder = Keypair.from_seed(bytes([0x77]) * 32)
        account, moves = create_account(
            escrow_ledger, holder.pubkey, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        tx = build_transaction(escrow_ledger, moves, accounts_to_create=[account], signers={ALICE.pubkey})
        with pytest.raises(MissingRequiredSignature, match="did not authorize"):
            run(escrow_ledger, tx, ALICE)

        tx = build_transaction(
            escrow_ledger, moves, accounts_to_create=[account], signers={ALICE.pubkey, holder.pubkey},
        )
        run(escrow_ledger, tx, ALICE, holder)
        assert escrow_ledger.get_account(holder.pubkey).owner == BOB.pubkey

    def test_program_record_needs_its_program(self, escrow_ledger):
        holder = Keypair.from_seed(bytes([0x78]) * 32)
        record = Account(holder.pubkey, ESCROW_PROGRAM_ID, ACCOUNT_TYPE_DATA, data=b"forged", payer=ALICE.pubkey)
        tx = build_transaction(
            escrow_ledger, deposit_moves(escrow_ledger, record),
            accounts_to_create=[record], signers={ALICE.pubkey, holder.pubkey},
        )
        with pytest.raises(MissingRequiredSignature, match="owning program"):
            run(escrow_ledger, tx, ALICE, holder)
        assert not escrow_ledger.account_exists(holder.pubkey)

    def test_create_without_deposit(self, escrow_ledger):
        account, _moves = create_associated_token_account(
            escrow_ledger, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        tx = build_transaction(escrow_ledger, [], accounts_to_create=[account], signers={ALICE.pubkey})
        with pytest.raises(InsufficientFunds, match="deposit"):
            run(escrow_ledger, tx, ALICE)
        assert not escrow_ledger.account_exists(account.address)

    def test_payer_must_sign(self, escrow_ledger):
        account, moves = create_associated_token_account(
            escrow_ledger, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        tx = build_transaction(escrow_ledger, moves, accounts_to_create=[account], signers={BOB.pubkey})
        with pytest.raises(MissingRequiredSignature):
            run(escrow_ledger, tx, BOB)

    def test_token_account_rejects_other_mint(self, escrow_ledger):
        account, moves = create_associated_token_account(
            escrow_ledger, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        run(escrow_ledger, build_transaction(
            escrow_ledger, moves, accounts_to_create=[account], signers={ALICE.pubkey},
        ), ALICE)
        tx = build_transaction(
            escrow_ledger, [transfer(ata(BOB, MINT_B), account.address, MINT_B.address, 1)],
            signers={BOB.pubkey},
        )
        with pytest.raises(MintMismatch):
            run(escrow_ledger, tx, BOB)

    def test_open_associated_token_account_is_idempotent(self, escrow_ledger):
        tx = open_associated_token_account(escrow_ledger, CAROL.pubkey, MINT_A.address, CAROL.pubkey)
        assert run(escrow_ledger, tx, CAROL).accounts_created == (ata(CAROL, MINT_A),)

        again = open_associated_token_account(escrow_ledger, CAROL.pubkey, MINT_A.address, CAROL.pubkey)
        assert again.is_empty()
        assert run(escrow_ledger, again, CAROL) is None

    def test_squatted_associated_address_is_refused(self):
        address = ata(BOB, MINT_A)
        view = FakeView(
            accounts=[Account(address, CAROL.pubkey, ACCOUNT_TYPE_TOKEN, mint=MINT_A.address)],
            mints=[MINT_A],
        )
        with pytest.raises(AccountMismatch):
            associated_token_account_if_needed(view, BOB.pubkey, MINT_A.address, payer=BOB.pubkey)


class TestAccountClosure:

    def _open_vault(self, ledger, funded=0):
        account, moves = create_associated_token_account(
            ledger, BOB.pubkey, MINT_A.address, payer=ALICE.pubkey,
        )
        if funded:
            moves.append(transfer(ata(ALICE, MINT_A), account.address, MINT_A.address, funded))
        run(ledger, build_transaction(ledger, moves, accounts_to_create=[account], signers={ALICE.pubkey}), ALICE)
        return account.address

    def test_close_returns_deposit_to_payer(self, escrow_ledger):
        native_before = escrow_ledger.get_balance(ALICE.pubkey, NATIVE_MINT)
        vault = self._open_vault(escrow_ledger)
        closure = close_account(escrow_ledger, vault)
        assert closure == AccountClosure(vault, ALICE.pubkey)

        result = run(escrow_ledger, build_transaction(
            escrow_ledger, [], accounts_to_close=[closure], signers={BOB.pubkey},
        ), BOB)
        assert not escrow_ledger.account_exists(vault)
        assert escrow_ledger.get_balance(ALICE.pubkey, NATIVE_MINT) == native_before
        assert result.moves[-1].contract_id == f"close_{vault}"

    def test_close_with_tokens_fails(self, escrow_ledger):
        vault = self._open_vault(escrow_ledger, funded=2)
        tx = build_transaction(
            escrow_ledger, [], accounts_to_close=[close_account(escrow_ledger, vault)],
            signers={BOB.pubkey},
        )
        with pytest.raises(AccountNotEmpty):
            run(escrow_ledger, tx, BOB)
        assert escrow_ledger.get_balance(vault, MINT_A.address) == 2

    def test_drain_and_close_in_one_transaction(self, escrow_ledger):
        vault = self._open_vault(escrow_ledger, funded=2)
        tx = build_transaction(
            escrow_ledger,
            [transfer(vault, BOB.pubkey, MINT_A.address, 2)],
            accounts_to_close=[close_account(escrow_ledger, vault)],
            signers={BOB.pubkey},
        )
        run(escrow_ledger, tx, BOB)
        assert escrow_ledger.get_balance(BOB.pubkey, MINT_A.address) == 2
        assert not escrow_ledger.account_exists(vault)
        assert MINT_A.address in escrow_ledger.mints
        assert vault not in escrow_ledger.get_positions(MINT_A.address)

    def test_close_requires_owner(self, escrow_ledger):
        vault = self._open_vault(escrow_ledger)
        tx = build_transaction(
            escrow_ledger, [], accounts_to_close=[close_account(escrow_ledger, vault)],
            signers={ALICE.pubkey},
        )
        with pytest.raises(MissingRequiredSignature):
            run(escrow_ledger, tx, ALICE)

    def test_close_missing_account(self, escrow_ledger):
        with pytest.raises(AccountNotFound):
            close_account(escrow_ledger, "ab" * 32)

    def test_system_wallet_cannot_close(self, escrow_ledger):
        tx = build_transaction(
            escrow_ledger, [], accounts_to_close=[AccountClosure(SYSTEM_WALLET, ALICE.pubkey)],
        )
        with pytest.raises(LedgerError, match="cannot be closed"):
            escrow_ledger.execute(tx)


class TestAuditAndClone:

    def test_sequence_numbers_monotonic(self, escrow_ledger):
        sequences = [tx.sequence_number for tx in escrow_ledger.transaction_log]
        assert sequences == list(range(len(sequences)))
        assert len({tx.exec_id for tx in escrow_ledger.transaction_log}) == len(sequences)

    def test_clone_is_independent(self, escrow_ledger):
        cloned = escrow_ledger.clone()
        assert compare_ledger_states(escrow_ledger, cloned)["equal"]
        assert cloned.programs == escrow_ledger.programs

        run(cloned, _alice_pays_bob(cloned, 1), ALICE)
        diff = compare_ledger_states(escrow_ledger, cloned)
        assert not diff["equal"]
        assert len(diff["balance_diffs"]) == 2
        assert escrow_ledger.get_balance(ata(ALICE, MINT_A), MINT_A.address) == 10

    def test_verify_double_entry_reports_discrepancy(self, escrow_ledger):
        result = escrow_ledger.verify_double_entry({MINT_A.address: 5, "missing": 1})
        assert not result["valid"]
        assert {d["mint"] for d in result["discrepancies"]} == {MINT_A.address, "missing"}
