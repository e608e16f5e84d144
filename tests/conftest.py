"""
conftest.py - Shared pytest fixtures for escrow tests

Provides common fixtures used across unit and functional tests:
- Deterministic key pairs and mints
- Ledgers with funded maker and taker wallets
- A ledger holding one open offer
- A read-only FakeView for pure transition tests
"""

import pytest
from datetime import datetime

from swap_escrow import Ledger, native_mint, find_offer_address

from tests.fake_view import FakeView
from tests.ledger_setup import (
    ALICE, BOB, CAROL, MINT_A, MINT_B, MINT_C, START,
    build_escrow_ledger, open_offer,
)


# =============================================================================
# IDENTITY FIXTURES
# =============================================================================

@pytest.fixture
def alice():
    return ALICE


@pytest.fixture
def bob():
    return BOB


@pytest.fixture
def carol():
    return CAROL


@pytest.fixture
def mint_a():
    return MINT_A


@pytest.fixture
def mint_b():
    return MINT_B


@pytest.fixture
def mint_c():
    return MINT_C


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with only the native mint."""
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_mint(native_mint())
    return ledger


@pytest.fixture
def escrow_ledger():
    """Alice holds 10 A, Bob holds 5 B, Carol holds no B."""
    return build_escrow_ledger()


@pytest.fixture
def offer_ledger(escrow_ledger):
    """escrow_ledger after Alice offers 3 A for 2 B (offer id 1)."""
    open_offer(escrow_ledger)
    return escrow_ledger


@pytest.fixture
def offer_address(offer_ledger):
    """Address of the offer in offer_ledger."""
    return find_offer_address(ALICE.pubkey, 1)[0]


@pytest.fixture
def fake_view():
    """Read-only view with native, A and B registered and no accounts."""
    return FakeView(
        mints=[native_mint(), MINT_A, MINT_B],
        time=datetime(2025, 1, 1),
    )
