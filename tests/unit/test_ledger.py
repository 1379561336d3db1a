"""
Unit tests for the host ledger.

Tests cover:
1. Genesis and balances
2. Transfers and receive hooks
3. Block finalization and headers
4. Checkpoint / restore
"""

import pytest

from luba.core.errors import InsufficientBalanceError, UnknownBlockError
from luba.core.state import Ledger
from luba.crypto import generate_keypair


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def alice():
    return generate_keypair().address


@pytest.fixture
def bob():
    return generate_keypair().address


@pytest.fixture
def funded_ledger(alice):
    """Create a ledger with initial funding."""
    ledger = Ledger(genesis_timestamp=1_000)
    ledger.create_genesis([(alice, 1000)])
    return ledger


# =============================================================================
# Balance Tests
# =============================================================================


class TestBalances:
    """Tests for genesis and transfers."""

    def test_genesis(self, funded_ledger, alice):
        assert funded_ledger.balance_of(alice) == 1000
        assert funded_ledger.block_height == 1

    def test_unknown_account_is_zero(self, funded_ledger, bob):
        assert funded_ledger.balance_of(bob) == 0

    def test_transfer(self, funded_ledger, alice, bob):
        funded_ledger.transfer(alice, bob, 400)
        assert funded_ledger.balance_of(alice) == 600
        assert funded_ledger.balance_of(bob) == 400

    def test_insufficient_balance(self, funded_ledger, alice, bob):
        with pytest.raises(InsufficientBalanceError) as exc:
            funded_ledger.transfer(alice, bob, 1001)
        assert exc.value.balance == 1000
        assert funded_ledger.balance_of(alice) == 1000

    def test_rejects_bad_address(self, funded_ledger, alice):
        with pytest.raises(ValueError):
            funded_ledger.transfer(alice, b"short", 1)

    def test_rejects_negative_amount(self, funded_ledger, alice, bob):
        with pytest.raises(ValueError):
            funded_ledger.transfer(alice, bob, -1)

    def test_receive_hook(self, funded_ledger, alice, bob):
        received = []
        funded_ledger.register_receive_hook(bob, lambda sender, amount: received.append((sender, amount)))
        funded_ledger.transfer(alice, bob, 5)
        assert received == [(alice, 5)]

        funded_ledger.remove_receive_hook(bob)
        funded_ledger.transfer(alice, bob, 5)
        assert len(received) == 1


# =============================================================================
# Block Tests
# =============================================================================


class TestBlocks:
    """Tests for finalization, headers and time."""

    def test_headers_chain(self, funded_ledger):
        parent = funded_ledger.latest_block_hash
        header = funded_ledger.finalize_block()
        assert header.parent_hash == parent
        assert funded_ledger.get_header(header.block_hash) == header

    def test_unknown_block(self, funded_ledger):
        with pytest.raises(UnknownBlockError):
            funded_ledger.get_header(bytes(32))

    def test_state_root_tracks_balances(self, funded_ledger, alice, bob):
        before = funded_ledger.finalize_block().state_root
        funded_ledger.transfer(alice, bob, 1)
        after = funded_ledger.finalize_block().state_root
        assert before != after

    def test_advance_time(self, funded_ledger):
        assert funded_ledger.advance_time(10) == 1010
        with pytest.raises(ValueError):
            funded_ledger.advance_time(-1)


# =============================================================================
# Checkpoint Tests
# =============================================================================


class TestCheckpoint:
    """Tests for checkpoint and restore."""

    def test_restore_rolls_back_everything(self, funded_ledger, alice, bob):
        cp = funded_ledger.checkpoint()
        height = funded_ledger.block_height

        funded_ledger.transfer(alice, bob, 300)
        funded_ledger.advance_time(50)
        new_block = funded_ledger.finalize_block()

        funded_ledger.restore(cp)
        assert funded_ledger.balance_of(alice) == 1000
        assert funded_ledger.balance_of(bob) == 0
        assert funded_ledger.timestamp == 1_000
        assert funded_ledger.block_height == height
        with pytest.raises(UnknownBlockError):
            funded_ledger.get_header(new_block.block_hash)

    def test_stats(self, funded_ledger):
        stats = funded_ledger.stats()
        assert stats["total_value"] == 1000
        assert stats["block_height"] == 1
