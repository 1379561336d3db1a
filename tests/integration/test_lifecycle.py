"""
End-to-end auction lifecycles: listing, funding, reveals, settlement and
withdrawals across generations.
"""

import pytest

from conftest import COLLECTION, PERIOD, START_BALANCE, TOKEN, UNIT
from luba.core.errors import (
    InvalidProofError,
    NotInRevealPeriodError,
    UnrevealedBidError,
)


class TestHappyPath:
    """Three distinct bids; the lowest wins and pays the second lowest."""

    def test_lowest_unique_wins(self, market):
        market.start()
        market.commit("alice", 1, units=2)
        market.commit("bob", 2)
        market.commit("carol", 3)
        market.open_reveal()

        first = market.reveal("alice", 1)
        assert first.deadline_set
        market.reveal("bob", 2)
        market.reveal("carol", 3)

        assert market.engine.get_lowest_unique_bid(COLLECTION, TOKEN) == 1
        assert market.engine.get_second_lowest_unique_bid(COLLECTION, TOKEN) == 2
        assert market.engine.get_settlement_price(COLLECTION, TOKEN) == 2 * UNIT

        market.close_reveal()
        result = market.end("alice", 1)

        assert result.price_paid == 2 * UNIT
        assert market.owner() == market.who["alice"]
        assert market.balance("seller") == 2 * UNIT
        assert market.balance("alice") == START_BALANCE - 2 * UNIT

        # Losers withdraw once the generation has ended
        market.withdraw("bob", 2)
        market.withdraw("carol", 3)
        assert market.balance("bob") == START_BALANCE
        assert market.balance("carol") == START_BALANCE

    def test_value_is_conserved(self, market):
        market.start()
        market.commit("alice", 3)
        market.commit("bob", 1)
        market.commit("carol", 1)
        market.commit("dave", 2, units=3)
        market.open_reveal()
        for name, value in (("alice", 3), ("bob", 1), ("carol", 1), ("dave", 2)):
            market.reveal(name, value)
        market.close_reveal()
        market.end("dave", 2)
        market.withdraw("alice", 3)
        market.withdraw("bob", 1)

        total = sum(market.balance(n) for n in market.who)
        assert total == 5 * START_BALANCE
        assert market.balance("seller") == 3 * UNIT


class TestDuplicates:

    def test_shared_value_never_wins(self, market):
        market.start()
        market.commit("alice", 5)
        market.commit("bob", 5)
        market.open_reveal()
        market.reveal("alice", 5)
        market.reveal("bob", 5)

        assert market.engine.get_bid_count(COLLECTION, TOKEN, 5) == 2
        assert market.engine.get_lowest_unique_bid_escrow(COLLECTION, TOKEN) is None
        assert market.balance("bob") == START_BALANCE
        assert market.withdraw("alice", 5).refund == 5 * UNIT
        assert market.balance("alice") == START_BALANCE

        market.close_reveal()
        assert not market.end().sold
        assert market.owner() == market.who["seller"]

    def test_runner_up_promoted(self, market):
        market.start()
        market.commit("alice", 1)
        market.commit("bob", 2, units=3)
        market.commit("carol", 3)
        market.commit("dave", 1)
        market.open_reveal()
        for name, value in (("alice", 1), ("bob", 2), ("carol", 3), ("dave", 1)):
            market.reveal(name, value)

        assert market.engine.get_lowest_unique_bid(COLLECTION, TOKEN) == 2
        assert market.engine.get_second_lowest_unique_bid(COLLECTION, TOKEN) == 3
        assert market.engine.get_lowest_unique_bid_escrow(COLLECTION, TOKEN) == market.escrow("bob", 2)
        assert market.withdraw("alice", 1).refund == UNIT

        market.close_reveal()
        result = market.end("bob", 2)
        assert result.price_paid == 3 * UNIT
        assert market.owner() == market.who["bob"]
        assert market.balance("bob") == START_BALANCE - 3 * UNIT
        market.withdraw("carol", 3)
        assert market.balance("carol") == START_BALANCE


class TestReserve:

    def test_reserve_sets_price_floor(self, market):
        market.start(reserve=10)
        market.commit("alice", 4, units=10)
        market.commit("bob", 12)
        market.open_reveal()
        market.reveal("alice", 4)
        rejected = market.reveal("bob", 12)

        assert not rejected.unique
        assert market.balance("bob") == START_BALANCE

        market.close_reveal()
        assert market.end("alice", 4).price_paid == 10 * UNIT
        assert market.balance("seller") == 10 * UNIT


class TestTiming:

    def test_early_reveal_rejected(self, market):
        market.start()
        market.commit("alice", 1)
        with pytest.raises(NotInRevealPeriodError):
            market.reveal("alice", 1)
        assert not market.engine.is_revealed(market.escrow("alice", 1))

    def test_missing_proof_leaves_state_untouched(self, market):
        market.start()
        market.commit("alice", 1)
        market.commit("bob", 2)
        market.open_reveal()
        market.reveal("alice", 1)
        before = market.engine.get_auction(COLLECTION, TOKEN)
        events = len(market.engine.events)

        with pytest.raises(InvalidProofError):
            market.reveal("bob", 2, proof=None)

        assert market.engine.get_auction(COLLECTION, TOKEN) == before
        assert len(market.engine.events) == events
        assert market.ledger.balance_of(market.escrow("bob", 2)) == 2 * UNIT

        # The bid can still be revealed properly
        assert market.reveal("bob", 2).unique


class TestGenerations:
    """Escrows are namespaced by generation index."""

    def test_escrow_precomputed_for_next_generation(self, market):
        ahead = market.escrow("alice", 3, index=1)
        market.start()
        assert market.escrow("alice", 3) == ahead

    def test_withdraw_from_past_generation(self, market):
        market.start()
        escrow = market.commit("dave", 4)
        market.open_reveal()
        with pytest.raises(UnrevealedBidError):
            market.withdraw("dave", 4)

        market.close_reveal()
        market.end()
        market.start()
        assert market.index == 2

        receipt = market.withdraw("dave", 4, index=1)
        assert receipt.refund == 4 * UNIT
        assert market.ledger.balance_of(escrow) == 0
        assert market.balance("dave") == START_BALANCE

    def test_winner_relists(self, market):
        market.start()
        market.commit("alice", 2)
        market.open_reveal()
        market.reveal("alice", 2)
        market.close_reveal()
        market.end("alice", 2)

        alice = market.who["alice"]
        market.registry.approve(alice, COLLECTION, TOKEN, market.engine.engine_id)
        record = market.engine.create_auction(alice, COLLECTION, TOKEN, PERIOD, PERIOD)
        assert record.index == 2
        assert record.seller == alice
        assert market.engine.get_seller(COLLECTION, TOKEN) == alice

        # Settling the old winning escrow again just returns its receipt
        receipt = market.withdraw("alice", 2, index=1)
        assert receipt.seller_payment == 2 * UNIT
        assert market.balance("seller") == 2 * UNIT
