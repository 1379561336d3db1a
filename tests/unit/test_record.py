"""
Unit tests for the auction record and its packed layout.
"""

import pytest

from luba.core.auction import RECORD_SIZE, AuctionRecord, price_ceiling
from luba.utils.validation import MAX_BID_VALUE


@pytest.fixture
def record():
    return AuctionRecord(
        seller=b"\x11" * 20,
        end_of_bidding_period=1_000,
        end_of_reveal_period=2_000,
        index=3,
        lowest_unique_bid=4,
        second_lowest_unique_bid=9,
        lowest_unique_bid_escrow=b"\xee" * 20,
        collateralization_deadline=b"\xdd" * 32,
        reserve_price=50,
    )


class TestPackedLayout:
    """Tests for to_bytes / from_bytes."""

    def test_size(self, record):
        assert len(record.to_bytes()) == RECORD_SIZE

    def test_roundtrip(self, record):
        assert AuctionRecord.from_bytes(record.to_bytes()) == record

    def test_roundtrip_empty_optionals(self):
        record = AuctionRecord(index=1, lowest_unique_bid=5, second_lowest_unique_bid=5, ended=True)
        decoded = AuctionRecord.from_bytes(record.to_bytes())
        assert decoded.lowest_unique_bid_escrow is None
        assert decoded.collateralization_deadline is None
        assert decoded.ended

    def test_field_positions(self, record):
        data = record.to_bytes()
        assert data[0:20] == b"\x11" * 20
        assert int.from_bytes(data[32:40], "big") == 3
        assert data[64:84] == b"\xee" * 20
        assert data[96:128] == b"\xdd" * 32

    def test_wrong_size(self):
        with pytest.raises(ValueError):
            AuctionRecord.from_bytes(bytes(127))


class TestRecordState:
    """Tests for derived properties."""

    def test_ceiling(self, record):
        assert record.ceiling == 50
        assert price_ceiling(0) == MAX_BID_VALUE

    def test_reveal_window_is_half_open(self, record):
        assert not record.in_reveal_period(1_000)
        assert record.in_reveal_period(1_001)
        assert record.in_reveal_period(2_000)
        assert not record.in_reveal_period(2_001)

    def test_is_active(self, record):
        assert record.is_active
        record.ended = True
        assert not record.is_active
        assert not AuctionRecord().is_active
