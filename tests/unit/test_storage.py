"""
Unit tests for the SQLite adapter and storage manager.
"""

import sqlite3

import pytest

from luba.core.auction import AuctionRecord, BidTally, SettlementReceipt
from luba.core.storage import SQLiteAdapter, StorageManager

COLLECTION = b"\xc0" * 20
ENGINE = b"\xe0" * 20


@pytest.fixture
def storage(tmp_path):
    manager = StorageManager(tmp_path)
    yield manager
    manager.close()


def receipt(escrow: bytes, refund: int = 1, payment: int = 0) -> SettlementReceipt:
    return SettlementReceipt(
        escrow=escrow,
        bidder=b"\xb1" * 20,
        collection=COLLECTION,
        token_id=2**200,
        index=1,
        seller=b"\x5e" * 20 if payment else None,
        seller_payment=payment,
        refund=refund,
        settled_at=1_000,
    )


class TestSQLiteAdapter:
    """Tests for the raw adapter."""

    def test_schema_created(self, tmp_path):
        adapter = SQLiteAdapter(tmp_path / "x.db")
        for table in ("auctions", "revealed_escrows", "bid_tallies", "settlements"):
            assert adapter.count(table) == 0
        adapter.close()

    def test_count_rejects_unknown_table(self, tmp_path):
        adapter = SQLiteAdapter(tmp_path / "x.db")
        with pytest.raises(ValueError):
            adapter.count("sqlite_master; DROP TABLE auctions")
        adapter.close()

    def test_meta(self, tmp_path):
        adapter = SQLiteAdapter(tmp_path / "x.db")
        assert adapter.get_meta("engine_id") is None
        adapter.set_meta("engine_id", "0xabc")
        assert adapter.get_meta("engine_id") == "0xabc"
        adapter.close()


class TestStorageManager:
    """Tests for typed load/persist."""

    def test_auction_roundtrip(self, storage):
        record = AuctionRecord(
            seller=b"\x11" * 20, index=2, lowest_unique_bid=3, second_lowest_unique_bid=9,
            end_of_bidding_period=10, end_of_reveal_period=20,
        )
        storage.persist_changes({(COLLECTION, 7): record}, [], [], [])
        assert storage.load_auctions() == {(COLLECTION, 7): record}
        assert storage.get_auction(COLLECTION, 7) == record
        assert storage.get_auction(COLLECTION, 8) is None

    def test_auction_upsert(self, storage):
        record = AuctionRecord(index=1, lowest_unique_bid=5, second_lowest_unique_bid=5)
        storage.persist_changes({(COLLECTION, 1): record}, [], [], [])
        record.ended = True
        storage.persist_changes({(COLLECTION, 1): record}, [], [], [])
        assert storage.get_auction(COLLECTION, 1).ended
        assert storage.stats()["auctions"] == 1

    def test_revealed_and_tallies(self, storage):
        tally = BidTally(count=2, escrow=b"\x01" * 20, bidder=b"\x02" * 20)
        storage.persist_changes({}, {b"\x01" * 20, b"\x03" * 20}, [((COLLECTION, 5), 1, 42, tally)], [])

        assert storage.load_revealed() == {b"\x01" * 20, b"\x03" * 20}
        assert storage.load_tallies() == [((COLLECTION, 5), 1, 42, tally)]

    def test_settlement_amounts_beyond_int64(self, storage):
        big = 2**100
        storage.persist_changes({}, [], [], [receipt(b"\x0a" * 20, refund=big, payment=big + 1)])
        [loaded] = storage.load_settlements()
        assert loaded == receipt(b"\x0a" * 20, refund=big, payment=big + 1)
        assert loaded.token_id == 2**200

    def test_settlement_written_once(self, storage):
        storage.persist_changes({}, [], [], [receipt(b"\x0a" * 20)])
        with pytest.raises(sqlite3.IntegrityError):
            storage.persist_changes({}, [], [], [receipt(b"\x0a" * 20)])

    def test_failed_update_writes_nothing(self, storage):
        storage.persist_changes({}, [], [], [receipt(b"\x0a" * 20)])
        record = AuctionRecord(index=1)
        with pytest.raises(sqlite3.IntegrityError):
            storage.persist_changes({(COLLECTION, 1): record}, [b"\x0b" * 20], [], [receipt(b"\x0a" * 20)])
        assert storage.load_auctions() == {}
        assert storage.load_revealed() == set()

    def test_bind_engine(self, storage):
        storage.bind_engine(ENGINE)
        storage.bind_engine(ENGINE)
        with pytest.raises(ValueError):
            storage.bind_engine(b"\xe1" * 20)

    def test_stats(self, storage):
        storage.persist_changes({}, [b"\x01" * 20], [], [])
        stats = storage.stats()
        assert stats["revealed_escrows"] == 1
        assert stats["settlements"] == 0
        assert stats["db_path"].endswith("luba.db")
