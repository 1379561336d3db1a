from pathlib import Path
from typing import Dict, Iterable, List, Set, Tuple

from luba.core.auction.bookkeeping import BidTally
from luba.core.auction.escrow import SettlementReceipt
from luba.core.auction.record import AuctionKey, AuctionRecord
from luba.core.storage.sqlite_adapter import SQLiteAdapter
from luba.crypto import bytes_to_hex
from luba.utils.logger import get_logger

logger = get_logger("storage.manager")

TOKEN_ID_BYTES = 32


def _token_key(token_id: int) -> bytes:
    # Fixed width so BLOB ordering and equality match integer identity
    return token_id.to_bytes(TOKEN_ID_BYTES, byteorder="big")


def _token_id(blob: bytes) -> int:
    return int.from_bytes(blob, byteorder="big")


class StorageManager:
    """
    Manages persistent storage for the auction engine.

    Coordinates data persistence using SQLite adapter.
    Handles:
    - Auction records (packed layout)
    - Revealed escrow set and bid tallies
    - Settlement receipts
    - Metadata (engine identity)
    """

    def __init__(self, data_dir: Path, db_name: str = "luba.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    @classmethod
    def from_config(cls, config) -> "StorageManager":
        config.ensure_dirs()
        return cls(config.data_dir, config.db_name)

    # =========================================================================
    # Metadata
    # =========================================================================

    def bind_engine(self, engine_id: bytes):
        """
        Tie the database to one engine identity.

        Escrow addresses depend on the engine id, so state written by one
        engine is meaningless to another.
        """
        stored = self.adapter.get_meta("engine_id")
        if stored is None:
            self.adapter.set_meta("engine_id", bytes_to_hex(engine_id))
        elif stored != bytes_to_hex(engine_id):
            raise ValueError(f"Database belongs to engine {stored}, not {bytes_to_hex(engine_id)}")

    # =========================================================================
    # Loading
    # =========================================================================

    def load_auctions(self) -> Dict[AuctionKey, AuctionRecord]:
        return {
            (collection, _token_id(token_id)): AuctionRecord.from_bytes(data)
            for collection, token_id, data in self.adapter.get_all_auctions()
        }

    def load_revealed(self) -> Set[bytes]:
        return set(self.adapter.get_all_revealed())

    def load_tallies(self) -> List[Tuple[AuctionKey, int, int, BidTally]]:
        return [
            ((collection, _token_id(token_id)), generation, value,
             BidTally(count=count, escrow=escrow, bidder=bidder))
            for collection, token_id, generation, value, count, escrow, bidder
            in self.adapter.get_all_tallies()
        ]

    def load_settlements(self) -> List[SettlementReceipt]:
        return [
            SettlementReceipt(
                escrow=escrow,
                bidder=bidder,
                collection=collection,
                token_id=_token_id(token_id),
                index=generation,
                seller=seller,
                seller_payment=int(payment),
                refund=int(refund),
                settled_at=settled_at,
            )
            for escrow, bidder, collection, token_id, generation, seller, payment, refund, settled_at
            in self.adapter.get_all_settlements()
        ]

    def get_auction(self, collection: bytes, token_id: int):
        data = self.adapter.get_auction(collection, _token_key(token_id))
        return AuctionRecord.from_bytes(data) if data else None

    # =========================================================================
    # Persisting
    # =========================================================================

    def persist_changes(
        self,
        auctions: Dict[AuctionKey, AuctionRecord],
        revealed: Iterable[bytes],
        tallies: Iterable[Tuple[AuctionKey, int, int, BidTally]],
        receipts: Iterable[SettlementReceipt],
    ):
        """Persist the effects of one committed engine operation."""
        self.adapter.persist_engine_update(
            auctions=[
                (collection, _token_key(token_id), record.to_bytes())
                for (collection, token_id), record in auctions.items()
            ],
            revealed=revealed,
            tallies=[
                (key[0], _token_key(key[1]), index, value, tally.count, tally.escrow, tally.bidder)
                for key, index, value, tally in tallies
            ],
            settlements=[
                (r.escrow, r.bidder, r.collection, _token_key(r.token_id), r.index,
                 r.seller, str(r.seller_payment), str(r.refund), r.settled_at)
                for r in receipts
            ],
        )

    def stats(self) -> dict:
        return {
            "db_path": str(self.db_path),
            "auctions": self.adapter.count("auctions"),
            "revealed_escrows": self.adapter.count("revealed_escrows"),
            "bid_tallies": self.adapter.count("bid_tallies"),
            "settlements": self.adapter.count("settlements"),
        }

    def close(self):
        self.adapter.close()
