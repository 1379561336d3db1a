"""
Auction record - the per-key state of the engine.

One record exists per (collection, token_id). Each create_auction starts a
new generation on the same record: the index advances and every other
field is reset, so a key's history is a sequence of generations that never
share escrows or bid counts.

Packed layout (128 bytes):
    word 0: seller(20) || end_of_bidding(4) || end_of_reveal(4) || zero(4)
    word 1: index(8) || lowest(6) || second(6) || reserve(6) || zero(6)
    word 2: escrow(20) || flags(1) || zero(11)
    deadline: block hash(32), zero when unset
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from luba.crypto import ZERO_ADDRESS
from luba.utils.validation import MAX_BID_VALUE

AuctionKey = Tuple[bytes, int]

RECORD_SIZE = 128

FLAG_ESCROW = 0x01
FLAG_DEADLINE = 0x02
FLAG_ENDED = 0x04


def price_ceiling(reserve_price: int) -> int:
    """Bids must be strictly below this; a zero reserve means no ceiling."""
    return reserve_price if reserve_price else MAX_BID_VALUE


@dataclass
class AuctionRecord:
    """
    State of the current generation for one auction key.

    Attributes:
        seller: Party that listed the asset for this generation
        end_of_bidding_period: Last second of the bidding period
        end_of_reveal_period: Last second of the reveal period
        index: Generation counter (0 = never auctioned)
        lowest_unique_bid: Current winning value (ceiling if none)
        second_lowest_unique_bid: Current settlement value (ceiling if none)
        lowest_unique_bid_escrow: Escrow holding the winning bid
        collateralization_deadline: Block hash frozen by the first reveal
        reserve_price: Seller's ceiling, 0 for none
        ended: Whether end_auction ran for this generation
    """
    seller: bytes = ZERO_ADDRESS
    end_of_bidding_period: int = 0
    end_of_reveal_period: int = 0
    index: int = 0
    lowest_unique_bid: int = 0
    second_lowest_unique_bid: int = 0
    lowest_unique_bid_escrow: Optional[bytes] = None
    collateralization_deadline: Optional[bytes] = None
    reserve_price: int = 0
    ended: bool = False

    @property
    def ceiling(self) -> int:
        return price_ceiling(self.reserve_price)

    @property
    def is_active(self) -> bool:
        """A generation exists and has not been ended."""
        return self.index > 0 and not self.ended

    def in_reveal_period(self, now: int) -> bool:
        return self.end_of_bidding_period < now <= self.end_of_reveal_period

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_bytes(self) -> bytes:
        """Encode into the packed 128-byte layout."""
        flags = (
            (FLAG_ESCROW if self.lowest_unique_bid_escrow is not None else 0)
            | (FLAG_DEADLINE if self.collateralization_deadline is not None else 0)
            | (FLAG_ENDED if self.ended else 0)
        )
        word0 = (
            self.seller +
            self.end_of_bidding_period.to_bytes(4, byteorder="big") +
            self.end_of_reveal_period.to_bytes(4, byteorder="big") +
            bytes(4)
        )
        word1 = (
            self.index.to_bytes(8, byteorder="big") +
            self.lowest_unique_bid.to_bytes(6, byteorder="big") +
            self.second_lowest_unique_bid.to_bytes(6, byteorder="big") +
            self.reserve_price.to_bytes(6, byteorder="big") +
            bytes(6)
        )
        word2 = (
            (self.lowest_unique_bid_escrow or ZERO_ADDRESS) +
            bytes([flags]) +
            bytes(11)
        )
        return word0 + word1 + word2 + (self.collateralization_deadline or bytes(32))

    @classmethod
    def from_bytes(cls, data: bytes) -> "AuctionRecord":
        """Decode the packed layout."""
        if len(data) != RECORD_SIZE:
            raise ValueError(f"Auction record must be {RECORD_SIZE} bytes, got {len(data)}")

        flags = data[84]
        return cls(
            seller=data[0:20],
            end_of_bidding_period=int.from_bytes(data[20:24], byteorder="big"),
            end_of_reveal_period=int.from_bytes(data[24:28], byteorder="big"),
            index=int.from_bytes(data[32:40], byteorder="big"),
            lowest_unique_bid=int.from_bytes(data[40:46], byteorder="big"),
            second_lowest_unique_bid=int.from_bytes(data[46:52], byteorder="big"),
            reserve_price=int.from_bytes(data[52:58], byteorder="big"),
            lowest_unique_bid_escrow=data[64:84] if flags & FLAG_ESCROW else None,
            collateralization_deadline=data[96:128] if flags & FLAG_DEADLINE else None,
            ended=bool(flags & FLAG_ENDED),
        )
