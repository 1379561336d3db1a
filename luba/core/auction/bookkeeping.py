"""
Uniqueness bookkeeping for lowest-unique-bid selection.

Two tables live here:

1. RevealedEscrowSet - every escrow identity ever revealed. Never reset;
   derivation binds the generation index, so one set serves all keys and
   generations.
2. BidCountTable - per (key, generation, value) tallies of collateralized
   reveals. Generations never share counts because the index is part of
   the table key.

record_reveal() applies one collateralized reveal to an AuctionRecord.
A value stops being unique the moment its second reveal arrives; if it held
the lowest or second-lowest slot, both slots are rebuilt from the
generation's remaining unique values so a duplicated value can never win or
set the price.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from luba.core.auction.record import AuctionKey, AuctionRecord
from luba.core.errors import BidAlreadyRevealedError
from luba.crypto import short_hex
from luba.utils.logger import get_logger

logger = get_logger("bookkeeping")

GenerationKey = Tuple[bytes, int, int]


class RevealedEscrowSet:
    """Global set of revealed escrow identities."""

    def __init__(self, escrows: Optional[Set[bytes]] = None):
        self._escrows: Set[bytes] = set(escrows or ())

    def mark(self, escrow: bytes) -> None:
        """Mark an escrow revealed; a second mark raises BidAlreadyRevealedError."""
        if escrow in self._escrows:
            raise BidAlreadyRevealedError(escrow)
        self._escrows.add(escrow)

    def __contains__(self, escrow: bytes) -> bool:
        return escrow in self._escrows

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._escrows)

    def __len__(self) -> int:
        return len(self._escrows)


@dataclass
class BidTally:
    """
    Reveals observed at one value within one generation.

    escrow and bidder belong to the first reveal at the value: while the
    count stays at one they identify the unique holder.
    """
    count: int
    escrow: bytes
    bidder: bytes

    @property
    def is_unique(self) -> bool:
        return self.count == 1


class BidCountTable:
    """(collection, token_id, index) -> {bid value -> BidTally}"""

    def __init__(self):
        self._tallies: Dict[GenerationKey, Dict[int, BidTally]] = {}

    def generation(self, key: AuctionKey, index: int) -> Dict[int, BidTally]:
        """Tallies of one generation (empty dict if none)."""
        return self._tallies.get((key[0], key[1], index), {})

    def get(self, key: AuctionKey, index: int, value: int) -> Optional[BidTally]:
        return self.generation(key, index).get(value)

    def count(self, key: AuctionKey, index: int, value: int) -> int:
        tally = self.get(key, index, value)
        return tally.count if tally else 0

    def add(self, key: AuctionKey, index: int, value: int, escrow: bytes, bidder: bytes) -> BidTally:
        """Count one reveal at `value`; the first one becomes the holder."""
        tallies = self._tallies.setdefault((key[0], key[1], index), {})
        tally = tallies.get(value)
        if tally is None:
            tally = BidTally(count=1, escrow=escrow, bidder=bidder)
            tallies[value] = tally
        else:
            tally.count += 1
        return tally

    def put(self, key: AuctionKey, index: int, value: int, tally: BidTally) -> None:
        """Install a tally as-is (used when loading persisted state)."""
        self._tallies.setdefault((key[0], key[1], index), {})[value] = tally

    def unique_values(self, key: AuctionKey, index: int, below: int) -> List[int]:
        """Ascending values revealed exactly once and strictly below `below`."""
        return sorted(
            value for value, tally in self.generation(key, index).items()
            if tally.is_unique and value < below
        )

    def items(self) -> Iterator[Tuple[GenerationKey, int, BidTally]]:
        for gen_key, tallies in self._tallies.items():
            for value, tally in tallies.items():
                yield gen_key, value, tally

    def __len__(self) -> int:
        return sum(len(t) for t in self._tallies.values())


@dataclass
class RevealOutcome:
    """
    Result of applying one collateralized reveal.

    Attributes:
        unique: The value is (for now) held by this reveal alone
        invalidated: Escrows that lost their unique status (their bidders may
            withdraw them from now on)
        recomputed: Whether the lowest/second slots were rebuilt
    """
    unique: bool
    invalidated: List[Tuple[bytes, bytes]] = field(default_factory=list)
    recomputed: bool = False


def recompute(record: AuctionRecord, tallies: BidCountTable, key: AuctionKey) -> None:
    """Rebuild lowest, second and winning escrow from the unique values."""
    ceiling = record.ceiling
    values = tallies.unique_values(key, record.index, ceiling)

    record.lowest_unique_bid = values[0] if values else ceiling
    record.second_lowest_unique_bid = values[1] if len(values) > 1 else ceiling
    record.lowest_unique_bid_escrow = (
        tallies.get(key, record.index, values[0]).escrow if values else None
    )


def record_reveal(
    record: AuctionRecord,
    tallies: BidCountTable,
    key: AuctionKey,
    value: int,
    escrow: bytes,
    bidder: bytes,
) -> RevealOutcome:
    """
    Apply one collateralized reveal to the record and tallies.

    Args:
        record: Current generation record (mutated)
        tallies: Bid count table (mutated)
        key: Auction key
        value: Revealed bid value
        escrow: Escrow of the reveal
        bidder: Revealing bidder

    Returns:
        RevealOutcome
    """
    index = record.index
    seen = tallies.count(key, index, value)

    if seen == 0:
        if value < record.lowest_unique_bid:
            record.second_lowest_unique_bid = record.lowest_unique_bid
            record.lowest_unique_bid = value
            record.lowest_unique_bid_escrow = escrow
        elif value < record.second_lowest_unique_bid:
            record.second_lowest_unique_bid = value
        tallies.add(key, index, value, escrow, bidder)
        return RevealOutcome(unique=value < record.ceiling)

    first = tallies.get(key, index, value)
    tallies.add(key, index, value, escrow, bidder)
    outcome = RevealOutcome(unique=False)

    if seen == 1 and value < record.ceiling:
        outcome.invalidated.append((first.escrow, first.bidder))
        if value in (record.lowest_unique_bid, record.second_lowest_unique_bid):
            recompute(record, tallies, key)
            outcome.recomputed = True
            logger.debug(
                f"Value {value} duplicated; slots now "
                f"{record.lowest_unique_bid}/{record.second_lowest_unique_bid}"
            )
        else:
            logger.debug(f"Value {value} duplicated, holder {short_hex(first.escrow)} released")

    return outcome
