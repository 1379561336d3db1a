"""
LUBA Auction Module.

This module provides the lowest-unique-bid auction engine:
- Auction records and their packed layout
- Escrow derivation and one-shot settlement
- Uniqueness bookkeeping
- Commit/reveal lifecycle with a collateralization deadline
"""

from luba.core.auction.record import (
    AuctionKey,
    AuctionRecord,
    RECORD_SIZE,
    price_ceiling,
)

from luba.core.auction.escrow import (
    ESCROW_DOMAIN,
    EscrowSettlementAgent,
    SettlementReceipt,
    SettlementTable,
    derive_escrow_address,
)

from luba.core.auction.bookkeeping import (
    BidCountTable,
    BidTally,
    RevealedEscrowSet,
    RevealOutcome,
    record_reveal,
    recompute,
)

from luba.core.auction.events import (
    AuctionCreated,
    AuctionEnded,
    AuctionEvent,
    BidRevealed,
    CollateralizationDeadlineSet,
    CollateralWithdrawn,
    EventBus,
)

from luba.core.auction.engine import (
    AuctionEngine,
    AuctionResult,
    RevealResult,
)

from luba.core.errors import (
    AuctionError,
    AuctionEndedError,
    BidAlreadyRevealedError,
    CannotWithdrawError,
    DurationTooShortError,
    IncorrectVaultAddressError,
    InvalidAuctionIndexError,
    InvalidBidError,
    InvalidProofError,
    NotInRevealPeriodError,
    ReentrantCallError,
    RevealPeriodOngoingError,
    UnrevealedBidError,
)

__all__ = [
    # Record
    "AuctionKey",
    "AuctionRecord",
    "RECORD_SIZE",
    "price_ceiling",
    # Escrow
    "ESCROW_DOMAIN",
    "EscrowSettlementAgent",
    "SettlementReceipt",
    "SettlementTable",
    "derive_escrow_address",
    # Bookkeeping
    "BidCountTable",
    "BidTally",
    "RevealedEscrowSet",
    "RevealOutcome",
    "record_reveal",
    "recompute",
    # Events
    "AuctionCreated",
    "AuctionEnded",
    "AuctionEvent",
    "BidRevealed",
    "CollateralizationDeadlineSet",
    "CollateralWithdrawn",
    "EventBus",
    # Engine
    "AuctionEngine",
    "AuctionResult",
    "RevealResult",
    # Errors
    "AuctionError",
    "AuctionEndedError",
    "BidAlreadyRevealedError",
    "CannotWithdrawError",
    "DurationTooShortError",
    "IncorrectVaultAddressError",
    "InvalidAuctionIndexError",
    "InvalidBidError",
    "InvalidProofError",
    "NotInRevealPeriodError",
    "ReentrantCallError",
    "RevealPeriodOngoingError",
    "UnrevealedBidError",
]
