"""
Auction notifications.

The engine buffers notifications while an operation runs and publishes
them only once the operation has committed, so subscribers never observe
effects that were rolled back.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from luba.utils.logger import get_logger

logger = get_logger("events")


@dataclass(frozen=True)
class AuctionCreated:
    collection: bytes
    token_id: int
    index: int
    seller: bytes
    end_of_bidding_period: int
    end_of_reveal_period: int
    reserve_price: int


@dataclass(frozen=True)
class CollateralizationDeadlineSet:
    collection: bytes
    token_id: int
    index: int
    block_hash: bytes


@dataclass(frozen=True)
class BidRevealed:
    collection: bytes
    token_id: int
    index: int
    bidder: bytes
    bid_value: int
    escrow: bytes
    collateralized: bool


@dataclass(frozen=True)
class AuctionEnded:
    collection: bytes
    token_id: int
    index: int
    winner: Optional[bytes]
    escrow: Optional[bytes]
    price_paid: int
    shortfall: int = 0


@dataclass(frozen=True)
class CollateralWithdrawn:
    collection: bytes
    token_id: int
    index: int
    bidder: bytes
    escrow: bytes
    refunded: int


AuctionEvent = Union[
    AuctionCreated,
    CollateralizationDeadlineSet,
    BidRevealed,
    AuctionEnded,
    CollateralWithdrawn,
]

Subscriber = Callable[[AuctionEvent], None]


class EventBus:
    """Fire-and-forget fan-out of committed notifications."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: AuctionEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber failed on {type(event).__name__}: {e}")
