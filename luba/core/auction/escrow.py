"""
Escrow - per-bid custody accounts and their one-shot settlement.

Commitment Scheme:
-----------------
A bid is committed by funding an address nobody controls yet:

    init    = DOMAIN || collection || token_id || index || bidder || bid_value || salt
    escrow  = keccak256(0xff || engine_id || salt || keccak256(init))[-20:]

The address is computable by anyone holding the tuple, before any engine
interaction, and reveals nothing about `bid_value` without `salt`. Binding
the generation index means addresses from one generation never collide
with another's; binding the bidder means a reveal can only be made by the
account that committed.

Settlement:
----------
An EscrowSettlementAgent acts as the escrow account exactly once. If the
escrow is the recorded winner of the current generation it pays the
settlement price to the seller; whatever remains goes back to the bidder.
The SettlementTable keeps one receipt per escrow, so asking the agent to
run again is harmless: it returns the original receipt and moves nothing.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, TYPE_CHECKING

from luba.crypto import keccak256, short_hex
from luba.utils.logger import get_logger

if TYPE_CHECKING:
    from luba.core.auction.engine import AuctionEngine

logger = get_logger("escrow")

ESCROW_DOMAIN = b"luba.escrow.v1"
CREATE2_PREFIX = b"\xff"


def derive_escrow_address(
    engine_id: bytes,
    collection: bytes,
    token_id: int,
    index: int,
    bidder: bytes,
    bid_value: int,
    salt: bytes,
) -> bytes:
    """
    Deterministic escrow address for one bid commitment.

    Args:
        engine_id: 20-byte engine identity
        collection: 20-byte asset collection address
        token_id: Asset item identity
        index: Generation index of the auction
        bidder: 20-byte bidder address
        bid_value: Bid in engine value units (uint48)
        salt: 32-byte blinding salt

    Returns:
        20-byte escrow address
    """
    if len(salt) != 32:
        raise ValueError(f"salt must be 32 bytes, got {len(salt)}")

    init = (
        ESCROW_DOMAIN +
        collection +
        token_id.to_bytes(32, byteorder="big") +
        index.to_bytes(8, byteorder="big") +
        bidder +
        bid_value.to_bytes(6, byteorder="big") +
        salt
    )
    return keccak256(CREATE2_PREFIX + engine_id + salt + keccak256(init))[-20:]


# =============================================================================
# Settlement records
# =============================================================================


@dataclass(frozen=True)
class SettlementReceipt:
    """
    Outcome of the single settlement of an escrow.

    Attributes:
        escrow: Settled escrow address
        bidder: Account that received the refund
        collection, token_id, index: Generation the escrow belonged to
        seller: Payee of the settlement price (None for non-winning escrows)
        seller_payment: Amount paid to the seller
        refund: Amount returned to the bidder
        settled_at: Ledger timestamp of settlement
    """
    escrow: bytes
    bidder: bytes
    collection: bytes
    token_id: int
    index: int
    seller: Optional[bytes]
    seller_payment: int
    refund: int
    settled_at: int

    @property
    def is_winner(self) -> bool:
        return self.seller is not None


class SettlementTable:
    """One-shot settlement records keyed by escrow address."""

    def __init__(self):
        self._receipts: Dict[bytes, SettlementReceipt] = {}

    def get(self, escrow: bytes) -> Optional[SettlementReceipt]:
        return self._receipts.get(escrow)

    def is_settled(self, escrow: bytes) -> bool:
        return escrow in self._receipts

    def record(self, receipt: SettlementReceipt) -> None:
        if receipt.escrow in self._receipts:
            raise ValueError(f"Escrow {short_hex(receipt.escrow)} already settled")
        self._receipts[receipt.escrow] = receipt

    def __contains__(self, escrow: bytes) -> bool:
        return escrow in self._receipts

    def __iter__(self) -> Iterator[SettlementReceipt]:
        return iter(self._receipts.values())

    def __len__(self) -> int:
        return len(self._receipts)


# =============================================================================
# Settlement agent
# =============================================================================


class EscrowSettlementAgent:
    """
    Single-use actor operating the escrow account.

    It sees only its own balance and the engine's public reads.
    """

    def __init__(
        self,
        engine: "AuctionEngine",
        collection: bytes,
        token_id: int,
        index: int,
        bidder: bytes,
        escrow: bytes,
    ):
        self.engine = engine
        self.collection = collection
        self.token_id = token_id
        self.index = index
        self.bidder = bidder
        self.escrow = escrow

    def _is_winning_escrow(self) -> bool:
        record = self.engine.get_auction(self.collection, self.token_id)
        return record.index == self.index and record.lowest_unique_bid_escrow == self.escrow

    def run(self) -> SettlementReceipt:
        """
        Settle the escrow, or return the receipt of its earlier settlement.
        """
        table = self.engine.settlements
        prior = table.get(self.escrow)
        if prior is not None:
            logger.debug(f"Escrow {short_hex(self.escrow)} already settled, nothing to move")
            return prior

        ledger = self.engine.ledger
        balance = ledger.balance_of(self.escrow)

        seller = None
        payment = 0
        if self._is_winning_escrow():
            seller = self.engine.get_seller(self.collection, self.token_id)
            payment = min(self.engine.get_settlement_price(self.collection, self.token_id), balance)
            if payment < self.engine.get_settlement_price(self.collection, self.token_id):
                logger.warning(
                    f"Winning escrow {short_hex(self.escrow)} holds {balance}, "
                    f"below the settlement price; paying {payment}"
                )
        refund = balance - payment

        receipt = SettlementReceipt(
            escrow=self.escrow,
            bidder=self.bidder,
            collection=self.collection,
            token_id=self.token_id,
            index=self.index,
            seller=seller,
            seller_payment=payment,
            refund=refund,
            settled_at=ledger.timestamp,
        )
        # Retire the escrow before any value moves
        table.record(receipt)

        if payment:
            ledger.transfer(self.escrow, seller, payment)
        if refund:
            ledger.transfer(self.escrow, self.bidder, refund)

        logger.debug(
            f"Settled escrow {short_hex(self.escrow)}: seller={payment}, refund={refund}"
        )
        return receipt
