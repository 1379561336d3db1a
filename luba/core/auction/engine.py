"""
Auction Engine - lowest-unique-bid sealed auctions with per-bid escrows.

Lifecycle of one generation:
---------------------------
1. create_auction: the seller lists an asset; the engine takes custody
2. Bidding period: bidders fund derived escrow addresses (no engine call)
3. Reveal period: reveal_bid opens each commitment
   - the first collateralized reveal freezes the collateralization deadline
     (hash of the latest finalized block)
   - every later reveal proves its escrow balance AT that block, so an
     escrow funded after seeing earlier reveals cannot qualify
4. end_auction: asset to the lowest unique bidder, second-lowest unique bid
   to the seller, the winner's excess back to the winner
5. withdraw_collateral: any escrow that is not holding a live candidate bid
   can be settled back to its bidder. Refunds only ever move inside the
   owning bidder's own call, so no bidder can block another's operation by
   refusing incoming transfers

Execution:
---------
Operations are serialized. Each one runs inside _call(), which rejects
re-entry from transfer hooks, checkpoints engine, ledger and registry state
and restores all three if anything raises. Notifications are held back
until the operation commits.
"""

import copy
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Set

from luba.core.auction.bookkeeping import (
    BidCountTable,
    RevealedEscrowSet,
    record_reveal,
)
from luba.core.auction.escrow import (
    EscrowSettlementAgent,
    SettlementReceipt,
    SettlementTable,
    derive_escrow_address,
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
from luba.core.auction.record import AuctionKey, AuctionRecord, price_ceiling
from luba.core.config import AuctionConfig
from luba.core.errors import (
    AuctionEndedError,
    CannotWithdrawError,
    DurationTooShortError,
    IncorrectVaultAddressError,
    InvalidAuctionIndexError,
    InvalidBidError,
    InvalidProofError,
    NotAuthorizedError,
    NotInRevealPeriodError,
    ReentrantCallError,
    RevealPeriodOngoingError,
    UnrevealedBidError,
)
from luba.core.registry import AssetRegistry
from luba.core.state import BalanceProof, Ledger, ProofVerifier
from luba.crypto import bytes_to_hex, short_hex
from luba.utils.logger import get_logger, operation_context
from luba.utils.validation import (
    MAX_TIMESTAMP,
    validate_address,
    validate_bid,
    validate_bid_value,
    validate_duration,
    validate_token_id,
)

logger = get_logger("engine")


@dataclass
class RevealResult:
    """
    Outcome of reveal_bid.

    Attributes:
        escrow: Derived escrow address
        collateralized: Whether the escrow held the bid amount
        unique: Whether the value is, for now, held by this bid alone
        deadline_set: Whether this reveal froze the collateralization deadline
        receipt: Settlement receipt if the escrow was refunded immediately
    """
    escrow: bytes
    collateralized: bool
    unique: bool
    deadline_set: bool = False
    receipt: Optional[SettlementReceipt] = None


@dataclass
class AuctionResult:
    """Outcome of end_auction."""
    index: int
    winner: Optional[bytes]
    escrow: Optional[bytes]
    price_paid: int
    shortfall: int = 0

    @property
    def sold(self) -> bool:
        return self.winner is not None


@dataclass
class _EngineCheckpoint:
    auctions: Dict[AuctionKey, AuctionRecord]
    revealed: RevealedEscrowSet
    bid_counts: BidCountTable
    settlements: SettlementTable
    ledger: object
    registry: dict


class AuctionEngine:
    """
    Lowest-unique-bid auction engine.

    The engine's identity (config.engine_id) is both the namespace of every
    escrow derivation and the account that holds listed assets.
    """

    def __init__(
        self,
        ledger: Ledger,
        registry: AssetRegistry,
        config: Optional[AuctionConfig] = None,
        storage_manager=None,
        verifier=ProofVerifier,
    ):
        """
        Args:
            ledger: Host ledger (balances, clock, finalized blocks)
            registry: Asset registry
            config: Engine configuration
            storage_manager: Optional StorageManager for persistence
            verifier: Object exposing verify_balance(proof, snapshot_ref, account)
        """
        self.ledger = ledger
        self.registry = registry
        self.config = config or AuctionConfig()
        self.storage = storage_manager
        self.verifier = verifier

        self.auctions: Dict[AuctionKey, AuctionRecord] = {}
        self.revealed = RevealedEscrowSet()
        self.bid_counts = BidCountTable()
        self.settlements = SettlementTable()

        self.bus = EventBus()
        self.events: List[AuctionEvent] = []
        self._pending: List[AuctionEvent] = []
        self._active: Optional[str] = None

        if self.storage:
            self._load_from_storage()

    @property
    def engine_id(self) -> bytes:
        return self.config.engine_id

    # =========================================================================
    # Execution
    # =========================================================================

    @contextmanager
    def _call(self, operation: str) -> Iterator[None]:
        """Run one operation: no re-entry, all-or-nothing, events after commit."""
        if self._active is not None:
            raise ReentrantCallError(operation, self._active)

        self._active = operation
        snapshot = self._checkpoint()
        try:
            with operation_context(operation):
                yield
                if self.storage:
                    self._persist(snapshot)
        except Exception as e:
            self._restore(snapshot)
            self._pending.clear()
            logger.debug(f"{operation} aborted and rolled back: {e}")
            raise
        finally:
            self._active = None

        committed, self._pending = self._pending, []
        for event in committed:
            self.events.append(event)
            self.bus.publish(event)

    def _checkpoint(self) -> _EngineCheckpoint:
        return _EngineCheckpoint(
            auctions=copy.deepcopy(self.auctions),
            revealed=copy.deepcopy(self.revealed),
            bid_counts=copy.deepcopy(self.bid_counts),
            settlements=copy.deepcopy(self.settlements),
            ledger=self.ledger.checkpoint(),
            registry=self.registry.checkpoint(),
        )

    def _restore(self, cp: _EngineCheckpoint) -> None:
        self.auctions = cp.auctions
        self.revealed = cp.revealed
        self.bid_counts = cp.bid_counts
        self.settlements = cp.settlements
        self.ledger.restore(cp.ledger)
        self.registry.restore(cp.registry)

    def _emit(self, event: AuctionEvent) -> None:
        self._pending.append(event)

    def subscribe(self, callback):
        """Subscribe to committed notifications; returns an unsubscribe function."""
        return self.bus.subscribe(callback)

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_from_storage(self) -> None:
        self.storage.bind_engine(self.engine_id)

        self.auctions = self.storage.load_auctions()
        self.revealed = RevealedEscrowSet(self.storage.load_revealed())
        for key, index, value, tally in self.storage.load_tallies():
            self.bid_counts.put(key, index, value, tally)
        for receipt in self.storage.load_settlements():
            self.settlements.record(receipt)

        logger.info(
            f"Loaded engine state: {len(self.auctions)} auctions, "
            f"{len(self.revealed)} revealed escrows, {len(self.settlements)} settlements"
        )

    def _persist(self, cp: _EngineCheckpoint) -> None:
        """Write what changed since the checkpoint in one transaction."""
        auctions = {
            key: record for key, record in self.auctions.items()
            if cp.auctions.get(key) != record
        }
        revealed: Set[bytes] = {e for e in self.revealed if e not in cp.revealed}
        tallies = []
        for (collection, token_id, index), value, tally in self.bid_counts.items():
            if cp.bid_counts.get((collection, token_id), index, value) != tally:
                tallies.append(((collection, token_id), index, value, tally))
        receipts = [r for r in self.settlements if r.escrow not in cp.settlements]

        if auctions or revealed or tallies or receipts:
            self.storage.persist_changes(auctions, revealed, tallies, receipts)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _record(self, collection: bytes, token_id: int) -> AuctionRecord:
        return self.auctions.get((collection, token_id)) or AuctionRecord()

    def _require_generation(self, collection: bytes, token_id: int) -> AuctionRecord:
        record = self.auctions.get((collection, token_id))
        if record is None or record.index == 0:
            raise InvalidAuctionIndexError(0)
        return record

    @staticmethod
    def _check_bid(bidder: bytes, bid_value: int, salt: bytes) -> None:
        valid, err = validate_bid(bidder, bid_value, salt)
        if not valid:
            raise InvalidBidError(err)
        if bid_value < 1:
            raise InvalidBidError("bid_value must be at least 1")

    def _settle(self, key: AuctionKey, index: int, bidder: bytes, escrow: bytes) -> SettlementReceipt:
        agent = EscrowSettlementAgent(self, key[0], key[1], index, bidder, escrow)
        return agent.run()

    # =========================================================================
    # Operations
    # =========================================================================

    def create_auction(
        self,
        caller: bytes,
        collection: bytes,
        token_id: int,
        bid_period: int,
        reveal_period: int,
        reserve_price: int = 0,
    ) -> AuctionRecord:
        """
        List an asset and start a new generation for its key.

        Args:
            caller: Seller (owner of the asset or approved for it)
            collection: Asset collection
            token_id: Asset item
            bid_period: Length of the bidding period in seconds
            reveal_period: Length of the reveal period in seconds
            reserve_price: Bids must be strictly below this (0 = no reserve)

        Returns:
            Copy of the new auction record
        """
        with self._call("create_auction"):
            for valid, err in (
                validate_address(caller, "caller"),
                validate_address(collection, "collection"),
                validate_token_id(token_id),
                validate_duration(bid_period, "bid_period"),
                validate_duration(reveal_period, "reveal_period"),
            ):
                if not valid:
                    raise ValueError(err)
            valid, err = validate_bid_value(reserve_price, "reserve_price")
            if not valid:
                raise InvalidBidError(err)

            if bid_period < self.config.min_bid_period:
                raise DurationTooShortError("bidding", bid_period, self.config.min_bid_period)
            if reveal_period < self.config.min_reveal_period:
                raise DurationTooShortError("reveal", reveal_period, self.config.min_reveal_period)

            if not self.registry.is_authorized(caller, collection, token_id):
                raise NotAuthorizedError(caller, collection, token_id)
            owner = self.registry.owner_of(collection, token_id)

            now = self.ledger.timestamp
            end_of_bidding = now + bid_period
            end_of_reveal = end_of_bidding + reveal_period
            if end_of_reveal > MAX_TIMESTAMP:
                raise ValueError(f"Reveal period ends past {MAX_TIMESTAMP}")

            key = (collection, token_id)
            ceiling = price_ceiling(reserve_price)
            record = AuctionRecord(
                seller=caller,
                end_of_bidding_period=end_of_bidding,
                end_of_reveal_period=end_of_reveal,
                index=self._record(collection, token_id).index + 1,
                lowest_unique_bid=ceiling,
                second_lowest_unique_bid=ceiling,
                reserve_price=reserve_price,
            )
            self.auctions[key] = record

            self.registry.transfer_from(self.engine_id, collection, token_id, owner, self.engine_id)

            self._emit(AuctionCreated(
                collection=collection,
                token_id=token_id,
                index=record.index,
                seller=caller,
                end_of_bidding_period=end_of_bidding,
                end_of_reveal_period=end_of_reveal,
                reserve_price=reserve_price,
            ))

        logger.info(
            f"Auction {token_id} of {short_hex(collection)} generation {record.index} created "
            f"by {short_hex(caller)}: bidding until {end_of_bidding}, reveal until {end_of_reveal}"
        )
        return replace(record)

    def reveal_bid(
        self,
        caller: bytes,
        collection: bytes,
        token_id: int,
        bid_value: int,
        salt: bytes,
        proof: Optional[BalanceProof] = None,
    ) -> RevealResult:
        """
        Open a committed bid during the reveal period.

        Args:
            caller: Bidder that funded the escrow
            collection: Asset collection
            token_id: Asset item
            bid_value: Committed bid value
            salt: Committed salt
            proof: Balance proof at the collateralization deadline
                (required for every reveal after the deadline is set)

        Returns:
            RevealResult

        Raises:
            NotInRevealPeriodError: outside (end_of_bidding, end_of_reveal]
            BidAlreadyRevealedError: escrow was revealed before
            InvalidProofError: proof missing or malformed
        """
        with self._call("reveal_bid"):
            key = (collection, token_id)
            record = self._require_generation(collection, token_id)

            now = self.ledger.timestamp
            if not record.in_reveal_period(now):
                raise NotInRevealPeriodError(
                    now, record.end_of_bidding_period, record.end_of_reveal_period
                )
            self._check_bid(caller, bid_value, salt)

            index = record.index
            escrow = derive_escrow_address(
                self.engine_id, collection, token_id, index, caller, bid_value, salt
            )
            self.revealed.mark(escrow)

            amount = bid_value * self.config.value_unit
            deadline_set = False
            if record.collateralization_deadline is None:
                collateralized = self.ledger.balance_of(escrow) >= amount
                if collateralized:
                    record.collateralization_deadline = self.ledger.latest_block_hash
                    deadline_set = True
                    self._emit(CollateralizationDeadlineSet(
                        collection=collection,
                        token_id=token_id,
                        index=index,
                        block_hash=record.collateralization_deadline,
                    ))
            else:
                if proof is None:
                    raise InvalidProofError("proof required once the collateralization deadline is set")
                proven = self.verifier.verify_balance(proof, record.collateralization_deadline, escrow)
                collateralized = proven >= amount

            unique = False
            receipt = None
            if collateralized:
                outcome = record_reveal(record, self.bid_counts, key, bid_value, escrow, caller)
                unique = outcome.unique
                for held_escrow, held_bidder in outcome.invalidated:
                    logger.debug(
                        f"Escrow {short_hex(held_escrow)} of {short_hex(held_bidder)} lost its unique "
                        f"status and is open for withdrawal"
                    )
                if not unique:
                    receipt = self._settle(key, index, caller, escrow)
            else:
                logger.warning(
                    f"Bid of {short_hex(caller)} on {token_id} of {short_hex(collection)} "
                    f"disqualified: escrow {short_hex(escrow)} under-collateralized"
                )
                receipt = self._settle(key, index, caller, escrow)

            self._emit(BidRevealed(
                collection=collection,
                token_id=token_id,
                index=index,
                bidder=caller,
                bid_value=bid_value,
                escrow=escrow,
                collateralized=collateralized,
            ))

        logger.debug(
            f"Revealed {bid_value} from {short_hex(caller)} (escrow {short_hex(escrow)}): "
            f"collateralized={collateralized}, unique={unique}"
        )
        return RevealResult(
            escrow=escrow,
            collateralized=collateralized,
            unique=unique,
            deadline_set=deadline_set,
            receipt=receipt,
        )

    def end_auction(
        self,
        caller: bytes,
        collection: bytes,
        token_id: int,
        winner: bytes,
        bid_value: int,
        salt: bytes,
    ) -> AuctionResult:
        """
        Close the current generation after the reveal period.

        The caller supplies the winning (bidder, value, salt) tuple; it must
        derive the recorded winning escrow. If no bid ever held the lowest
        unique slot the asset goes back to the seller and the tuple is ignored.

        Losing escrows are not touched here; their bidders pull them back
        with withdraw_collateral. A winning escrow holding less than the
        settlement price pays what it holds and the gap is reported as
        shortfall.
        """
        with self._call("end_auction"):
            key = (collection, token_id)
            record = self._require_generation(collection, token_id)
            if record.ended:
                raise AuctionEndedError(record.index)
            now = self.ledger.timestamp
            if now <= record.end_of_reveal_period:
                raise RevealPeriodOngoingError(now, record.end_of_reveal_period)

            index = record.index
            expected = record.lowest_unique_bid_escrow
            price_paid = 0
            shortfall = 0
            if expected is None:
                winner = None
                self.registry.transfer_from(
                    self.engine_id, collection, token_id, self.engine_id, record.seller
                )
            else:
                escrow = None
                valid, _ = validate_bid(winner, bid_value, salt)
                if valid and bid_value >= 1:
                    escrow = derive_escrow_address(
                        self.engine_id, collection, token_id, index, winner, bid_value, salt
                    )
                if escrow != expected:
                    raise IncorrectVaultAddressError(expected, escrow)

                price = self.get_settlement_price(collection, token_id)
                self.registry.transfer_from(self.engine_id, collection, token_id, self.engine_id, winner)
                price_paid = self._settle(key, index, winner, escrow).seller_payment
                shortfall = price - price_paid

            record.ended = True
            self._emit(AuctionEnded(
                collection=collection,
                token_id=token_id,
                index=index,
                winner=winner,
                escrow=expected,
                price_paid=price_paid,
                shortfall=shortfall,
            ))

        if winner is None:
            logger.info(f"Auction {token_id} of {short_hex(collection)} generation {index} ended unsold")
        else:
            logger.info(
                f"Auction {token_id} of {short_hex(collection)} generation {index} won by "
                f"{short_hex(winner)}, seller paid {price_paid}"
            )
            if shortfall:
                logger.warning(
                    f"Winning escrow {short_hex(expected)} was {shortfall} short of the settlement price"
                )
        return AuctionResult(
            index=index,
            winner=winner,
            escrow=expected,
            price_paid=price_paid,
            shortfall=shortfall,
        )

    def withdraw_collateral(
        self,
        caller: bytes,
        collection: bytes,
        token_id: int,
        index: int,
        bid_value: int,
        salt: bytes,
    ) -> SettlementReceipt:
        """
        Return an escrow's balance to its bidder.

        Escrows still holding a live candidate of the current generation
        are locked; unrevealed escrows are released once the generation has
        ended. Settling twice returns the first receipt.
        """
        with self._call("withdraw_collateral"):
            key = (collection, token_id)
            record = self._record(collection, token_id)
            if index < 1 or index > record.index:
                raise InvalidAuctionIndexError(index)
            self._check_bid(caller, bid_value, salt)

            escrow = derive_escrow_address(
                self.engine_id, collection, token_id, index, caller, bid_value, salt
            )
            if index == record.index:
                if escrow == record.lowest_unique_bid_escrow:
                    raise CannotWithdrawError(escrow)
                if not record.ended:
                    if escrow not in self.revealed:
                        raise UnrevealedBidError(escrow)
                    tally = self.bid_counts.get(key, index, bid_value)
                    if (
                        tally is not None and tally.is_unique and tally.escrow == escrow
                        and bid_value < record.ceiling
                    ):
                        raise CannotWithdrawError(escrow)

            already_settled = self.settlements.is_settled(escrow)
            receipt = self._settle(key, index, caller, escrow)
            if not already_settled:
                self._emit(CollateralWithdrawn(
                    collection=collection,
                    token_id=token_id,
                    index=index,
                    bidder=caller,
                    escrow=escrow,
                    refunded=receipt.refund,
                ))

        logger.debug(f"Withdrawal for escrow {short_hex(escrow)}: refunded {receipt.refund}")
        return receipt

    # =========================================================================
    # Public reads
    # =========================================================================

    def get_auction(self, collection: bytes, token_id: int) -> AuctionRecord:
        """Copy of the current record (index 0 if never auctioned)."""
        return replace(self._record(collection, token_id))

    def get_escrow_address(
        self,
        collection: bytes,
        token_id: int,
        bidder: bytes,
        bid_value: int,
        salt: bytes,
        index: Optional[int] = None,
    ) -> bytes:
        """
        Escrow a bidder must fund to commit `bid_value`.

        index defaults to the current generation; pass the next index to
        compute addresses for an auction not yet created.
        """
        if index is None:
            index = self._record(collection, token_id).index
        return derive_escrow_address(
            self.engine_id, collection, token_id, index, bidder, bid_value, salt
        )

    def get_seller(self, collection: bytes, token_id: int) -> bytes:
        return self._record(collection, token_id).seller

    def get_lowest_unique_bid(self, collection: bytes, token_id: int) -> int:
        return self._record(collection, token_id).lowest_unique_bid

    def get_second_lowest_unique_bid(self, collection: bytes, token_id: int) -> int:
        return self._record(collection, token_id).second_lowest_unique_bid

    def get_lowest_unique_bid_escrow(self, collection: bytes, token_id: int) -> Optional[bytes]:
        return self._record(collection, token_id).lowest_unique_bid_escrow

    def get_settlement_price(self, collection: bytes, token_id: int) -> int:
        """
        Amount the winning escrow pays the seller, in ledger units.

        Without a reserve and without a runner-up the winner pays its own bid.
        """
        record = self._record(collection, token_id)
        if record.lowest_unique_bid_escrow is None:
            return 0
        price = record.second_lowest_unique_bid
        if record.reserve_price == 0 and price == record.ceiling:
            price = record.lowest_unique_bid
        return price * self.config.value_unit

    def get_bid_count(self, collection: bytes, token_id: int, bid_value: int, index: Optional[int] = None) -> int:
        if index is None:
            index = self._record(collection, token_id).index
        return self.bid_counts.count((collection, token_id), index, bid_value)

    def is_revealed(self, escrow: bytes) -> bool:
        return escrow in self.revealed

    def is_settled(self, escrow: bytes) -> bool:
        return self.settlements.is_settled(escrow)

    def get_settlement(self, escrow: bytes) -> Optional[SettlementReceipt]:
        return self.settlements.get(escrow)

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return f"AuctionEngine(id={short_hex(self.engine_id)}, auctions={len(self.auctions)})"

    def stats(self) -> dict:
        """Get engine statistics."""
        return {
            "engine_id": bytes_to_hex(self.engine_id),
            "auctions": len(self.auctions),
            "active_auctions": sum(1 for r in self.auctions.values() if r.is_active),
            "revealed_escrows": len(self.revealed),
            "bid_tallies": len(self.bid_counts),
            "settlements": len(self.settlements),
            "events": len(self.events),
        }
