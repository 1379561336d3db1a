"""
Scenario files for `luba simulate`.

A scenario lists one auction and its bids; run_scenario() plays it against
a fresh in-memory ledger, registry and engine:

    {
        "reserve_price": 0,
        "bids": [
            {"bidder": "alice", "value": 1, "collateral": 2},
            {"bidder": "bob", "value": 2},
            {"bidder": "carol", "value": 3, "fund_late": true}
        ]
    }

Collateral is in bid units and defaults to the bid value. A bid with
fund_late set pays into its escrow only after the collateralization
deadline is frozen, which is how a front-runner would behave.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from luba.core.auction import AuctionEngine
from luba.core.config import AuctionConfig
from luba.core.registry import AssetRegistry
from luba.core.state import Ledger
from luba.crypto import bytes_to_hex, keccak256, keypair_from_seed, sha256
from luba.utils.logger import get_logger

logger = get_logger("cli.scenario")

GENESIS_TIMESTAMP = 1_700_000_000
DEMO_COLLECTION = keccak256(b"luba.demo.collection")[-20:]


class ScenarioBid(BaseModel):
    """One sealed bid in a scenario."""

    bidder: str = Field(..., description="Participant name")
    value: int = Field(..., ge=1, description="Bid value in bid units")
    collateral: Optional[int] = Field(None, ge=0, description="Escrow funding in bid units")
    fund_late: bool = Field(default=False, description="Fund the escrow after the deadline is frozen")

    @field_validator("bidder")
    @classmethod
    def bidder_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("bidder name must not be blank")
        return v.strip()

    @property
    def funding(self) -> int:
        return self.value if self.collateral is None else self.collateral


class Scenario(BaseModel):
    """An auction and the bids revealed against it, in reveal order."""

    name: str = Field(default="scenario")
    seller: str = Field(default="seller")
    token_id: int = Field(default=1, ge=0)
    reserve_price: int = Field(default=0, ge=0, description="0 = no reserve")
    bid_period: int = Field(default=3600, gt=0)
    reveal_period: int = Field(default=3600, gt=0)
    bids: List[ScenarioBid] = Field(..., min_length=1)

    @field_validator("bids")
    @classmethod
    def seller_does_not_bid(cls, v: List[ScenarioBid], info) -> List[ScenarioBid]:
        seller = info.data.get("seller")
        if seller is not None and any(bid.bidder == seller for bid in v):
            raise ValueError("the seller cannot bid in its own auction")
        return v


class RevealLine(BaseModel):
    bidder: str
    value: int
    escrow: str
    collateralized: bool
    unique: bool
    refunded: int


class ScenarioOutcome(BaseModel):
    """What happened when a scenario was played."""

    name: str
    winner: Optional[str] = None
    winning_bid: Optional[int] = None
    price_paid: int = 0
    shortfall: int = 0
    withdrawn: int = 0
    lowest_unique_bid: int
    second_lowest_unique_bid: int
    bid_counts: Dict[int, int] = Field(default_factory=dict)
    reveals: List[RevealLine] = Field(default_factory=list)
    balances: Dict[str, int] = Field(default_factory=dict)


def _salt(scenario: Scenario, position: int, bid: ScenarioBid) -> bytes:
    return sha256(f"{scenario.name}:{position}:{bid.bidder}:{bid.value}".encode())


def run_scenario(
    scenario: Scenario,
    config: Optional[AuctionConfig] = None,
    storage_manager=None,
) -> ScenarioOutcome:
    """
    Play a scenario end to end.

    With a storage manager attached, every engine call is also written to
    its database.

    Returns:
        ScenarioOutcome (amounts in ledger units)
    """
    config = config or AuctionConfig(
        min_bid_period=min(scenario.bid_period, 3600),
        min_reveal_period=min(scenario.reveal_period, 3600),
    )
    unit = config.value_unit

    ledger = Ledger(genesis_timestamp=GENESIS_TIMESTAMP)
    registry = AssetRegistry()
    engine = AuctionEngine(ledger, registry, config, storage_manager)

    names = [scenario.seller] + sorted({bid.bidder for bid in scenario.bids})
    accounts = {name: keypair_from_seed(name.encode()).address for name in names}
    for bid in scenario.bids:
        ledger.credit(accounts[bid.bidder], bid.funding * unit)

    seller = accounts[scenario.seller]
    registry.mint(DEMO_COLLECTION, scenario.token_id, seller)
    registry.approve(seller, DEMO_COLLECTION, scenario.token_id, engine.engine_id)
    engine.create_auction(
        seller, DEMO_COLLECTION, scenario.token_id,
        scenario.bid_period, scenario.reveal_period, scenario.reserve_price,
    )

    # Commit: fund every escrow that is not held back
    escrows = []
    for position, bid in enumerate(scenario.bids):
        escrow = engine.get_escrow_address(
            DEMO_COLLECTION, scenario.token_id, accounts[bid.bidder], bid.value, _salt(scenario, position, bid)
        )
        escrows.append(escrow)
        if not bid.fund_late and bid.funding:
            ledger.transfer(accounts[bid.bidder], escrow, bid.funding * unit)
    ledger.finalize_block()
    ledger.advance_time(scenario.bid_period + 1)

    # Reveal in file order
    reveals = []
    for position, bid in enumerate(scenario.bids):
        escrow = escrows[position]
        if bid.fund_late and bid.funding:
            ledger.transfer(accounts[bid.bidder], escrow, bid.funding * unit)
            ledger.finalize_block()

        deadline = engine.get_auction(DEMO_COLLECTION, scenario.token_id).collateralization_deadline
        proof = ledger.prove_balance(deadline, escrow) if deadline is not None else None
        result = engine.reveal_bid(
            accounts[bid.bidder], DEMO_COLLECTION, scenario.token_id,
            bid.value, _salt(scenario, position, bid), proof,
        )
        reveals.append(RevealLine(
            bidder=bid.bidder,
            value=bid.value,
            escrow=bytes_to_hex(escrow),
            collateralized=result.collateralized,
            unique=result.unique,
            refunded=result.receipt.refund if result.receipt else 0,
        ))

    ledger.advance_time(scenario.reveal_period)
    record = engine.get_auction(DEMO_COLLECTION, scenario.token_id)

    winner = None
    winning_bid = None
    position = escrows.index(record.lowest_unique_bid_escrow) if record.lowest_unique_bid_escrow else None
    if position is not None:
        bid = scenario.bids[position]
        winner, winning_bid = bid.bidder, bid.value
        result = engine.end_auction(
            seller, DEMO_COLLECTION, scenario.token_id,
            accounts[bid.bidder], bid.value, _salt(scenario, position, bid),
        )
    else:
        result = engine.end_auction(seller, DEMO_COLLECTION, scenario.token_id, seller, 1, bytes(32))

    # Losers pull their collateral back once the generation has ended
    withdrawn = 0
    for position, bid in enumerate(scenario.bids):
        escrow = escrows[position]
        if escrow == record.lowest_unique_bid_escrow or engine.is_settled(escrow):
            continue
        receipt = engine.withdraw_collateral(
            accounts[bid.bidder], DEMO_COLLECTION, scenario.token_id,
            record.index, bid.value, _salt(scenario, position, bid),
        )
        withdrawn += receipt.refund

    logger.debug(f"Scenario {scenario.name} ended: {result}")
    return ScenarioOutcome(
        name=scenario.name,
        winner=winner,
        winning_bid=winning_bid,
        price_paid=result.price_paid,
        shortfall=result.shortfall,
        withdrawn=withdrawn,
        lowest_unique_bid=record.lowest_unique_bid,
        second_lowest_unique_bid=record.second_lowest_unique_bid,
        bid_counts={
            value: tally.count
            for value, tally in engine.bid_counts.generation((DEMO_COLLECTION, scenario.token_id), record.index).items()
        },
        reveals=reveals,
        balances={name: ledger.balance_of(address) for name, address in accounts.items()},
    )
