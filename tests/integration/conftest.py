"""Shared fixtures for end-to-end auction tests."""

import pytest

from luba.core.auction import AuctionEngine
from luba.core.config import AuctionConfig
from luba.core.registry import AssetRegistry
from luba.core.state import Ledger
from luba.crypto import keypair_from_seed, sha256

UNIT = 10**9
PERIOD = 3600
COLLECTION = b"\xa5" * 20
TOKEN = 77
START_BALANCE = 100 * UNIT
PARTICIPANTS = ("seller", "alice", "bob", "carol", "dave", "eve")


class Market:
    """
    A host ledger, an asset registry and one engine, with named participants.

    Bid amounts are in bid units; balances are in ledger units.
    """

    def __init__(self, storage_manager=None, engine_id=None):
        self.ledger = Ledger(genesis_timestamp=1_700_000_000)
        self.registry = AssetRegistry()
        self.who = {name: keypair_from_seed(name.encode()).address for name in PARTICIPANTS}
        self.ledger.create_genesis([(a, START_BALANCE) for n, a in self.who.items() if n != "seller"])
        self.registry.mint(COLLECTION, TOKEN, self.who["seller"])

        config = AuctionConfig(engine_id=engine_id) if engine_id else AuctionConfig()
        self.engine = AuctionEngine(self.ledger, self.registry, config, storage_manager)

    def balance(self, name):
        return self.ledger.balance_of(self.who[name])

    def salt(self, name, value, index):
        return sha256(f"{name}:{value}:{index}".encode())

    def start(self, reserve=0):
        seller = self.who["seller"]
        self.registry.approve(seller, COLLECTION, TOKEN, self.engine.engine_id)
        return self.engine.create_auction(seller, COLLECTION, TOKEN, PERIOD, PERIOD, reserve)

    @property
    def index(self):
        return self.engine.get_auction(COLLECTION, TOKEN).index

    def escrow(self, name, value, index=None):
        index = self.index if index is None else index
        return self.engine.get_escrow_address(
            COLLECTION, TOKEN, self.who[name], value, self.salt(name, value, index), index=index
        )

    def commit(self, name, value, units=None):
        escrow = self.escrow(name, value)
        self.ledger.transfer(self.who[name], escrow, (value if units is None else units) * UNIT)
        return escrow

    def open_reveal(self):
        self.ledger.finalize_block()
        self.ledger.advance_time(PERIOD + 1)

    def close_reveal(self):
        self.ledger.advance_time(PERIOD)

    def proof_for(self, escrow):
        deadline = self.engine.get_auction(COLLECTION, TOKEN).collateralization_deadline
        return None if deadline is None else self.ledger.prove_balance(deadline, escrow)

    def reveal(self, name, value, proof="auto"):
        if proof == "auto":
            proof = self.proof_for(self.escrow(name, value))
        return self.engine.reveal_bid(
            self.who[name], COLLECTION, TOKEN, value, self.salt(name, value, self.index), proof
        )

    def end(self, name=None, value=1):
        name = name or "seller"
        return self.engine.end_auction(
            self.who["seller"], COLLECTION, TOKEN, self.who[name], value, self.salt(name, value, self.index)
        )

    def withdraw(self, name, value, index=None):
        index = self.index if index is None else index
        return self.engine.withdraw_collateral(
            self.who[name], COLLECTION, TOKEN, index, value, self.salt(name, value, index)
        )

    def owner(self):
        return self.registry.owner_of(COLLECTION, TOKEN)


@pytest.fixture
def market():
    return Market()
