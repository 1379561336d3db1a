"""
Ledger - account balances, blocks and historical snapshots.

Conceptual Background:
---------------------
The Ledger plays the host chain the auction engine runs on:

1. **Balances**: an account model mapping 20-byte addresses to amounts
2. **Clock**: a monotonic timestamp that operations read lazily
3. **Finalized blocks**: each block header commits to the full balance
   table through a Merkle state root
4. **Proofs**: for any finalized block, an inclusion (or exclusion)
   proof of an account's balance at that block

Escrow accounts are ordinary addresses here. Nobody "creates" them; they
exist as soon as someone sends value to them.

Execution:
---------
Transfers may notify the recipient through a registered hook, the same way
a payment can execute receiving code on a real chain. Callers that need
all-or-nothing semantics take a checkpoint() first and restore() it on
failure.
"""

import bisect
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from luba.core.errors import InsufficientBalanceError, UnknownBlockError
from luba.core.state.merkle import MerkleTree
from luba.core.state.proof import BalanceProof, BlockHeader, LeafWitness, balance_leaf
from luba.crypto import bytes_to_hex, short_hex
from luba.utils.logger import get_logger
from luba.utils.validation import validate_address, validate_amount

logger = get_logger("ledger")

# Called as hook(sender, amount) after value lands in the hooked account
ReceiveHook = Callable[[bytes, int], None]


@dataclass
class LedgerCheckpoint:
    """Restorable copy of mutable ledger state."""
    balances: Dict[bytes, int]
    timestamp: int
    header_count: int


class Ledger:
    """
    Account ledger with finalized, provable balance snapshots.

    Attributes:
        balances: Mapping of address to balance
        timestamp: Current time in seconds
        headers: Finalized block headers, indexed by block number
    """

    def __init__(self, genesis_timestamp: Optional[int] = None):
        """
        Initialize the ledger and finalize the genesis block.

        Args:
            genesis_timestamp: Starting clock value. None = wall clock.
        """
        self.balances: Dict[bytes, int] = {}
        self.timestamp = int(time.time()) if genesis_timestamp is None else genesis_timestamp

        self.headers: List[BlockHeader] = []
        self._block_numbers: Dict[bytes, int] = {}
        # block number -> address-sorted (account, balance) table
        self._tables: List[List[Tuple[bytes, int]]] = []

        self._hooks: Dict[bytes, ReceiveHook] = {}

        self.finalize_block()

    # =========================================================================
    # State Access
    # =========================================================================

    @property
    def block_height(self) -> int:
        """Number of the latest finalized block."""
        return self.headers[-1].number

    @property
    def latest_block_hash(self) -> bytes:
        """Hash of the most recently finalized block."""
        return self.headers[-1].block_hash

    def balance_of(self, account: bytes) -> int:
        """Current balance of an account (0 if never funded)."""
        return self.balances.get(account, 0)

    def get_header(self, block_hash: bytes) -> BlockHeader:
        """Header of a finalized block by hash."""
        number = self._block_numbers.get(block_hash)
        if number is None:
            raise UnknownBlockError(block_hash)
        return self.headers[number]

    # =========================================================================
    # Value movement
    # =========================================================================

    def credit(self, account: bytes, amount: int) -> None:
        """Create value in an account (genesis/faucet)."""
        valid, err = validate_address(account, "account")
        if not valid:
            raise ValueError(err)
        valid, err = validate_amount(amount)
        if not valid:
            raise ValueError(err)

        self.balances[account] = self.balance_of(account) + amount
        logger.debug(f"Credited {amount} to {short_hex(account)}")

    def create_genesis(self, initial_allocations: List[Tuple[bytes, int]]) -> BlockHeader:
        """
        Credit initial allocations and finalize a block containing them.

        Args:
            initial_allocations: List of (address, value) tuples

        Returns:
            Header of the finalized block
        """
        for address, value in initial_allocations:
            self.credit(address, value)

        logger.info(
            f"Genesis allocations: {len(initial_allocations)} accounts, "
            f"{sum(v for _, v in initial_allocations)} total"
        )
        return self.finalize_block()

    def transfer(self, sender: bytes, recipient: bytes, amount: int) -> None:
        """
        Move value between accounts, then notify the recipient's hook.

        Raises:
            InsufficientBalanceError: sender cannot cover the amount
        """
        for name, address in (("sender", sender), ("recipient", recipient)):
            valid, err = validate_address(address, name)
            if not valid:
                raise ValueError(err)
        valid, err = validate_amount(amount)
        if not valid:
            raise ValueError(err)

        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalanceError(sender, balance, amount)

        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        logger.debug(f"Transfer {amount}: {short_hex(sender)} -> {short_hex(recipient)}")

        hook = self._hooks.get(recipient)
        if hook is not None:
            hook(sender, amount)

    def register_receive_hook(self, account: bytes, hook: ReceiveHook) -> None:
        """Run `hook(sender, amount)` whenever `account` receives value."""
        self._hooks[account] = hook

    def remove_receive_hook(self, account: bytes) -> None:
        self._hooks.pop(account, None)

    # =========================================================================
    # Time and blocks
    # =========================================================================

    def advance_time(self, seconds: int) -> int:
        """Move the clock forward; returns the new timestamp."""
        if seconds < 0:
            raise ValueError("Time cannot move backwards")
        self.timestamp += seconds
        return self.timestamp

    def _balance_table(self) -> List[Tuple[bytes, int]]:
        """Non-zero balances, address-sorted."""
        return sorted((a, b) for a, b in self.balances.items() if b > 0)

    def finalize_block(self) -> BlockHeader:
        """
        Seal the current balance table into a new block.

        Returns:
            The new block header
        """
        table = self._balance_table()
        tree = MerkleTree(balance_leaf(a, b) for a, b in table)

        parent_hash = self.headers[-1].block_hash if self.headers else bytes(32)
        header = BlockHeader(
            number=len(self.headers),
            timestamp=self.timestamp,
            parent_hash=parent_hash,
            state_root=tree.root(),
            account_count=len(table),
        )

        self.headers.append(header)
        self._tables.append(table)
        self._block_numbers[header.block_hash] = header.number

        logger.debug(
            f"Finalized block {header.number}: {len(table)} accounts, "
            f"root={bytes_to_hex(header.state_root)[:10]}..."
        )
        return header

    # =========================================================================
    # Proofs
    # =========================================================================

    def prove_balance(self, block_hash: bytes, account: bytes) -> BalanceProof:
        """
        Build a balance proof for `account` as of a finalized block.

        Args:
            block_hash: Snapshot reference
            account: Account to prove

        Returns:
            Inclusion proof if the account held value, exclusion proof otherwise
        """
        header = self.get_header(block_hash)
        table = self._tables[header.number]
        tree = MerkleTree(balance_leaf(a, b) for a, b in table)
        accounts = [a for a, _ in table]

        def witness(index: int) -> LeafWitness:
            addr, bal = table[index]
            return LeafWitness(account=addr, balance=bal, path=tree.prove(index))

        pos = bisect.bisect_left(accounts, account)
        if pos < len(accounts) and accounts[pos] == account:
            return BalanceProof(header=header, account=account, inclusion=witness(pos))

        return BalanceProof(
            header=header,
            account=account,
            left_neighbor=witness(pos - 1) if pos > 0 else None,
            right_neighbor=witness(pos) if pos < len(accounts) else None,
        )

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def checkpoint(self) -> LedgerCheckpoint:
        return LedgerCheckpoint(
            balances=dict(self.balances),
            timestamp=self.timestamp,
            header_count=len(self.headers),
        )

    def restore(self, cp: LedgerCheckpoint) -> None:
        """Roll balances, clock and blocks back to a checkpoint."""
        self.balances = dict(cp.balances)
        self.timestamp = cp.timestamp
        for header in self.headers[cp.header_count:]:
            del self._block_numbers[header.block_hash]
        del self.headers[cp.header_count:]
        del self._tables[cp.header_count:]

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return f"Ledger(height={self.block_height}, accounts={len(self.balances)}, time={self.timestamp})"

    def stats(self) -> dict:
        """Get ledger statistics."""
        return {
            "block_height": self.block_height,
            "timestamp": self.timestamp,
            "account_count": len(self.balances),
            "latest_block_hash": bytes_to_hex(self.latest_block_hash),
            "total_value": sum(self.balances.values()),
        }
