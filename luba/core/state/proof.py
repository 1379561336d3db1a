"""
Balance proofs against finalized block headers.

A proof answers one question: what was the balance of account X as of the
block whose hash is H? It bundles the block header (which hashes to H and
commits to the state root) with a Merkle witness:

- inclusion: the account's own leaf and its path to the root
- exclusion: the two leaves adjacent to where the account would sit in
  the address-sorted table (or a single boundary leaf); proves balance 0

The verifier is a pure function. It never reads ledger state, so the
engine can check proofs against a frozen snapshot long after it was taken.
"""

from dataclasses import dataclass, field
from typing import Optional

from luba.core.errors import InvalidProofError
from luba.core.state.merkle import MerkleProof, MerkleTree
from luba.crypto import keccak256, sha256

# Encoded widths
BALANCE_BYTES = 16
HEADER_SIZE = 8 + 8 + 32 + 32 + 8


def balance_leaf(account: bytes, balance: int) -> bytes:
    """Merkle leaf committing to one balance table row."""
    return sha256(account + balance.to_bytes(BALANCE_BYTES, byteorder="big"))


# =============================================================================
# Block Header
# =============================================================================


@dataclass(frozen=True)
class BlockHeader:
    """
    Header of a finalized block.

    Format: number(8) || timestamp(8) || parent_hash(32) || state_root(32) || account_count(8)
    Total: 88 bytes
    """
    number: int
    timestamp: int
    parent_hash: bytes
    state_root: bytes
    account_count: int

    def to_bytes(self) -> bytes:
        return (
            self.number.to_bytes(8, byteorder="big") +
            self.timestamp.to_bytes(8, byteorder="big") +
            self.parent_hash +
            self.state_root +
            self.account_count.to_bytes(8, byteorder="big")
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "BlockHeader":
        if len(data) != HEADER_SIZE:
            raise ValueError(f"Header must be {HEADER_SIZE} bytes, got {len(data)}")
        return cls(
            number=int.from_bytes(data[0:8], byteorder="big"),
            timestamp=int.from_bytes(data[8:16], byteorder="big"),
            parent_hash=data[16:48],
            state_root=data[48:80],
            account_count=int.from_bytes(data[80:88], byteorder="big"),
        )

    @property
    def block_hash(self) -> bytes:
        """keccak256 of the encoded header; the snapshot reference."""
        return keccak256(self.to_bytes())


# =============================================================================
# Proof bundle
# =============================================================================


@dataclass
class LeafWitness:
    """One balance table row plus its Merkle path."""
    account: bytes
    balance: int
    path: MerkleProof = field(default_factory=list)

    @property
    def leaf(self) -> bytes:
        return balance_leaf(self.account, self.balance)

    @property
    def index(self) -> int:
        return MerkleTree.index_from_proof(self.path)


@dataclass
class BalanceProof:
    """
    Collateralization proof for `account` as of `header`.

    Exactly one of `inclusion` or the neighbour pair is expected.
    """
    header: BlockHeader
    account: bytes
    inclusion: Optional[LeafWitness] = None
    left_neighbor: Optional[LeafWitness] = None
    right_neighbor: Optional[LeafWitness] = None

    @property
    def is_exclusion(self) -> bool:
        return self.inclusion is None


# =============================================================================
# Verifier
# =============================================================================


class ProofVerifier:
    """Stateless verifier of historical balances."""

    @staticmethod
    def _check_witness(witness: LeafWitness, header: BlockHeader, label: str) -> None:
        if not isinstance(witness, LeafWitness):
            raise InvalidProofError(f"{label} witness is malformed")
        if not isinstance(witness.account, bytes) or len(witness.account) != 20:
            raise InvalidProofError(f"{label} account must be 20 bytes")
        if not isinstance(witness.balance, int) or not 0 <= witness.balance < 2 ** (8 * BALANCE_BYTES):
            raise InvalidProofError(f"{label} balance out of range")
        for step in witness.path:
            if (
                not isinstance(step, tuple) or len(step) != 2
                or not isinstance(step[0], bytes) or len(step[0]) != 32
                or not isinstance(step[1], bool)
            ):
                raise InvalidProofError(f"{label} path step is malformed")
        if len(witness.path) != MerkleTree.depth_for(header.account_count):
            raise InvalidProofError(f"{label} path has wrong depth")
        if witness.index >= header.account_count:
            raise InvalidProofError(f"{label} leaf lies outside the balance table")
        if not MerkleTree.verify(witness.leaf, witness.path, header.state_root):
            raise InvalidProofError(f"{label} path does not reach the state root")

    @classmethod
    def verify_balance(cls, proof: BalanceProof, snapshot_ref: bytes, account: bytes) -> int:
        """
        Recompute `account`'s balance as of the block hashing to `snapshot_ref`.

        Args:
            proof: Proof bundle supplied by the caller
            snapshot_ref: 32-byte block hash the proof must be anchored to
            account: 20-byte account the proof must be about

        Returns:
            The proven balance (0 for a valid exclusion proof)

        Raises:
            InvalidProofError: on any malformed or inconsistent input
        """
        if not isinstance(proof, BalanceProof) or not isinstance(proof.header, BlockHeader):
            raise InvalidProofError("proof bundle is malformed")
        if not isinstance(proof.account, bytes):
            raise InvalidProofError("proof account is malformed")

        header = proof.header
        try:
            block_hash = header.block_hash
        except (OverflowError, TypeError) as e:
            raise InvalidProofError(f"header is malformed: {e}") from e
        if block_hash != snapshot_ref:
            raise InvalidProofError("header does not match the snapshot reference")
        if proof.account != account:
            raise InvalidProofError("proof is for a different account")

        if not proof.is_exclusion:
            witness = proof.inclusion
            cls._check_witness(witness, header, "inclusion")
            if witness.account != account:
                raise InvalidProofError("inclusion leaf is for a different account")
            return witness.balance

        left, right = proof.left_neighbor, proof.right_neighbor

        if header.account_count == 0:
            if left is not None or right is not None:
                raise InvalidProofError("empty snapshot cannot have neighbours")
            if header.state_root != MerkleTree.EMPTY_LEAF:
                raise InvalidProofError("empty snapshot has a non-empty root")
            return 0

        if left is None and right is None:
            raise InvalidProofError("exclusion proof has no neighbours")

        if left is not None:
            cls._check_witness(left, header, "left neighbour")
            if not left.account < account:
                raise InvalidProofError("left neighbour does not precede the account")
            if right is None and left.index != header.account_count - 1:
                raise InvalidProofError("left neighbour is not the last leaf")

        if right is not None:
            cls._check_witness(right, header, "right neighbour")
            if not account < right.account:
                raise InvalidProofError("right neighbour does not follow the account")
            if left is None and right.index != 0:
                raise InvalidProofError("right neighbour is not the first leaf")

        if left is not None and right is not None and right.index != left.index + 1:
            raise InvalidProofError("neighbours are not adjacent")

        return 0


def verify_balance(proof: BalanceProof, snapshot_ref: bytes, account: bytes) -> int:
    """Module-level alias of ProofVerifier.verify_balance"""
    return ProofVerifier.verify_balance(proof, snapshot_ref, account)
