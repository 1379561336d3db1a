"""
Simple Merkle Tree for balance snapshots.

Conceptual Background:
---------------------
Every finalized block commits to the full balance table with a single hash
(the state root). A Merkle tree lets a bidder later prove "account X held
balance B as of block H" with a logarithmic inclusion path, without the
verifier holding any ledger state.

Leaves are `sha256(address || balance)` in ascending address order, so a
missing account can also be proven absent by showing its two neighbours
at adjacent positions.

Properties:
----------
- Insert: O(1) (root recomputed lazily)
- Root: O(n) first call, O(1) cached
- Prove: O(n)
- Verify: O(log n)
"""

from typing import Iterable, List, Optional, Tuple

from luba.crypto import sha256

# (sibling_hash, sibling_is_right)
MerkleProof = List[Tuple[bytes, bool]]


class MerkleTree:
    """
    Simple append-only binary Merkle tree.

    Stores leaves and lazily computes internal nodes.
    Root is cached and invalidated on insert.

    Attributes:
        leaves: List of leaf values (32-byte hashes)
    """

    # Empty leaf placeholder (for incomplete trees)
    EMPTY_LEAF = bytes(32)

    def __init__(self, leaves: Optional[Iterable[bytes]] = None):
        self.leaves: List[bytes] = []
        self._root_cache: Optional[bytes] = None
        for leaf in leaves or ():
            self.insert(leaf)

    @staticmethod
    def hash_pair(left: bytes, right: bytes) -> bytes:
        """Hash two nodes together."""
        return sha256(left + right)

    def insert(self, leaf: bytes) -> int:
        """
        Insert a new leaf into the tree.

        Args:
            leaf: 32-byte leaf value

        Returns:
            Index of the inserted leaf
        """
        if len(leaf) != 32:
            raise ValueError("Leaf must be 32 bytes")

        index = len(self.leaves)
        self.leaves.append(leaf)
        self._root_cache = None
        return index

    def root(self) -> bytes:
        """
        Get the Merkle root.

        Returns:
            32-byte root hash
        """
        if not self.leaves:
            return self.EMPTY_LEAF

        if self._root_cache is None:
            self._root_cache = self._layers()[-1][0]
        return self._root_cache

    def _layers(self) -> List[List[bytes]]:
        """All tree layers, leaves (padded to a power of 2) first."""
        n = len(self.leaves)
        next_pow2 = 1 << (n - 1).bit_length() if n > 1 else 1
        layer = list(self.leaves) + [self.EMPTY_LEAF] * (next_pow2 - n)

        layers = [layer]
        while len(layer) > 1:
            layer = [
                self.hash_pair(layer[i], layer[i + 1])
                for i in range(0, len(layer), 2)
            ]
            layers.append(layer)
        return layers

    def prove(self, leaf_index: int) -> MerkleProof:
        """
        Generate Merkle proof for a leaf.

        Args:
            leaf_index: Index of the leaf to prove

        Returns:
            List of (sibling_hash, is_right) tuples.
            is_right=True means the sibling is on the right.
        """
        if not 0 <= leaf_index < len(self.leaves):
            raise IndexError(f"Leaf index {leaf_index} out of range")

        proof = []
        idx = leaf_index
        for layer in self._layers()[:-1]:
            if idx % 2 == 0:
                proof.append((layer[idx + 1], True))
            else:
                proof.append((layer[idx - 1], False))
            idx //= 2
        return proof

    @classmethod
    def verify(
        cls,
        leaf: bytes,
        proof: MerkleProof,
        root: bytes,
    ) -> bool:
        """
        Verify a Merkle proof.

        Args:
            leaf: The leaf value being proven
            proof: List of (sibling, is_right) tuples
            root: Expected root hash

        Returns:
            True if proof is valid
        """
        current = leaf

        for sibling, is_right in proof:
            if is_right:
                current = cls.hash_pair(current, sibling)
            else:
                current = cls.hash_pair(sibling, current)

        return current == root

    @staticmethod
    def index_from_proof(proof: MerkleProof) -> int:
        """
        Leaf position encoded by a proof's left/right path.

        A sibling on the right means the current node is a left child (bit 0).
        """
        index = 0
        for depth, (_, is_right) in enumerate(proof):
            if not is_right:
                index |= 1 << depth
        return index

    @staticmethod
    def depth_for(leaf_count: int) -> int:
        """Proof length for a tree holding `leaf_count` leaves."""
        return (leaf_count - 1).bit_length() if leaf_count > 1 else 0

    def __len__(self) -> int:
        return len(self.leaves)

    def __contains__(self, leaf: bytes) -> bool:
        return leaf in self.leaves
