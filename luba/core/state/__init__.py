"""Host ledger state, balance snapshots and proofs"""
from luba.core.state.merkle import MerkleTree
from luba.core.state.proof import (
    BlockHeader,
    BalanceProof,
    LeafWitness,
    ProofVerifier,
    balance_leaf,
    verify_balance,
)
from luba.core.state.ledger import Ledger, LedgerCheckpoint

__all__ = [
    "MerkleTree",
    "BlockHeader",
    "BalanceProof",
    "LeafWitness",
    "ProofVerifier",
    "balance_leaf",
    "verify_balance",
    "Ledger",
    "LedgerCheckpoint",
]
