"""
Unit tests for balance proofs and the stateless verifier.

Tests cover:
1. Inclusion proofs for funded accounts
2. Exclusion proofs for absent accounts (zero balance)
3. Rejection of malformed or inconsistent bundles
"""

from dataclasses import replace

import pytest

from luba.core.errors import InvalidProofError
from luba.core.state import BalanceProof, BlockHeader, LeafWitness, Ledger, ProofVerifier


def addr(n: int) -> bytes:
    return bytes([n]) * 20


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def snapshot():
    """Ledger with three funded accounts sealed into a block."""
    ledger = Ledger(genesis_timestamp=1000)
    header = ledger.create_genesis([(addr(0x10), 100), (addr(0x30), 300), (addr(0x50), 500)])
    return ledger, header.block_hash


# =============================================================================
# Valid proofs
# =============================================================================


class TestValidProofs:
    """Proofs produced by the ledger verify."""

    def test_inclusion(self, snapshot):
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(0x30))
        assert not proof.is_exclusion
        assert ProofVerifier.verify_balance(proof, ref, addr(0x30)) == 300

    @pytest.mark.parametrize("n", [0x01, 0x20, 0x40, 0x60])
    def test_exclusion_everywhere(self, snapshot, n):
        """Before the first, between, and after the last leaf."""
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(n))
        assert proof.is_exclusion
        assert ProofVerifier.verify_balance(proof, ref, addr(n)) == 0

    def test_empty_snapshot(self):
        ledger = Ledger(genesis_timestamp=0)
        ref = ledger.latest_block_hash
        proof = ledger.prove_balance(ref, addr(1))
        assert ProofVerifier.verify_balance(proof, ref, addr(1)) == 0

    def test_historical_balance(self, snapshot):
        """Later transfers do not change what an old snapshot proves."""
        ledger, ref = snapshot
        ledger.transfer(addr(0x10), addr(0x20), 60)
        ledger.finalize_block()
        proof = ledger.prove_balance(ref, addr(0x20))
        assert ProofVerifier.verify_balance(proof, ref, addr(0x20)) == 0


# =============================================================================
# Invalid proofs
# =============================================================================


class TestInvalidProofs:
    """Malformed or inconsistent proofs raise, never return zero."""

    def test_wrong_snapshot(self, snapshot):
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(0x30))
        ledger.finalize_block()
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(proof, ledger.latest_block_hash, addr(0x30))

    def test_wrong_account(self, snapshot):
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(0x30))
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(proof, ref, addr(0x50))

    def test_inflated_balance(self, snapshot):
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(0x30))
        proof.inclusion = replace(proof.inclusion, balance=10**9)
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(proof, ref, addr(0x30))

    def test_exclusion_for_funded_account(self, snapshot):
        """Neighbours that are not adjacent cannot hide a funded leaf."""
        ledger, ref = snapshot
        left = ledger.prove_balance(ref, addr(0x10)).inclusion
        right = ledger.prove_balance(ref, addr(0x50)).inclusion
        forged = BalanceProof(
            header=ledger.get_header(ref), account=addr(0x30),
            left_neighbor=left, right_neighbor=right,
        )
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(forged, ref, addr(0x30))

    def test_lone_left_neighbour_must_be_last(self, snapshot):
        ledger, ref = snapshot
        left = ledger.prove_balance(ref, addr(0x10)).inclusion
        forged = BalanceProof(header=ledger.get_header(ref), account=addr(0x60), left_neighbor=left)
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(forged, ref, addr(0x60))

    def test_no_neighbours(self, snapshot):
        ledger, ref = snapshot
        forged = BalanceProof(header=ledger.get_header(ref), account=addr(0x20))
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(forged, ref, addr(0x20))

    def test_not_a_proof(self, snapshot):
        _, ref = snapshot
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(b"garbage", ref, addr(0x30))

    def test_malformed_header(self, snapshot):
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(0x30))
        proof.header = BlockHeader(number=-1, timestamp=0, parent_hash=bytes(32),
                                   state_root=bytes(32), account_count=3)
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(proof, ref, addr(0x30))

    def test_malformed_path_step(self, snapshot):
        ledger, ref = snapshot
        proof = ledger.prove_balance(ref, addr(0x30))
        proof.inclusion = LeafWitness(addr(0x30), 300, path=[(b"short", True), (bytes(32), False)])
        with pytest.raises(InvalidProofError):
            ProofVerifier.verify_balance(proof, ref, addr(0x30))
