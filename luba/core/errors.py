"""
Named error conditions for LUBA.

Every engine failure aborts the whole operation; the error carries the
values needed to understand it. Collateral shortfalls are not errors:
an under-collateralized reveal is disqualified, not rejected.
"""

from typing import Optional


class LUBAError(Exception):
    """Base class for all LUBA failures."""


# =============================================================================
# Auction engine
# =============================================================================


class AuctionError(LUBAError):
    """Base class for auction engine failures."""


class DurationTooShortError(AuctionError):
    """A bidding or reveal period is below the configured minimum."""

    def __init__(self, period: str, duration: int, minimum: int):
        self.period = period
        self.duration = duration
        self.minimum = minimum
        super().__init__(f"{period} period too short: {duration}s < {minimum}s")


class NotInRevealPeriodError(AuctionError):
    """A reveal arrived outside (end_of_bidding, end_of_reveal]."""

    def __init__(self, now: int, end_of_bidding_period: int, end_of_reveal_period: int):
        self.now = now
        self.end_of_bidding_period = end_of_bidding_period
        self.end_of_reveal_period = end_of_reveal_period
        super().__init__(
            f"Not in reveal period: now={now}, "
            f"reveal window=({end_of_bidding_period}, {end_of_reveal_period}]"
        )


class RevealPeriodOngoingError(AuctionError):
    """end_auction was called before the reveal period closed."""

    def __init__(self, now: int, end_of_reveal_period: int):
        self.now = now
        self.end_of_reveal_period = end_of_reveal_period
        super().__init__(f"Reveal period ongoing until {end_of_reveal_period} (now={now})")


class AuctionEndedError(AuctionError):
    """The current generation has already been ended."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Auction generation {index} already ended")


class BidAlreadyRevealedError(AuctionError):
    """The escrow identity was revealed before (in any generation)."""

    def __init__(self, escrow: bytes):
        self.escrow = escrow
        super().__init__(f"Bid already revealed for escrow 0x{escrow.hex()}")


class InvalidProofError(AuctionError):
    """A collateralization proof is missing, malformed or inconsistent."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid collateralization proof: {reason}")


class IncorrectVaultAddressError(AuctionError):
    """The claimed winning tuple does not derive the recorded winning escrow."""

    def __init__(self, expected: Optional[bytes], actual: Optional[bytes]):
        self.expected = expected
        self.actual = actual
        shown = f"0x{expected.hex()}" if expected else "none"
        got = f"0x{actual.hex()}" if actual else "a malformed claim"
        super().__init__(f"Incorrect escrow address: expected {shown}, got {got}")


class CannotWithdrawError(AuctionError):
    """The escrow is the current generation's winning escrow."""

    def __init__(self, escrow: bytes):
        self.escrow = escrow
        super().__init__(f"Cannot withdraw winning escrow 0x{escrow.hex()}")


class UnrevealedBidError(AuctionError):
    """Withdrawal of an escrow that was never revealed in a live generation."""

    def __init__(self, escrow: bytes):
        self.escrow = escrow
        super().__init__(f"Bid for escrow 0x{escrow.hex()} was never revealed")


class InvalidAuctionIndexError(AuctionError):
    """The generation index does not exist for this auction key."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Invalid auction index {index}")


class InvalidBidError(AuctionError):
    """Bid value, salt or bidder is out of range."""


class ReentrantCallError(AuctionError):
    """An engine operation was entered while another one was in flight."""

    def __init__(self, operation: str, active: str):
        self.operation = operation
        self.active = active
        super().__init__(f"Re-entrant call to {operation} while {active} is in progress")


# =============================================================================
# External collaborators
# =============================================================================


class LedgerError(LUBAError):
    """Base class for ledger failures."""


class InsufficientBalanceError(LedgerError):
    """A transfer exceeds the sender's balance."""

    def __init__(self, account: bytes, balance: int, amount: int):
        self.account = account
        self.balance = balance
        self.amount = amount
        super().__init__(f"Insufficient balance in 0x{account.hex()}: {balance} < {amount}")


class UnknownBlockError(LedgerError):
    """No finalized block with the given hash."""

    def __init__(self, block_hash: bytes):
        self.block_hash = block_hash
        super().__init__(f"Unknown block 0x{block_hash.hex()}")


class AssetTransferError(LUBAError):
    """Base class for asset registry failures."""


class AssetNotFoundError(AssetTransferError):
    """The asset was never minted."""

    def __init__(self, collection: bytes, token_id: int):
        self.collection = collection
        self.token_id = token_id
        super().__init__(f"Asset {token_id} of collection 0x{collection.hex()} does not exist")


class NotAuthorizedError(AssetTransferError):
    """The operator may not move the asset, or `from` is not its owner."""

    def __init__(self, operator: bytes, collection: bytes, token_id: int, reason: str = "not owner or approved"):
        self.operator = operator
        self.collection = collection
        self.token_id = token_id
        super().__init__(
            f"0x{operator.hex()} cannot transfer asset {token_id} of 0x{collection.hex()}: {reason}"
        )


__all__ = [
    "LUBAError",
    "AuctionError",
    "DurationTooShortError",
    "NotInRevealPeriodError",
    "RevealPeriodOngoingError",
    "AuctionEndedError",
    "BidAlreadyRevealedError",
    "InvalidProofError",
    "IncorrectVaultAddressError",
    "CannotWithdrawError",
    "UnrevealedBidError",
    "InvalidAuctionIndexError",
    "InvalidBidError",
    "ReentrantCallError",
    "LedgerError",
    "InsufficientBalanceError",
    "UnknownBlockError",
    "AssetTransferError",
    "AssetNotFoundError",
    "NotAuthorizedError",
]
