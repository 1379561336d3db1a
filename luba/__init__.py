"""
Lowest Unique Bid Auction (LUBA)

A sealed-bid auction engine integrating:
- Commit/reveal bidding through deterministically derived escrow accounts
- Collateralization deadlines backed by historical balance proofs
- Lowest-unique-bid winner selection with second-lowest-unique pricing
- One-shot escrow settlement
"""

__version__ = "0.1.0"
