"""
LUBA Asset Registry Module.

Ownership and transfer of the items sold at auction.
"""

from luba.core.registry.asset_registry import (
    AssetRegistry,
    AssetRecord,
    AssetKey,
)

__all__ = [
    "AssetRegistry",
    "AssetRecord",
    "AssetKey",
]
