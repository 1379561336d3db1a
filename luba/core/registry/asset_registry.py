"""
Asset Registry - ownership of the items being auctioned.

This module provides:
- Non-fungible assets keyed by (collection, token_id)
- Per-token approvals and per-collection operators
- Authorization-checked transfers that fail loudly

The auction engine only consumes this interface: it checks that a seller
may list an item and takes custody of it for the lifetime of a generation.
"""

import copy
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from luba.core.errors import AssetNotFoundError, NotAuthorizedError
from luba.crypto import short_hex
from luba.utils.logger import get_logger
from luba.utils.validation import validate_address, validate_token_id

logger = get_logger("registry")

AssetKey = Tuple[bytes, int]

# Called as hook(operator, from_, collection, token_id) on the receiving account
AssetReceiveHook = Callable[[bytes, bytes, bytes, int], None]


@dataclass
class AssetRecord:
    """
    A registered asset.

    Attributes:
        collection: 20-byte collection address
        token_id: Item identity within the collection
        owner: Current owner address
        approved: Address allowed to move this single item, if any
    """
    collection: bytes
    token_id: int
    owner: bytes
    approved: Optional[bytes] = None


class AssetRegistry:
    """
    Registry of non-fungible assets.
    """

    def __init__(self):
        self.assets: Dict[AssetKey, AssetRecord] = {}

        # (owner, collection) -> operators allowed to move all of owner's items
        self.operators: Dict[Tuple[bytes, bytes], Set[bytes]] = {}

        self._hooks: Dict[bytes, AssetReceiveHook] = {}

    # =========================================================================
    # Queries
    # =========================================================================

    def _get(self, collection: bytes, token_id: int) -> AssetRecord:
        record = self.assets.get((collection, token_id))
        if record is None:
            raise AssetNotFoundError(collection, token_id)
        return record

    def exists(self, collection: bytes, token_id: int) -> bool:
        return (collection, token_id) in self.assets

    def owner_of(self, collection: bytes, token_id: int) -> bytes:
        """Current owner; raises AssetNotFoundError for unknown items."""
        return self._get(collection, token_id).owner

    def get_approved(self, collection: bytes, token_id: int) -> Optional[bytes]:
        return self._get(collection, token_id).approved

    def is_approved_for_all(self, owner: bytes, collection: bytes, operator: bytes) -> bool:
        return operator in self.operators.get((owner, collection), set())

    def is_authorized(self, operator: bytes, collection: bytes, token_id: int) -> bool:
        """Whether `operator` owns the item or is approved to move it."""
        record = self._get(collection, token_id)
        return (
            operator == record.owner
            or operator == record.approved
            or self.is_approved_for_all(record.owner, collection, operator)
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def mint(self, collection: bytes, token_id: int, owner: bytes) -> AssetRecord:
        """Register a new item owned by `owner`."""
        for valid, err in (
            validate_address(collection, "collection"),
            validate_token_id(token_id),
            validate_address(owner, "owner"),
        ):
            if not valid:
                raise ValueError(err)
        if self.exists(collection, token_id):
            raise ValueError(f"Asset {token_id} of {short_hex(collection)} already exists")

        record = AssetRecord(collection=collection, token_id=token_id, owner=owner)
        self.assets[(collection, token_id)] = record

        logger.info(f"Minted asset {token_id} of {short_hex(collection)} to {short_hex(owner)}")
        return record

    def approve(self, caller: bytes, collection: bytes, token_id: int, operator: Optional[bytes]) -> None:
        """Approve `operator` (or clear with None) for a single item."""
        record = self._get(collection, token_id)
        if caller != record.owner and not self.is_approved_for_all(record.owner, collection, caller):
            raise NotAuthorizedError(caller, collection, token_id, "only owner or operator may approve")
        record.approved = operator

    def set_approval_for_all(self, owner: bytes, collection: bytes, operator: bytes, approved: bool) -> None:
        """Grant or revoke `operator` over every item `owner` holds in `collection`."""
        ops = self.operators.setdefault((owner, collection), set())
        if approved:
            ops.add(operator)
        else:
            ops.discard(operator)

    def transfer_from(
        self,
        operator: bytes,
        collection: bytes,
        token_id: int,
        from_: bytes,
        to: bytes,
    ) -> None:
        """
        Move an item from its owner to `to`.

        Raises:
            AssetNotFoundError: item does not exist
            NotAuthorizedError: `from_` is not the owner or `operator` lacks approval
        """
        record = self._get(collection, token_id)
        if record.owner != from_:
            raise NotAuthorizedError(operator, collection, token_id, "from is not the owner")
        if not self.is_authorized(operator, collection, token_id):
            raise NotAuthorizedError(operator, collection, token_id)
        valid, err = validate_address(to, "to")
        if not valid:
            raise ValueError(err)

        record.owner = to
        record.approved = None
        logger.debug(f"Asset {token_id} of {short_hex(collection)}: {short_hex(from_)} -> {short_hex(to)}")

        hook = self._hooks.get(to)
        if hook is not None:
            hook(operator, from_, collection, token_id)

    def register_receive_hook(self, account: bytes, hook: AssetReceiveHook) -> None:
        """Run `hook` whenever `account` receives an item."""
        self._hooks[account] = hook

    def remove_receive_hook(self, account: bytes) -> None:
        self._hooks.pop(account, None)

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def checkpoint(self) -> dict:
        return {
            "assets": copy.deepcopy(self.assets),
            "operators": copy.deepcopy(self.operators),
        }

    def restore(self, cp: dict) -> None:
        self.assets = copy.deepcopy(cp["assets"])
        self.operators = copy.deepcopy(cp["operators"])
