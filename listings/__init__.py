"""Listings module for escrow marketplace listings.

This module provides:
- The Listing record and its status lifecycle
- ListingStore, the map tokenId -> Listing persisted as one JSON document

Lifecycle:
    pending -> deposited -> sold
    pending | deposited -> cancelled

sold and cancelled are terminal. A token has at most one listing; listing it
again overwrites a terminal record but never an active one.
"""

import logging
from dataclasses import dataclass, field, asdict, fields
from typing import Any, Callable, Dict, List, Optional

from documents import DocumentStore, LISTINGS_DOCUMENT, now_ms

logger = logging.getLogger(__name__)

PENDING = 'pending'
DEPOSITED = 'deposited'
SOLD = 'sold'
CANCELLED = 'cancelled'

ACTIVE_STATUSES = (PENDING, DEPOSITED)
TERMINAL_STATUSES = (SOLD, CANCELLED)

# Allowed status transitions
TRANSITIONS = {
    PENDING: {DEPOSITED, CANCELLED},
    DEPOSITED: {SOLD, CANCELLED},
    SOLD: set(),
    CANCELLED: set()
}

# Fixed at creation
IMMUTABLE_FIELDS = {
    'token_id',
    'seller_identity',
    'seller_payout_address',
    'price',
    'escrow_payout_address',
    'created_at'
}

# Assigned at most once, never rewound
SET_ONCE_FIELDS = {
    'deposited_at',
    'sold_at',
    'buyer_identity',
    'buyer_payout_address',
    'refund_reference'
}

# Keys used by listing documents written before the current layout
LEGACY_KEYS = {
    'punkId': 'tokenId',
    'sellerPubkey': 'sellerIdentity',
    'sellerArkAddress': 'sellerPayoutAddress',
    'punkVtxoOutpoint': 'depositReference',
    'escrowAddress': 'escrowPayoutAddress',
    'buyerPubkey': 'buyerIdentity',
    'buyerAddress': 'buyerPayoutAddress',
    'compressedMetadata': 'metadata'
}

class ListingError(Exception):
    """Base exception for listing operations."""
    pass

class ListingNotFoundError(ListingError):
    """Raised when a listing is not found."""
    def __init__(self, token_id: str):
        self.token_id = token_id
        super().__init__(f"Listing not found: {token_id}")

class ListingStateError(ListingError):
    """Raised when an operation is not valid in the listing's current status."""
    def __init__(self, message: str, current_status: Optional[str]):
        self.current_status = current_status
        super().__init__(message)

class ListingExistsError(ListingStateError):
    """Raised when creating a listing while an active one exists."""
    pass

class InvalidTransitionError(ListingStateError):
    """Raised for a status change outside the lifecycle."""
    pass

class FieldLockedError(ListingError):
    """Raised when a patch would change an immutable or already-set field."""
    pass

def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)

def _snake(name: str) -> str:
    return ''.join(f'_{c.lower()}' if c.isupper() else c for c in name)

@dataclass
class Listing:
    """A token offered for sale under escrow.

    Timestamps are Unix milliseconds. `price` is in sats; 0 means delisted
    and is never a sale price. `payout_attempted_at` is written before the
    seller payout is sent and is only cleared when the wallet rejects it.
    """
    token_id: str
    seller_identity: str
    seller_payout_address: str
    price: int
    escrow_payout_address: str
    deposit_reference: str = 'unknown'
    status: str = PENDING
    created_at: int = 0
    deposited_at: Optional[int] = None
    sold_at: Optional[int] = None
    buyer_identity: Optional[str] = None
    buyer_payout_address: Optional[str] = None
    payout_attempted_at: Optional[int] = None
    settlement_references: Dict[str, str] = field(default_factory=dict)
    metadata: Optional[str] = None
    refund_reference: Optional[str] = None
    publication_errors: List[str] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, as stored and as returned by the API."""
        return {_camel(k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Listing':
        """Load a listing, accepting legacy document keys.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        data = {LEGACY_KEYS.get(k, k): v for k, v in data.items()}

        references = dict(data.get('settlementReferences') or {})
        if data.get('paymentTransferTxid'):
            references.setdefault('sellerPayout', data['paymentTransferTxid'])
        if data.get('punkTransferTxid'):
            references.setdefault('collateralTransfer', data['punkTransferTxid'])
        data['settlementReferences'] = references

        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _snake(key)
            if name in known:
                kwargs[name] = value

        try:
            kwargs['price'] = int(kwargs['price'])
            listing = cls(**kwargs)
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed listing record: {e}") from e
        if listing.status not in TRANSITIONS:
            raise ValueError(f"Unknown listing status: {listing.status}")
        return listing

def _empty_document() -> Dict[str, Any]:
    return {'listings': {}, 'lastUpdated': now_ms()}

class ListingStore:
    """CRUD over the listings document.

    Every mutation is a read-modify-write of the whole document through
    DocumentStore.update(), serialized per process by the document lock.
    A missing document reads as an empty store; an unreadable one raises
    DocumentStoreError and nothing is written.
    """

    def __init__(self, documents: DocumentStore, clock: Callable[[], int] = now_ms,
                 document_name: str = LISTINGS_DOCUMENT):
        self.documents = documents
        self.clock = clock
        self.document_name = document_name

    async def _load(self) -> Dict[str, Listing]:
        document = await self.documents.read(self.document_name)
        if document is None:
            return {}
        listings = {}
        for token_id, data in (document.get('listings') or {}).items():
            try:
                listings[token_id] = Listing.from_dict(data)
            except ValueError as e:
                logger.error(f"Skipping malformed listing {token_id}: {e}")
        return listings

    async def get(self, token_id: str) -> Optional[Listing]:
        """Get a listing by token id, or None."""
        return (await self._load()).get(token_id)

    async def list_active(self) -> List[Listing]:
        """Get pending and deposited listings, oldest first."""
        listings = [l for l in (await self._load()).values() if l.is_active]
        return sorted(listings, key=lambda l: l.created_at)

    async def list_all(self) -> List[Listing]:
        """Get every listing including terminal ones, oldest first."""
        return sorted((await self._load()).values(), key=lambda l: l.created_at)

    async def create(self, listing: Listing) -> Listing:
        """Store a new listing.

        Overwrites a terminal record for the same token.

        Raises:
            ListingExistsError: If an active listing exists for the token
            DocumentStoreError: If the document cannot be read or written
        """
        def mutate(document: Dict[str, Any]) -> Listing:
            existing = document['listings'].get(listing.token_id)
            if existing is not None and existing.get('status') in ACTIVE_STATUSES:
                raise ListingExistsError(
                    f"Token {listing.token_id} is already listed", existing.get('status')
                )
            if not listing.created_at:
                listing.created_at = self.clock()
            document['listings'][listing.token_id] = listing.to_dict()
            document['lastUpdated'] = self.clock()
            return listing

        created = await self.documents.update(self.document_name, mutate, _empty_document)
        logger.info(f"Created escrow listing for token {listing.token_id} at {listing.price} sats")
        return created

    async def update_status(self, token_id: str, new_status: str,
                            patch: Optional[Dict[str, Any]] = None) -> Listing:
        """Move a listing to `new_status` and apply `patch`.

        Passing the current status applies the patch alone, which is only
        allowed while the listing is active.

        Args:
            token_id: Token id
            new_status: Target status
            patch: Listing fields (snake_case) to set

        Returns:
            The updated listing

        Raises:
            ListingNotFoundError: If the listing does not exist
            InvalidTransitionError: If the transition leaves the lifecycle
            FieldLockedError: If the patch changes an immutable or already-set field
            DocumentStoreError: If the document cannot be read or written
        """
        patch = dict(patch or {})

        def mutate(document: Dict[str, Any]) -> Listing:
            data = document['listings'].get(token_id)
            if data is None:
                raise ListingNotFoundError(token_id)
            listing = Listing.from_dict(data)

            if new_status == listing.status:
                if listing.status in TERMINAL_STATUSES:
                    raise InvalidTransitionError(
                        f"Listing {token_id} is already {listing.status}", listing.status
                    )
            elif new_status not in TRANSITIONS[listing.status]:
                raise InvalidTransitionError(
                    f"Cannot move listing {token_id} from {listing.status} to {new_status}",
                    listing.status
                )

            for name, value in patch.items():
                if not hasattr(listing, name):
                    raise FieldLockedError(f"Unknown listing field: {name}")
                current = getattr(listing, name)
                if name in IMMUTABLE_FIELDS and current != value:
                    raise FieldLockedError(f"Field {name} is immutable")
                if name in SET_ONCE_FIELDS and current is not None and current != value:
                    raise FieldLockedError(f"Field {name} is already set")
                setattr(listing, name, value)

            listing.status = new_status
            document['listings'][token_id] = listing.to_dict()
            document['lastUpdated'] = self.clock()
            return listing

        updated = await self.documents.update(self.document_name, mutate, _empty_document)
        logger.info(f"Updated escrow listing {token_id}: {new_status}")
        return updated

    async def purge_terminal(self, max_age_ms: int) -> int:
        """Remove sold and cancelled listings created more than `max_age_ms` ago.

        Returns:
            Number of listings removed
        """
        cutoff = self.clock() - max_age_ms
        stale = [l.token_id for l in (await self._load()).values()
                 if l.status in TERMINAL_STATUSES and l.created_at < cutoff]
        if not stale:
            return 0

        def mutate(document: Dict[str, Any]) -> int:
            removed = 0
            for token_id in stale:
                data = document['listings'].get(token_id)
                # Re-check under the lock; the token may have been re-listed
                if data and data.get('status') in TERMINAL_STATUSES:
                    del document['listings'][token_id]
                    removed += 1
            document['lastUpdated'] = self.clock()
            return removed

        removed = await self.documents.update(self.document_name, mutate, _empty_document)
        logger.info(f"Cleaned up {removed} old listings")
        return removed

__all__ = [
    'Listing',
    'ListingStore',
    'ListingError',
    'ListingNotFoundError',
    'ListingStateError',
    'ListingExistsError',
    'InvalidTransitionError',
    'FieldLockedError',
    'PENDING',
    'DEPOSITED',
    'SOLD',
    'CANCELLED',
    'ACTIVE_STATUSES',
    'TERMINAL_STATUSES'
]
