"""Ownership ledger consulted before a token can be listed.

Maps tokenId to the identity the escrow last recorded as its owner. A token
the ledger has never seen is claimed by the first identity that lists it;
after a sale the buyer becomes the owner.
"""
import logging
from typing import Any, Callable, Dict, Optional

from documents import DocumentStore, OWNERSHIP_DOCUMENT, now_ms

logger = logging.getLogger(__name__)

def _empty_document() -> Dict[str, Any]:
    return {'owners': {}, 'lastUpdated': now_ms()}

class OwnershipLedger:
    """Document-backed tokenId -> owner identity map"""

    def __init__(self, documents: DocumentStore, clock: Callable[[], int] = now_ms):
        self.documents = documents
        self.clock = clock

    async def owner_of(self, token_id: str) -> Optional[str]:
        """Get the recorded owner identity, or None if unknown."""
        document = await self.documents.read(OWNERSHIP_DOCUMENT)
        if document is None:
            return None
        record = (document.get('owners') or {}).get(token_id)
        return record.get('owner') if record else None

    async def claim(self, token_id: str, identity: str) -> bool:
        """Check `identity` owns the token, claiming it if the ledger has no owner.

        Returns:
            True if `identity` is (now) the recorded owner
        """
        def mutate(document: Dict[str, Any]) -> bool:
            record = document['owners'].get(token_id)
            if record is not None:
                return record.get('owner') == identity
            document['owners'][token_id] = {
                'owner': identity,
                'updatedAt': self.clock(),
                'source': 'first-listing'
            }
            document['lastUpdated'] = self.clock()
            logger.info(f"Recorded {identity[:16]} as first owner of token {token_id}")
            return True

        return await self.documents.update(OWNERSHIP_DOCUMENT, mutate, _empty_document)

    async def transfer(self, token_id: str, new_owner: str, reference: Optional[str] = None) -> None:
        """Record a change of owner after a settled sale."""
        def mutate(document: Dict[str, Any]) -> None:
            document['owners'][token_id] = {
                'owner': new_owner,
                'updatedAt': self.clock(),
                'source': 'escrow-sale',
                'reference': reference
            }
            document['lastUpdated'] = self.clock()

        await self.documents.update(OWNERSHIP_DOCUMENT, mutate, _empty_document)
        logger.info(f"Token {token_id} ownership transferred to {new_owner[:16]}")
