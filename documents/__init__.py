"""Durable document store adapters.

Documents are whole JSON objects addressed by name. The backing stores offer
only read-whole, write-whole and list, with no compare-and-swap, so every
mutation goes through `DocumentStore.update()`: a read-modify-write cycle
serialized by a per-document asyncio.Lock.

The lock serializes writers inside one process only. Two service instances
writing the same document can still lose updates (last writer wins).

Backends:
    memory    MemoryDocumentStore, for tests and local runs
    blob      BlobDocumentStore, HTTP blob API (documents.blob)
    postgres  PostgresDocumentStore, a `documents` table (documents.postgres)
"""
import asyncio
import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

LISTINGS_DOCUMENT = 'escrow-listings.json'
REGISTRY_DOCUMENT = 'punk-registry.json'
WHITELIST_DOCUMENT = 'auto-whitelist.json'
OWNERSHIP_DOCUMENT = 'punk-ownership.json'

def now_ms() -> int:
    """Current Unix time in milliseconds, the unit every document timestamp uses."""
    return int(time.time() * 1000)

class DocumentStoreError(Exception):
    """Raised when a document cannot be read or written.

    A missing document is not an error; reads return None for it.
    """
    def __init__(self, message: str, name: Optional[str] = None):
        self.name = name
        super().__init__(f"{message} ({name})" if name else message)

class KeyedLocks:
    """A lazily-populated map of asyncio locks keyed by string"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __call__(self, key: str) -> asyncio.Lock:
        return self.get(key)

class DocumentStore:
    """Base class for document store backends.

    Subclasses implement `_read`, `_write` and `_list`. Callers use `read`,
    `write`, `list` and, for any mutation, `update`.
    """

    def __init__(self):
        self.locks = KeyedLocks()

    async def _read(self, name: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _write(self, name: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def _list(self) -> List[str]:
        raise NotImplementedError

    async def read(self, name: str) -> Optional[Dict[str, Any]]:
        """Read a whole document.

        Returns:
            The document, or None if it does not exist

        Raises:
            DocumentStoreError: If the document exists but cannot be read
        """
        return await self._read(name)

    async def write(self, name: str, document: Dict[str, Any]) -> None:
        """Overwrite a whole document.

        Raises:
            DocumentStoreError: If the write fails
        """
        await self._write(name, document)

    async def list(self) -> List[str]:
        """List document names."""
        return await self._list()

    async def update(
        self,
        name: str,
        mutate: Callable[[Dict[str, Any]], T],
        default: Callable[[], Dict[str, Any]]
    ) -> T:
        """Read-modify-write one document under its lock.

        `mutate` receives the current document (or `default()` if the
        document is missing) and changes it in place. If it raises, nothing is
        written. A read failure aborts the cycle so an unreadable document is
        never overwritten with an empty one.

        Args:
            name: Document name
            mutate: Function applying the change, its return value is passed through
            default: Factory for the empty document

        Returns:
            Whatever `mutate` returned

        Raises:
            DocumentStoreError: If the read or write fails
        """
        async with self.locks(name):
            document = await self._read(name)
            if document is None:
                logger.info(f"Document {name} not found, starting from empty")
                document = default()
            result = mutate(document)
            await self._write(name, document)
            return result

class MemoryDocumentStore(DocumentStore):
    """In-process document store.

    Documents are deep-copied on the way in and out so callers never share
    state with the store. `fail_reads` and `fail_writes` simulate an
    unreachable backend.
    """

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__()
        self.documents: Dict[str, Dict[str, Any]] = copy.deepcopy(documents or {})
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    async def _read(self, name: str) -> Optional[Dict[str, Any]]:
        if self.fail_reads:
            raise DocumentStoreError("Document store unreachable", name)
        document = self.documents.get(name)
        return copy.deepcopy(document) if document is not None else None

    async def _write(self, name: str, document: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise DocumentStoreError("Document store unreachable", name)
        self.documents[name] = copy.deepcopy(document)
        self.writes += 1

    async def _list(self) -> List[str]:
        if self.fail_reads:
            raise DocumentStoreError("Document store unreachable")
        return sorted(self.documents)

def create_document_store(settings: Dict[str, Any]) -> DocumentStore:
    """Build the configured document store backend.

    Args:
        settings: Validated settings

    Returns:
        Document store instance
    """
    backend = settings['document_backend']
    if backend == 'memory':
        logger.warning("Using in-memory document store; state is lost on restart")
        return MemoryDocumentStore()
    if backend == 'postgres':
        from .postgres import PostgresDocumentStore
        return PostgresDocumentStore(db_url=settings['db_url'])
    from .blob import BlobDocumentStore
    return BlobDocumentStore(settings['blob_api_url'], settings['blob_token'])

__all__ = [
    'DocumentStoreError',
    'DocumentStore',
    'MemoryDocumentStore',
    'KeyedLocks',
    'create_document_store',
    'now_ms',
    'LISTINGS_DOCUMENT',
    'REGISTRY_DOCUMENT',
    'WHITELIST_DOCUMENT',
    'OWNERSHIP_DOCUMENT'
]
