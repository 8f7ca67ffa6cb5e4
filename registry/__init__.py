"""Registry reconciliation service.

Answers "how many punks exist" and "is this punk official" by merging three
sources:

1. The registry document (punk-registry.json). Authoritative when present:
   its entry count is the supply and its ids are the base membership.
2. Mint events on the relays. An event counts only if it is tagged for this
   network, carries a punk id and outpoint, and either has a valid service
   co-signature over sha256(punkId) or its id is on the legacy allow-list.
   Duplicates collapse to the earliest event, and only the first max_supply
   unique ids count.
3. The client-submitted whitelist (auto-whitelist.json), merged into
   membership after format validation only.

The merged snapshot is cached for a short TTL. Concurrent callers on a cache
miss share one in-flight fetch. If a refresh fails the previous snapshot is
served and flagged stale.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from broadcast import BroadcastError, RelayPool, verify_event
from broadcast.events import get_tag, mint_filter
from documents import DocumentStore, DocumentStoreError, REGISTRY_DOCUMENT, WHITELIST_DOCUMENT, now_ms
from errors import DependencyError, ValidationError, is_token_id, validate_token_id
from signing import verify_token_signature
from .cache import Member, RegistryCache, RegistrySnapshot

logger = logging.getLogger(__name__)

# Extra events requested beyond max_supply to absorb duplicates and other networks
QUERY_HEADROOM = 500

def _empty_registry() -> Dict[str, Any]:
    return {'entries': [], 'lastUpdated': now_ms()}

def _empty_whitelist() -> Dict[str, Any]:
    return {'entries': [], 'lastUpdated': now_ms()}

def earliest_mints(events: Iterable[Dict[str, Any]], limit: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
    """Collapse mint events to the earliest event per punk id.

    Ties on timestamp go to the lower event id so every node agrees.

    Args:
        events: Mint events in any order, possibly with duplicates
        limit: Keep only the first `limit` unique ids by timestamp

    Returns:
        punkId -> earliest event
    """
    ordered = sorted(events, key=lambda e: (e.get('created_at', 0), e.get('id', '')))
    earliest: Dict[str, Dict[str, Any]] = {}
    for event in ordered:
        token_id = (get_tag(event, 'punk_id') or '').lower()
        if token_id in earliest:
            continue
        if limit is not None and len(earliest) >= limit:
            break
        earliest[token_id] = event
    return earliest

class RegistryService:
    """Merges registry, broadcast and whitelist into a cached snapshot."""

    def __init__(
        self,
        documents: DocumentStore,
        relays: RelayPool,
        service_public_key: Optional[str],
        network: str = 'mainnet',
        max_supply: int = 1000,
        legacy_whitelist: Iterable[str] = (),
        cache: Optional[RegistryCache] = None,
        clock: Callable[[], int] = now_ms
    ):
        self.documents = documents
        self.relays = relays
        self.service_public_key = service_public_key
        self.network = network
        self.max_supply = max_supply
        self.legacy_whitelist = {t.lower() for t in legacy_whitelist}
        self.cache = cache if cache is not None else RegistryCache()
        self.clock = clock

    def is_valid_mint(self, event: Dict[str, Any]) -> bool:
        """Check a relay event is an official mint for this network."""
        if get_tag(event, 'network') != self.network:
            return False
        token_id = get_tag(event, 'punk_id')
        if not is_token_id(token_id) or not get_tag(event, 'vtxo'):
            return False
        if not verify_event(event):
            return False
        if verify_token_signature(self.service_public_key, token_id, get_tag(event, 'server_sig') or ''):
            return True
        return token_id.lower() in self.legacy_whitelist

    async def _read_registry(self) -> Optional[List[Dict[str, Any]]]:
        """Registry entries deduplicated earliest-first, or None if absent."""
        document = await self.documents.read(REGISTRY_DOCUMENT)
        if document is None:
            return None
        entries: Dict[str, Dict[str, Any]] = {}
        for entry in document.get('entries') or []:
            token_id = entry.get('punkId') or entry.get('tokenId')
            if not is_token_id(token_id):
                continue
            token_id = token_id.lower()
            existing = entries.get(token_id)
            if existing is None or entry.get('mintedAt', 0) < existing.get('mintedAt', 0):
                entries[token_id] = entry
        return list(entries.values())

    async def _read_whitelist(self) -> List[Dict[str, Any]]:
        document = await self.documents.read(WHITELIST_DOCUMENT)
        if document is None:
            return []
        return [e for e in document.get('entries') or [] if is_token_id(e.get('punkId'))]

    async def _fetch_broadcast(self) -> Dict[str, Dict[str, Any]]:
        events = await self.relays.query(mint_filter(self.max_supply + QUERY_HEADROOM))
        valid = [e for e in events if self.is_valid_mint(e)]
        logger.info(f"{len(valid)} of {len(events)} relay mint events are official for {self.network}")
        return earliest_mints(valid, limit=self.max_supply)

    async def _build(self) -> RegistrySnapshot:
        """Fetch every source and merge them.

        Raises:
            DocumentStoreError: If the registry is unreadable and the relays failed
            BroadcastError: If the registry is absent and the relays failed
        """
        errors: List[str] = []
        registry: Optional[List[Dict[str, Any]]] = None
        registry_error: Optional[Exception] = None
        broadcast: Optional[Dict[str, Dict[str, Any]]] = None

        registry_result, broadcast_result = await asyncio.gather(
            self._read_registry(), self._fetch_broadcast(), return_exceptions=True
        )
        if isinstance(registry_result, DocumentStoreError):
            registry_error = registry_result
            errors.append(f"registry: {registry_result}")
            logger.warning(f"Registry document unreadable, falling back to relays: {registry_result}")
        elif isinstance(registry_result, BaseException):
            raise registry_result
        else:
            registry = registry_result

        if isinstance(broadcast_result, BroadcastError):
            errors.append(f"broadcast: {broadcast_result}")
            logger.warning(f"Relay query failed: {broadcast_result}")
            if registry is None:
                raise registry_error or broadcast_result
        elif isinstance(broadcast_result, BaseException):
            raise broadcast_result
        else:
            broadcast = broadcast_result

        try:
            whitelist = await self._read_whitelist()
        except DocumentStoreError as e:
            errors.append(f"whitelist: {e}")
            whitelist = []

        members: Dict[str, Member] = {}
        sources = {'registry': 0, 'broadcast': 0, 'whitelist': 0}

        for entry in registry or []:
            token_id = (entry.get('punkId') or entry.get('tokenId')).lower()
            members[token_id] = Member(token_id, int(entry.get('mintedAt') or 0), 'registry')
            sources['registry'] += 1

        for token_id, event in (broadcast or {}).items():
            if token_id not in members:
                members[token_id] = Member(token_id, int(event.get('created_at', 0)) * 1000, 'broadcast')
            sources['broadcast'] += 1

        if registry is not None and broadcast is not None:
            unregistered = [t for t in broadcast if members[t].source != 'registry']
            if unregistered:
                logger.warning(f"{len(unregistered)} official relay mints missing from the registry document")

        for entry in whitelist:
            token_id = entry['punkId'].lower()
            if token_id not in members:
                members[token_id] = Member(token_id, int(entry.get('submittedAt') or 0), 'whitelist')
            sources['whitelist'] += 1

        ordered = sorted(members.values(), key=lambda m: (m.minted_at, m.token_id))
        for index, member in enumerate(ordered):
            member.index = index

        if registry is not None:
            count, source = len(registry), 'registry'
        else:
            count, source = len(broadcast or {}), 'broadcast'

        logger.info(f"Registry snapshot: {count} minted ({source}), {len(members)} official ids")
        return RegistrySnapshot(
            count=count,
            members=members,
            source=source,
            fetched_at=self.clock(),
            sources=sources,
            errors=errors
        )

    async def _refresh(self) -> RegistrySnapshot:
        try:
            snapshot = await self._build()
        except (DocumentStoreError, BroadcastError) as e:
            previous = self.cache.snapshot
            if previous is not None:
                logger.warning(f"Registry refresh failed, serving stale snapshot: {e}")
                return replace(previous, stale=True)
            logger.error(f"Registry refresh failed with no snapshot to fall back on: {e}")
            raise DependencyError(f"Registry sources unavailable: {e}", 'registry', 503)
        finally:
            self.cache.inflight = None
        self.cache.store(snapshot)
        return snapshot

    async def snapshot(self) -> RegistrySnapshot:
        """Get the merged snapshot, refreshing at most once per TTL.

        Raises:
            DependencyError: If no source answered and nothing is cached
        """
        cached = self.cache.get(self.clock())
        if cached is not None:
            return cached
        if self.cache.inflight is None:
            self.cache.inflight = asyncio.ensure_future(self._refresh())
        else:
            logger.debug("Registry fetch already in progress, waiting")
        return await asyncio.shield(self.cache.inflight)

    def invalidate(self) -> None:
        """Force the next read to refetch."""
        self.cache.invalidate()

    async def supply(self) -> Dict[str, Any]:
        """Canonical minted count."""
        snapshot = await self.snapshot()
        return {
            'totalMinted': snapshot.count,
            'maxPunks': self.max_supply,
            'remaining': max(self.max_supply - snapshot.count, 0),
            'source': snapshot.source,
            'cacheAge': max(self.clock() - snapshot.fetched_at, 0) // 1000,
            'stale': snapshot.stale
        }

    async def list_members(self) -> Dict[str, Any]:
        """All official token ids in mint order."""
        snapshot = await self.snapshot()
        ordered = sorted(snapshot.members.values(), key=lambda m: m.index)
        return {
            'punkIds': [m.token_id for m in ordered],
            'count': snapshot.count,
            'members': len(ordered),
            'maxPunks': self.max_supply,
            'sources': snapshot.sources,
            'stale': snapshot.stale
        }

    async def is_official(self, token_id: str) -> bool:
        """Check membership."""
        if not is_token_id(token_id):
            return False
        snapshot = await self.snapshot()
        return token_id.lower() in snapshot.members

    async def official_info(self, token_id: str) -> Dict[str, Any]:
        """Membership details for one token."""
        token_id = validate_token_id(token_id)
        snapshot = await self.snapshot()
        member = snapshot.members.get(token_id)
        if member is None:
            return {'tokenId': token_id, 'official': False}
        return {
            'tokenId': token_id,
            'official': True,
            'index': member.index,
            'mintedAt': member.minted_at,
            'source': member.source,
            'stale': snapshot.stale
        }

    async def _update(self, name: str, mutate: Callable[[Dict[str, Any]], Any],
                      default: Callable[[], Dict[str, Any]]) -> Any:
        try:
            return await self.documents.update(name, mutate, default)
        except DocumentStoreError as e:
            logger.error(f"Failed to update {name}: {e}")
            raise DependencyError(f"Document store unavailable: {e}", 'document_store', 503)

    async def track_batch(self, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Append registry entries, skipping ids already registered.

        Args:
            entries: Dicts with tokenId and optional minter and depositReference

        Returns:
            Dict with added, alreadyRegistered, invalid and totalRegistered

        Raises:
            ValidationError: If no entry has a valid token id
            DependencyError: If the registry document cannot be updated
        """
        valid: List[Tuple[str, Dict[str, Any]]] = []
        invalid = []
        for entry in entries:
            token_id = entry.get('tokenId')
            if is_token_id(token_id):
                valid.append((token_id.lower(), entry))
            else:
                invalid.append(token_id)
        if not valid:
            raise ValidationError("No valid tokenId provided (64 hex characters)")

        def mutate(document: Dict[str, Any]) -> Dict[str, Any]:
            registered = {e.get('punkId') for e in document['entries']}
            added, existing = [], []
            for token_id, entry in valid:
                if token_id in registered:
                    existing.append(token_id)
                    continue
                document['entries'].append({
                    'punkId': token_id,
                    'mintedAt': self.clock(),
                    'minterPubkey': entry.get('minter'),
                    'vtxo': entry.get('depositReference')
                })
                registered.add(token_id)
                added.append(token_id)
            document['lastUpdated'] = self.clock()
            return {'added': added, 'alreadyRegistered': existing, 'totalRegistered': len(document['entries'])}

        result = await self._update(REGISTRY_DOCUMENT, mutate, _empty_registry)
        if result['added']:
            logger.info(f"Registered {len(result['added'])} punks, total {result['totalRegistered']}")
            self.invalidate()
        result['invalid'] = invalid
        result['success'] = True
        return result

    async def track(self, token_id: str, minter: Optional[str] = None,
                    deposit_reference: Optional[str] = None) -> Dict[str, Any]:
        """Append one registry entry."""
        token_id = validate_token_id(token_id)
        result = await self.track_batch([
            {'tokenId': token_id, 'minter': minter, 'depositReference': deposit_reference}
        ])
        return {
            'success': True,
            'alreadyRegistered': not result['added'],
            'totalRegistered': result['totalRegistered']
        }

    async def submit_whitelist(self, token_ids: List[str], submitter: Optional[str] = None) -> Dict[str, Any]:
        """Add client-recovered token ids to the whitelist.

        Only format is checked. The document is written only when something new is added.

        Raises:
            ValidationError: If token_ids is empty
            DependencyError: If the whitelist cannot be read or written
        """
        if not token_ids:
            raise ValidationError("punkIds must be a non-empty list")
        candidates = list(dict.fromkeys(t.lower() for t in token_ids if is_token_id(t)))
        invalid = len(token_ids) - sum(1 for t in token_ids if is_token_id(t))

        try:
            existing_doc = await self.documents.read(WHITELIST_DOCUMENT)
        except DocumentStoreError as e:
            raise DependencyError(f"Document store unavailable: {e}", 'document_store', 503)
        present = {e.get('punkId') for e in (existing_doc or {}).get('entries', [])}
        new_ids = [t for t in candidates if t not in present]

        if not new_ids:
            return {'success': True, 'added': 0, 'alreadyPresent': len(candidates),
                    'invalid': invalid, 'total': len(present)}

        def mutate(document: Dict[str, Any]) -> Dict[str, int]:
            current = {e.get('punkId') for e in document['entries']}
            added = 0
            for token_id in new_ids:
                if token_id in current:
                    continue
                document['entries'].append({
                    'punkId': token_id,
                    'submittedAt': self.clock(),
                    'submitterIdentity': submitter
                })
                current.add(token_id)
                added += 1
            document['lastUpdated'] = self.clock()
            return {'added': added, 'total': len(document['entries'])}

        result = await self._update(WHITELIST_DOCUMENT, mutate, _empty_whitelist)
        logger.info(f"Whitelist: added {result['added']} punks, total {result['total']}")
        self.invalidate()
        return {'success': True, 'added': result['added'],
                'alreadyPresent': len(candidates) - result['added'],
                'invalid': invalid, 'total': result['total']}

    async def whitelist(self) -> Dict[str, Any]:
        """List whitelist entries."""
        try:
            entries = await self._read_whitelist()
        except DocumentStoreError as e:
            raise DependencyError(f"Document store unavailable: {e}", 'document_store', 503)
        return {'success': True, 'entries': entries, 'count': len(entries)}

__all__ = ['RegistryService', 'RegistryCache', 'RegistrySnapshot', 'Member', 'earliest_mints']
