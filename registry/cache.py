"""Registry snapshot cache with single-flight refresh state"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

@dataclass
class Member:
    """One official token in a snapshot"""
    token_id: str
    minted_at: int
    source: str
    index: int = 0

@dataclass
class RegistrySnapshot:
    """Merged view of the registry, broadcast log and whitelist.

    Attributes:
        count: Canonical minted count
        members: tokenId -> Member for every official token
        source: Where the count came from, 'registry' or 'broadcast'
        fetched_at: Millisecond timestamp of the fetch
        sources: Number of tokens each source contributed
        errors: Sources that failed during the fetch
        stale: True when served from an older fetch after a failed refresh
    """
    count: int
    members: Dict[str, Member]
    source: str
    fetched_at: int
    sources: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    stale: bool = False

class RegistryCache:
    """TTL cache for registry snapshots.

    Owned by one RegistryService; tests build their own instances.
    """

    def __init__(self, ttl_ms: int = 30000):
        self.ttl_ms = ttl_ms
        self.snapshot: Optional[RegistrySnapshot] = None
        self.inflight: Optional[asyncio.Future] = None
        self._valid = False

    def get(self, now: int) -> Optional[RegistrySnapshot]:
        """Return the cached snapshot if it is still fresh."""
        if self._valid and self.snapshot is not None and now - self.snapshot.fetched_at < self.ttl_ms:
            return self.snapshot
        return None

    def store(self, snapshot: RegistrySnapshot) -> None:
        self.snapshot = snapshot
        self._valid = True

    def invalidate(self) -> None:
        """Force the next read to refetch.

        The previous snapshot stays available as the stale fallback.
        """
        self._valid = False
