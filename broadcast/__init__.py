"""Broadcast log adapter over Nostr relays.

Events follow NIP-01: the id is the sha256 of the canonical JSON array
[0, pubkey, created_at, kind, tags, content] and the signature is BIP-340
Schnorr over that id.

Relays give no delivery, ordering or exactly-once guarantee:

- publish() fans out to every relay and succeeds on the first acknowledgement
  within the timeout.
- query() fans out with a per-relay timeout, merges and de-duplicates by
  event id, and succeeds if at least one relay answered.
"""
import asyncio
import hashlib
import json
import logging
import secrets
import time
from typing import Any, Callable, Dict, List, Optional

import websockets

from signing import SigningKey, verify_signature

logger = logging.getLogger(__name__)

Event = Dict[str, Any]

class BroadcastError(Exception):
    """Raised when no relay accepted a publish or answered a query"""
    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None):
        self.failures = failures or {}
        super().__init__(message)

def compute_event_id(pubkey: str, created_at: int, kind: int, tags: List[List[str]], content: str) -> str:
    """Compute the NIP-01 event id."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(',', ':'),
        ensure_ascii=False
    )
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()

def build_event(
    key: SigningKey,
    kind: int,
    tags: List[List[str]],
    content: str = '',
    created_at: Optional[int] = None
) -> Event:
    """Build and sign an event.

    Args:
        key: Signing key of the publisher
        kind: Event kind
        tags: Event tags
        content: Human readable content
        created_at: Unix seconds, defaults to now

    Returns:
        Signed event dict ready for publish()
    """
    created_at = int(time.time()) if created_at is None else created_at
    event_id = compute_event_id(key.public_key_hex, created_at, kind, tags, content)
    return {
        'id': event_id,
        'pubkey': key.public_key_hex,
        'created_at': created_at,
        'kind': kind,
        'tags': tags,
        'content': content,
        'sig': key.sign(bytes.fromhex(event_id))
    }

def verify_event(event: Event) -> bool:
    """Check an event's id and signature."""
    try:
        expected = compute_event_id(
            event['pubkey'], event['created_at'], event['kind'], event['tags'], event['content']
        )
    except (KeyError, TypeError):
        return False
    if expected != event.get('id'):
        return False
    return verify_signature(event['pubkey'], event.get('sig', ''), bytes.fromhex(expected))

class RelayPool:
    """Publish to and query a set of relays"""

    def __init__(
        self,
        relays: List[str],
        timeout: float = 10,
        connect: Optional[Callable[..., Any]] = None
    ):
        """Initialize relay pool.

        Args:
            relays: Relay websocket URLs
            timeout: Bound on a whole publish and on each relay's query
            connect: websockets.connect compatible factory
        """
        if not relays:
            raise ValueError("At least one relay is required")
        self.relays = list(relays)
        self.timeout = timeout
        self._connect = connect or websockets.connect

    async def _publish_one(self, relay: str, event: Event) -> str:
        async with self._connect(relay, open_timeout=self.timeout) as ws:
            await ws.send(json.dumps(['EVENT', event]))
            while True:
                message = json.loads(await ws.recv())
                if message and message[0] == 'OK' and message[1] == event['id']:
                    if message[2]:
                        return relay
                    reason = message[3] if len(message) > 3 else ''
                    raise BroadcastError(f"{relay} rejected event: {reason}")

    async def publish(self, event: Event) -> str:
        """Publish an event, returning the first relay that acknowledged it.

        Raises:
            BroadcastError: If no relay acknowledged within the timeout
        """
        tasks = {
            asyncio.create_task(self._publish_one(relay, event)): relay
            for relay in self.relays
        }
        failures: Dict[str, str] = {}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        pending = set(tasks)

        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task.exception() is None:
                        relay = task.result()
                        logger.info(f"Event {event['id'][:16]} (kind {event['kind']}) accepted by {relay}")
                        return relay
                    failures[tasks[task]] = str(task.exception())
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in pending:
            failures.setdefault(tasks[task], 'timed out')
        logger.warning(f"No relay accepted event {event['id'][:16]}: {failures}")
        raise BroadcastError(f"No relay accepted event {event['id']}", failures)

    async def _query_one(self, relay: str, filter_: Dict[str, Any]) -> List[Event]:
        subscription = secrets.token_hex(8)
        events = []
        async with self._connect(relay, open_timeout=self.timeout) as ws:
            await ws.send(json.dumps(['REQ', subscription, filter_]))
            while True:
                message = json.loads(await ws.recv())
                if not message or len(message) < 2 or message[1] != subscription:
                    continue
                if message[0] == 'EVENT' and len(message) > 2:
                    events.append(message[2])
                elif message[0] in ('EOSE', 'CLOSED'):
                    break
            await ws.send(json.dumps(['CLOSE', subscription]))
        return events

    async def query(self, filter_: Dict[str, Any]) -> List[Event]:
        """Query all relays and merge the results.

        Returns:
            Events de-duplicated by id, in no particular order

        Raises:
            BroadcastError: If every relay failed or timed out
        """
        results = await asyncio.gather(
            *(asyncio.wait_for(self._query_one(relay, filter_), timeout=self.timeout) for relay in self.relays),
            return_exceptions=True
        )

        merged: Dict[str, Event] = {}
        failures: Dict[str, str] = {}
        for relay, result in zip(self.relays, results):
            if isinstance(result, BaseException):
                failures[relay] = str(result) or type(result).__name__
                logger.warning(f"Relay {relay} query failed: {failures[relay]}")
                continue
            for event in result:
                if isinstance(event, dict) and 'id' in event:
                    merged.setdefault(event['id'], event)

        if len(failures) == len(self.relays):
            raise BroadcastError("All relays failed to answer the query", failures)

        logger.info(f"Relay query returned {len(merged)} events from {len(self.relays) - len(failures)} relays")
        return list(merged.values())

__all__ = ['BroadcastError', 'Event', 'RelayPool', 'build_event', 'compute_event_id', 'verify_event']
