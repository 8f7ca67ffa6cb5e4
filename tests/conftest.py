"""Shared fixtures: in-memory adapters, keys and a controllable clock."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from broadcast import BroadcastError
from documents import MemoryDocumentStore
from escrow import EscrowEngine, OwnershipLedger
from listings import ListingStore
from mint import MintGate, MintRateLimiter
from registry import RegistryCache, RegistryService
from signing import SigningKey
from wallet import Coin, WalletConnectionError

ESCROW_ADDRESS = "tark1escrowaddress"
SELLER = "a1" * 32
BUYER = "b2" * 32
SELLER_ADDRESS = "tark1seller"
BUYER_ADDRESS = "tark1buyer"
START_MS = 1_700_000_000_000

def token(n: int) -> str:
    """Deterministic 64-hex token id."""
    return f"{n:064x}"

class Clock:
    """Millisecond clock tests can move forward."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

class FakeWallet:
    """Escrow wallet holding a list of coins and recording sends."""

    def __init__(self, coins: Optional[List[Coin]] = None):
        self.coins: List[Coin] = list(coins or [])
        self.sent: List[Dict[str, Any]] = []
        self.fail_list = False
        self.fail_send = False
        # Number of sends to allow before failing, None for no limit
        self.sends_before_failure: Optional[int] = None
        # Raised by send() instead of sending, when set
        self.send_error: Optional[Exception] = None

    async def get_address(self) -> str:
        return ESCROW_ADDRESS

    async def get_public_key(self) -> str:
        return "e5" * 32

    async def list_coins(self) -> List[Coin]:
        if self.fail_list:
            raise WalletConnectionError("Failed to connect to wallet", method='listvtxos')
        return list(self.coins)

    async def get_balance(self) -> int:
        return sum(c.amount for c in await self.list_coins())

    async def send(self, address: str, amount: int) -> str:
        if self.send_error is not None:
            raise self.send_error
        if self.fail_send or (self.sends_before_failure is not None
                              and len(self.sent) >= self.sends_before_failure):
            raise WalletConnectionError("Failed to connect to wallet", method='sendoffchain')
        txid = f"{len(self.sent) + 1:064x}"
        self.sent.append({'address': address, 'amount': amount, 'txid': txid})
        return txid

    async def exit(self, address: str, amount: int) -> str:
        return await self.send(address, amount)

class FakeRelayPool:
    """Relay pool that records published events and serves query results."""

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None):
        self.events: List[Dict[str, Any]] = list(events or [])
        self.published: List[Dict[str, Any]] = []
        self.fail_publish = False
        self.fail_query = False
        self.queries = 0
        # Set to an asyncio.Event to hold queries until it is set
        self.gate: Optional[asyncio.Event] = None

    async def publish(self, event: Dict[str, Any]) -> str:
        if self.fail_publish:
            raise BroadcastError(f"No relay accepted event {event['id']}", {'wss://fake': 'timed out'})
        self.published.append(event)
        return 'wss://fake'

    async def query(self, filter_: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.queries += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_query:
            raise BroadcastError("All relays failed to answer the query", {'wss://fake': 'timed out'})
        return list(self.events)

def collateral(n: int = 1, amount: int = 10000) -> Coin:
    """A collateral-range coin."""
    return Coin(id=f"{n:064x}:0", amount=amount)

@pytest.fixture
def clock():
    return Clock()

@pytest.fixture
def documents():
    return MemoryDocumentStore()

@pytest.fixture
def wallet():
    return FakeWallet()

@pytest.fixture
def relays():
    return FakeRelayPool()

@pytest.fixture
def escrow_key():
    return SigningKey.generate()

@pytest.fixture
def service_key():
    return SigningKey.generate()

@pytest.fixture
def listing_store(documents, clock):
    return ListingStore(documents, clock=clock)

@pytest.fixture
def engine(listing_store, wallet, relays, documents, escrow_key, clock):
    return EscrowEngine(
        listing_store,
        wallet,
        relays,
        OwnershipLedger(documents, clock=clock),
        escrow_address=ESCROW_ADDRESS,
        network='testnet',
        escrow_key=escrow_key,
        fee_basis_points=100,
        clock=clock
    )

@pytest.fixture
def registry(documents, relays, service_key, clock):
    return RegistryService(
        documents,
        relays,
        service_public_key=service_key.public_key_hex,
        network='testnet',
        max_supply=1000,
        cache=RegistryCache(ttl_ms=30000),
        clock=clock
    )

@pytest.fixture
def mint_gate(service_key):
    return MintGate(service_key, MintRateLimiter(cap=5, window_seconds=86400), max_supply=1000)

@pytest_asyncio.fixture
async def listed(engine):
    """A pending listing at 50000 sats."""
    await engine.list(token(1), SELLER, SELLER_ADDRESS, 50000, deposit_reference=collateral(1).id)
    return token(1)
