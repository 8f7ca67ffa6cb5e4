"""Tests for the listings module."""

import pytest

from documents import LISTINGS_DOCUMENT, DocumentStoreError, MemoryDocumentStore
from listings import (
    CANCELLED,
    DEPOSITED,
    PENDING,
    SOLD,
    FieldLockedError,
    InvalidTransitionError,
    Listing,
    ListingExistsError,
    ListingNotFoundError,
    ListingStore
)
from conftest import SELLER, SELLER_ADDRESS, ESCROW_ADDRESS, START_MS, token

def make_listing(n: int = 1, price: int = 50000) -> Listing:
    return Listing(
        token_id=token(n),
        seller_identity=SELLER,
        seller_payout_address=SELLER_ADDRESS,
        price=price,
        escrow_payout_address=ESCROW_ADDRESS
    )

@pytest.mark.asyncio
async def test_create_and_get(listing_store, documents):
    """Test creating a listing stores camelCase fields."""
    created = await listing_store.create(make_listing())
    assert created.status == PENDING
    assert created.created_at == START_MS

    stored = documents.documents[LISTINGS_DOCUMENT]['listings'][token(1)]
    assert stored['tokenId'] == token(1)
    assert stored['sellerPayoutAddress'] == SELLER_ADDRESS
    assert stored['depositReference'] == 'unknown'

    listing = await listing_store.get(token(1))
    assert listing == created

@pytest.mark.asyncio
async def test_get_missing_document(listing_store):
    """A missing listings document reads as empty."""
    assert await listing_store.get(token(1)) is None
    assert await listing_store.list_active() == []

@pytest.mark.asyncio
async def test_create_rejects_active_duplicate(listing_store):
    await listing_store.create(make_listing())
    with pytest.raises(ListingExistsError) as exc_info:
        await listing_store.create(make_listing(price=1))
    assert exc_info.value.current_status == PENDING
    assert (await listing_store.get(token(1))).price == 50000

@pytest.mark.asyncio
async def test_create_overwrites_terminal(listing_store, clock):
    """Re-listing after cancellation replaces the old record."""
    await listing_store.create(make_listing())
    await listing_store.update_status(token(1), CANCELLED)
    clock.advance(1000)

    relisted = await listing_store.create(make_listing(price=70000))
    assert relisted.status == PENDING
    assert (await listing_store.get(token(1))).price == 70000

@pytest.mark.asyncio
async def test_lifecycle_is_monotonic(listing_store):
    """Transitions only move forward and terminal states are final."""
    await listing_store.create(make_listing())

    with pytest.raises(InvalidTransitionError):
        await listing_store.update_status(token(1), SOLD)

    await listing_store.update_status(token(1), DEPOSITED, {'deposited_at': 1})
    with pytest.raises(InvalidTransitionError):
        await listing_store.update_status(token(1), PENDING)

    await listing_store.update_status(token(1), SOLD, {'sold_at': 2})
    for status in (PENDING, DEPOSITED, CANCELLED, SOLD):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await listing_store.update_status(token(1), status)
        assert exc_info.value.current_status == SOLD

@pytest.mark.asyncio
async def test_field_locks(listing_store):
    """Immutable fields never change and set-once fields are assigned once."""
    await listing_store.create(make_listing())

    with pytest.raises(FieldLockedError):
        await listing_store.update_status(token(1), PENDING, {'price': 1})

    await listing_store.update_status(token(1), PENDING, {'buyer_identity': 'buyer-a'})
    # Setting the same value again is allowed
    await listing_store.update_status(token(1), PENDING, {'buyer_identity': 'buyer-a'})
    with pytest.raises(FieldLockedError):
        await listing_store.update_status(token(1), PENDING, {'buyer_identity': 'buyer-b'})

    with pytest.raises(FieldLockedError):
        await listing_store.update_status(token(1), PENDING, {'no_such_field': 1})

@pytest.mark.asyncio
async def test_update_missing_listing(listing_store):
    await listing_store.create(make_listing())
    with pytest.raises(ListingNotFoundError):
        await listing_store.update_status(token(2), DEPOSITED)

@pytest.mark.asyncio
async def test_read_failure_aborts_write(clock):
    """An unreadable document is never overwritten."""
    documents = MemoryDocumentStore()
    store = ListingStore(documents, clock=clock)
    await store.create(make_listing())
    writes = documents.writes

    documents.fail_reads = True
    with pytest.raises(DocumentStoreError):
        await store.create(make_listing(2))
    assert documents.writes == writes

    documents.fail_reads = False
    assert await store.get(token(1)) is not None

@pytest.mark.asyncio
async def test_list_active_excludes_terminal(listing_store, clock):
    for n in range(1, 4):
        await listing_store.create(make_listing(n))
        clock.advance(1)
    await listing_store.update_status(token(2), CANCELLED)

    active = await listing_store.list_active()
    assert [l.token_id for l in active] == [token(1), token(3)]
    assert len(await listing_store.list_all()) == 3

@pytest.mark.asyncio
async def test_purge_terminal(listing_store, clock):
    await listing_store.create(make_listing(1))
    await listing_store.create(make_listing(2))
    await listing_store.update_status(token(1), CANCELLED)

    clock.advance(10_000)
    assert await listing_store.purge_terminal(60_000) == 0

    clock.advance(60_000)
    assert await listing_store.purge_terminal(60_000) == 1
    assert await listing_store.get(token(1)) is None
    assert await listing_store.get(token(2)) is not None

def test_from_dict_legacy_keys():
    """Listings written with the older key names still load."""
    listing = Listing.from_dict({
        'punkId': token(7),
        'sellerPubkey': SELLER,
        'sellerArkAddress': SELLER_ADDRESS,
        'price': '25000',
        'punkVtxoOutpoint': 'abc:1',
        'escrowAddress': ESCROW_ADDRESS,
        'status': 'sold',
        'createdAt': 5,
        'buyerPubkey': 'buyer',
        'buyerAddress': 'tark1b',
        'paymentTransferTxid': 'pay',
        'punkTransferTxid': 'punk',
        'compressedMetadata': 'meta'
    })
    assert listing.token_id == token(7)
    assert listing.price == 25000
    assert listing.deposit_reference == 'abc:1'
    assert listing.buyer_payout_address == 'tark1b'
    assert listing.metadata == 'meta'
    assert listing.settlement_references == {'sellerPayout': 'pay', 'collateralTransfer': 'punk'}

def test_from_dict_rejects_malformed():
    with pytest.raises(ValueError):
        Listing.from_dict({'tokenId': token(1)})
    with pytest.raises(ValueError):
        Listing.from_dict({**make_listing().to_dict(), 'status': 'withdrawn'})
