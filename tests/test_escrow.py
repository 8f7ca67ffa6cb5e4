"""Tests for the escrow settlement engine."""

import asyncio
import time

import pytest

from broadcast import verify_event
from broadcast.events import KIND_LISTING, KIND_SOLD, KIND_TRANSFER, get_tag
from documents import LISTINGS_DOCUMENT, OWNERSHIP_DOCUMENT
from errors import (
    AuthorizationError,
    DependencyError,
    NotFoundError,
    ReconciliationRequiredError,
    StateConflictError,
    ValidationError
)
from listings import CANCELLED, DEPOSITED, PENDING, SOLD
from wallet import Coin, EscrowWallet, WalletRequestError
from conftest import (
    BUYER,
    BUYER_ADDRESS,
    ESCROW_ADDRESS,
    SELLER,
    SELLER_ADDRESS,
    FakeWallet,
    collateral,
    token
)

PAYMENT = Coin(id=f"{99:064x}:0", amount=50000)

@pytest.mark.asyncio
async def test_list_returns_instructions(engine):
    """Test creating a listing returns the price breakdown."""
    result = await engine.list(token(1), SELLER, SELLER_ADDRESS, 50000)
    assert result['success'] is True
    assert result['status'] == PENDING
    assert result['escrowAddress'] == ESCROW_ADDRESS
    assert result['fee'] == 500
    assert result['sellerAmount'] == 49500
    assert result['buyerTotal'] == 50000
    assert result['instructions']

    listing = await engine.listings.get(token(1))
    assert listing.deposit_reference == 'unknown'

@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {'token_id': 'not-a-token'},
    {'seller': ''},
    {'seller_payout_address': None},
    {'price': 0},
    {'price': -5},
    {'price': 1.5},
])
async def test_list_validation(engine, kwargs):
    args = {
        'token_id': token(1),
        'seller': SELLER,
        'seller_payout_address': SELLER_ADDRESS,
        'price': 50000,
        **kwargs
    }
    with pytest.raises(ValidationError) as exc_info:
        await engine.list(**args)
    assert exc_info.value.status_code == 400
    assert await engine.listings.get(token(1)) is None

@pytest.mark.asyncio
async def test_exactly_one_active_listing(engine, listed):
    """A second listing for an active token is rejected and the first is untouched."""
    with pytest.raises(StateConflictError) as exc_info:
        await engine.list(listed, SELLER, SELLER_ADDRESS, 1)
    assert exc_info.value.status_code == 400
    assert exc_info.value.current_state == PENDING
    assert (await engine.listings.get(listed)).price == 50000

@pytest.mark.asyncio
async def test_concurrent_listings_one_wins(engine):
    results = await asyncio.gather(
        engine.list(token(1), SELLER, SELLER_ADDRESS, 100),
        engine.list(token(1), SELLER, SELLER_ADDRESS, 200),
        return_exceptions=True
    )
    successes = [r for r in results if isinstance(r, dict)]
    conflicts = [r for r in results if isinstance(r, StateConflictError)]
    assert len(successes) == 1
    assert len(conflicts) == 1

@pytest.mark.asyncio
async def test_list_requires_ownership(engine, listed, wallet):
    """Only the recorded owner can list a token."""
    await engine.cancel(listed, SELLER)
    with pytest.raises(AuthorizationError):
        await engine.list(listed, BUYER, BUYER_ADDRESS, 100)

@pytest.mark.asyncio
async def test_record_deposit_is_idempotent(engine, listed, documents, clock):
    first = await engine.record_deposit(listed)
    clock.advance(5000)
    writes = documents.writes
    second = await engine.record_deposit(listed)

    assert first.status == second.status == DEPOSITED
    assert second.deposited_at == first.deposited_at
    assert documents.writes == writes

@pytest.mark.asyncio
async def test_record_deposit_updates_reference(engine, listed):
    await engine.record_deposit(listed)
    listing = await engine.record_deposit(listed, 'actual:3')
    assert listing.status == DEPOSITED
    assert listing.deposit_reference == 'actual:3'

@pytest.mark.asyncio
async def test_record_deposit_errors(engine, listed):
    with pytest.raises(NotFoundError):
        await engine.record_deposit(token(2))

    await engine.cancel(listed, SELLER)
    with pytest.raises(StateConflictError) as exc_info:
        await engine.record_deposit(listed)
    assert exc_info.value.status_code == 410
    assert exc_info.value.current_state == CANCELLED

@pytest.mark.asyncio
async def test_register_buyer(engine, listed):
    result = await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    assert result['buyerTotal'] == 50000
    assert result['sellerAmount'] == 49500

    # Same buyer again is a no-op
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)

    with pytest.raises(StateConflictError) as exc_info:
        await engine.register_buyer(listed, 'c3' * 32, 'tark1other')
    assert exc_info.value.status_code == 409

@pytest.mark.asyncio
async def test_end_to_end_swap(engine, listed, wallet, relays, escrow_key, documents):
    """List, deposit, buy and execute at 50000 sats with a 100 bps fee."""
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)

    result = await engine.execute(listed, BUYER)

    assert result['success'] is True
    assert result['status'] == SOLD
    assert result['fee'] == 500
    assert result['sellerAmount'] == 49500
    assert result['partialFailure'] is False
    assert result['warnings'] == []

    assert wallet.sent[0] == {'address': SELLER_ADDRESS, 'amount': 49500, 'txid': wallet.sent[0]['txid']}
    assert wallet.sent[1]['address'] == BUYER_ADDRESS
    assert wallet.sent[1]['amount'] == 10000

    references = result['settlementReferences']
    assert references['sellerPayout'] == wallet.sent[0]['txid']
    assert references['collateralTransfer'] == wallet.sent[1]['txid']

    kinds = [e['kind'] for e in relays.published]
    assert kinds == [KIND_TRANSFER, KIND_SOLD]
    for event in relays.published:
        assert verify_event(event)
        assert event['pubkey'] == escrow_key.public_key_hex
        assert get_tag(event, 'punk_id') == listed
        assert get_tag(event, 'network') == 'testnet'
    assert get_tag(relays.published[1], 'price') == '50000'

    listing = await engine.listings.get(listed)
    assert listing.status == SOLD
    assert listing.sold_at is not None
    assert listing.settlement_references == references

    owners = documents.documents[OWNERSHIP_DOCUMENT]['owners']
    assert owners[listed]['owner'] == BUYER

    sales = await engine.sales()
    assert sales['stats']['totalSales'] == 1
    assert sales['stats']['totalVolume'] == 50000
    assert sales['sales'][0]['tokenId'] == listed

@pytest.mark.asyncio
async def test_execute_twice_conflicts(engine, listed, wallet):
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    await engine.execute(listed, BUYER)

    with pytest.raises(StateConflictError) as exc_info:
        await engine.execute(listed, BUYER)
    assert exc_info.value.status_code == 409
    assert exc_info.value.current_state == SOLD
    assert len(wallet.sent) == 2

@pytest.mark.asyncio
async def test_concurrent_execute_pays_once(engine, listed, wallet):
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)

    results = await asyncio.gather(
        engine.execute(listed, BUYER),
        engine.execute(listed, BUYER),
        return_exceptions=True
    )
    assert sum(1 for r in results if isinstance(r, dict)) == 1
    assert sum(1 for r in results if isinstance(r, StateConflictError)) == 1
    assert [s['amount'] for s in wallet.sent] == [49500, 10000]

@pytest.mark.asyncio
async def test_execute_requires_deposit(engine, listed, wallet):
    wallet.coins = [PAYMENT]
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    with pytest.raises(StateConflictError) as exc_info:
        await engine.execute(listed, BUYER)
    assert exc_info.value.status_code == 400
    assert exc_info.value.current_state == PENDING
    assert wallet.sent == []

@pytest.mark.asyncio
async def test_execute_wrong_buyer(engine, listed, wallet):
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    with pytest.raises(AuthorizationError):
        await engine.execute(listed, 'c3' * 32)
    assert wallet.sent == []

@pytest.mark.asyncio
async def test_execute_waits_for_payment(engine, listed, wallet):
    """Execution is refused while the escrow balance is below the price."""
    wallet.coins = [collateral(1)]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    with pytest.raises(StateConflictError):
        await engine.execute(listed, BUYER)
    assert wallet.sent == []
    assert (await engine.listings.get(listed)).status == DEPOSITED

@pytest.mark.asyncio
async def test_execute_wallet_rejects_payout(engine, listed, wallet):
    """A payout the wallet refuses releases the listing for a later retry."""
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    wallet.send_error = WalletRequestError("not enough", -6, 'sendoffchain')

    with pytest.raises(DependencyError) as exc_info:
        await engine.execute(listed, BUYER)
    assert exc_info.value.status_code == 502
    assert exc_info.value.dependency == 'wallet'
    listing = await engine.listings.get(listed)
    assert listing.status == DEPOSITED
    assert listing.payout_attempted_at is None

    wallet.send_error = None
    result = await engine.execute(listed, BUYER)
    assert result['status'] == SOLD
    assert [s['amount'] for s in wallet.sent] == [49500, 10000]

@pytest.mark.asyncio
async def test_execute_unknown_payout_outcome_blocks_retry(engine, listed, wallet):
    """A payout that fails without a wallet answer is never sent again."""
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    wallet.fail_send = True

    with pytest.raises(ReconciliationRequiredError) as exc_info:
        await engine.execute(listed, BUYER)
    assert exc_info.value.status_code == 409
    assert exc_info.value.to_dict()['kind'] == 'reconciliation_required'

    listing = await engine.listings.get(listed)
    assert listing.status == DEPOSITED
    assert listing.payout_attempted_at is not None

    wallet.fail_send = False
    with pytest.raises(ReconciliationRequiredError):
        await engine.execute(listed, BUYER)
    with pytest.raises(ReconciliationRequiredError):
        await engine.cancel(listed, SELLER)
    assert wallet.sent == []

    report = await engine.audit_escrow_coins()
    assert report['needsReconciliation'] == [listed]

class SlowSendRPC:
    """Wallet daemon whose sends complete after the adapter has given up."""

    def __init__(self):
        self.sends = []

    def listvtxos(self):
        return [
            {'txid': 'aa' * 32, 'vout': 0, 'value': 10000},
            {'txid': 'bb' * 32, 'vout': 0, 'value': 50000},
        ]

    def sendoffchain(self, address, amount):
        time.sleep(0.3)
        self.sends.append((address, amount))
        return {'txid': 'cd' * 32}

@pytest.mark.asyncio
async def test_timed_out_payout_is_not_repeated(engine, listed):
    """A send that times out but still lands pays the seller once."""
    rpc = SlowSendRPC()
    engine.wallet = EscrowWallet(rpc, timeout=0.1)
    await engine.record_deposit(listed, f"{'aa' * 32}:0")
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)

    with pytest.raises(ReconciliationRequiredError):
        await engine.execute(listed, BUYER)

    # Let the abandoned worker thread finish its send
    await asyncio.sleep(0.4)
    assert rpc.sends == [(SELLER_ADDRESS, 49500)]

    with pytest.raises(ReconciliationRequiredError):
        await engine.execute(listed, BUYER)
    assert rpc.sends == [(SELLER_ADDRESS, 49500)]

class StoreFailingWallet(FakeWallet):
    """Wallet whose first send is followed by a document store outage."""

    def __init__(self, documents, coins):
        super().__init__(coins)
        self.documents = documents

    async def send(self, address, amount):
        txid = await super().send(address, amount)
        self.documents.fail_writes = True
        return txid

@pytest.mark.asyncio
async def test_store_failure_after_payout_blocks_second_payout(engine, listed, documents):
    """When marking sold fails after the seller is paid, execute is not repeated."""
    engine.wallet = StoreFailingWallet(documents, [collateral(1), PAYMENT])
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)

    result = await engine.execute(listed, BUYER)
    assert result['partialFailure'] is True
    assert any('Marking listing sold failed' in w for w in result['warnings'])

    documents.fail_writes = False
    listing = await engine.listings.get(listed)
    assert listing.status == DEPOSITED
    assert listing.payout_attempted_at is not None

    with pytest.raises(ReconciliationRequiredError):
        await engine.execute(listed, BUYER)
    seller_payouts = [s for s in engine.wallet.sent if s['address'] == SELLER_ADDRESS]
    assert len(seller_payouts) == 1

@pytest.mark.asyncio
async def test_execute_ignores_other_listings_collateral(engine, wallet):
    """Collateral held for other listings never counts as the buyer's payment."""
    await engine.list(token(1), SELLER, SELLER_ADDRESS, 15000, deposit_reference=collateral(1).id)
    await engine.list(token(2), SELLER, SELLER_ADDRESS, 15000, deposit_reference=collateral(2).id)
    wallet.coins = [collateral(1), collateral(2)]
    await engine.record_deposit(token(1))
    await engine.record_deposit(token(2))
    await engine.register_buyer(token(1), BUYER, BUYER_ADDRESS)

    with pytest.raises(StateConflictError):
        await engine.execute(token(1), BUYER)
    assert wallet.sent == []

    wallet.coins.append(Coin(id="payment:0", amount=15000))
    result = await engine.execute(token(1), BUYER)
    assert result['sellerAmount'] == 14850
    assert wallet.sent[1] == {'address': BUYER_ADDRESS, 'amount': 10000, 'txid': wallet.sent[1]['txid']}

@pytest.mark.asyncio
async def test_collateral_delivery_skips_other_listings_coins(engine, wallet):
    """A listing whose coin is missing does not deliver another listing's deposit."""
    await engine.list(token(1), SELLER, SELLER_ADDRESS, 50000, deposit_reference=collateral(1).id)
    await engine.list(token(2), SELLER, SELLER_ADDRESS, 50000, deposit_reference=collateral(2).id)
    await engine.record_deposit(token(1))
    await engine.record_deposit(token(2))
    await engine.register_buyer(token(1), BUYER, BUYER_ADDRESS)
    wallet.coins = [collateral(2), Coin(id="payment:0", amount=70000)]

    result = await engine.execute(token(1), BUYER)

    assert result['partialFailure'] is True
    assert [s['address'] for s in wallet.sent] == [SELLER_ADDRESS]
    assert 'collateralTransfer' not in result['settlementReferences']

@pytest.mark.asyncio
async def test_cancel_does_not_refund_other_listings_coin(engine, wallet):
    await engine.list(token(1), SELLER, SELLER_ADDRESS, 50000, deposit_reference=collateral(1).id)
    await engine.list(token(2), SELLER, SELLER_ADDRESS, 50000, deposit_reference=collateral(2).id)
    await engine.record_deposit(token(1))
    await engine.record_deposit(token(2))
    wallet.coins = [collateral(2)]

    result = await engine.cancel(token(1), SELLER)

    assert result['refunded'] is False
    assert wallet.sent == []
    assert (await engine.listings.get(token(2))).status == DEPOSITED

@pytest.mark.asyncio
async def test_partial_settlement(engine, listed, wallet, relays, caplog):
    """Failures after the seller payout are warnings, not errors."""
    wallet.coins = [collateral(1), PAYMENT]
    await engine.record_deposit(listed)
    await engine.register_buyer(listed, BUYER, BUYER_ADDRESS)
    wallet.sends_before_failure = 1
    relays.fail_publish = True

    result = await engine.execute(listed, BUYER)

    assert result['success'] is True
    assert result['partialFailure'] is True
    assert len(result['warnings']) == 3
    assert 'sellerPayout' in result['settlementReferences']
    assert 'collateralTransfer' not in result['settlementReferences']
    assert any('PARTIAL SETTLEMENT' in r.message for r in caplog.records)

    listing = await engine.listings.get(listed)
    assert listing.status == SOLD
    assert len(listing.publication_errors) == 2

@pytest.mark.asyncio
async def test_cancel_refunds_deposit(engine, listed, wallet, relays):
    """Cancelling a deposited listing returns the collateral coin to the seller."""
    wallet.coins = [collateral(1)]
    await engine.record_deposit(listed)

    result = await engine.cancel(listed, SELLER)

    assert result['status'] == CANCELLED
    assert result['refunded'] is True
    assert wallet.sent == [{'address': SELLER_ADDRESS, 'amount': 10000, 'txid': result['refundReference']}]
    assert (await engine.listings.get(listed)).refund_reference == result['refundReference']

    assert relays.published[0]['kind'] == KIND_LISTING
    assert get_tag(relays.published[0], 'price') == '0'

    with pytest.raises(StateConflictError) as exc_info:
        await engine.cancel(listed, SELLER)
    assert exc_info.value.status_code == 400
    assert exc_info.value.current_state == CANCELLED
    assert len(wallet.sent) == 1

@pytest.mark.asyncio
async def test_cancel_pending_without_refund(engine, listed, wallet):
    result = await engine.cancel(listed, SELLER)
    assert result['refunded'] is False
    assert result['message'] == 'Listing cancelled'
    assert wallet.sent == []

@pytest.mark.asyncio
async def test_cancel_deposited_without_coin(engine, listed, wallet):
    """A deposited listing with no collateral coin left is still cancelled."""
    await engine.record_deposit(listed)
    result = await engine.cancel(listed, SELLER)
    assert result['status'] == CANCELLED
    assert result['refunded'] is False
    assert 'without refund' in result['message']

@pytest.mark.asyncio
async def test_cancel_by_non_seller(engine, listed):
    with pytest.raises(AuthorizationError) as exc_info:
        await engine.cancel(listed, BUYER)
    assert exc_info.value.status_code == 403
    assert (await engine.listings.get(listed)).status == PENDING

@pytest.mark.asyncio
async def test_cancel_broadcast_failure_is_warning(engine, listed, relays):
    relays.fail_publish = True
    result = await engine.cancel(listed, SELLER)
    assert result['success'] is True
    assert len(result['warnings']) == 1

@pytest.mark.asyncio
async def test_document_store_failure_maps_to_dependency(engine, listed, documents):
    documents.fail_reads = True
    with pytest.raises(DependencyError) as exc_info:
        await engine.status(listed)
    assert exc_info.value.status_code == 503
    assert exc_info.value.to_dict()['dependency'] == 'document_store'

@pytest.mark.asyncio
async def test_status(engine, listed):
    one = await engine.status(listed)
    assert one['listing']['tokenId'] == listed

    everything = await engine.status()
    assert everything['count'] == 1

    with pytest.raises(NotFoundError):
        await engine.status(token(5))

@pytest.mark.asyncio
async def test_audit(engine, listed, wallet):
    wallet.coins = [collateral(1), collateral(2, 10300), PAYMENT]
    await engine.record_deposit(listed)

    report = await engine.audit_escrow_coins()
    matches = {c['coin']: c['match'] for c in report['coins']}
    assert matches[collateral(1).id] == 'listing'
    assert matches[collateral(2, 10300).id] == 'unmatched_collateral'
    assert matches[PAYMENT.id] == 'other'
    assert report['totalBalance'] == 10000 + 10300 + 50000
    assert report['listingsWithoutCoin'] == []

def test_stats():
    assert engine_stats([]) == {
        'floorPrice': 0, 'highestSale': 0, 'totalVolume': 0, 'totalSales': 0, 'averagePrice': 0
    }
    assert engine_stats([100, 300, 201]) == {
        'floorPrice': 100, 'highestSale': 300, 'totalVolume': 601, 'totalSales': 3, 'averagePrice': 200
    }

def engine_stats(prices):
    from escrow import EscrowEngine
    return EscrowEngine.stats(prices)

def test_escrow_info(engine, escrow_key):
    info = engine.escrow_info()
    assert info['escrowAddress'] == ESCROW_ADDRESS
    assert info['escrowPubkey'] == escrow_key.public_key_hex
    assert info['network'] == 'testnet'
