"""Escrow settlement engine.

This module drives a listing through its lifecycle and executes the swap:

- list: create a pending listing and hand back deposit instructions
- record_deposit: pending -> deposited once the collateral coin arrives
- register_buyer: attach the buyer and quote the price breakdown
- execute: pay the seller, deliver the collateral coin, publish events, mark sold
- cancel: refund the collateral coin to the seller and mark cancelled

A swap is committed once the seller payout is sent. Anything that fails
after that point is reported as a partial failure alongside the successful
result and logged with the PARTIAL SETTLEMENT prefix; nothing is rolled back.

Before the seller payout is sent the listing is stamped with
payoutAttemptedAt. A stamped listing is never paid out or refunded again:
execute and cancel raise ReconciliationRequiredError until an operator has
checked the wallet. The stamp is cleared only when the wallet daemon
answers with an explicit rejection.

Collateral is fungible: a deposit is matched first by its exact outpoint and
otherwise by any coin whose amount falls in the configured collateral range.
Coins referenced by other deposited listings are never taken, and the buyer's
payment is whatever the escrow holds beyond the collateral of every
deposited listing.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from broadcast import BroadcastError, RelayPool, build_event
from broadcast.events import KIND_LISTING, KIND_SOLD, KIND_TRANSFER, delist_tags, sold_tags, transfer_tags
from documents import DocumentStoreError, KeyedLocks, now_ms
from errors import (
    AuthorizationError,
    DependencyError,
    NotFoundError,
    ReconciliationRequiredError,
    ServiceError,
    StateConflictError,
    ValidationError,
    require,
    validate_token_id
)
from listings import (
    CANCELLED,
    DEPOSITED,
    PENDING,
    SOLD,
    TERMINAL_STATUSES,
    FieldLockedError,
    Listing,
    ListingError,
    ListingNotFoundError,
    ListingStateError,
    ListingStore
)
from signing import SigningKey
from wallet import Coin, EscrowWallet, WalletAuthError, WalletError, WalletRequestError
from .fees import compute_fee, fee_breakdown, DEFAULT_FEE_BASIS_POINTS
from .ownership import OwnershipLedger

logger = logging.getLogger(__name__)

class EscrowEngine:
    """State machine and swap executor for escrow listings."""

    def __init__(
        self,
        listings: ListingStore,
        wallet: EscrowWallet,
        relays: RelayPool,
        ownership: OwnershipLedger,
        escrow_address: str,
        network: str = 'mainnet',
        escrow_key: Optional[SigningKey] = None,
        fee_basis_points: int = DEFAULT_FEE_BASIS_POINTS,
        collateral_min_amount: int = 10000,
        collateral_max_amount: int = 10500,
        clock: Callable[[], int] = now_ms
    ):
        """Initialize the escrow engine.

        Args:
            listings: Listing store
            wallet: Escrow wallet adapter
            relays: Relay pool for publishing settlement events
            ownership: Ownership ledger consulted by list()
            escrow_address: Custodial address sellers and buyers pay into
            network: mainnet or testnet, tagged on every event
            escrow_key: Key that signs escrow events; None disables publishing
            fee_basis_points: Marketplace fee in basis points
            collateral_min_amount: Smallest coin accepted as collateral (sats)
            collateral_max_amount: Largest coin accepted as collateral (sats)
            clock: Millisecond clock
        """
        self.listings = listings
        self.wallet = wallet
        self.relays = relays
        self.ownership = ownership
        self.escrow_address = escrow_address
        self.network = network
        self.escrow_key = escrow_key
        self.fee_basis_points = fee_basis_points
        self.collateral_min_amount = collateral_min_amount
        self.collateral_max_amount = collateral_max_amount
        self.clock = clock
        self.token_locks = KeyedLocks()

    @asynccontextmanager
    async def _boundary(self, operation: str):
        """Translate adapter and store errors into the service taxonomy."""
        try:
            yield
        except ServiceError:
            raise
        except ListingNotFoundError as e:
            raise NotFoundError(str(e))
        except ListingStateError as e:
            raise StateConflictError(str(e), e.current_status)
        except FieldLockedError as e:
            raise StateConflictError(str(e), None, status_code=409)
        except DocumentStoreError as e:
            logger.error(f"{operation} failed: document store error: {e}")
            raise DependencyError(f"Document store unavailable: {e}", 'document_store', 503)
        except WalletError as e:
            logger.error(f"{operation} failed: wallet error: {e}")
            raise DependencyError(f"Escrow wallet unavailable: {e}", 'wallet', 502)

    def is_collateral(self, coin: Coin) -> bool:
        """Check whether a coin's amount is in the collateral range."""
        return self.collateral_min_amount <= coin.amount <= self.collateral_max_amount

    def find_collateral_coin(
        self,
        listing: Listing,
        coins: Iterable[Coin],
        exclude: Optional[Set[str]] = None
    ) -> Optional[Coin]:
        """Locate the coin backing a listing.

        Prefers the exact deposit reference, then any unclaimed coin in the
        collateral range.
        """
        exclude = exclude or set()
        coins = [c for c in coins if c.id not in exclude]
        for coin in coins:
            if coin.id == listing.deposit_reference:
                return coin
        for coin in coins:
            if self.is_collateral(coin):
                return coin
        return None

    async def _deposited_listings(self) -> List[Listing]:
        return [l for l in await self.listings.list_active() if l.status == DEPOSITED]

    @staticmethod
    def _claimed_references(deposited: Iterable[Listing], token_id: str) -> Set[str]:
        """Deposit references held by deposited listings other than `token_id`."""
        return {l.deposit_reference for l in deposited
                if l.token_id != token_id and l.deposit_reference != 'unknown'}

    def collateral_reserve(self, deposited: Iterable[Listing], coins: Iterable[Coin]) -> int:
        """Sats in escrow that back deposited listings.

        A listing whose reference matches no coin reserves the minimum
        collateral amount.
        """
        by_id = {c.id: c for c in coins}
        reserve = 0
        for listing in deposited:
            coin = by_id.get(listing.deposit_reference)
            reserve += coin.amount if coin else self.collateral_min_amount
        return reserve

    @staticmethod
    def _require_no_payout_attempt(listing: Listing) -> None:
        if listing.payout_attempted_at is not None:
            logger.error(f"Listing {listing.token_id} has an unreconciled seller payout "
                         f"attempted at {listing.payout_attempted_at}")
            raise ReconciliationRequiredError(
                f"A seller payout for {listing.token_id} was already attempted; "
                "the escrow wallet must be reconciled by an operator",
                listing.status
            )

    async def _require_listing(self, token_id: str) -> Listing:
        listing = await self.listings.get(token_id)
        if listing is None:
            raise NotFoundError(f"Listing not found: {token_id}")
        return listing

    async def _publish(self, kind: int, tags: List[List[str]], content: str) -> str:
        """Sign and publish an escrow event, returning its id."""
        if self.escrow_key is None:
            raise BroadcastError("Escrow signing key not configured")
        event = build_event(self.escrow_key, kind, tags, content, created_at=self.clock() // 1000)
        await self.relays.publish(event)
        return event['id']

    async def list(
        self,
        token_id: str,
        seller: str,
        seller_payout_address: str,
        price: int,
        deposit_reference: Optional[str] = None,
        metadata: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a pending listing.

        Args:
            token_id: Token to list
            seller: Seller identity (public key)
            seller_payout_address: Where the sale proceeds go
            price: Asking price in sats, must be positive
            deposit_reference: Outpoint of the collateral coin the seller will send
            metadata: Compressed token metadata carried into sale events

        Returns:
            Dict with escrow address, price breakdown and deposit instructions

        Raises:
            ValidationError: If a field is missing or malformed
            AuthorizationError: If the seller does not own the token
            StateConflictError: If the token is already actively listed
            DependencyError: If the document store is unavailable
        """
        token_id = validate_token_id(token_id)
        require(seller, 'seller')
        require(seller_payout_address, 'sellerPayoutAddress')
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise ValidationError("price must be a positive integer number of sats")

        async with self._boundary('list'):
            existing = await self.listings.get(token_id)
            if existing is not None and existing.is_active:
                raise StateConflictError(
                    f"Token {token_id} is already listed", existing.status, status_code=400
                )

            if not await self.ownership.claim(token_id, seller):
                logger.warning(f"Rejected listing of {token_id}: {seller[:16]} is not the recorded owner")
                raise AuthorizationError("Seller does not own this token")

            listing = Listing(
                token_id=token_id,
                seller_identity=seller,
                seller_payout_address=seller_payout_address,
                price=price,
                escrow_payout_address=self.escrow_address,
                deposit_reference=deposit_reference or 'unknown',
                status=PENDING,
                created_at=self.clock(),
                metadata=metadata
            )
            await self.listings.create(listing)

        breakdown = fee_breakdown(price, self.fee_basis_points)
        return {
            'success': True,
            'tokenId': token_id,
            'status': PENDING,
            'escrowAddress': self.escrow_address,
            **breakdown,
            'instructions': [
                f"Send your punk collateral coin ({self.collateral_min_amount}-{self.collateral_max_amount} sats) "
                f"to the escrow address {self.escrow_address}",
                "The listing becomes active once the deposit is detected",
                f"When sold you receive {breakdown['sellerAmount']} sats "
                f"(price minus {breakdown['fee']} sats marketplace fee)"
            ]
        }

    async def record_deposit(self, token_id: str, deposit_reference: Optional[str] = None) -> Listing:
        """Mark a listing deposited. Idempotent.

        Args:
            token_id: Token id
            deposit_reference: Outpoint actually received, replaces the advisory reference

        Returns:
            The deposited listing

        Raises:
            NotFoundError: If the listing does not exist
            StateConflictError: If the listing is sold or cancelled
        """
        token_id = validate_token_id(token_id)

        async with self.token_locks(token_id), self._boundary('record_deposit'):
            listing = await self._require_listing(token_id)

            if listing.status in TERMINAL_STATUSES:
                raise StateConflictError(
                    f"Listing {token_id} is already {listing.status}", listing.status
                )

            patch: Dict[str, Any] = {}
            if deposit_reference and deposit_reference != listing.deposit_reference:
                patch['deposit_reference'] = deposit_reference

            if listing.status == DEPOSITED:
                if not patch:
                    return listing
                logger.info(f"Updated deposit reference of {token_id} to {deposit_reference}")
                return await self.listings.update_status(token_id, DEPOSITED, patch)

            patch['deposited_at'] = self.clock()
            listing = await self.listings.update_status(token_id, DEPOSITED, patch)
            logger.info(f"Deposit recorded for token {token_id} ({listing.deposit_reference})")
            return listing

    async def register_buyer(self, token_id: str, buyer: str, buyer_payout_address: str) -> Dict[str, Any]:
        """Attach a buyer to a listing and quote the payment.

        Registering the same buyer again is a no-op; a different buyer is rejected.

        Returns:
            Price breakdown and payment instructions

        Raises:
            NotFoundError: If the listing does not exist
            StateConflictError: If sold (409), cancelled (410) or taken by another buyer (409)
        """
        token_id = validate_token_id(token_id)
        require(buyer, 'buyer')
        require(buyer_payout_address, 'buyerPayoutAddress')

        async with self.token_locks(token_id), self._boundary('register_buyer'):
            listing = await self._require_listing(token_id)

            if listing.status in TERMINAL_STATUSES:
                raise StateConflictError(
                    f"Listing {token_id} is already {listing.status}", listing.status
                )

            if listing.buyer_identity is not None:
                if (listing.buyer_identity, listing.buyer_payout_address) != (buyer, buyer_payout_address):
                    raise StateConflictError(
                        f"Listing {token_id} already has a registered buyer", listing.status, status_code=409
                    )
            else:
                listing = await self.listings.update_status(token_id, listing.status, {
                    'buyer_identity': buyer,
                    'buyer_payout_address': buyer_payout_address
                })
                logger.info(f"Registered buyer {buyer[:16]} for token {token_id}")

        breakdown = fee_breakdown(listing.price, self.fee_basis_points)
        return {
            'success': True,
            'tokenId': token_id,
            'status': listing.status,
            'escrowAddress': self.escrow_address,
            **breakdown,
            'instructions': [
                f"Send {breakdown['buyerTotal']} sats to the escrow address {self.escrow_address}",
                "Then request execution; the punk is delivered to your payout address"
                + ("" if listing.status == DEPOSITED else " once the seller's deposit arrives")
            ]
        }

    async def execute(self, token_id: str, buyer_identity: str) -> Dict[str, Any]:
        """Execute the swap for a deposited listing.

        Order of effects:
            a. pay the seller price - fee
            b. send the collateral coin to the buyer
            c. publish transfer and sold events
            d. mark the listing sold

        Failures after (a) do not undo the payout; they are returned as
        warnings with partialFailure set.

        The buyer's payment is the escrow balance left after reserving the
        collateral of every deposited listing, this one included.

        Raises:
            NotFoundError: If the listing does not exist
            AuthorizationError: If buyer_identity is not the registered buyer
            StateConflictError: If not deposited or the buyer's payment has not arrived
            ReconciliationRequiredError: If a seller payout was already attempted,
                or this attempt ended without a definite answer from the wallet
            DependencyError: If the wallet or store fails before the seller is paid
        """
        token_id = validate_token_id(token_id)
        require(buyer_identity, 'buyerIdentity')

        async with self.token_locks(token_id):
            async with self._boundary('execute'):
                listing = await self._require_listing(token_id)

                if listing.status != DEPOSITED:
                    detail = (f"Listing {token_id} is already {listing.status}"
                              if listing.status in TERMINAL_STATUSES
                              else f"Seller deposit for {token_id} has not been received")
                    raise StateConflictError(detail, listing.status)

                if listing.buyer_identity is None or buyer_identity != listing.buyer_identity:
                    logger.warning(f"Rejected execute of {token_id}: buyer mismatch")
                    raise AuthorizationError("Buyer does not match the registered buyer")

                self._require_no_payout_attempt(listing)

                coins = await self.wallet.list_coins()
                deposited = await self._deposited_listings()
                payment = sum(c.amount for c in coins) - self.collateral_reserve(deposited, coins)
                breakdown = fee_breakdown(listing.price, self.fee_basis_points)
                if payment < breakdown['buyerTotal']:
                    raise StateConflictError(
                        f"Escrow holds {max(payment, 0)} sats beyond deposited collateral, below the "
                        f"buyer total {breakdown['buyerTotal']}; buyer payment not received yet",
                        listing.status
                    )

                fee = breakdown['fee']
                seller_amount = breakdown['sellerAmount']
                claimed = self._claimed_references(deposited, token_id)

                listing = await self.listings.update_status(token_id, DEPOSITED, {
                    'payout_attempted_at': self.clock()
                })

            logger.info(f"Executing swap for {token_id}: paying seller {seller_amount} sats ({fee} sats fee)")
            references: Dict[str, str] = {}
            if seller_amount > 0:
                references['sellerPayout'] = await self._pay_seller(listing, seller_amount)

            # Seller has been paid; from here on nothing raises
            return await self._finish_settlement(listing, fee, seller_amount, references, claimed)

    async def _pay_seller(self, listing: Listing, amount: int) -> str:
        """Send the seller payout for a listing already stamped with payoutAttemptedAt.

        Raises:
            DependencyError: If the wallet rejected the send; the stamp is cleared
            ReconciliationRequiredError: If the send may have gone through
        """
        token_id = listing.token_id
        try:
            txid = await self.wallet.send(listing.seller_payout_address, amount)
        except (WalletRequestError, WalletAuthError) as e:
            logger.error(f"Seller payout for {token_id} rejected by the wallet: {e}")
            try:
                await self.listings.update_status(token_id, DEPOSITED, {'payout_attempted_at': None})
            except (DocumentStoreError, ListingError) as store_error:
                logger.error(f"Could not clear payout stamp for {token_id}: {store_error}")
                raise ReconciliationRequiredError(
                    f"Seller payout for {token_id} was rejected but the listing could not be "
                    f"released: {store_error}",
                    DEPOSITED
                ) from e
            raise DependencyError(f"Escrow wallet rejected the seller payout: {e}", 'wallet', 502) from e
        except WalletError as e:
            logger.error(f"PARTIAL SETTLEMENT for token {token_id}: seller payout of {amount} sats "
                         f"has unknown outcome: {e}")
            raise ReconciliationRequiredError(
                f"Seller payout for {token_id} may have been sent ({e}); "
                "the escrow wallet must be reconciled by an operator",
                DEPOSITED
            ) from e

        try:
            await self.listings.update_status(token_id, DEPOSITED, {
                'settlement_references': {'sellerPayout': txid}
            })
        except (DocumentStoreError, ListingError) as e:
            logger.warning(f"Could not record seller payout {txid} for {token_id}: {e}")
        return txid

    async def _finish_settlement(self, listing: Listing, fee: int, seller_amount: int,
                                 references: Dict[str, str], claimed: Set[str]) -> Dict[str, Any]:
        token_id = listing.token_id
        warnings: List[str] = []
        publication_errors: List[str] = []

        try:
            coins = await self.wallet.list_coins()
            coin = self.find_collateral_coin(listing, coins, exclude=claimed)
            if coin is None:
                warnings.append("No collateral coin found in escrow to deliver to the buyer")
            else:
                references['collateralTransfer'] = await self.wallet.send(
                    listing.buyer_payout_address, coin.amount
                )
        except WalletError as e:
            warnings.append(f"Collateral delivery failed: {e}")

        transfer_id = references.get('collateralTransfer', 'unknown')
        events = [
            ('transferEvent', KIND_TRANSFER, transfer_tags(
                token_id, listing.seller_identity, listing.buyer_identity, transfer_id,
                self.network, listing.metadata
            ), f"Punk {token_id} transferred via escrow"),
            ('soldEvent', KIND_SOLD, sold_tags(
                token_id, listing.seller_identity, listing.buyer_identity, listing.price,
                references.get('sellerPayout', 'unknown'), self.network, listing.metadata
            ), f"Punk {token_id} sold via escrow for {listing.price} sats")
        ]
        for name, kind, tags, content in events:
            try:
                references[name] = await self._publish(kind, tags, content)
            except BroadcastError as e:
                publication_errors.append(f"{name}: {e}")
                warnings.append(f"Publishing {name} failed: {e}")

        try:
            await self.ownership.transfer(token_id, listing.buyer_identity, references.get('sellerPayout'))
        except DocumentStoreError as e:
            warnings.append(f"Ownership ledger update failed: {e}")

        try:
            listing = await self.listings.update_status(token_id, SOLD, {
                'sold_at': self.clock(),
                'settlement_references': references,
                'publication_errors': publication_errors
            })
        except (DocumentStoreError, ListingStateError, FieldLockedError, ListingNotFoundError) as e:
            warnings.append(f"Marking listing sold failed: {e}")

        if warnings:
            logger.error(f"PARTIAL SETTLEMENT for token {token_id}: seller paid "
                         f"({references.get('sellerPayout')}) but {'; '.join(warnings)}")
        else:
            logger.info(f"Swap complete for token {token_id}")

        return {
            'success': True,
            'tokenId': token_id,
            'status': SOLD,
            'price': listing.price,
            'fee': fee,
            'sellerAmount': seller_amount,
            'settlementReferences': references,
            'partialFailure': bool(warnings),
            'warnings': warnings
        }

    async def cancel(self, token_id: str, seller: str) -> Dict[str, Any]:
        """Cancel a listing, refunding the collateral coin if it was deposited.

        If no collateral coin can be found the listing is still cancelled and
        reported as cancelled without refund.

        Raises:
            NotFoundError: If the listing does not exist
            AuthorizationError: If the caller is not the seller
            StateConflictError: If the listing is already sold or cancelled (400)
            ReconciliationRequiredError: If a seller payout was already attempted
            DependencyError: If the refund could not be sent
        """
        token_id = validate_token_id(token_id)
        require(seller, 'seller')

        async with self.token_locks(token_id), self._boundary('cancel'):
            listing = await self._require_listing(token_id)

            if seller != listing.seller_identity:
                raise AuthorizationError("Only the seller can cancel this listing")

            if listing.status in TERMINAL_STATUSES:
                raise StateConflictError(
                    f"Listing {token_id} is already {listing.status}", listing.status, status_code=400
                )

            self._require_no_payout_attempt(listing)

            refund_reference = None
            if listing.status == DEPOSITED:
                claimed = self._claimed_references(await self._deposited_listings(), token_id)
                coin = self.find_collateral_coin(listing, await self.wallet.list_coins(), exclude=claimed)
                if coin is None:
                    logger.warning(f"No collateral coin found for {token_id}; cancelling without refund")
                else:
                    refund_reference = await self.wallet.send(listing.seller_payout_address, coin.amount)
                    logger.info(f"Returned collateral {coin.id} to seller of {token_id}: {refund_reference}")

            patch = {'refund_reference': refund_reference} if refund_reference else {}
            await self.listings.update_status(token_id, CANCELLED, patch)

        warnings = []
        try:
            await self._publish(KIND_LISTING, delist_tags(token_id, self.network), "Listing cancelled by seller")
        except BroadcastError as e:
            logger.warning(f"Failed to publish delist event for {token_id}: {e}")
            warnings.append(f"Publishing delist event failed: {e}")

        refunded = refund_reference is not None
        return {
            'success': True,
            'tokenId': token_id,
            'status': CANCELLED,
            'refunded': refunded,
            'refundReference': refund_reference,
            'message': 'Listing cancelled' + ('' if refunded or listing.status == PENDING
                                              else ' without refund'),
            'warnings': warnings
        }

    async def sales(self) -> Dict[str, Any]:
        """Completed sales, most recent first, with market stats."""
        async with self._boundary('sales'):
            listings = await self.listings.list_all()

        sold = sorted(
            (l for l in listings if l.status == SOLD and l.sold_at),
            key=lambda l: l.sold_at,
            reverse=True
        )
        sales = [{
            'tokenId': l.token_id,
            'price': l.price,
            'seller': l.seller_payout_address,
            'buyer': l.buyer_payout_address,
            'timestamp': l.sold_at,
            'settlementReferences': l.settlement_references,
            'metadata': l.metadata
        } for l in sold]
        return {'success': True, 'sales': sales, 'stats': self.stats(l.price for l in sold)}

    @staticmethod
    def stats(prices: Iterable[int]) -> Dict[str, int]:
        """Floor, highest, volume, count and integer average of sale prices."""
        prices = list(prices)
        if not prices:
            return {'floorPrice': 0, 'highestSale': 0, 'totalVolume': 0, 'totalSales': 0, 'averagePrice': 0}
        total = sum(prices)
        return {
            'floorPrice': min(prices),
            'highestSale': max(prices),
            'totalVolume': total,
            'totalSales': len(prices),
            'averagePrice': total // len(prices)
        }

    async def status(self, token_id: Optional[str] = None) -> Dict[str, Any]:
        """One listing by token id, or every active listing."""
        async with self._boundary('status'):
            if token_id:
                listing = await self._require_listing(validate_token_id(token_id))
                return {'success': True, 'listing': listing.to_dict()}
            listings = await self.listings.list_active()
        return {
            'success': True,
            'count': len(listings),
            'listings': [l.to_dict() for l in listings]
        }

    async def audit_escrow_coins(self) -> Dict[str, Any]:
        """Match escrow coins against listings without changing anything.

        Each coin is reported as matching a listing by exact reference, as
        unmatched collateral, or as a non-collateral coin (payments, fees).
        Listings stamped with an unreconciled seller payout are listed
        under needsReconciliation.
        """
        async with self._boundary('audit'):
            coins = await self.wallet.list_coins()
            listings = await self.listings.list_active()

        by_reference = {l.deposit_reference: l for l in listings}
        report = []
        for coin in coins:
            listing = by_reference.get(coin.id)
            if listing is not None:
                match = 'listing'
            elif self.is_collateral(coin):
                match = 'unmatched_collateral'
            else:
                match = 'other'
            report.append({
                'coin': coin.id,
                'amount': coin.amount,
                'match': match,
                'tokenId': listing.token_id if listing else None,
                'status': listing.status if listing else None
            })

        matched = {r['tokenId'] for r in report if r['tokenId']}
        return {
            'success': True,
            'totalCoins': len(coins),
            'totalBalance': sum(c.amount for c in coins),
            'coins': report,
            'listingsWithoutCoin': [
                l.token_id for l in listings if l.status == DEPOSITED and l.token_id not in matched
            ],
            'needsReconciliation': [
                l.token_id for l in listings if l.payout_attempted_at is not None
            ]
        }

    def escrow_info(self) -> Dict[str, Any]:
        """Escrow address, public key and network."""
        return {
            'success': True,
            'escrowAddress': self.escrow_address,
            'escrowPubkey': self.escrow_key.public_key_hex if self.escrow_key else None,
            'network': self.network,
            'feeBasisPoints': self.fee_basis_points,
            'collateralRange': [self.collateral_min_amount, self.collateral_max_amount]
        }

__all__ = ['EscrowEngine', 'OwnershipLedger', 'compute_fee', 'fee_breakdown']
