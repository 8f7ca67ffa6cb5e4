"""Deposit monitor for escrow listings.

Polls the escrow wallet's spendable coins on a fixed interval and:
- marks pending listings deposited when their collateral coin shows up
- optionally executes deposited listings whose buyer has paid, skipping any
  whose seller payout awaits reconciliation
- purges old sold and cancelled listings

Collateral is fungible, so a pending listing is matched by its exact deposit
reference first and otherwise by any collateral-range coin no other listing
has claimed.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

import backoff

from documents import DocumentStoreError
from errors import ServiceError, StateConflictError
from escrow import EscrowEngine
from listings import DEPOSITED, PENDING, Listing
from wallet import Coin, WalletError

logger = logging.getLogger(__name__)

class DepositMonitor:
    """Polls the escrow wallet and advances listings."""

    def __init__(
        self,
        engine: EscrowEngine,
        interval: float = 60,
        auto_execute: bool = False,
        retention_ms: Optional[int] = None,
        max_tries: int = 3
    ):
        """Initialize the monitor.

        Args:
            engine: Escrow engine whose listings and wallet are polled
            interval: Seconds between polls
            auto_execute: Execute deposited listings once the buyer's payment is in escrow
            retention_ms: Age after which terminal listings are purged, None to keep them
            max_tries: Attempts per poll at reading the wallet and listings
        """
        self.engine = engine
        self.interval = interval
        self.auto_execute = auto_execute
        self.retention_ms = retention_ms
        self.running = False
        self._stop_event = asyncio.Event()
        self._fetch_state = backoff.on_exception(
            backoff.expo,
            (WalletError, DocumentStoreError),
            max_tries=max_tries,
            max_value=interval
        )(self._fetch_state_once)
        logger.info(f"Deposit monitor polling every {interval}s (auto execute: {auto_execute})")

    async def _fetch_state_once(self) -> Tuple[List[Coin], List[Listing]]:
        coins = await self.engine.wallet.list_coins()
        listings = await self.engine.listings.list_active()
        return coins, listings

    async def process_once(self) -> Dict[str, Any]:
        """Run one polling pass.

        Returns:
            Dict with depositsDetected, swapsExecuted and errors
        """
        result: Dict[str, Any] = {'depositsDetected': 0, 'swapsExecuted': 0, 'errors': []}

        try:
            coins, listings = await self._fetch_state()
        except (WalletError, DocumentStoreError) as e:
            logger.error(f"Deposit poll failed: {e}")
            result['errors'].append(str(e))
            return result

        # Coins already backing a deposited listing
        claimed: Set[str] = {l.deposit_reference for l in listings if l.status == DEPOSITED}

        for listing in listings:
            if listing.status != PENDING:
                continue
            coin = self.engine.find_collateral_coin(listing, coins, exclude=claimed)
            if coin is None:
                continue
            try:
                await self.engine.record_deposit(listing.token_id, coin.id)
            except ServiceError as e:
                logger.error(f"Failed to record deposit for {listing.token_id}: {e.detail}")
                result['errors'].append(f"{listing.token_id}: {e.detail}")
                continue
            claimed.add(coin.id)
            result['depositsDetected'] += 1
            logger.info(f"Detected deposit {coin.id} ({coin.amount} sats) for {listing.token_id}")

        if self.auto_execute:
            await self._execute_paid(result)

        if self.retention_ms:
            try:
                await self.engine.listings.purge_terminal(self.retention_ms)
            except DocumentStoreError as e:
                result['errors'].append(f"cleanup: {e}")

        return result

    async def _execute_paid(self, result: Dict[str, Any]) -> None:
        """Execute deposited listings with a registered buyer."""
        try:
            listings = await self.engine.listings.list_active()
        except DocumentStoreError as e:
            result['errors'].append(str(e))
            return

        for listing in listings:
            if listing.status != DEPOSITED or not listing.buyer_identity:
                continue
            if listing.payout_attempted_at is not None:
                logger.warning(f"Not executing {listing.token_id}: seller payout awaits reconciliation")
                continue
            try:
                settlement = await self.engine.execute(listing.token_id, listing.buyer_identity)
            except StateConflictError as e:
                # Buyer payment not in escrow yet
                logger.debug(f"Not executing {listing.token_id}: {e.detail}")
                continue
            except ServiceError as e:
                logger.error(f"Auto execute failed for {listing.token_id}: {e.detail}")
                result['errors'].append(f"{listing.token_id}: {e.detail}")
                continue
            result['swapsExecuted'] += 1
            if settlement['partialFailure']:
                result['errors'].extend(f"{listing.token_id}: {w}" for w in settlement['warnings'])

    async def start(self) -> None:
        """Poll until stop() is called."""
        self.running = True
        self._stop_event.clear()
        logger.info("Starting deposit monitor")

        while self.running:
            result = await self.process_once()
            if result['depositsDetected'] or result['swapsExecuted']:
                logger.info(f"Deposit poll: {result['depositsDetected']} deposits, "
                            f"{result['swapsExecuted']} swaps")
            if result['errors']:
                logger.warning(f"Deposit poll finished with {len(result['errors'])} errors")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        """Stop the polling loop."""
        logger.info("Stopping deposit monitor...")
        self.running = False
        self._stop_event.set()

__all__ = ['DepositMonitor']
