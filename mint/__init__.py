"""Mint authorization gate.

Issues the service co-signature a mint event needs to count as official:
a BIP-340 signature over sha256(tokenId) under the service key.

Requests are refused once the caller's claimed supply reaches max_supply or
the identity has used its allowance inside the rolling window. The
rate-limit history lives in process memory and is lost on restart, and the
supply figure is the caller's claim. The registry remains the authority on
what actually counts toward supply.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from errors import AuthorizationError, DependencyError, RateLimitedError, ValidationError, require, validate_token_id
from signing import SigningKey

logger = logging.getLogger(__name__)

class MintRateLimiter:
    """Per-identity rolling-window mint counter."""

    def __init__(self, cap: int = 5, window_seconds: float = 86400,
                 clock: Callable[[], float] = time.time):
        self.cap = cap
        self.window_seconds = window_seconds
        self.clock = clock
        self.history: Dict[str, List[float]] = {}

    def _prune(self, identity: str, now: float) -> List[float]:
        recent = [t for t in self.history.get(identity, []) if now - t < self.window_seconds]
        if recent:
            self.history[identity] = recent
        else:
            self.history.pop(identity, None)
        return recent

    def used(self, identity: str) -> int:
        """Mints recorded for `identity` inside the window."""
        return len(self._prune(identity, self.clock()))

    def remaining(self, identity: str) -> int:
        return max(self.cap - self.used(identity), 0)

    def retry_after(self, identity: str) -> float:
        """Seconds until the oldest mint in the window expires."""
        now = self.clock()
        recent = self._prune(identity, now)
        if len(recent) < self.cap:
            return 0
        return max(recent[0] + self.window_seconds - now, 0)

    def record(self, identity: str) -> None:
        now = self.clock()
        self._prune(identity, now)
        self.history.setdefault(identity, []).append(now)

class MintGate:
    """Supply cap, rate limit and co-signature for mint requests."""

    def __init__(self, service_key: Optional[SigningKey], limiter: MintRateLimiter, max_supply: int = 1000):
        self.service_key = service_key
        self.limiter = limiter
        self.max_supply = max_supply

    def authorize(self, token_id: str, identity: str, claimed_supply: int) -> Dict[str, Any]:
        """Co-sign a mint.

        Args:
            token_id: Token about to be minted
            identity: Minter identity (public key)
            claimed_supply: Caller's view of the current supply

        Returns:
            Dict with signature, service public key, mintIndex and mintsRemaining

        Raises:
            ValidationError: If a field is missing or malformed
            AuthorizationError: If the supply cap has been reached (403)
            RateLimitedError: If the identity has no allowance left (429)
            DependencyError: If the service key is not configured
        """
        token_id = validate_token_id(token_id)
        require(identity, 'identity')
        if isinstance(claimed_supply, bool) or not isinstance(claimed_supply, int) or claimed_supply < 0:
            raise ValidationError("claimedSupply must be a non-negative integer")

        if claimed_supply >= self.max_supply:
            logger.warning(f"Mint refused for {identity[:16]}: supply cap {self.max_supply} reached")
            raise AuthorizationError(f"Maximum supply of {self.max_supply} punks reached")

        used = self.limiter.used(identity)
        if used >= self.limiter.cap:
            retry_after = int(self.limiter.retry_after(identity)) + 1
            logger.warning(f"Mint refused for {identity[:16]}: {used} mints in window")
            raise RateLimitedError(
                f"Mint limit of {self.limiter.cap} per {int(self.limiter.window_seconds)}s reached; "
                f"retry in {retry_after}s"
            )

        if self.service_key is None:
            raise DependencyError("Mint signing key not configured", 'signing', 503)

        signature = self.service_key.sign_token_id(token_id)
        self.limiter.record(identity)
        remaining = self.limiter.cap - used - 1

        logger.info(f"Authorized mint #{claimed_supply} of {token_id[:16]} for {identity[:16]} "
                    f"({remaining} left in window)")
        return {
            'success': True,
            'signature': signature,
            'servicePublicKey': self.service_key.public_key_hex,
            'mintIndex': claimed_supply,
            'mintsRemaining': remaining
        }

__all__ = ['MintGate', 'MintRateLimiter']
