"""Tests for mint authorization and the per-identity rate limit."""

import pytest

from errors import AuthorizationError, DependencyError, RateLimitedError, ValidationError
from mint import MintGate, MintRateLimiter
from signing import verify_token_signature
from conftest import token

IDENTITY = "d4" * 32

class SecondsClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

def test_authorize_signs_token(mint_gate, service_key):
    result = mint_gate.authorize(token(1), IDENTITY, 10)
    assert result['success'] is True
    assert result['servicePublicKey'] == service_key.public_key_hex
    assert result['mintIndex'] == 10
    assert result['mintsRemaining'] == 4
    assert verify_token_signature(service_key.public_key_hex, token(1), result['signature'])

def test_rate_limit_window(service_key):
    """Five mints per rolling window; the sixth is refused until the oldest expires."""
    clock = SecondsClock()
    gate = MintGate(service_key, MintRateLimiter(cap=5, window_seconds=86400, clock=clock))

    for n in range(5):
        gate.authorize(token(n + 1), IDENTITY, n)
        clock.now += 60

    with pytest.raises(RateLimitedError) as exc_info:
        gate.authorize(token(6), IDENTITY, 5)
    assert exc_info.value.status_code == 429

    # Other identities are unaffected
    gate.authorize(token(6), "e5" * 32, 5)

    # Just before the first mint leaves the window
    clock.now = 1_700_000_000 + 86399
    with pytest.raises(RateLimitedError):
        gate.authorize(token(7), IDENTITY, 6)

    clock.now = 1_700_000_000 + 86400
    result = gate.authorize(token(7), IDENTITY, 6)
    assert result['mintsRemaining'] == 0

def test_refused_requests_do_not_count(service_key):
    clock = SecondsClock()
    limiter = MintRateLimiter(cap=2, window_seconds=100, clock=clock)
    gate = MintGate(service_key, limiter, max_supply=3)

    with pytest.raises(AuthorizationError):
        gate.authorize(token(1), IDENTITY, 3)
    assert limiter.used(IDENTITY) == 0

def test_supply_cap(mint_gate):
    with pytest.raises(AuthorizationError) as exc_info:
        mint_gate.authorize(token(1), IDENTITY, 1000)
    assert exc_info.value.status_code == 403

@pytest.mark.parametrize("token_id,identity,claimed", [
    ('short', IDENTITY, 0),
    (token(1), '', 0),
    (token(1), IDENTITY, -1),
    (token(1), IDENTITY, 'many'),
    (token(1), IDENTITY, True),
])
def test_validation(mint_gate, token_id, identity, claimed):
    with pytest.raises(ValidationError):
        mint_gate.authorize(token_id, identity, claimed)

def test_missing_service_key():
    gate = MintGate(None, MintRateLimiter())
    with pytest.raises(DependencyError) as exc_info:
        gate.authorize(token(1), IDENTITY, 0)
    assert exc_info.value.dependency == 'signing'

def test_retry_after():
    clock = SecondsClock(1000)
    limiter = MintRateLimiter(cap=1, window_seconds=100, clock=clock)
    assert limiter.retry_after(IDENTITY) == 0
    limiter.record(IDENTITY)
    clock.now = 1040
    assert limiter.retry_after(IDENTITY) == 60
    assert limiter.remaining(IDENTITY) == 0
    clock.now = 1100
    assert limiter.remaining(IDENTITY) == 1
    assert IDENTITY not in limiter.history
