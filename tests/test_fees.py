"""Tests for marketplace fee arithmetic."""

import pytest

from escrow.fees import compute_fee, fee_breakdown

@pytest.mark.parametrize("price,fee", [
    (0, 0),
    (1, 0),
    (10000, 100),
    (2**53 - 1, (2**53 - 1) // 100),
])
def test_fee_at_boundaries(price, fee):
    """Fee is floor(price * bps / 10000) and the parts add back up."""
    breakdown = fee_breakdown(price, 100)
    assert breakdown['fee'] == fee
    assert breakdown['sellerAmount'] == price - fee
    assert breakdown['fee'] + breakdown['sellerAmount'] == price
    assert breakdown['buyerTotal'] == price
    assert 0 <= breakdown['fee'] <= price

def test_large_price_is_exact():
    """No floating point rounding on large prices."""
    price = 2**53 - 1
    assert compute_fee(price, 100) == 90071992547409
    assert fee_breakdown(price)['sellerAmount'] == 9007199254740991 - 90071992547409

def test_zero_and_full_basis_points():
    assert compute_fee(50000, 0) == 0
    assert compute_fee(50000, 10000) == 50000

def test_invalid_inputs():
    with pytest.raises(ValueError):
        compute_fee(-1)
    with pytest.raises(ValueError):
        compute_fee(100, 10001)
    with pytest.raises(ValueError):
        compute_fee(1.5)
    with pytest.raises(ValueError):
        compute_fee(True)
