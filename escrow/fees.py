"""Marketplace fee arithmetic.

The seller pays the fee: the buyer pays exactly the listing price, the seller
receives `price - fee` and the fee stays in escrow. All amounts are integer
sats; there is no floating point anywhere in the calculation.
"""
from typing import Dict

# 1% marketplace fee
DEFAULT_FEE_BASIS_POINTS = 100

def compute_fee(price: int, fee_basis_points: int = DEFAULT_FEE_BASIS_POINTS) -> int:
    """Calculate the marketplace fee for a price.

    Args:
        price: Sale price in sats
        fee_basis_points: Fee in basis points (1/100 of a percent)

    Returns:
        floor(price * fee_basis_points / 10000)

    Raises:
        ValueError: If price is negative or basis points are out of range
    """
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise ValueError(f"Price must be a non-negative integer, got {price!r}")
    if not 0 <= fee_basis_points <= 10000:
        raise ValueError(f"Fee basis points must be between 0 and 10000, got {fee_basis_points}")
    return price * fee_basis_points // 10000

def fee_breakdown(price: int, fee_basis_points: int = DEFAULT_FEE_BASIS_POINTS) -> Dict[str, int]:
    """Split a price into fee and seller amount.

    Returns:
        Dict with price, fee, sellerAmount and buyerTotal
    """
    fee = compute_fee(price, fee_basis_points)
    return {
        'price': price,
        'fee': fee,
        'sellerAmount': price - fee,
        'buyerTotal': price
    }
