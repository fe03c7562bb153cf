"""Ad pricing in USDC smallest units.

All arithmetic stays in integers; the result is compared against on-chain
balance deltas, so floats never enter the calculation.
"""
from decimal import Decimal
from typing import Dict, Any

from ads.exceptions import InvalidDurationError

USDC_DECIMALS = 6

# Prices in smallest units (1 USDC = 1_000_000)
BASE_PRICE = 100_000           # First day, 0.10 USDC
ADDITIONAL_DAY_PRICE = 50_000  # Each further day, 0.05 USDC
MEDIA_PRICE = 1_000_000        # Flat surcharge for an attached image, 1.00 USDC

def calculate_price(days: int, has_media: bool = False) -> int:
    """Calculate the price of an ad.
    
    Args:
        days: Number of days the ad stays live
        has_media: Whether an image is attached
        
    Returns:
        Price in USDC smallest units
        
    Raises:
        InvalidDurationError: If days is less than 1
    """
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        raise InvalidDurationError("Days must be at least 1")

    price = BASE_PRICE + (days - 1) * ADDITIONAL_DAY_PRICE
    if has_media:
        price += MEDIA_PRICE
    return price

def to_usdc(units: int) -> Decimal:
    """Convert smallest units to a USDC amount with 6 decimal places."""
    return (Decimal(units) / (Decimal(10) ** USDC_DECIMALS)).quantize(Decimal(1).scaleb(-USDC_DECIMALS))

def network_for(rpc_url: str) -> str:
    return 'devnet' if 'devnet' in rpc_url else 'mainnet-beta'

def payment_details(amount: int, treasury_wallet: str, mint: str, rpc_url: str) -> Dict[str, Any]:
    """Build the body of an HTTP 402 response telling the client how to pay.
    
    Args:
        amount: Required amount in smallest units
        treasury_wallet: Wallet that owns the receiving token account
        mint: USDC mint address
        rpc_url: RPC endpoint, used to pick the network name
        
    Returns:
        Payment details dictionary
    """
    return {
        'amount': str(to_usdc(amount)),
        'amount_units': amount,
        'currency': 'USDC',
        'recipient': treasury_wallet,
        'mint': mint,
        'network': network_for(rpc_url),
        'scheme': 'exact',
    }
