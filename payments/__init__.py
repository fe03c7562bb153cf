"""Payment pricing and on-chain verification for paid ads.

This module handles:
- Integer pricing in USDC smallest units
- HTTP 402 payment details
- Verifying USDC transfers to the treasury token account
"""
from .pricing import (
    USDC_DECIMALS,
    BASE_PRICE,
    ADDITIONAL_DAY_PRICE,
    MEDIA_PRICE,
    calculate_price,
    to_usdc,
    payment_details,
)
from .verifier import PaymentVerifier, VerifiedPayment, account_key_address

__all__ = [
    'USDC_DECIMALS',
    'BASE_PRICE',
    'ADDITIONAL_DAY_PRICE',
    'MEDIA_PRICE',
    'calculate_price',
    'to_usdc',
    'payment_details',
    'PaymentVerifier',
    'VerifiedPayment',
    'account_key_address',
]
