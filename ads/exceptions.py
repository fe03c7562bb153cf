"""Error taxonomy shared by the ad creation and retrieval workflows.

Every error carries a machine-readable ``category`` and the HTTP status the
API layer answers with, so routes never have to guess.
"""
from typing import Any, Dict, Optional

class AdServiceError(Exception):
    """Base exception for ad service errors"""
    category = 'internal_error'
    status_code = 500

    def __init__(self, message: str, **details: Any):
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {'error': self.category, 'detail': str(self)}
        if self.details:
            body.update(self.details)
        return body

class ValidationError(AdServiceError):
    """Malformed request"""
    category = 'validation_error'
    status_code = 400

class InvalidDurationError(ValidationError):
    """Raised when an ad is requested for less than one day"""
    category = 'invalid_duration'

class PaymentError(AdServiceError):
    """Base exception for payment problems"""
    category = 'payment_error'
    status_code = 402

class PaymentRequiredError(PaymentError):
    """Raised when no payment signature accompanies a paid request"""
    category = 'payment_required'

class PayerExtractionError(PaymentError):
    """Raised when the payer cannot be read from the payment transaction"""
    category = 'payer_extraction_failed'

class PaymentNotVerifiedError(PaymentError):
    """The payment could not be verified on chain"""
    category = 'payment_not_verified'

class TransactionNotFoundError(PaymentNotVerifiedError):
    """Transaction unknown to the node after all retries"""
    pass

class TransactionFailedError(PaymentNotVerifiedError):
    """Transaction executed with an on-chain error"""
    pass

class TransactionNotConfirmedError(PaymentNotVerifiedError):
    """Transaction has no confirmed slot"""
    pass

class PayerMismatchError(PaymentNotVerifiedError):
    """Verified transaction was signed by someone other than the extracted payer"""
    pass

class InsufficientPaymentError(PaymentError):
    """The payment was found but did not cover the price"""
    category = 'insufficient_payment'

class NoTransferFoundError(InsufficientPaymentError):
    """No positive transfer to the treasury account"""
    pass

class PaymentAmountMismatchError(InsufficientPaymentError):
    """Transferred amount differs from the price beyond tolerance"""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Payment amount mismatch: expected {expected} smallest units, received {received}",
            expected_amount=str(expected),
            received_amount=str(received),
        )

class DuplicatePaymentError(AdServiceError):
    """Raised by the store when a payment signature is already attached to an ad"""
    category = 'duplicate_payment'
    status_code = 200

    def __init__(self, payment_tx: str, existing_ad: Optional[Dict[str, Any]] = None):
        self.payment_tx = payment_tx
        self.existing_ad = existing_ad
        super().__init__(f"Payment {payment_tx} was already used")

class AnalysisError(AdServiceError):
    """Base exception for content analysis failures"""
    category = 'analysis_failed'
    status_code = 500

class ModerationError(AnalysisError):
    """Moderation could not produce a score"""
    category = 'moderation_failed'
    status_code = 500

class TaggingError(AnalysisError):
    """Tag generation produced no usable tags"""
    category = 'tagging_failed'
    status_code = 400

class PersistenceError(AdServiceError):
    """Storage failure other than a duplicate payment"""
    category = 'persistence_error'
    status_code = 500

class AdNotFoundError(PersistenceError):
    """Raised when an ad id is unknown"""
    category = 'not_found'
    status_code = 404

    def __init__(self, ad_id: str):
        self.ad_id = ad_id
        super().__init__(f"Ad {ad_id} not found")
