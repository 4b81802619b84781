from .bases import CanonicalModel, Currency, Account, PaymentIntent, SubmissionStatus, PayoutResult

__all__ = [
    "CanonicalModel",
    "Currency",
    "Account",
    "PaymentIntent",
    "SubmissionStatus",
    "PayoutResult",
]
