"""
Module 'payments' (feature-first): checkout, adaptateurs processeur (Stripe, PayPal), capture, webhooks.
"""

from .base import PaymentProcessor, PricedLine, RedirectUrls, SessionResult, CaptureResult, Transition

__all__ = [
    "PaymentProcessor",
    "PricedLine",
    "RedirectUrls",
    "SessionResult",
    "CaptureResult",
    "Transition",
]
