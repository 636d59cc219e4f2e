"""
Sélection de l'adaptateur processeur par configuration (PAYMENT_PROCESSOR).
Injecté dans les routes via Depends(get_processor); les tests le remplacent par dependency_overrides.
"""
import logging
from functools import lru_cache

from storefront.config import PAYMENT_PROCESSOR
from .base import PaymentProcessor

logger = logging.getLogger(__name__)

# module storefront.payments.registry
def build_processor(kind: str) -> PaymentProcessor:
    kind = (kind or "").strip().lower()
    if kind == "stripe":
        from .stripe_client import StripeProcessor
        return StripeProcessor()
    if kind == "paypal":
        from .paypal_client import PayPalProcessor
        return PayPalProcessor()
    raise ValueError(f"PAYMENT_PROCESSOR inconnu: {kind!r}")

@lru_cache(maxsize=1)
def get_processor() -> PaymentProcessor:
    processor = build_processor(PAYMENT_PROCESSOR)
    logger.info("payments.registry processor=%s", processor.kind)
    return processor

def close_processor() -> None:
    """Ferme l'adaptateur actif s'il a été construit (arrêt de l'application)."""
    if get_processor.cache_info().currsize:
        get_processor().close()
        get_processor.cache_clear()
