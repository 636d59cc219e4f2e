"""
Module 'pricing': paliers de prix et catalogue (logique pure).
"""

from .tiers import price_for, tiers_for, to_cents, from_cents, format_amount, PriceTiers
from .catalog import get_product, is_known_sku, base_sku

__all__ = [
    "price_for",
    "tiers_for",
    "to_cents",
    "from_cents",
    "format_amount",
    "PriceTiers",
    "get_product",
    "is_known_sku",
    "base_sku",
]
