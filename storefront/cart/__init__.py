"""
Module 'cart' (feature-first): panier client persistant, validation au chargement.
"""

from .validation import CartLineItem, validate_cart, validate_cart_item, is_valid_sku
from .storage import CartStorage, MemoryStorage, SessionStorage
from .store import CartStore, CART_STORAGE_KEY

__all__ = [
    "CartLineItem",
    "validate_cart",
    "validate_cart_item",
    "is_valid_sku",
    "CartStorage",
    "MemoryStorage",
    "SessionStorage",
    "CartStore",
    "CART_STORAGE_KEY",
]
