"""
Validation structurelle d'un panier relu depuis le stockage (potentiellement corrompu ou modifié).
Aucune exception n'est levée: les lignes invalides sont ignorées, une valeur non-liste donne [].
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from storefront.pricing.catalog import base_sku

logger = logging.getLogger(__name__)

# module storefront.cart.validation
SKU_PATTERN = r"^[A-Za-z0-9_:\-]+$"
SKU_MAX_LENGTH = 64
NAME_MAX_LENGTH = 200
CATEGORY_MAX_LENGTH = 100
IMAGE_MAX_LENGTH = 500
MIN_QUANTITY = 1
MAX_QUANTITY = 1000
MIN_PRICE = Decimal("0")
MAX_PRICE = Decimal("100000")

_SKU_RE = re.compile(SKU_PATTERN)

@dataclass
class CartLineItem:
    sku: str
    display_name: str
    quantity: int
    cached_unit_price: Optional[Decimal] = None
    category: Optional[str] = None
    image: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Forme persistée (clés camelCase, identiques à celles du front)."""
        data: Dict[str, Any] = {
            "sku": self.sku,
            "displayName": self.display_name,
            "quantity": self.quantity,
        }
        if self.cached_unit_price is not None:
            data["cachedUnitPrice"] = float(self.cached_unit_price)
        if self.category:
            data["category"] = self.category
        if self.image:
            data["image"] = self.image
        return data

def is_valid_sku(value: Any) -> bool:
    return isinstance(value, str) and 0 < len(value) <= SKU_MAX_LENGTH and bool(_SKU_RE.match(value))

def _quantity(value: Any) -> Optional[int]:
    # bool est un int en Python: on le refuse explicitement
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value < MIN_QUANTITY or value > MAX_QUANTITY:
        return None
    return value

def _price(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    if not price.is_finite() or price < MIN_PRICE or price > MAX_PRICE:
        return None
    return price

def _bounded(value: Any, limit: int) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value[:limit]

def validate_cart_item(raw: Any) -> Optional[CartLineItem]:
    """
    Valide une ligne brute et retourne un CartLineItem, ou None si la ligne est invalide.
    - sku: jeu de caractères restreint, longueur bornée (accepte aussi l'ancienne clé 'id')
    - quantity: entier dans [1, 1000]
    - price (si présent): dans [0, 100000]
    - chaînes tronquées à une longueur maximale
    """
    if not isinstance(raw, dict):
        return None
    sku = raw.get("sku", raw.get("id"))
    if not is_valid_sku(sku):
        return None
    quantity = _quantity(raw.get("quantity"))
    if quantity is None:
        return None

    price = None
    raw_price = raw.get("cachedUnitPrice", raw.get("price"))
    if raw_price is not None:
        price = _price(raw_price)
        if price is None:
            return None

    name = _bounded(raw.get("displayName", raw.get("name")), NAME_MAX_LENGTH) or "Unknown Item"
    return CartLineItem(
        sku=base_sku(sku),
        display_name=name,
        quantity=quantity,
        cached_unit_price=price,
        category=_bounded(raw.get("category"), CATEGORY_MAX_LENGTH),
        image=_bounded(raw.get("image"), IMAGE_MAX_LENGTH),
    )

def validate_cart(raw: Any) -> List[CartLineItem]:
    """
    Filtre un panier complet.
    - Rejette toute la valeur si ce n'est pas une liste.
    - Ignore les lignes invalides et fusionne les doublons de SKU (quantité plafonnée à 1000).
    """
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning("cart.validation rejected non-list value type=%s", type(raw).__name__)
        return []
    items: List[CartLineItem] = []
    by_sku: Dict[str, CartLineItem] = {}
    dropped = 0
    for entry in raw:
        item = validate_cart_item(entry)
        if item is None:
            dropped += 1
            continue
        existing = by_sku.get(item.sku)
        if existing:
            existing.quantity = min(existing.quantity + item.quantity, MAX_QUANTITY)
            continue
        by_sku[item.sku] = item
        items.append(item)
    if dropped:
        logger.info("cart.validation dropped=%s kept=%s", dropped, len(items))
    return items
