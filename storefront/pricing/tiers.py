"""
Tarification par paliers de quantité (fonction pure, pas d'I/O, pas de DB).
Seule source de vérité du prix au moment du checkout: le prix mis en cache côté client
n'est qu'indicatif et n'est jamais utilisé pour un calcul monétaire.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

# module storefront.pricing.tiers
TIER_1_THRESHOLD = 10
TIER_2_THRESHOLD = 25

@dataclass(frozen=True)
class PriceTiers:
    """Trois prix unitaires (USD) et leurs seuils: base < tier-1 <= milieu < tier-2 <= bas."""
    base: Decimal
    tier_1: Decimal
    tier_2: Decimal
    tier_1_threshold: int = TIER_1_THRESHOLD
    tier_2_threshold: int = TIER_2_THRESHOLD

    def unit_price(self, quantity: int) -> Decimal:
        if quantity >= self.tier_2_threshold:
            return self.tier_2
        if quantity >= self.tier_1_threshold:
            return self.tier_1
        return self.base

def _tiers(base: str, tier_1: str, tier_2: str) -> PriceTiers:
    return PriceTiers(Decimal(base), Decimal(tier_1), Decimal(tier_2))

# Paliers standards (AOD, CJC, TB-500 et SKU inconnus)
DEFAULT_TIERS = _tiers("55.00", "44.00", "35.00")

# Paliers par famille de produit
FAMILY_TIERS: Dict[str, PriceTiers] = {
    "nadplus": _tiers("55.00", "44.00", "35.00"),
    "reta": _tiers("70.00", "56.00", "45.00"),
    "mots-c": _tiers("45.00", "36.00", "30.00"),
    "melanocortin": _tiers("38.00", "30.00", "25.00"),
    "bpc-157": _tiers("42.00", "34.00", "28.00"),
    "ghk-cu": _tiers("44.00", "35.00", "29.00"),
    "tesamorelin": _tiers("58.00", "46.00", "38.00"),
}

# SKU -> famille (les SKU absents utilisent leur propre nom comme famille)
SKU_FAMILIES: Dict[str, str] = {
    "pt-141": "melanocortin",
    "ipamorelin": "melanocortin",
}

def tiers_for(sku: str) -> PriceTiers:
    family = SKU_FAMILIES.get(sku, sku)
    return FAMILY_TIERS.get(family, DEFAULT_TIERS)

def price_for(sku: str, quantity: int) -> Decimal:
    """
    Prix unitaire faisant autorité pour (sku, quantité).
    - quantity >= 25: prix le plus bas; 10 <= quantity < 25: prix intermédiaire; sinon prix de base.
    - SKU inconnu: paliers standards (DEFAULT_TIERS).
    Déterministe: mêmes entrées, même résultat.
    """
    return tiers_for(sku).unit_price(int(quantity))

def to_cents(amount: Decimal) -> int:
    """Convertit un montant (unité monétaire) en entier dans la plus petite unité (centimes)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / Decimal(100)).quantize(Decimal("0.01"))

def format_amount(cents: int) -> str:
    """Formate des centimes en chaîne décimale "12.34" (format attendu par PayPal)."""
    return f"{from_cents(cents):.2f}"
