"""
Catalogue statique des produits vendables (SKU -> nom affiché, image).
Utilisé par le checkout pour rejeter les SKU inconnus et nommer les lignes de commande.
"""
from typing import Dict, Optional, Any

# module storefront.pricing.catalog
PRODUCTS: Dict[str, Dict[str, Any]] = {
    "bpc-157": {"name": "BPC-157", "image": "assets/products/bpc-157.png"},
    "tb-500": {"name": "TB-500", "image": "assets/products/tb-500.png"},
    "ghk-cu": {"name": "GHK-Cu", "image": "assets/products/ghk-cu.png"},
    "nadplus": {"name": "NAD+", "image": "assets/products/nadplus.png"},
    "reta": {"name": "RETA", "image": "assets/products/reta.png"},
    "mots-c": {"name": "MOTS-c", "image": "assets/products/mots-c.png"},
    "pt-141": {"name": "PT-141", "image": "assets/products/pt-141.png"},
    "ipamorelin": {"name": "Ipamorelin", "image": "assets/products/ipamorelin.png"},
    "tesamorelin": {"name": "Tesamorelin", "image": "assets/products/tesamorelin.png"},
    "aod-9604": {"name": "AOD-9604", "image": "assets/products/aod-9604.png"},
    "cjc-1295": {"name": "CJC-1295", "image": "assets/products/cjc-1295.png"},
}

WHOLESALE_SUFFIX = "-wholesale"

def base_sku(sku: str) -> str:
    """Replie les variantes 'xxx-wholesale' sur le SKU de base."""
    sku = (sku or "").strip()
    if sku.endswith(WHOLESALE_SUFFIX):
        return sku[: -len(WHOLESALE_SUFFIX)]
    return sku

def get_product(sku: str) -> Optional[Dict[str, Any]]:
    product = PRODUCTS.get(base_sku(sku))
    if not product:
        return None
    return {"sku": base_sku(sku), **product}

def is_known_sku(sku: str) -> bool:
    return base_sku(sku) in PRODUCTS
