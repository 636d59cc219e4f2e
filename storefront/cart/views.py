from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from storefront.pricing import get_product
from .storage import SessionStorage
from .store import CartStore

router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])

# module storefront.cart.views
class CartItemIn(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sku: str = Field(min_length=1, max_length=64)
    quantity: int = 1
    display_name: Optional[str] = Field(default=None, alias="displayName")
    cached_unit_price: Optional[float] = Field(default=None, alias="cachedUnitPrice")
    image: Optional[str] = None
    category: Optional[str] = None

class QuantityIn(BaseModel):
    quantity: Optional[int] = None
    delta: Optional[int] = None

def _cart(request: Request) -> CartStore:
    # un CartStore par requête, adossé au cookie de session signé
    return CartStore(SessionStorage(request.session))

def _snapshot(cart: CartStore) -> Dict[str, Any]:
    return {
        "items": cart.to_list(),
        "total": float(cart.total()),
        "itemCount": cart.item_count(),
    }

@router.get("")
def get_cart(request: Request):
    """Panier courant, relu et filtré (lignes corrompues ignorées). Le total est indicatif."""
    return _snapshot(_cart(request))

@router.post("/items")
def add_item(payload: CartItemIn, request: Request):
    cart = _cart(request)
    product = get_product(payload.sku) or {}
    item = {
        "displayName": payload.display_name or product.get("name"),
        "cachedUnitPrice": payload.cached_unit_price,
        "image": payload.image or product.get("image"),
        "category": payload.category,
    }
    if not cart.add(payload.sku, {k: v for k, v in item.items() if v is not None}, quantity=payload.quantity):
        raise HTTPException(status_code=400, detail="Article invalide")
    return _snapshot(cart)

@router.patch("/items/{sku}")
def update_item(sku: str, payload: QuantityIn, request: Request):
    """quantity: valeur absolue; delta: ajustement relatif. <= 0 retire la ligne."""
    cart = _cart(request)
    if payload.quantity is not None:
        ok = cart.set_quantity(sku, payload.quantity)
    elif payload.delta is not None:
        ok = cart.adjust_quantity(sku, payload.delta)
    else:
        raise HTTPException(status_code=400, detail="quantity ou delta requis")
    if not ok:
        raise HTTPException(status_code=404, detail="Article absent du panier")
    return _snapshot(cart)

@router.delete("/items/{sku}")
def remove_item(sku: str, request: Request):
    cart = _cart(request)
    cart.remove(sku)
    return _snapshot(cart)

@router.delete("")
def clear_cart(request: Request):
    cart = _cart(request)
    cart.clear()
    return _snapshot(cart)
