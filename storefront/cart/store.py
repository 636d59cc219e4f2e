"""
Panier côté client: liste de lignes persistée sous une clé unique d'un CartStorage.
Construit explicitement et injecté (pas de singleton global): chaque page/handler reçoit son instance.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from storefront.pricing import price_for, is_known_sku, base_sku
from .storage import CartStorage
from .validation import CartLineItem, validate_cart, validate_cart_item, MAX_QUANTITY

logger = logging.getLogger(__name__)

# module storefront.cart.store
CART_STORAGE_KEY = "storefront_cart"

CartListener = Callable[[List[CartLineItem]], None]

class CartStore:
    def __init__(self, storage: CartStorage, key: str = CART_STORAGE_KEY) -> None:
        self._storage = storage
        self._key = key
        self._items: List[CartLineItem] = []
        self._listeners: List[CartListener] = []
        self._writing = False
        self._unwatch = None
        # Changements faits par un autre onglet sur la même clé -> rechargement + notification
        watch = getattr(storage, "watch", None)
        if callable(watch):
            self._unwatch = watch(self.handle_storage_event)
        self.load()

    @property
    def items(self) -> List[CartLineItem]:
        return list(self._items)

    def load(self) -> List[CartLineItem]:
        """
        Relit le panier depuis le stockage.
        - JSON illisible ou valeur non-liste: panier vide.
        - Lignes invalides ignorées (voir validate_cart).
        Ne lève jamais d'exception.
        """
        raw = self._storage.get_item(self._key)
        parsed: Any = None
        if raw:
            try:
                parsed = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning("cart.load unreadable stored value key=%s", self._key)
                parsed = None
        self._items = validate_cart(parsed)
        return self.items

    def add(self, sku: str, item: Optional[Dict[str, Any]] = None, quantity: int = 1) -> bool:
        """
        Ajoute `quantity` unités du SKU (fusion par SKU).
        `item` porte les champs d'affichage (displayName, cachedUnitPrice, image, category).
        Retourne False si la ligne résultante est invalide (rien n'est modifié).
        """
        sku = base_sku(sku)
        existing = self._find(sku)
        if existing:
            return self.set_quantity(sku, existing.quantity + int(quantity))
        if quantity <= 0:
            return False
        candidate = validate_cart_item({**(item or {}), "sku": sku, "quantity": int(quantity)})
        if candidate is None:
            logger.info("cart.add rejected sku=%s", sku)
            return False
        self._items.append(candidate)
        self._commit()
        return True

    def remove(self, sku: str) -> None:
        sku = base_sku(sku)
        before = len(self._items)
        self._items = [it for it in self._items if it.sku != sku]
        if len(self._items) != before:
            self._commit()

    def set_quantity(self, sku: str, quantity: int) -> bool:
        """Fixe la quantité d'une ligne existante; <= 0 supprime la ligne. Quantité plafonnée à 1000."""
        sku = base_sku(sku)
        existing = self._find(sku)
        if not existing:
            return False
        quantity = int(quantity)
        if quantity <= 0:
            self.remove(sku)
            return True
        existing.quantity = min(quantity, MAX_QUANTITY)
        self._commit()
        return True

    def adjust_quantity(self, sku: str, delta: int) -> bool:
        """Applique un delta de quantité (boutons +/-); la ligne disparaît si elle tombe à 0."""
        existing = self._find(base_sku(sku))
        if not existing:
            return False
        return self.set_quantity(existing.sku, existing.quantity + int(delta))

    def clear(self) -> None:
        self._items = []
        self._commit()

    def total(self) -> Decimal:
        """
        Total indicatif (affichage uniquement): prix par palier pour les SKU connus,
        sinon prix mis en cache. Le serveur recalcule toujours au checkout.
        """
        total = Decimal("0")
        for it in self._items:
            if is_known_sku(it.sku):
                unit = price_for(it.sku, it.quantity)
            else:
                unit = it.cached_unit_price or Decimal("0")
            total += unit * it.quantity
        return total

    def item_count(self) -> int:
        return sum(it.quantity for it in self._items)

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Abonne un listener (appelé immédiatement puis à chaque mutation); retourne le désabonnement."""
        self._listeners.append(listener)
        listener(self.items)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def handle_storage_event(self, key: str) -> None:
        """Événement de changement du stockage (autre onglet): recharge puis notifie."""
        if key != self._key or self._writing:
            return
        self.load()
        self._notify()

    def close(self) -> None:
        if self._unwatch:
            self._unwatch()
            self._unwatch = None

    def to_list(self) -> List[Dict[str, Any]]:
        return [it.to_dict() for it in self._items]

    def _find(self, sku: str) -> Union[CartLineItem, None]:
        return next((it for it in self._items if it.sku == sku), None)

    def _commit(self) -> None:
        # Persistance synchrone avant notification
        self._writing = True
        try:
            self._storage.set_item(self._key, json.dumps(self.to_list()))
        finally:
            self._writing = False
        self._notify()

    def _notify(self) -> None:
        snapshot = self.items
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("cart.notify listener failed")
