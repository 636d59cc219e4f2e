"""
Stockages clé/valeur du panier.
- MemoryStorage: stockage partagé en mémoire, émet un événement de changement à chaque écriture
  (équivalent des événements 'storage' entre onglets).
- SessionStorage: adossé à la session cookie signée de Starlette (request.session), côté client.
"""
from typing import Callable, List, MutableMapping, Optional, Protocol

# module storefront.cart.storage
StorageListener = Callable[[str], None]

class CartStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

class MemoryStorage:
    def __init__(self) -> None:
        self._data: dict = {}
        self._listeners: List[StorageListener] = []

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value
        self._emit(key)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)
        self._emit(key)

    def watch(self, listener: StorageListener) -> Callable[[], None]:
        """Abonne un listener aux changements de clé; retourne la fonction de désabonnement."""
        self._listeners.append(listener)

        def _unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unwatch

    def _emit(self, key: str) -> None:
        for listener in list(self._listeners):
            listener(key)

class SessionStorage:
    """Vue CartStorage sur request.session (cookie signé par SessionMiddleware)."""

    def __init__(self, session: MutableMapping) -> None:
        self._session = session

    def get_item(self, key: str) -> Optional[str]:
        value = self._session.get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        self._session[key] = value

    def remove_item(self, key: str) -> None:
        self._session.pop(key, None)
