"""
Contrat commun des adaptateurs processeur (type A: Stripe, type B: PayPal).
Le reste du checkout ne connaît que cette interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

# module storefront.payments.base
@dataclass(frozen=True)
class PricedLine:
    """Ligne tarifée côté serveur (prix unitaire en centimes)."""
    sku: str
    name: str
    quantity: int
    unit_amount: int
    image: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.unit_amount * self.quantity

@dataclass(frozen=True)
class RedirectUrls:
    success_url: str
    cancel_url: str

@dataclass(frozen=True)
class SessionResult:
    reference: str
    approval_url: Optional[str]

@dataclass
class CaptureResult:
    status: str
    capture_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    order_id: Optional[str] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"

@dataclass
class Transition:
    """
    Transition demandée par un événement processeur, avant application au store de commandes.
    - reference: référence de session/commande processeur (recherche principale)
    - payment_reference: PaymentIntent / capture (recherche secondaire)
    - order_id: identifiant boutique relayé en metadata (dernier recours)
    - full_refund: None hors remboursement; sinon True si le remboursement est total
    - record_only: enregistre `updates` sans changer de statut, seulement si la commande est encore dans `target`
    """
    target: str
    reference: Optional[str] = None
    payment_reference: Optional[str] = None
    order_id: Optional[str] = None
    updates: Dict[str, Any] = field(default_factory=dict)
    refunded_amount: Optional[Decimal] = None
    full_refund: Optional[bool] = None
    record_only: bool = False

EventHandler = Callable[[Dict[str, Any]], Optional[Transition]]

class PaymentProcessor(ABC):
    kind: str = ""
    supports_capture: bool = False

    @abstractmethod
    def create_session(
        self,
        *,
        order_id: str,
        lines: List[PricedLine],
        currency: str,
        urls: RedirectUrls,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SessionResult:
        ...

    def capture(self, reference: str) -> CaptureResult:
        raise NotImplementedError

    @abstractmethod
    def parse_event(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Vérifie l'authenticité puis retourne l'événement décodé (lève WebhookVerificationError)."""

    @property
    @abstractmethod
    def webhook_handlers(self) -> Dict[str, EventHandler]:
        ...

    def event_type(self, event: Dict[str, Any]) -> str:
        return str((event or {}).get("type") or (event or {}).get("event_type") or "")

    def to_transition(self, event: Dict[str, Any]) -> Optional[Transition]:
        handler = self.webhook_handlers.get(self.event_type(event))
        if handler is None:
            return None
        return handler(event)

    def close(self) -> None:
        """Libère les connexions HTTP propres à l'adaptateur (aucune par défaut)."""
