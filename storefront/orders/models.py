# module storefront.orders.models
"""Modèle des commandes (document 'orders').
- OrderStatus et graphe des transitions autorisées (avance uniquement).
- Construction d'une commande 'pending' avant tout appel au processeur.
- Projections: résumé pour l'historique du propriétaire, vue publique de confirmation.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import uuid4

class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.EXPIRED, OrderStatus.PAYMENT_FAILED}),
    OrderStatus.PAID: frozenset({OrderStatus.REFUNDED, OrderStatus.PARTIALLY_REFUNDED}),
    # Remboursements successifs: le montant cumulé ne peut que croître
    OrderStatus.PARTIALLY_REFUNDED: frozenset({OrderStatus.PARTIALLY_REFUNDED, OrderStatus.REFUNDED}),
    OrderStatus.EXPIRED: frozenset(),
    OrderStatus.PAYMENT_FAILED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())

def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()

def new_order_id() -> str:
    """Identifiant stable attribué par la boutique, généré avant tout appel au processeur."""
    return str(uuid4())

def build_pending_order(
    *,
    order_id: str,
    processor: str,
    items: List[Dict[str, Any]],
    currency: str,
    customer_email: Optional[str] = None,
    user_id: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
    idempotency_key: Optional[str] = None,
    cart_fingerprint: Optional[str] = None,
) -> Dict[str, Any]:
    now = utc_now()
    return {
        "id": order_id,
        "processor": processor,
        "processor_reference": None,
        "payment_reference": None,
        "approval_url": None,
        "status": OrderStatus.PENDING.value,
        "items": items,
        "customer_email": customer_email or None,
        "user_id": user_id or None,
        "amount_total": None,
        "refunded_amount": 0,
        "currency": currency,
        "metadata": metadata or {},
        "idempotency_key": idempotency_key or None,
        "cart_fingerprint": cart_fingerprint,
        "created_at": now,
        "updated_at": now,
        "paid_at": None,
        "refunded_at": None,
    }

def history_summary(order: Dict[str, Any]) -> Dict[str, Any]:
    """Résumé recopié dans l'historique personnel du propriétaire (table user_orders)."""
    return {
        "user_id": order.get("user_id"),
        "order_id": order.get("id"),
        "status": order.get("status"),
        "amount_total": order.get("amount_total"),
        "refunded_amount": order.get("refunded_amount"),
        "currency": order.get("currency"),
        "items": order.get("items") or [],
        "created_at": order.get("created_at"),
        "paid_at": order.get("paid_at"),
        "updated_at": order.get("updated_at"),
    }

def public_view(order: Dict[str, Any]) -> Dict[str, Any]:
    """Projection lue par la page de confirmation (sans email ni user_id)."""
    return {
        "orderId": order.get("id"),
        "status": order.get("status"),
        "items": order.get("items") or [],
        "amountTotal": order.get("amount_total"),
        "refundedAmount": order.get("refunded_amount"),
        "currency": order.get("currency"),
        "createdAt": order.get("created_at"),
        "paidAt": order.get("paid_at"),
        "refundedAt": order.get("refunded_at"),
    }
