"""
Accès aux données du store de commandes (Supabase, tables 'orders' et 'user_orders').
Toutes les écritures passent par le client service-role.
Contrairement aux lectures « best effort » du reste de l'app, une erreur Supabase lève OrderStoreError:
un webhook doit échouer (et être relivré) plutôt que perdre une transition.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError

import storefront.infra.supabase_client as supabase_client
from storefront.errors import OrderStoreError

logger = logging.getLogger(__name__)

# module storefront.orders.repository
ORDERS_TABLE = "orders"
USER_ORDERS_TABLE = "user_orders"

def _orders():
    return supabase_client.get_service_supabase().table(ORDERS_TABLE)

def _first(rows: Any) -> Optional[Dict[str, Any]]:
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None

def _find_one(column: str, value: str) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        res = _orders().select("*").eq(column, value).limit(1).execute()
    except Exception as e:
        logger.exception("orders.repository lookup failed column=%s", column)
        raise OrderStoreError(f"lookup {column}") from e
    return _first(res.data)

def insert_pending_order(order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Insère la commande 'pending' et retourne la ligne créée.
    Retourne None en cas d'échec (l'appelant ne doit alors pas contacter le processeur).
    Violation d'unicité (23505): clé d'idempotence déjà prise par un envoi concurrent.
    """
    try:
        res = _orders().insert(order).execute()
        return _first(res.data) or order
    except APIError as e:
        code = None
        if e.args and isinstance(e.args[0], dict):
            code = e.args[0].get("code")
        if code == "23505":
            logger.info("orders.repository.insert_pending_order duplicate idempotency_key order_id=%s", order.get("id"))
        else:
            logger.exception("orders.repository.insert_pending_order failed order_id=%s", order.get("id"))
        return None
    except Exception:
        logger.exception("orders.repository.insert_pending_order failed order_id=%s", order.get("id"))
        return None

def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    return _find_one("id", order_id)

def find_order_by_reference(reference: str) -> Optional[Dict[str, Any]]:
    """Recherche principale: référence de session/commande du processeur."""
    return _find_one("processor_reference", reference)

def find_order_by_payment_reference(payment_reference: str) -> Optional[Dict[str, Any]]:
    """Recherche secondaire: PaymentIntent Stripe ou capture PayPal."""
    return _find_one("payment_reference", payment_reference)

def find_order_by_idempotency_key(key: str) -> Optional[Dict[str, Any]]:
    return _find_one("idempotency_key", key)

def attach_processor_reference(order_id: str, reference: str, approval_url: Optional[str]) -> bool:
    """
    Écrit la référence processeur sur une commande encore sans référence.
    Retourne False sans lever en cas d'échec: le webhook retrouvera la commande via metadata.order_id.
    """
    try:
        res = (
            _orders()
            .update({"processor_reference": reference, "approval_url": approval_url})
            .eq("id", order_id)
            .execute()
        )
        return bool(res.data)
    except Exception:
        logger.exception("orders.repository.attach_processor_reference failed order_id=%s", order_id)
        return False

def transition_order(
    order_id: str,
    *,
    from_statuses: Iterable[str],
    updates: Dict[str, Any],
    refunded_below: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    """
    Read-modify-write atomique: un seul UPDATE conditionnel
    `WHERE id = :order_id AND status IN (:from_statuses) [AND refunded_amount < :refunded_below]`.
    - Retourne la ligne mise à jour, ou None si la condition n'est plus vraie (course perdue).
    - Lève OrderStoreError si Supabase échoue.
    """
    statuses: List[str] = [str(getattr(s, "value", s)) for s in from_statuses]
    try:
        query = _orders().update(updates).eq("id", order_id).in_("status", statuses)
        if refunded_below is not None:
            query = query.lt("refunded_amount", refunded_below)
        res = query.execute()
    except Exception as e:
        logger.exception("orders.repository.transition_order failed order_id=%s", order_id)
        raise OrderStoreError("transition") from e
    return _first(res.data)

def upsert_user_order(summary: Dict[str, Any]) -> None:
    """Recopie idempotente (clé user_id + order_id) dans l'historique personnel du propriétaire."""
    try:
        (
            supabase_client.get_service_supabase()
            .table(USER_ORDERS_TABLE)
            .upsert(summary, on_conflict="user_id,order_id")
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.upsert_user_order failed order_id=%s", summary.get("order_id"))
        raise OrderStoreError("user history") from e
