"""
Réconciliation des événements processeur avec le store de commandes.

Pour chaque événement (déjà authentifié par l'adaptateur):
1) table event_type -> handler de l'adaptateur; type inconnu: loggé puis ignoré
2) résolution de la commande: référence processeur, puis référence de paiement, puis order_id en metadata
3) transition avant uniquement, appliquée par compare-and-set sur le statut lu
4) rejeu d'un événement déjà appliqué: aucun changement, l'historique du propriétaire est simplement recopié

Issues (journalisées, jamais renvoyées au processeur): applied, duplicate, rejected, not_found, ignored.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.errors import OrderStoreError
from storefront.orders import repository
from storefront.orders.models import OrderStatus, can_transition, history_summary, utc_now
from .base import PaymentProcessor, Transition

logger = logging.getLogger(__name__)

# module storefront.payments.webhooks
APPLIED = "applied"
DUPLICATE = "duplicate"
REJECTED = "rejected"
NOT_FOUND = "not_found"
IGNORED = "ignored"

MAX_CAS_ATTEMPTS = 3

REFUND_STATUSES = (OrderStatus.REFUNDED, OrderStatus.PARTIALLY_REFUNDED)

def reconcile(processor: PaymentProcessor, event: Dict[str, Any]) -> str:
    event_type = processor.event_type(event)
    if event_type not in processor.webhook_handlers:
        logger.info("payments.webhook ignored type=%s processor=%s", event_type, processor.kind)
        return IGNORED
    transition = processor.to_transition(event)
    if transition is None:
        return IGNORED
    outcome = apply_transition(transition, source=event_type)
    logger.info("payments.webhook type=%s id=%s result=%s", event_type, (event or {}).get("id"), outcome)
    return outcome

def resolve_order(t: Transition) -> Optional[Dict[str, Any]]:
    if t.reference:
        order = repository.find_order_by_reference(t.reference)
        if order:
            return order
    if t.payment_reference:
        order = repository.find_order_by_payment_reference(t.payment_reference)
        if order:
            return order
    if not t.order_id:
        return None
    order = repository.get_order(t.order_id)
    if order and t.reference and not order.get("processor_reference"):
        # l'événement a devancé l'écriture de la référence par le checkout
        repository.attach_processor_reference(order["id"], t.reference, order.get("approval_url"))
        order = {**order, "processor_reference": t.reference}
    return order

def _target(t: Transition, order: Dict[str, Any]) -> OrderStatus:
    target = OrderStatus(t.target)
    if target not in REFUND_STATUSES or t.full_refund is not None:
        return target
    total = order.get("amount_total")
    if total is None or t.refunded_amount is None:
        return OrderStatus.PARTIALLY_REFUNDED
    full = t.refunded_amount >= Decimal(str(total))
    return OrderStatus.REFUNDED if full else OrderStatus.PARTIALLY_REFUNDED

def _refunded(order: Dict[str, Any]) -> Decimal:
    return Decimal(str(order.get("refunded_amount") or 0))

def _is_replay(t: Transition, current: OrderStatus, target: OrderStatus, order: Dict[str, Any]) -> bool:
    if current != target:
        return False
    if target == OrderStatus.PARTIALLY_REFUNDED:
        # un nouveau remboursement partiel doit augmenter le cumul
        return t.refunded_amount is None or t.refunded_amount <= _refunded(order)
    return True

def _updates(t: Transition, target: OrderStatus, order: Dict[str, Any]) -> Dict[str, Any]:
    now = utc_now()
    updates = {k: v for k, v in (t.updates or {}).items() if v is not None}
    updates["status"] = target.value
    updates["updated_at"] = now
    if target == OrderStatus.PAID and not order.get("paid_at"):
        updates["paid_at"] = now
    if target in REFUND_STATUSES:
        updates["refunded_at"] = now
        if t.refunded_amount is not None:
            updates["refunded_amount"] = float(t.refunded_amount)
    if t.reference and not order.get("processor_reference"):
        updates["processor_reference"] = t.reference
    return updates

def _record(t: Transition, current: OrderStatus, order: Dict[str, Any], source: str) -> Optional[str]:
    """Champs informatifs sur une commande restée dans t.target; None si le compare-and-set a perdu."""
    if current != OrderStatus(t.target):
        logger.info("payments.webhook record skipped source=%s order_id=%s status=%s", source, order.get("id"), current.value)
        return IGNORED
    fields = {k: v for k, v in (t.updates or {}).items() if v is not None}
    if all(order.get(k) == v for k, v in fields.items()):
        return DUPLICATE
    updated = repository.transition_order(
        order["id"],
        from_statuses=[current.value],
        updates={**fields, "updated_at": utc_now()},
    )
    if not updated:
        return None
    logger.info("payments.webhook recorded source=%s order_id=%s fields=%s", source, order.get("id"), ",".join(fields))
    return APPLIED

def _mirror(order: Dict[str, Any]) -> None:
    if order.get("user_id"):
        repository.upsert_user_order(history_summary(order))

def apply_transition(t: Transition, *, source: str = "") -> str:
    """
    Applique la transition demandée à la commande résolue.
    - compare-and-set sur le statut lu (et le cumul remboursé pour un remboursement partiel successif)
    - course perdue: relecture puis réévaluation, au plus MAX_CAS_ATTEMPTS fois
    - OrderStoreError remonte (le webhook répond 500 et le processeur relivre)
    """
    order = resolve_order(t)
    if not order:
        logger.warning(
            "payments.webhook order not found source=%s reference=%s order_id=%s",
            source, t.reference, t.order_id,
        )
        return NOT_FOUND

    for _ in range(MAX_CAS_ATTEMPTS):
        current = OrderStatus(order.get("status"))
        if t.record_only:
            outcome = _record(t, current, order, source)
            if outcome is not None:
                return outcome
            order = repository.get_order(order["id"])
            if not order:
                return NOT_FOUND
            continue
        target = _target(t, order)
        if _is_replay(t, current, target, order):
            _mirror(order)
            logger.info("payments.webhook duplicate source=%s order_id=%s status=%s", source, order.get("id"), current.value)
            return DUPLICATE
        if not can_transition(current, target):
            logger.warning(
                "payments.webhook rejected source=%s order_id=%s from=%s to=%s",
                source, order.get("id"), current.value, target.value,
            )
            return REJECTED

        refunded_below = None
        if current == OrderStatus.PARTIALLY_REFUNDED and t.refunded_amount is not None:
            refunded_below = float(t.refunded_amount)
        updated = repository.transition_order(
            order["id"],
            from_statuses=[current.value],
            updates=_updates(t, target, order),
            refunded_below=refunded_below,
        )
        if updated:
            _mirror(updated)
            logger.info(
                "payments.webhook applied source=%s order_id=%s from=%s to=%s",
                source, order.get("id"), current.value, target.value,
            )
            return APPLIED
        order = repository.get_order(order["id"])
        if not order:
            return NOT_FOUND

    logger.warning("payments.webhook contention source=%s order_id=%s", source, t.order_id)
    raise OrderStoreError("compare-and-set contention")
