"""
Cas d'usage du checkout (sans HTTP):
- create_checkout_session: panier -> prix serveur -> commande 'pending' -> session processeur
- capture_order: capture explicite (type B) puis réconciliation de la commande
"""
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from storefront.cart.validation import MAX_QUANTITY
from storefront.config import BASE_URL, CHECKOUT_CANCEL_PATH, CHECKOUT_SUCCESS_PATH, STORE_CURRENCY
from storefront.errors import (
    CaptureNotSupportedError,
    CheckoutValidationError,
    IdempotencyConflictError,
    OrderStoreError,
    ProcessorError,
)
from storefront.orders import repository
from storefront.orders.models import OrderStatus, build_pending_order, new_order_id
from storefront.pricing import base_sku, get_product, price_for, to_cents
from . import webhooks
from .base import PaymentProcessor, PricedLine, RedirectUrls, Transition
from .schemas import CheckoutRequest

logger = logging.getLogger(__name__)

# module storefront.payments.service
METADATA_SOURCE = "storefront_checkout"
MAX_METADATA_KEYS = 20
MAX_METADATA_KEY_LENGTH = 40
MAX_METADATA_VALUE_LENGTH = 500
RESERVED_METADATA_KEYS = ("order_id", "source", "user_id")

def aggregate_quantities(request: CheckoutRequest) -> Dict[str, Tuple[int, int]]:
    """
    Agrège les lignes par SKU de base: {sku: (index de la 1re ligne, quantité totale)}.
    Lève CheckoutValidationError sur un SKU inconnu (champ items[i].sku).
    """
    quantities: Dict[str, Tuple[int, int]] = {}
    for index, item in enumerate(request.items):
        if get_product(item.sku) is None:
            raise CheckoutValidationError(f"Produit inconnu: {item.sku}", field=f"items[{index}].sku")
        sku = base_sku(item.sku)
        first, qty = quantities.get(sku, (index, 0))
        quantities[sku] = (first, qty + item.quantity)
    for index, qty in quantities.values():
        if qty > MAX_QUANTITY:
            raise CheckoutValidationError("Quantité maximale dépassée", field=f"items[{index}].quantity")
    return quantities

def price_lines(quantities: Dict[str, Tuple[int, int]]) -> List[PricedLine]:
    """Prix unitaire de chaque ligne recalculé par paliers (centimes)."""
    lines: List[PricedLine] = []
    for sku, (_, qty) in quantities.items():
        product = get_product(sku) or {}
        lines.append(PricedLine(
            sku=sku,
            name=product.get("name") or sku,
            quantity=qty,
            unit_amount=to_cents(price_for(sku, qty)),
            image=product.get("image"),
        ))
    return lines

def cart_fingerprint(lines: List[PricedLine]) -> str:
    canonical = json.dumps(sorted((line.sku, line.quantity) for line in lines))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

def order_items(lines: List[PricedLine]) -> List[Dict[str, Any]]:
    return [
        {
            "sku": line.sku,
            "name": line.name,
            "unitPrice": line.unit_amount / 100,
            "quantity": line.quantity,
            "image": line.image,
        }
        for line in lines
    ]

def make_metadata(order_id: str, client_metadata: Dict[str, str], user_id: Optional[str]) -> Dict[str, str]:
    """
    Métadonnées transmises au processeur (limites Stripe: 40 car. par clé, 500 par valeur).
    order_id et source ne peuvent pas être écrasés par le client.
    """
    metadata: Dict[str, str] = {}
    for key, value in list((client_metadata or {}).items())[:MAX_METADATA_KEYS]:
        key = str(key)[:MAX_METADATA_KEY_LENGTH]
        if key in RESERVED_METADATA_KEYS:
            continue
        metadata[key] = str(value)[:MAX_METADATA_VALUE_LENGTH]
    metadata["order_id"] = order_id
    metadata["source"] = METADATA_SOURCE
    if user_id:
        metadata["user_id"] = user_id
    return metadata

def _same_site(url: Optional[str]) -> bool:
    return bool(url) and (url == BASE_URL or url.startswith(BASE_URL + "/"))

def redirect_urls(request: CheckoutRequest, order_id: str) -> RedirectUrls:
    """URLs client acceptées seulement sur BASE_URL, sinon pages par défaut."""
    success = request.success_url if _same_site(request.success_url) else f"{BASE_URL}{CHECKOUT_SUCCESS_PATH}"
    cancel = request.cancel_url if _same_site(request.cancel_url) else f"{BASE_URL}{CHECKOUT_CANCEL_PATH}"
    sep = "&" if "?" in success else "?"
    return RedirectUrls(success_url=f"{success}{sep}order_id={order_id}", cancel_url=cancel)

def _session_response(order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "orderId": order.get("id"),
        "processorReference": order.get("processor_reference"),
        "approvalUrl": order.get("approval_url"),
    }

def _existing_for_key(key: str, fingerprint: str) -> Optional[Dict[str, Any]]:
    existing = repository.find_order_by_idempotency_key(key)
    if not existing:
        return None
    if existing.get("cart_fingerprint") != fingerprint:
        raise IdempotencyConflictError()
    return existing

def create_checkout_session(
    request: CheckoutRequest,
    processor: PaymentProcessor,
    *,
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée la commande 'pending' puis la session processeur.
    - Prix recalculés côté serveur (tout prix client est ignoré)
    - order_id généré et persisté AVANT l'appel processeur (recherche de repli du webhook)
    - Idempotency-Key: même clé + même panier -> même commande; panier différent -> 409
    Retour: {orderId, processorReference, approvalUrl}
    """
    if not request.user_id and not request.customer_email:
        raise CheckoutValidationError("Email requis pour un achat invité", field="customerEmail")

    lines = price_lines(aggregate_quantities(request))
    fingerprint = cart_fingerprint(lines)

    order: Optional[Dict[str, Any]] = None
    if idempotency_key:
        order = _existing_for_key(idempotency_key, fingerprint)
        if order and order.get("processor_reference"):
            logger.info("payments.checkout idempotent replay order_id=%s", order.get("id"))
            return _session_response(order)

    if order is None:
        order_id = new_order_id()
        pending = build_pending_order(
            order_id=order_id,
            processor=processor.kind,
            items=order_items(lines),
            currency=STORE_CURRENCY,
            customer_email=request.customer_email,
            user_id=request.user_id,
            metadata=make_metadata(order_id, request.metadata, request.user_id),
            idempotency_key=idempotency_key,
            cart_fingerprint=fingerprint,
        )
        order = repository.insert_pending_order(pending)
        if order is None and idempotency_key:
            # requête concurrente avec la même clé: index unique
            order = _existing_for_key(idempotency_key, fingerprint)
            if order and order.get("processor_reference"):
                return _session_response(order)
        if order is None:
            raise OrderStoreError("insert pending order")
    elif order.get("status") != OrderStatus.PENDING.value:
        return _session_response(order)

    order_id = order["id"]
    try:
        session = processor.create_session(
            order_id=order_id,
            lines=lines,
            currency=order.get("currency") or STORE_CURRENCY,
            urls=redirect_urls(request, order_id),
            metadata=order.get("metadata") or make_metadata(order_id, request.metadata, request.user_id),
            customer_email=request.customer_email,
            idempotency_key=idempotency_key,
        )
    except ProcessorError as e:
        logger.warning("payments.checkout processor error order_id=%s reason=%s", order_id, e.reason)
        raise
    except Exception as e:
        logger.exception("payments.checkout processor failure order_id=%s", order_id)
        raise ProcessorError(type(e).__name__) from e

    repository.attach_processor_reference(order_id, session.reference, session.approval_url)
    logger.info(
        "payments.checkout created order_id=%s processor=%s reference=%s lines=%s",
        order_id, processor.kind, session.reference, len(lines),
    )
    return {"orderId": order_id, "processorReference": session.reference, "approvalUrl": session.approval_url}

def capture_order(processor: PaymentProcessor, reference: str) -> Tuple[int, Dict[str, Any]]:
    """
    Capture explicite (type B). Retour: (status HTTP, corps).
    - COMPLETED: la commande passe à 'paid' (réconciliation idempotente), 200
    - autre statut: renvoyé tel quel, commande inchangée, 400
    - fonds capturés sans commande connue: 200 avec avertissement
    """
    if not processor.supports_capture:
        raise CaptureNotSupportedError()
    try:
        result = processor.capture(reference)
    except ProcessorError as e:
        logger.warning("payments.capture processor error reference=%s reason=%s", reference, e.reason)
        raise
    except Exception as e:
        logger.exception("payments.capture failure reference=%s", reference)
        raise ProcessorError(type(e).__name__) from e

    if not result.completed:
        order = repository.find_order_by_reference(reference)
        return 400, {
            "status": result.status,
            "captureId": result.capture_id,
            "orderId": result.order_id or (order or {}).get("id"),
            "detail": "Paiement non finalisé",
        }

    updates: Dict[str, Any] = {
        "payment_status": result.status,
        "payment_reference": result.capture_id,
        "capture_id": result.capture_id,
        "currency": result.currency,
        "customer_email": result.payer_email,
        "customer_name": result.payer_name,
    }
    if result.amount is not None:
        updates["amount_total"] = float(result.amount)
    outcome = webhooks.apply_transition(
        Transition(
            target=OrderStatus.PAID.value,
            reference=reference,
            payment_reference=result.capture_id,
            order_id=result.order_id,
            updates=updates,
        ),
        source="capture",
    )
    body: Dict[str, Any] = {"status": result.status, "captureId": result.capture_id, "orderId": result.order_id}
    if outcome == webhooks.NOT_FOUND:
        body["warning"] = "Paiement capturé mais commande introuvable"
    elif not body["orderId"]:
        order = repository.find_order_by_reference(reference)
        body["orderId"] = (order or {}).get("id")
    return 200, body
