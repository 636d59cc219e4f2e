"""
Adaptateur Stripe (type A, redirection synchrone): centralise les appels et la configuration Stripe.
- Session Checkout créée avec un montant en centimes recalculé côté serveur.
- Capture automatique par Stripe: aucune capture explicite, la complétion arrive par webhook.
- Webhooks: signature HMAC vérifiée par Webhook.construct_event avant tout effet.
"""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import stripe

from storefront.config import SHIPPING_COUNTRIES, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, PROCESSOR_TIMEOUT_SECONDS
from storefront.errors import ProcessorError, WebhookVerificationError
from storefront.orders.models import OrderStatus
from storefront.pricing import from_cents
from .base import EventHandler, PaymentProcessor, PricedLine, RedirectUrls, SessionResult, Transition

logger = logging.getLogger(__name__)

# module storefront.payments.stripe_client
PAID_PAYMENT_STATUSES = ("paid", "no_payment_required")

def require_stripe(secret_key: str = "", timeout: int = PROCESSOR_TIMEOUT_SECONDS):
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - stripe.api_key via STRIPE_SECRET_KEY
    - client HTTP avec timeout borné, retries réseau du SDK (idempotents grâce aux clés d'idempotence)
    """
    key = secret_key or STRIPE_SECRET_KEY
    if key:
        stripe.api_key = key
    stripe.max_network_retries = 2
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    return stripe

def to_line_items(lines: List[PricedLine], currency: str) -> List[Dict[str, Any]]:
    """Lignes Stripe 'price_data' (unit_amount en centimes, jamais de flottant)."""
    line_items: List[Dict[str, Any]] = []
    for line in lines:
        product_data: Dict[str, Any] = {"name": line.name, "metadata": {"sku": line.sku}}
        line_items.append({
            "quantity": line.quantity,
            "price_data": {
                "currency": currency.lower(),
                "unit_amount": line.unit_amount,
                "product_data": product_data,
            },
        })
    return line_items

def with_session_placeholder(url: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}session_id={{CHECKOUT_SESSION_ID}}"

def _obj(event: Dict[str, Any]) -> Dict[str, Any]:
    return ((event or {}).get("data") or {}).get("object") or {}

def _meta_order_id(obj: Dict[str, Any]) -> Optional[str]:
    return (obj.get("metadata") or {}).get("order_id") or obj.get("client_reference_id")

def _shipping_address(session: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    shipping = session.get("shipping_details") or (session.get("collected_information") or {}).get("shipping_details")
    if not shipping:
        return None
    return {"name": shipping.get("name"), **(shipping.get("address") or {})}

def _on_session_completed(event: Dict[str, Any]) -> Optional[Transition]:
    session = _obj(event)
    payment_status = session.get("payment_status")
    if payment_status not in PAID_PAYMENT_STATUSES:
        # Paiement différé (virement, etc.): la commande reste pending, la suite arrive via async_payment_*
        logger.info("payments.stripe session completed unpaid session=%s payment_status=%s", session.get("id"), payment_status)
        return Transition(
            target=OrderStatus.PENDING.value,
            reference=session.get("id"),
            order_id=_meta_order_id(session),
            updates={"payment_status": payment_status},
            record_only=True,
        )
    return _paid_transition(session)

def _paid_transition(session: Dict[str, Any]) -> Transition:
    details = session.get("customer_details") or {}
    updates: Dict[str, Any] = {
        "payment_status": session.get("payment_status"),
        "currency": (session.get("currency") or "").upper() or None,
        "customer_email": details.get("email") or session.get("customer_email"),
        "customer_name": details.get("name"),
        "shipping_address": _shipping_address(session),
        "payment_reference": session.get("payment_intent"),
    }
    amount = session.get("amount_total")
    if amount is not None:
        updates["amount_total"] = float(from_cents(int(amount)))
    return Transition(
        target=OrderStatus.PAID.value,
        reference=session.get("id"),
        payment_reference=session.get("payment_intent"),
        order_id=_meta_order_id(session),
        updates=updates,
    )

def _on_async_succeeded(event: Dict[str, Any]) -> Optional[Transition]:
    return _paid_transition(_obj(event))

def _on_async_failed(event: Dict[str, Any]) -> Optional[Transition]:
    session = _obj(event)
    return Transition(
        target=OrderStatus.PAYMENT_FAILED.value,
        reference=session.get("id"),
        order_id=_meta_order_id(session),
        updates={"payment_status": session.get("payment_status")},
    )

def _on_session_expired(event: Dict[str, Any]) -> Optional[Transition]:
    session = _obj(event)
    return Transition(
        target=OrderStatus.EXPIRED.value,
        reference=session.get("id"),
        order_id=_meta_order_id(session),
    )

def _on_intent_failed(event: Dict[str, Any]) -> Optional[Transition]:
    """
    Carte refusée sur la page Checkout: la session reste ouverte et l'acheteur peut réessayer.
    On note l'erreur sur la commande encore pending, sans l'échouer; seuls
    async_payment_failed et expired terminent une commande pending.
    """
    intent = _obj(event)
    error = intent.get("last_payment_error") or {}
    return Transition(
        target=OrderStatus.PENDING.value,
        payment_reference=intent.get("id"),
        order_id=_meta_order_id(intent),
        updates={"payment_error": error.get("message") or error.get("code")},
        record_only=True,
    )

def _on_charge_refunded(event: Dict[str, Any]) -> Optional[Transition]:
    charge = _obj(event)
    refunded = int(charge.get("amount_refunded") or 0)
    full = refunded >= int(charge.get("amount") or 0)
    return Transition(
        target=(OrderStatus.REFUNDED if full else OrderStatus.PARTIALLY_REFUNDED).value,
        payment_reference=charge.get("payment_intent"),
        order_id=_meta_order_id(charge),
        refunded_amount=from_cents(refunded),
        full_refund=full,
    )

class StripeProcessor(PaymentProcessor):
    kind = "stripe"
    supports_capture = False

    def __init__(self, secret_key: str = "", webhook_secret: str = "", timeout: int = PROCESSOR_TIMEOUT_SECONDS) -> None:
        self._secret_key = secret_key or STRIPE_SECRET_KEY
        self._webhook_secret = webhook_secret if webhook_secret else STRIPE_WEBHOOK_SECRET
        self._timeout = timeout
        self._handlers: Dict[str, EventHandler] = {
            "checkout.session.completed": _on_session_completed,
            "checkout.session.async_payment_succeeded": _on_async_succeeded,
            "checkout.session.async_payment_failed": _on_async_failed,
            "checkout.session.expired": _on_session_expired,
            "payment_intent.payment_failed": _on_intent_failed,
            "charge.refunded": _on_charge_refunded,
        }

    @property
    def webhook_handlers(self) -> Dict[str, EventHandler]:
        return self._handlers

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
        """
        Crée une session Stripe Checkout.
        - metadata porte order_id (session et PaymentIntent) pour la recherche de repli du webhook
        - idempotency_key: réutilisée par Stripe pour renvoyer la même session en cas de retry
        Retour: SessionResult(reference="cs_...", approval_url="https://checkout.stripe.com/...")
        """
        require_stripe(self._secret_key, self._timeout)
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": to_line_items(lines, currency),
            "success_url": with_session_placeholder(urls.success_url),
            "cancel_url": urls.cancel_url,
            "metadata": metadata,
            "client_reference_id": order_id,
            "payment_intent_data": {"metadata": {"order_id": order_id}},
            "billing_address_collection": "required",
            "shipping_address_collection": {"allowed_countries": list(SHIPPING_COUNTRIES)},
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(
                idempotency_key=idempotency_key or f"checkout-{order_id}",
                **params,
            )
        except stripe.StripeError as e:
            raise ProcessorError(f"stripe {type(e).__name__}: {getattr(e, 'user_message', None) or e}") from e
        return SessionResult(reference=session.id, approval_url=session.url)

    def parse_event(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Parse et valide un événement Stripe signé.
        - corps brut + en-tête Stripe-Signature, secret STRIPE_WEBHOOK_SECRET
        - secret absent: rejet (aucun mode non signé)
        Retour: l'événement décodé en dict.
        """
        sig_header = headers.get("stripe-signature")
        if not self._webhook_secret or not sig_header:
            raise WebhookVerificationError()
        try:
            stripe.Webhook.construct_event(payload, sig_header, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookVerificationError() from e
        return json.loads(payload)
