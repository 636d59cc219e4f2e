"""
Adaptateur PayPal (type B, deux phases): création de commande, approbation par l'acheteur, capture explicite.
API REST v2 via httpx (timeout borné, jeton OAuth2 mis en cache).
- PayPal-Request-Id rend création et capture idempotentes côté PayPal.
- Une capture déjà effectuée (ORDER_ALREADY_CAPTURED) est relue et traitée comme un succès.
- Webhooks: vérification hors bande via /v1/notifications/verify-webhook-signature.
"""
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import httpx

from storefront.config import (
    PAYPAL_BASE_URL,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_WEBHOOK_ID,
    PROCESSOR_TIMEOUT_SECONDS,
    STORE_NAME,
)
from storefront.errors import ProcessorError, WebhookVerificationError
from storefront.orders.models import OrderStatus
from storefront.pricing import format_amount
from .base import CaptureResult, EventHandler, PaymentProcessor, PricedLine, RedirectUrls, SessionResult, Transition

logger = logging.getLogger(__name__)

# module storefront.payments.paypal_client
APPROVAL_RELS = ("payer-action", "approve")
TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

def _money(currency: str, cents: int) -> Dict[str, str]:
    return {"currency_code": currency.upper(), "value": format_amount(cents)}

def _amount(value: Any) -> Optional[Decimal]:
    try:
        return Decimal(str((value or {}).get("value")))
    except (ArithmeticError, TypeError, ValueError):
        return None

def _link(links: List[Dict[str, Any]], *rels: str) -> Optional[str]:
    for rel in rels:
        for link in links or []:
            if link.get("rel") == rel:
                return link.get("href")
    return None

def _related_order_id(resource: Dict[str, Any]) -> Optional[str]:
    return ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")

def _on_capture_completed(event: Dict[str, Any]) -> Optional[Transition]:
    capture = event.get("resource") or {}
    amount = _amount(capture.get("amount"))
    updates: Dict[str, Any] = {
        "payment_status": capture.get("status"),
        "payment_reference": capture.get("id"),
        "capture_id": capture.get("id"),
        "currency": (capture.get("amount") or {}).get("currency_code"),
    }
    if amount is not None:
        updates["amount_total"] = float(amount)
    return Transition(
        target=OrderStatus.PAID.value,
        reference=_related_order_id(capture),
        payment_reference=capture.get("id"),
        order_id=capture.get("custom_id"),
        updates=updates,
    )

def _on_capture_denied(event: Dict[str, Any]) -> Optional[Transition]:
    capture = event.get("resource") or {}
    return Transition(
        target=OrderStatus.PAYMENT_FAILED.value,
        reference=_related_order_id(capture),
        payment_reference=capture.get("id"),
        order_id=capture.get("custom_id"),
        updates={"payment_status": capture.get("status")},
    )

def _on_capture_refunded(event: Dict[str, Any]) -> Optional[Transition]:
    refund = event.get("resource") or {}
    # Le lien 'up' d'un remboursement pointe vers la capture d'origine
    up = _link(refund.get("links") or [], "up") or ""
    capture_id = up.rstrip("/").rsplit("/", 1)[-1] or None
    breakdown = refund.get("seller_payable_breakdown") or {}
    refunded = _amount(breakdown.get("total_refunded_amount")) or _amount(refund.get("amount"))
    # total ou partiel: décidé par le réconciliateur en comparant au montant payé de la commande
    return Transition(
        target=OrderStatus.REFUNDED.value,
        payment_reference=capture_id,
        order_id=refund.get("custom_id"),
        refunded_amount=refunded,
        full_refund=None,
    )

def _on_order_approved(event: Dict[str, Any]) -> Optional[Transition]:
    resource = event.get("resource") or {}
    logger.info("payments.paypal order approved reference=%s (capture attendue)", resource.get("id"))
    return None

class PayPalProcessor(PaymentProcessor):
    kind = "paypal"
    supports_capture = True

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        webhook_id: Optional[str] = None,
        base_url: str = PAYPAL_BASE_URL,
        timeout: int = PROCESSOR_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client_id = client_id or PAYPAL_CLIENT_ID
        self._client_secret = client_secret or PAYPAL_CLIENT_SECRET
        self._webhook_id = PAYPAL_WEBHOOK_ID if webhook_id is None else webhook_id
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._handlers: Dict[str, EventHandler] = {
            "PAYMENT.CAPTURE.COMPLETED": _on_capture_completed,
            "PAYMENT.CAPTURE.DENIED": _on_capture_denied,
            "PAYMENT.CAPTURE.REFUNDED": _on_capture_refunded,
            "CHECKOUT.ORDER.APPROVED": _on_order_approved,
        }

    @property
    def webhook_handlers(self) -> Dict[str, EventHandler]:
        return self._handlers

    def event_type(self, event: Dict[str, Any]) -> str:
        return str((event or {}).get("event_type") or "")

    def close(self) -> None:
        self._http.close()

    def _access_token(self) -> str:
        now = time.monotonic()
        if self._token and now < self._token_expires_at:
            return self._token
        try:
            resp = self._http.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
            )
        except httpx.HTTPError as e:
            raise ProcessorError(f"paypal oauth {type(e).__name__}") from e
        if resp.status_code != 200:
            raise ProcessorError(f"paypal oauth status={resp.status_code}")
        data = resp.json()
        self._token = data.get("access_token")
        # marge de 60s avant expiration
        self._token_expires_at = now + max(int(data.get("expires_in") or 0) - 60, 0)
        return self._token or ""

    def _request(self, method: str, path: str, *, request_id: Optional[str] = None, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}", "Content-Type": "application/json"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        headers.update(kwargs.pop("headers", {}) or {})
        try:
            resp = self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProcessorError(f"paypal {method} {path} {type(e).__name__}") from e
        if resp.status_code >= 500:
            raise ProcessorError(f"paypal {method} {path} status={resp.status_code}")
        return resp

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
        Crée une commande PayPal non confirmée (intent CAPTURE) et retourne le lien d'approbation.
        reference_id/custom_id = order_id (repli du webhook), montants en chaînes à 2 décimales.
        """
        item_total = sum(line.line_total for line in lines)
        body: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": order_id,
                "custom_id": order_id,
                "amount": {
                    **_money(currency, item_total),
                    "breakdown": {"item_total": _money(currency, item_total)},
                },
                "items": [
                    {
                        "name": line.name[:127],
                        "sku": line.sku,
                        "quantity": str(line.quantity),
                        "unit_amount": _money(currency, line.unit_amount),
                    }
                    for line in lines
                ],
            }],
            "payment_source": {"paypal": {"experience_context": {
                "brand_name": STORE_NAME,
                "user_action": "PAY_NOW",
                "return_url": urls.success_url,
                "cancel_url": urls.cancel_url,
            }}},
        }
        if customer_email:
            body["payment_source"]["paypal"]["email_address"] = customer_email
        resp = self._request("POST", "/v2/checkout/orders", request_id=idempotency_key or f"checkout-{order_id}", json=body)
        if resp.status_code not in (200, 201):
            raise ProcessorError(f"paypal create order status={resp.status_code}")
        data = resp.json()
        return SessionResult(reference=data.get("id"), approval_url=_link(data.get("links") or [], *APPROVAL_RELS))

    def capture(self, reference: str) -> CaptureResult:
        """
        Capture les fonds d'une commande approuvée.
        Sûre à rejouer: même PayPal-Request-Id, et ORDER_ALREADY_CAPTURED relit la commande existante.
        Un refus (ex. INSTRUMENT_DECLINED) remonte comme statut non COMPLETED.
        """
        resp = self._request(
            "POST",
            f"/v2/checkout/orders/{reference}/capture",
            request_id=f"capture-{reference}",
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code in (200, 201):
            return self._capture_result(resp.json())
        error = _json(resp)
        issues = [d.get("issue") for d in error.get("details") or []]
        if resp.status_code == 422 and "ORDER_ALREADY_CAPTURED" in issues:
            logger.info("payments.paypal capture already done reference=%s", reference)
            existing = self._request("GET", f"/v2/checkout/orders/{reference}")
            if existing.status_code != 200:
                raise ProcessorError(f"paypal get order status={existing.status_code}")
            return self._capture_result(existing.json())
        status = (issues[0] if issues else None) or error.get("name") or f"HTTP_{resp.status_code}"
        logger.warning("payments.paypal capture refused reference=%s status=%s", reference, status)
        return CaptureResult(status=status, raw=error)

    @staticmethod
    def _capture_result(data: Dict[str, Any]) -> CaptureResult:
        unit = (data.get("purchase_units") or [{}])[0]
        captures = ((unit.get("payments") or {}).get("captures")) or []
        capture = captures[0] if captures else {}
        payer = data.get("payer") or {}
        name = payer.get("name") or {}
        full_name = " ".join(p for p in (name.get("given_name"), name.get("surname")) if p) or None
        return CaptureResult(
            # le statut de la capture prime (une commande COMPLETED peut porter une capture PENDING)
            status=capture.get("status") or data.get("status") or "",
            capture_id=capture.get("id"),
            amount=_amount(capture.get("amount")),
            currency=(capture.get("amount") or {}).get("currency_code"),
            order_id=capture.get("custom_id") or unit.get("custom_id") or unit.get("reference_id"),
            payer_email=payer.get("email_address"),
            payer_name=full_name,
            raw=data,
        )

    def parse_event(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Vérifie l'événement auprès de PayPal (en-têtes de transmission + webhook_id) avant tout effet."""
        if not self._webhook_id:
            raise WebhookVerificationError()
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError() from e
        body: Dict[str, Any] = {}
        for field, header in TRANSMISSION_HEADERS.items():
            value = headers.get(header)
            if not value:
                raise WebhookVerificationError()
            body[field] = value
        body["webhook_id"] = self._webhook_id
        body["webhook_event"] = event
        try:
            resp = self._request("POST", "/v1/notifications/verify-webhook-signature", json=body)
        except ProcessorError as e:
            raise WebhookVerificationError() from e
        if resp.status_code != 200 or _json(resp).get("verification_status") != "SUCCESS":
            raise WebhookVerificationError()
        return event

def _json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
