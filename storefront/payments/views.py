import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.errors import WebhookVerificationError
from storefront.utils.rate_limit import optional_rate_limit
from storefront.payments import service as checkout_service
from storefront.payments import webhooks
from storefront.payments.base import PaymentProcessor
from storefront.payments.registry import get_processor
from storefront.payments.schemas import CaptureRequest, CheckoutRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module storefront.payments.views
@router.post("/create-checkout-session", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_checkout_session(
    payload: CheckoutRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=255),
    processor: PaymentProcessor = Depends(get_processor),
) -> Dict[str, Any]:
    """
    Crée la commande 'pending' et la session du processeur actif.
    - Entrée JSON: {items: [{sku, quantity}], customerEmail?, userId?, metadata?, successUrl?, cancelUrl?}
    - En-tête optionnel Idempotency-Key: un retry renvoie la même commande
    - Réponse: {orderId, processorReference, approvalUrl}
    - Erreurs: 400 panier invalide (champ fautif), 409 clé réutilisée, 502 processeur indisponible
    """
    return await run_in_threadpool(
        checkout_service.create_checkout_session,
        payload,
        processor,
        idempotency_key=idempotency_key,
    )

@router.post("/capture-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def capture_order(payload: CaptureRequest, processor: PaymentProcessor = Depends(get_processor)):
    """
    Capture explicite après approbation de l'acheteur (processeur deux phases uniquement).
    Rejouable: une commande déjà capturée renvoie le même statut.
    """
    status_code, body = await run_in_threadpool(checkout_service.capture_order, processor, payload.processor_reference)
    return JSONResponse(body, status_code=status_code)

@router.post("/webhook", include_in_schema=False)
async def payment_webhook(request: Request, processor: PaymentProcessor = Depends(get_processor)):
    """
    Webhook du processeur actif.
    - Authenticité vérifiée sur le corps brut AVANT tout effet (400 sinon, aucun changement)
    - Réconciliation idempotente; commande inconnue ou type non géré: 200 sans effet
    - Échec du store de commandes: 500 pour provoquer une relivraison
    """
    payload = await request.body()
    try:
        event = await run_in_threadpool(processor.parse_event, payload, request.headers)
    except WebhookVerificationError:
        logger.warning("payments.webhook verification failed processor=%s", processor.kind)
        raise
    await run_in_threadpool(webhooks.reconcile, processor, event)
    return {"received": True}
