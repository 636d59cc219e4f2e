"""
Exceptions métier du checkout.
Chaque classe porte un status_code HTTP et un message public (jamais de détail interne);
les handlers de storefront.app_setup.exceptions les convertissent en réponses JSON.
"""
from typing import Optional

# module storefront.errors
GENERIC_PAYMENT_ERROR = "Le paiement n'a pas pu aboutir, veuillez réessayer."

class CheckoutError(Exception):
    status_code = 500
    public_message = "Erreur interne"

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        if self.field:
            body["field"] = self.field
        return body

class CheckoutValidationError(CheckoutError):
    """Panier ou saisie invalide (400), avec le champ fautif."""
    status_code = 400
    public_message = "Panier invalide"

class IdempotencyConflictError(CheckoutError):
    status_code = 409
    public_message = "Clé d'idempotence déjà utilisée pour un autre panier"

class CaptureNotSupportedError(CheckoutError):
    status_code = 400
    public_message = "La capture explicite n'est pas supportée par ce processeur"

class ProcessorError(CheckoutError):
    """Échec ou timeout côté processeur de paiement: message générique pour le client."""
    status_code = 502
    public_message = GENERIC_PAYMENT_ERROR

    def __init__(self, reason: str = "", *, status: Optional[str] = None) -> None:
        super().__init__(GENERIC_PAYMENT_ERROR)
        # reason reste côté logs, jamais dans la réponse
        self.reason = reason
        self.status = status

class WebhookVerificationError(CheckoutError):
    status_code = 400
    public_message = "Invalid webhook signature"

class OrderStoreError(CheckoutError):
    """Échec d'accès au store de commandes (Supabase)."""
    status_code = 500
    public_message = GENERIC_PAYMENT_ERROR
