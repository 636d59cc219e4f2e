"""
Gestionnaires d'exceptions utilisés par la factory.
- CheckoutError (et sous-classes): JSON {"detail", "field"?} avec le status de la classe.
- RequestValidationError: 400 avec le premier champ fautif (chemin pointé, ex. items[0].quantity).
- HTTPException: JSON FastAPI standard.
Jamais de trace, de payload processeur ni de secret dans une réponse.
"""
import logging
from typing import Any, Iterable
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.errors import CheckoutError, ProcessorError

logger = logging.getLogger(__name__)

def field_path(loc: Iterable[Any]) -> str:
    """('body', 'items', 0, 'sku') -> 'items[0].sku'"""
    path = ""
    for part in loc:
        if part in ("body", "query", "path", "header"):
            continue
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error(request: Request, exc: CheckoutError):
        if isinstance(exc, ProcessorError):
            logger.warning("checkout.error path=%s processor_reason=%s", request.url.path, exc.reason)
        elif exc.status_code >= 500:
            logger.error("checkout.error path=%s type=%s", request.url.path, type(exc).__name__)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        body = {"detail": str(first.get("msg") or "Requête invalide")}
        field = field_path(first.get("loc") or ())
        if field:
            body["field"] = field
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
