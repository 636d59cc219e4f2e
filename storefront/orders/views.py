from fastapi import APIRouter, HTTPException, Path
from starlette.concurrency import run_in_threadpool

from storefront.orders import repository
from storefront.orders.models import public_view

router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])

# module storefront.orders.views
@router.get("/{order_id}")
async def get_order_confirmation(order_id: str = Path(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9\-]+$")):
    """Lecture de la page de confirmation: statut et montants tels que réconciliés (sans email ni user_id)."""
    order = await run_in_threadpool(repository.get_order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Commande introuvable")
    return public_view(order)
