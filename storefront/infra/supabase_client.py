"""
Client Supabase service-role du store de commandes, créé au premier usage.
Lectures et écritures serveur (orders, user_orders, health) passent toutes par lui.
"""
import logging
from typing import Optional

from supabase import Client, create_client

from storefront.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

_service_client: Optional[Client] = None

def get_service_supabase() -> Client:
    global _service_client
    if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
        raise RuntimeError("Store de commandes non configuré (SUPABASE_URL / SUPABASE_SERVICE_KEY)")
    if _service_client is None:
        _service_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
        logger.info("orders.store client ready host=%s", SUPABASE_URL.split("//")[-1])
    return _service_client
