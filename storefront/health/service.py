from urllib.parse import urlparse
import socket
from storefront.config import SUPABASE_URL
from storefront.infra import supabase_client
from storefront.orders.repository import ORDERS_TABLE, USER_ORDERS_TABLE

# module storefront.health.service
def _check_table(client, name: str):
    try:
        res = client.table(name).select("id" if name == ORDERS_TABLE else "order_id").limit(1).execute()
        return {"ok": True, "rows": len(res.data or [])}
    except Exception as e:
        return {"ok": False, "error": type(e).__name__}

def health_supabase_info():
    parsed = urlparse(SUPABASE_URL) if SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError:
            dns_ok = False

    info = {
        "hostname": hostname,
        "dns_ok": dns_ok,
        "connect_ok": False,
        "error": None,
        "tables": {},
    }
    try:
        client = supabase_client.get_service_supabase()
        for t in (ORDERS_TABLE, USER_ORDERS_TABLE):
            info["tables"][t] = _check_table(client, t)
        info["connect_ok"] = all(t["ok"] for t in info["tables"].values())
    except Exception as e:
        info["error"] = type(e).__name__
    return info
