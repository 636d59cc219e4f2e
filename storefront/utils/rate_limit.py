"""
Rate limiting optionnel des routes sensibles du checkout (création de session, capture).
- fastapi-limiter (Redis) quand le lifespan l'a initialisé
- LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire (dev/tests)
- clé: cookie de session (panier) hashé, sinon IP; toujours suffixée par le chemin
"""
import hashlib
import logging
import os
import time
from typing import Any, Dict, List, Tuple
from urllib.parse import urlparse

from fastapi import HTTPException, Request, Response

logger = logging.getLogger(__name__)

# module storefront.utils.rate_limit
SESSION_COOKIE_NAME = "session"
TOO_MANY_REQUESTS = "Trop de requêtes, réessayez dans un instant."

def client_key(request: Request) -> str:
    path = request.url.path
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"session:{digest}:{path}"
    host = request.client.host if request.client else "local"
    return f"ip:{host}:{path}"

def _local_fallback() -> bool:
    return os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1"

def _prune(windows: Dict[str, Tuple[int, List[float]]], now: float) -> None:
    idle = [k for k, (seconds, hits) in windows.items() if not hits or now - hits[-1] >= seconds]
    for key in idle:
        del windows[key]

def _local_hit(request: Request, times: int, seconds: int) -> None:
    """Fenêtre glissante par clé, conservée sur app.state (un seul process); les clés inactives sont purgées."""
    now = time.time()
    key = client_key(request)
    windows: Dict[str, Tuple[int, List[float]]] = getattr(request.app.state, "_rl_store", None) or {}
    request.app.state._rl_store = windows
    _prune(windows, now)
    _, hits = windows.get(key, (seconds, []))
    recent = [t for t in hits if now - t < seconds]
    if len(recent) >= times:
        logger.info("checkout.rate_limit local window full key=%s", key.split(":")[0])
        raise HTTPException(status_code=429, detail=TOO_MANY_REQUESTS)
    recent.append(now)
    windows[key] = (seconds, recent)

async def _identifier(request: Request) -> str:
    return client_key(request)

def optional_rate_limit(times: int, seconds: int):
    """Dépendance FastAPI: aucun effet si le limiteur n'est pas prêt (jamais de 429 par panne Redis)."""
    async def _dep(request: Request, response: Response):
        if _local_fallback():
            _local_hit(request, times, seconds)
            return
        if getattr(request.app.state, "rate_limit_enabled", None) is not True:
            return

        from fastapi_limiter.depends import RateLimiter
        try:
            await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request, response)
        except HTTPException:
            raise
        except Exception as e:
            logger.warning("checkout.rate_limit redis unavailable error=%s", type(e).__name__)
    return _dep

def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    """État du limiteur pour /health (sans identifiants Redis)."""
    from fastapi_limiter import FastAPILimiter

    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    ready = getattr(FastAPILimiter, "redis", None) is not None
    backend = "memory" if _local_fallback() else ("redis" if ready else None)
    info: Dict[str, Any] = {
        "enabled": None if enabled is None else bool(enabled),
        "ready": ready,
        "backend": backend,
    }
    redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
    if backend == "redis" and redis_url:
        parsed = urlparse(redis_url)
        info["redis"] = {"scheme": parsed.scheme, "host": parsed.hostname, "port": parsed.port}
    return info
