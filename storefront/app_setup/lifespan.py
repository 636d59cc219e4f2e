"""
Lifespan FastAPI: ressources partagées du checkout.
- Rate limiting (fastapi-limiter sur Redis) des routes create-checkout-session et capture-order.
- Adaptateur processeur: connexions HTTP fermées à l'arrêt.
Drapeaux d'environnement:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: pas de Redis (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: fakeredis en mémoire
  - LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre locale si Redis est indisponible
"""
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from storefront.payments.registry import close_processor

logger = logging.getLogger("uvicorn.error")

def _redis_connection():
    if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
        from fakeredis.aioredis import FakeRedis  # tests only
        return FakeRedis(decode_responses=True)
    url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
    return aioredis.from_url(url, encoding="utf-8", decode_responses=True)

async def _start_rate_limiter(app: FastAPI) -> None:
    app.state.rate_limit_enabled = False
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        logger.info("checkout.rate_limit disabled for tests")
        return
    try:
        await FastAPILimiter.init(_redis_connection())
    except Exception as e:
        mode = "local fallback" if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1" else "disabled"
        logger.warning("checkout.rate_limit redis unavailable (%s), %s", type(e).__name__, mode)
        return
    app.state.rate_limit_enabled = True
    logger.info("checkout.rate_limit enabled")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await _start_rate_limiter(app)
    try:
        yield
    finally:
        if app.state.rate_limit_enabled:
            await FastAPILimiter.close()
        close_processor()
