from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.health import service as health_service
from storefront.payments.registry import get_processor
from storefront.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root(request: Request):
    return {"ok": True, "rate_limit": rate_limit_health_info(request)}

@router.get("/supabase")
async def health_supabase():
    info = await run_in_threadpool(health_service.health_supabase_info)
    return JSONResponse(info, status_code=200 if info.get("connect_ok") else 503)

@router.get("/processor")
def health_processor(processor=Depends(get_processor)):
    """Processeur actif (jamais ses identifiants)."""
    return {"processor": processor.kind, "supports_capture": processor.supports_capture}
