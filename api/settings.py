from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.deps import get_ctx
from core.context import AppContext
from schemas.models import AppConfig

router = APIRouter(prefix="/api", tags=["settings"])

@router.get("/health")
async def health():
    return {"status": "ok"}

@router.get("/config")
async def get_config(ctx: AppContext = Depends(get_ctx)):
    return ctx.config.snapshot().to_dict()

@router.put("/config")
async def update_config(body: Dict[str, Any], ctx: AppContext = Depends(get_ctx)):
    # Partial updates: unspecified fields keep their current value
    merged = {**ctx.config.snapshot().to_dict(), **body}
    return ctx.config.update(AppConfig.from_dict(merged)).to_dict()

@router.post("/config/initialize")
async def initialize_config(body: Dict[str, Any], ctx: AppContext = Depends(get_ctx)):
    merged = {**ctx.config.snapshot().to_dict(), **body}
    return ctx.config.initialize(AppConfig.from_dict(merged)).to_dict()

@router.get("/config/initialized")
async def get_config_initialized(ctx: AppContext = Depends(get_ctx)):
    return {"initialized": ctx.config.is_initialized()}
