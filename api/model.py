from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional

from api.deps import get_ctx
from core.context import AppContext
from core.downloads import WHISPER_KEY, FFMPEG_KEY
from core.model_manager import check_ram_availability

router = APIRouter(prefix="/api", tags=["model"])

class UrlRequest(BaseModel):
    url: Optional[str] = None

def _size(ctx: AppContext, size: Optional[str]) -> str:
    return size or ctx.config.snapshot().model_size

@router.get("/model/status")
async def get_model_status(size: Optional[str] = None, ctx: AppContext = Depends(get_ctx)):
    """Returns whether the model is installed, its download status and the RAM check."""
    size = _size(ctx, size)
    return {
        "model": size,
        "installed": ctx.resolver.is_model_installed(size),
        "download": ctx.downloads.get_status(size).to_dict(),
        "ram_check": check_ram_availability(size),
    }

@router.get("/model/size")
async def get_model_size(size: Optional[str] = None, ctx: AppContext = Depends(get_ctx)):
    return {"bytes": await ctx.downloads.get_model_size(_size(ctx, size))}

@router.post("/model/download")
async def start_model_download(size: Optional[str] = None, ctx: AppContext = Depends(get_ctx)):
    """Starts a background download unless one is already running."""
    size = _size(ctx, size)
    if ctx.resolver.is_model_installed(size):
        return {"status": "already_downloaded"}
    status = await ctx.downloads.start_model_download(size)
    return status.to_dict()

@router.get("/whisper/status")
async def get_whisper_status(ctx: AppContext = Depends(get_ctx)):
    return {
        "installed": ctx.resolver.is_whisper_installed(),
        "download": ctx.downloads.get_status(WHISPER_KEY).to_dict(),
    }

@router.get("/whisper/latest-url")
async def get_latest_whisper_url(ctx: AppContext = Depends(get_ctx)):
    return {"url": await ctx.downloads.latest_whisper_url()}

@router.post("/whisper/download")
async def start_whisper_download(req: UrlRequest, ctx: AppContext = Depends(get_ctx)):
    url = req.url or ctx.config.snapshot().whisper_binary_url or ""
    status = await ctx.downloads.start_whisper_download(url)
    return status.to_dict()

@router.get("/ffmpeg/status")
async def get_ffmpeg_status(ctx: AppContext = Depends(get_ctx)):
    return {
        "installed": ctx.resolver.is_ffmpeg_installed(),
        "download": ctx.downloads.get_status(FFMPEG_KEY, "ffmpeg").to_dict(),
    }

@router.post("/ffmpeg/download")
async def start_ffmpeg_download(req: UrlRequest, ctx: AppContext = Depends(get_ctx)):
    url = req.url or ctx.config.snapshot().ffmpeg_binary_url or ""
    status = await ctx.downloads.start_ffmpeg_download(url)
    return status.to_dict()
