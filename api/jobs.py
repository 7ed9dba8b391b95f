from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel
from typing import List

from api.deps import get_ctx
from core.context import AppContext

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

class JobPathsRequest(BaseModel):
    paths: List[str]

class ClipRequest(BaseModel):
    start: float
    end: float

@router.get("")
async def list_jobs(ctx: AppContext = Depends(get_ctx)):
    return {"jobs": [j.to_dict() for j in ctx.store.list()]}

@router.post("")
async def add_files(req: JobPathsRequest, ctx: AppContext = Depends(get_ctx)):
    """
    The UI sends absolute paths; each file is copied into its own job folder
    and queued. The original file is never moved.
    """
    jobs = await ctx.job_manager.add_files(req.paths)
    return {"jobs": [j.to_dict() for j in jobs]}

@router.get("/{id}")
async def get_job(id: str, ctx: AppContext = Depends(get_ctx)):
    job = ctx.store.get(id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_dict()

@router.post("/{id}/cancel")
async def cancel_job(id: str, ctx: AppContext = Depends(get_ctx)):
    if not ctx.store.get(id):
        raise HTTPException(status_code=404, detail="Job not found")
    return {"cancelled": await ctx.job_manager.cancel_job(id)}

@router.delete("/{id}")
async def delete_job(id: str, ctx: AppContext = Depends(get_ctx)):
    if not await ctx.job_manager.delete_job(id):
        raise HTTPException(status_code=404, detail="Job not found")
    return {"deleted": True}

@router.get("/{id}/segments")
async def get_segments(id: str, ctx: AppContext = Depends(get_ctx)):
    return {"segments": [s.to_dict() for s in ctx.job_manager.get_segments(id)]}

@router.post("/{id}/clip")
async def get_clip(id: str, req: ClipRequest, ctx: AppContext = Depends(get_ctx)):
    return {"path": await ctx.job_manager.get_clip_path(id, req.start, req.end)}

@router.get("/{id}/audio")
async def get_audio(id: str, ctx: AppContext = Depends(get_ctx)):
    job = ctx.store.get(id)
    if not job or not job.audio_path:
        raise HTTPException(status_code=404, detail="Job not found")
    return FileResponse(job.audio_path)

@router.get("/{id}/summary")
async def get_summary(id: str, ctx: AppContext = Depends(get_ctx)):
    return ctx.job_manager.get_summary(id).to_dict()

@router.post("/{id}/summary")
async def summarize_job(id: str, ctx: AppContext = Depends(get_ctx)):
    result = await ctx.job_manager.summarize_job(id)
    return result.to_dict()
