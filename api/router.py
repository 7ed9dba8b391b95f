from fastapi import APIRouter
from api.websocket import router as ws_router
from api.jobs import router as jobs_router
from api.model import router as model_router
from api.settings import router as settings_router

api_router = APIRouter()

# Mount the sub-routers
api_router.include_router(ws_router)
api_router.include_router(jobs_router)
api_router.include_router(model_router)
api_router.include_router(settings_router)
