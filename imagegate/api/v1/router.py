from fastapi import APIRouter

from imagegate.api.v1.credits import router as credits_router
from imagegate.api.v1.models import router as models_router
from imagegate.api.v1.upscale import router as upscale_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(upscale_router)
api_v1_router.include_router(credits_router)
api_v1_router.include_router(models_router)
