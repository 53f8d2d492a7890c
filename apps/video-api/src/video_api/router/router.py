from fastapi import APIRouter
from video_api.controllers import upload, videos

api_router = APIRouter()

api_router.include_router(upload.router, prefix="/upload", tags=["Upload"])
api_router.include_router(videos.router, prefix="/videos", tags=["Videos"])
