from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from video_api.models.video import VideoCategory, VideoRecord, VideoStatus


class VideoResponse(BaseModel):
    id: str
    user_id: str
    title: str
    description: str = ""
    category: VideoCategory
    video_url: str
    thumbnail_url: str
    duration: int = Field(0, description="Seconds, rounded half up")
    file_size: int = Field(0, description="Bytes of the uploaded source")
    status: VideoStatus
    views: int = 0
    likes: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: VideoRecord) -> "VideoResponse":
        return cls.model_validate(record.model_dump())


class UploadVideoResponse(BaseModel):
    message: str = "Video uploaded successfully"
    video: VideoResponse


class ThumbnailUploadResponse(BaseModel):
    message: str = "Thumbnail uploaded successfully"
    thumbnail_url: str


class JobStatusResponse(BaseModel):
    upload_id: str
    status: str
    progress: int = 0
    message: str = ""
    video_id: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
