from datetime import datetime, timezone
from enum import Enum

from beanie import Document, Indexed
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, Enum):
    PROCESSING = "processing"
    PUBLISHED = "published"
    DRAFT = "draft"
    PRIVATE = "private"


class VideoCategory(str, Enum):
    ENTERTAINMENT = "entertainment"
    EDUCATION = "education"
    MUSIC = "music"
    SPORTS = "sports"
    NEWS = "news"
    GAMING = "gaming"
    TECHNOLOGY = "technology"
    OTHER = "other"


class VideoFields(BaseModel):
    """Everything the pipeline hands to the catalog for one insert."""
    user_id: str
    title: str
    description: str = ""
    category: VideoCategory
    video_url: str
    thumbnail_url: str
    duration: int = 0
    file_size: int = 0
    status: VideoStatus = VideoStatus.PUBLISHED


class VideoRecord(VideoFields):
    id: str
    views: int = 0
    likes: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Video(Document):
    user_id: Indexed(str)
    title: str
    description: str = ""
    category: VideoCategory
    video_url: Indexed(str, unique=True)
    thumbnail_url: Indexed(str)
    duration: int = 0
    file_size: int = 0
    status: VideoStatus = VideoStatus.PROCESSING
    views: int = 0
    likes: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "videos"
        indexes = [
            "category",
            "status",
            "created_at",
        ]

    def to_record(self) -> VideoRecord:
        return VideoRecord(id=str(self.id), **self.model_dump(exclude={"id", "revision_id"}))
