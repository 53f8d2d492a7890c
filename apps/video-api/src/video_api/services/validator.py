from enum import Enum
from typing import Mapping, Optional, Sequence

from video_api.cores.errors import (
    InvalidImageFormat,
    InvalidMetadata,
    InvalidVideoFormat,
    MissingRequiredFields,
    NoVideoFile,
    PayloadTooLarge,
    TooManyFiles,
    UnexpectedField,
)
from video_api.models.video import VideoCategory


TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000


class FieldRole(str, Enum):
    MEDIA = "video"
    POSTER = "thumbnail"


ALLOWED_VIDEO_TYPES = frozenset({
    "video/mp4",
    "video/avi",
    "video/mov",
    "video/wmv",
    "video/flv",
    "video/webm",
})

ALLOWED_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
})


class PayloadBudget:
    """Running byte total for one request, shared by every staged part."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def check_declared(self, content_length: Optional[int]):
        if content_length is not None and content_length > self.limit:
            raise PayloadTooLarge(details={"limit": self.limit, "declared": content_length})

    def consume(self, size: int):
        self.used += size
        if self.used > self.limit:
            raise PayloadTooLarge(details={"limit": self.limit})


class FormatValidator:
    def __init__(self, max_payload_bytes: int, max_files: int = 2):
        self.max_payload_bytes = max_payload_bytes
        self.max_files = max_files

    def new_budget(self) -> PayloadBudget:
        return PayloadBudget(self.max_payload_bytes)

    def role_of(self, field_name: str) -> FieldRole:
        try:
            return FieldRole(field_name)
        except ValueError:
            raise UnexpectedField(details={"field": field_name})

    def validate(self, role: FieldRole | str, declared_mime: Optional[str]):
        if not isinstance(role, FieldRole):
            role = self.role_of(role)
        mime = (declared_mime or "").split(";")[0].strip().lower()
        if role is FieldRole.MEDIA and mime not in ALLOWED_VIDEO_TYPES:
            raise InvalidVideoFormat(details={"content_type": declared_mime})
        if role is FieldRole.POSTER and mime not in ALLOWED_IMAGE_TYPES:
            raise InvalidImageFormat(details={"content_type": declared_mime})

    def check_fields(self, file_counts: Mapping[str, int], require_media: bool = True):
        total = 0
        for name, count in file_counts.items():
            self.role_of(name)
            if count > 1:
                raise TooManyFiles(details={"field": name, "count": count})
            total += count
        if total > self.max_files:
            raise TooManyFiles(details={"count": total, "limit": self.max_files})
        if require_media and not file_counts.get(FieldRole.MEDIA.value):
            raise NoVideoFile()

    def check_metadata(self, title: Optional[str], description: Optional[str],
                       category: Optional[str]) -> tuple[str, str, VideoCategory]:
        title = (title or "").strip()
        category = (category or "").strip().lower()
        if not title or not category:
            raise MissingRequiredFields()
        if len(title) > TITLE_MAX_LENGTH:
            raise InvalidMetadata(f"Title must be at most {TITLE_MAX_LENGTH} characters")
        description = description or ""
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise InvalidMetadata(f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters")
        try:
            parsed = VideoCategory(category)
        except ValueError:
            raise InvalidMetadata(
                "Unknown category",
                details={"allowed": [c.value for c in VideoCategory]},
            )
        return title, description, parsed

    def validate_parts(self, parts: Sequence[tuple[str, Optional[str]]]):
        """Check every (field, content type) pair before anything is staged."""
        for name, mime in parts:
            self.validate(self.role_of(name), mime)
