import re
import uuid
from dataclasses import dataclass, field
from typing import Optional

from starlette.datastructures import FormData, UploadFile

from video_api.cores.errors import ValidationError

UPLOAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
TEXT_FIELDS = ("title", "description", "category")


@dataclass
class UploadForm:
    """A parsed multipart body: free-text fields plus file parts in arrival order."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    files: list[tuple[str, UploadFile]] = field(default_factory=list)

    @classmethod
    def from_form(cls, form: FormData) -> "UploadForm":
        parsed = cls()
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                parsed.files.append((name, value))
            elif name in TEXT_FIELDS:
                setattr(parsed, name, value)
        return parsed


def resolve_upload_id(header_value: Optional[str]) -> str:
    if not header_value:
        return uuid.uuid4().hex
    if not UPLOAD_ID_PATTERN.match(header_value):
        raise ValidationError("Invalid X-Upload-Id header", details={"pattern": UPLOAD_ID_PATTERN.pattern})
    return header_value


def parse_content_length(header_value: Optional[str]) -> Optional[int]:
    try:
        return int(header_value) if header_value else None
    except ValueError:
        return None
