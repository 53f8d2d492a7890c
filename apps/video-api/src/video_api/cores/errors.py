import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from video_api.cores.config import settings

logger = logging.getLogger(__name__)


class VideoApiError(Exception):
    code = "InternalError"
    status_code = 500
    message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, *, stage: Optional[str] = None,
                 details: Any = None, cause: Optional[BaseException] = None):
        self.message = message or self.message
        self.stage = stage
        self.details = details
        self.cause = cause
        super().__init__(self.message)


# Client errors: raised before any side effect that survives the request.
class ValidationError(VideoApiError):
    code = "ValidationError"
    status_code = 400
    message = "Validation Error"


class NoVideoFile(ValidationError):
    code = "NoVideoFile"
    message = "No video file provided"


class MissingRequiredFields(ValidationError):
    code = "MissingRequiredFields"
    message = "Title and category are required"


class InvalidMetadata(ValidationError):
    code = "InvalidMetadata"
    message = "Invalid video metadata"


class InvalidVideoFormat(ValidationError):
    code = "InvalidVideoFormat"
    message = "Invalid video format. Allowed formats: MP4, AVI, MOV, WMV, FLV, WebM"


class InvalidImageFormat(ValidationError):
    code = "InvalidImageFormat"
    message = "Invalid image format. Allowed formats: JPEG, PNG, WebP"


class UnexpectedField(ValidationError):
    code = "UnexpectedField"
    message = "Unexpected file field"


class TooManyFiles(ValidationError):
    code = "TooManyFiles"
    message = "At most one file per field is accepted"


class PayloadTooLarge(ValidationError):
    code = "PayloadTooLarge"
    status_code = 413
    message = "File too large"


# Upstream tool failures.
class UnreadableMedia(VideoApiError):
    code = "UnreadableMedia"
    message = "Media container could not be read"


class MediaTimeout(VideoApiError):
    code = "Timeout"
    message = "Media tool exceeded its time limit"


class TranscodeFailed(VideoApiError):
    code = "TranscodeFailed"
    message = "Video transcoding failed"


class ThumbnailFailed(VideoApiError):
    code = "ThumbnailFailed"
    message = "Thumbnail generation failed"


# Filesystem and collaborator failures.
class StagingError(VideoApiError):
    code = "StagingError"
    message = "Upload could not be staged"


class PlacementError(VideoApiError):
    code = "PlacementError"
    message = "File could not be placed in permanent storage"


class StoreError(VideoApiError):
    code = "StoreError"
    message = "Catalog write failed"


class CacheError(VideoApiError):
    code = "CacheError"
    message = "Cache operation failed"


# User-facing shapes.
class UploadFailed(VideoApiError):
    code = "UploadFailed"
    status_code = 500
    message = "Video upload failed, please try again later"


class Unauthorized(VideoApiError):
    code = "Unauthorized"
    status_code = 401
    message = "Unauthorized"


class Forbidden(VideoApiError):
    code = "Forbidden"
    status_code = 403
    message = "Forbidden"


class NotFound(VideoApiError):
    code = "NotFound"
    status_code = 404
    message = "Not Found"


def error_body(code: str, message: str, status: int, details: Any = None,
               exc: Optional[BaseException] = None) -> dict:
    error = {
        "code": code,
        "message": message,
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not settings.is_production:
        if details is not None:
            error["details"] = details
        if exc is not None:
            error["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    elif details is not None and status < 500:
        error["details"] = details
    return {"error": error}


async def video_api_error_handler(request: Request, exc: VideoApiError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    details = exc.details
    source = exc.cause or exc
    if details is None and exc.cause is not None:
        details = str(exc.cause)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.status_code, details,
                           source if exc.status_code >= 500 else None),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body("HTTPError", str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=error_body("ValidationError", "Validation Error", 400, jsonable_encoder(exc.errors())),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_body("InternalError", "Internal Server Error", 500, str(exc), exc),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(VideoApiError, video_api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
