import pytest

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
from video_api.services.validator import FieldRole, FormatValidator


@pytest.fixture
def validator():
    return FormatValidator(max_payload_bytes=1000, max_files=2)


@pytest.mark.parametrize("mime", [
    "video/mp4", "video/avi", "video/mov", "video/wmv", "video/flv", "video/webm",
    "VIDEO/MP4", "video/mp4; codecs=avc1",
])
def test_accepts_allowed_video_types(validator, mime):
    validator.validate(FieldRole.MEDIA, mime)


@pytest.mark.parametrize("mime", ["text/plain", "image/png", "video/x-matroska", "", None])
def test_rejects_other_video_types(validator, mime):
    with pytest.raises(InvalidVideoFormat):
        validator.validate(FieldRole.MEDIA, mime)


@pytest.mark.parametrize("mime", ["image/jpeg", "image/jpg", "image/png", "image/webp"])
def test_accepts_allowed_poster_types(validator, mime):
    validator.validate(FieldRole.POSTER, mime)


@pytest.mark.parametrize("mime", ["image/gif", "video/mp4", "application/pdf"])
def test_rejects_other_poster_types(validator, mime):
    with pytest.raises(InvalidImageFormat):
        validator.validate(FieldRole.POSTER, mime)


def test_unknown_role_is_rejected_outright(validator):
    with pytest.raises(UnexpectedField):
        validator.validate("avatar", "image/png")


def test_field_names_map_to_roles(validator):
    assert validator.role_of("video") is FieldRole.MEDIA
    assert validator.role_of("thumbnail") is FieldRole.POSTER


def test_check_fields(validator):
    validator.check_fields({"video": 1, "thumbnail": 1})
    validator.check_fields({"thumbnail": 1}, require_media=False)
    with pytest.raises(NoVideoFile):
        validator.check_fields({"thumbnail": 1})
    with pytest.raises(NoVideoFile):
        validator.check_fields({})
    with pytest.raises(TooManyFiles):
        validator.check_fields({"video": 2})
    with pytest.raises(UnexpectedField):
        validator.check_fields({"video": 1, "avatar": 1})


def test_check_metadata_normalises_fields(validator):
    title, description, category = validator.check_metadata("  Hello  ", None, " Music ")

    assert title == "Hello"
    assert description == ""
    assert category is VideoCategory.MUSIC


@pytest.mark.parametrize("title, description, category, error", [
    (None, "", "music", MissingRequiredFields),
    ("T", "", "", MissingRequiredFields),
    ("x" * 201, "", "music", InvalidMetadata),
    ("T", "x" * 2001, "music", InvalidMetadata),
    ("T", "", "cooking", InvalidMetadata),
])
def test_check_metadata_rejects(validator, title, description, category, error):
    with pytest.raises(error):
        validator.check_metadata(title, description, category)


def test_title_boundary_is_inclusive(validator):
    title, _, _ = validator.check_metadata("x" * 200, "y" * 2000, "news")
    assert len(title) == 200


def test_payload_budget(validator):
    budget = validator.new_budget()
    budget.check_declared(None)
    budget.check_declared(1000)
    with pytest.raises(PayloadTooLarge):
        budget.check_declared(1001)

    budget.consume(600)
    budget.consume(400)
    with pytest.raises(PayloadTooLarge) as exc_info:
        budget.consume(1)
    assert exc_info.value.status_code == 413
