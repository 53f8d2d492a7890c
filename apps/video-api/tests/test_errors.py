import logging

from video_api.cores import errors
from video_api.cores.errors import InvalidVideoFormat, UploadFailed, error_body
from video_api.cores.logger import audit


def test_error_body_in_development(monkeypatch):
    monkeypatch.setattr(errors.settings, "ENVIRONMENT", "development")
    cause = RuntimeError("disk full")

    body = error_body("UploadFailed", "Video upload failed", 500, {"stage": "publish"}, cause)

    error = body["error"]
    assert error["code"] == "UploadFailed"
    assert error["status"] == 500
    assert error["details"] == {"stage": "publish"}
    assert "RuntimeError: disk full" in error["stack"]


def test_error_body_in_production_hides_internals(monkeypatch):
    monkeypatch.setattr(errors.settings, "ENVIRONMENT", "production")

    server = error_body("UploadFailed", "Video upload failed", 500, {"stage": "publish"}, RuntimeError("x"))
    client = error_body("InvalidVideoFormat", "Invalid video format", 400, {"content_type": "text/plain"})

    assert "details" not in server["error"]
    assert "stack" not in server["error"]
    assert client["error"]["details"] == {"content_type": "text/plain"}


def test_error_classes_carry_codes():
    error = UploadFailed(stage="transcode", details={"cause": "Timeout"})

    assert error.code == "UploadFailed"
    assert error.status_code == 500
    assert error.message == "Video upload failed, please try again later"
    assert InvalidVideoFormat().status_code == 400


def test_audit_record(caplog):
    with caplog.at_level(logging.INFO, logger="video_api.audit"):
        audit("Video uploaded", video_id="v1", duration=12)

    assert '"type": "audit"' in caplog.text
    assert '"video_id": "v1"' in caplog.text


def test_audit_never_raises(caplog):
    class Unprintable:
        def __str__(self):
            raise ValueError("no")

    with caplog.at_level(logging.INFO, logger="video_api.audit"):
        audit("Video uploaded", weird=Unprintable())

    assert "Could not record audit event" in caplog.text
