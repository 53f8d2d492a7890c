import json
import logging
from typing import Any

from video_api.cores.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

audit_logger = logging.getLogger("video_api.audit")


def configure_logging(level: str | None = None):
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def audit(event: str, **fields: Any):
    """Fire-and-forget audit record. Never raises."""
    try:
        payload = json.dumps({"type": "audit", **fields}, default=str, ensure_ascii=False)
        audit_logger.info(f"{event} {payload}")
    except Exception as e:
        audit_logger.warning(f"Could not record audit event {event}: {e}")
