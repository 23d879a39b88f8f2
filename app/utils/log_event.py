import json
from typing import Any

from core.ids import utc_now_iso
from core.logger import logger

_PREVIEW_CHARS = 500


def log_event(event: str, level: str = "info", **fields: Any) -> None:
    """
    Emit one JSON log line for a message lifecycle event
    (message_stored, message_published, webhook_received, ...).
    """
    log_data = {"timestamp": utc_now_iso(), "event": event}

    for key, value in fields.items():
        # Truncate long free text (descriptions, worker replies)
        if isinstance(value, str) and len(value) > _PREVIEW_CHARS:
            value = value[:_PREVIEW_CHARS] + "..."
        log_data[key] = value

    getattr(logger, level)(json.dumps(log_data, ensure_ascii=False, default=str))
