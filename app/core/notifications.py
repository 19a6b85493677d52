"""
Notification dispatch hook.

Delivery (mail, push) lives outside this service; transitions only announce
what happened so a worker can pick it up from the log stream.
"""
from typing import Any

from app.utils import get_logger


log = get_logger(__name__)


def notify(event: str, **payload: Any) -> None:
    """Fire-and-forget notification for ``event``."""
    log.info("notify %s %s", event, payload)
