from __future__ import annotations

import logging

from django.utils import timezone

from .. import windows

logger = logging.getLogger("academics.automation")


def _format_summary(**metrics) -> str:
    return ", ".join(f"{k}={v}" for k, v in metrics.items())


def refresh_window_statuses_job() -> str:
    result = windows.refresh_window_statuses()
    message = f"Window status refresh at {timezone.now().isoformat()}: {_format_summary(**result)}"
    logger.info(message)
    return message


def purge_expired_windows_job() -> str:
    result = windows.purge_expired_windows()
    message = f"Expired window cleanup: {_format_summary(**result)}"
    logger.info(message)
    return message
